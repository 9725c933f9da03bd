"""hostprep — idempotent provisioning tasks for Linux/macOS hosts."""

__version__ = "0.1.0"
