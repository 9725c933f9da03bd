"""Provisioning services — one module per task."""
