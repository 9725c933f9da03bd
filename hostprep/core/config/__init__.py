"""Settings loading."""
