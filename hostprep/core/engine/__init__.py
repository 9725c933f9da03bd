"""Step runner."""
