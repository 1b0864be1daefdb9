"""Container runtime implementations."""
