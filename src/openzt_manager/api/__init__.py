"""Manager REST API."""
