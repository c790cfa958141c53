"""Web adapter."""
