"""Room directory."""
