"""Identity resolution and local session persistence."""
