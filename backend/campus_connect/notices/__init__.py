"""Notice board (dashboard announcements)."""
