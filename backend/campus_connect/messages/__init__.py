"""Message store adapter."""
