"""CampusConnect: real-time campus chat backend."""

__version__ = "0.1.0"
