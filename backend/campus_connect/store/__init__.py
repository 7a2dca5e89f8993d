"""Embedded relational store standing in for the managed backend."""

from .database import CampusDatabase
from .tables import TABLE_COLUMNS, TableStore, utcnow

__all__ = [
    "CampusDatabase",
    "TABLE_COLUMNS",
    "TableStore",
    "utcnow",
]
