"""
Storage layer for the MHC Control Panel.

A single SQLite database holds every table; services open a connection
per operation through Database.connection() / Database.transaction().
"""

from .database import Database, dumps, loads, new_id, now_iso, parse_iso, to_iso, utcnow

__all__ = [
    "Database",
    "dumps",
    "loads",
    "new_id",
    "now_iso",
    "parse_iso",
    "to_iso",
    "utcnow",
]
