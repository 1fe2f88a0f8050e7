"""Data access layer for the Tower climbing gym app."""

from tower_dal.client import Client
from tower_dal.config import Settings, settings
from tower_dal.cursors import ArrayCursor, MergeCursor, QueryCursor
from tower_dal.errors import DalError, ErrorKind
from tower_dal.logging_config import setup_logging
from tower_dal.protocols import Cursor, DocumentStore, Provider, Transaction

__all__ = [
    "ArrayCursor",
    "Client",
    "Cursor",
    "DalError",
    "DocumentStore",
    "ErrorKind",
    "MergeCursor",
    "Provider",
    "QueryCursor",
    "Settings",
    "Transaction",
    "settings",
    "setup_logging",
]
