"""
Storage Services Package

Provides the abstract RemoteStore interface, its backends (Google Sheets
and in-memory) and the typed repositories built on top of them.
"""

from src.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    Filter,
    NotFoundError,
    Order,
    RemoteStore,
    SchemaError,
    StorageError,
)
from src.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
)
from src.services.storage.memory import InMemoryRemoteStore
from src.services.storage.repository import Repositories, Repository
from src.services.storage.schema import TABLES, TableDefinition, generate_invite_code

__all__ = [
    # Interface
    "Filter",
    "Order",
    "RemoteStore",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "SchemaError",
    "StorageError",
    # Backends
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryRemoteStore",
    # Typed access
    "Repositories",
    "Repository",
    "TABLES",
    "TableDefinition",
    "generate_invite_code",
]
