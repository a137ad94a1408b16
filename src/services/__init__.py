"""Services package: the identity seam and the remote store."""

from src.services.identity import Identity, IdentitySession
from src.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    InMemoryRemoteStore,
    NotFoundError,
    Repositories,
    StorageError,
)

__all__ = [
    # Identity
    "Identity",
    "IdentitySession",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryRemoteStore",
    "NotFoundError",
    "Repositories",
    "StorageError",
]
