"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a Google Sheets backend; both are swappable.
"""

from splitledger.services.storage.interface import (
    ChangeLogStorageInterface,
    ConnectionError,
    DuplicateError,
    GroupStorageInterface,
    NotFoundError,
    StaleWriteError,
    StorageError,
    UserStorageInterface,
)
from splitledger.services.storage.memory import (
    InMemoryChangeLogStorage,
    InMemoryGroupStorage,
    InMemoryUserStorage,
)
from splitledger.services.storage.google_sheets import (
    GoogleSheetsChangeLogStorage,
    GoogleSheetsClient,
    GoogleSheetsGroupStorage,
    GoogleSheetsUserStorage,
)

__all__ = [
    # Interfaces
    "ChangeLogStorageInterface",
    "GroupStorageInterface",
    "UserStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StaleWriteError",
    "StorageError",
    # In-memory implementation
    "InMemoryChangeLogStorage",
    "InMemoryGroupStorage",
    "InMemoryUserStorage",
    # Google Sheets implementation
    "GoogleSheetsChangeLogStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGroupStorage",
    "GoogleSheetsUserStorage",
]
