"""
Board Storage

Persistence layer for a collaborative board tool: boards, blocks, users,
teams, sessions, categories, subscriptions, notification hints, sharing
and system settings behind one async store contract.

Usage:

    >>> from board_storage import SQLiteBackend, SQLiteConfig, is_not_found
    >>> async with SQLiteBackend(SQLiteConfig(db_path="boards.db")) as store:
    ...     try:
    ...         board = await store.get_board(board_id)
    ...     except Exception as e:
    ...         if not is_not_found(e):
    ...             raise
    ...         board = None

Backend Selection:

    # SQLite for single-node deployments and tests
    from board_storage.backends.sqlite import SQLiteBackend, SQLiteConfig

    # Autospecced double for callers' tests
    from board_storage.mockstore import create_mock_store
"""

# Backend abstraction
from .backends import StoreBackend
from .backends.sqlite import SQLiteBackend, SQLiteConfig

# Exceptions
from .exceptions import (
    BoardStorageError,
    DuplicateError,
    InvalidBlockError,
    InvalidBoardsAndBlocksError,
    InvalidNotificationHintError,
    NotFoundError,
    StorageConnectionError,
    StorageIOError,
    ValidationError,
    is_not_found,
)

# Logging
from .logging_utils import configure_structured_logging, get_storage_logger

__all__ = [
    # Core abstractions
    "StoreBackend",
    "SQLiteBackend",
    "SQLiteConfig",
    # Exceptions
    "BoardStorageError",
    "NotFoundError",
    "is_not_found",
    "DuplicateError",
    "ValidationError",
    "InvalidBlockError",
    "InvalidBoardsAndBlocksError",
    "InvalidNotificationHintError",
    "StorageIOError",
    "StorageConnectionError",
    # Logging
    "configure_structured_logging",
    "get_storage_logger",
]

__version__ = "0.1.0"
