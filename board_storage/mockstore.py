"""
Test double for the store contract.

Builds an autospecced mock of StoreBackend: every operation is an
AsyncMock with the real signature, so tests of store callers can script
return values and errors without a database.

Usage:

    >>> store = create_mock_store()
    >>> store.get_board.side_effect = NotFoundError("board")
    >>> store.is_err_not_found(NotFoundError("board"))
    True
"""

from __future__ import annotations

from typing import Any
from unittest.mock import create_autospec

from .backends.base import StoreBackend
from .exceptions import is_not_found
from .logging_utils import get_storage_logger

logger = get_storage_logger("mockstore")


def create_mock_store(**return_values: Any) -> Any:
    """
    Create a mock store.

    Args:
        **return_values: Operation name to the value its coroutine returns,
            e.g. ``get_team_count=3``

    Returns:
        Autospecced mock of StoreBackend. ``is_err_not_found`` keeps its real
        classification behaviour.
    """
    store = create_autospec(StoreBackend, instance=True)
    store.is_err_not_found.side_effect = is_not_found

    for name, value in return_values.items():
        if not hasattr(StoreBackend, name):
            raise AttributeError(f"StoreBackend has no operation {name!r}")
        getattr(store, name).return_value = value

    logger.debug("Created mock store with %d scripted operations", len(return_values))
    return store
