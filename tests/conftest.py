"""
Shared test configuration and fixtures.

Provides an in-memory SQLite store, a controllable clock for the
backend's timestamps, and small factories for common entities.
"""

import logging

import pytest

from board_storage.backends.sqlite import SQLiteBackend, SQLiteConfig
from board_storage.model import Block, Board, User

logger = logging.getLogger(__name__)

TEAM_ID = "team-1"
USER_ID = "user-1"


class FakeClock:
    """Deterministic replacement for the backend's millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int = 1000) -> int:
        self.now += millis
        return self.now


@pytest.fixture
async def store():
    """Fixture providing an initialized in-memory SQLite store."""
    backend = await SQLiteBackend.create(config=SQLiteConfig(db_path=":memory:"))
    yield backend
    await backend.shutdown()


@pytest.fixture
def clock(monkeypatch):
    """Freeze the backend clock; tests advance it explicitly."""
    fake = FakeClock()
    monkeypatch.setattr("board_storage.backends.sqlite.get_millis", fake)
    monkeypatch.setattr("board_storage.utils.get_millis", fake)
    return fake


def make_board(board_id: str = "board-1", team_id: str = TEAM_ID, **kwargs) -> Board:
    return Board(id=board_id, team_id=team_id, title=kwargs.pop("title", "Roadmap"), **kwargs)


def make_block(
    block_id: str,
    board_id: str = "board-1",
    block_type: str = "text",
    parent_id: str = "",
    **kwargs,
) -> Block:
    return Block(
        id=block_id,
        board_id=board_id,
        type=block_type,
        parent_id=parent_id,
        root_id=kwargs.pop("root_id", parent_id or block_id),
        **kwargs,
    )


def make_user(user_id: str = USER_ID, team_id: str = TEAM_ID, **kwargs) -> User:
    return User(
        id=user_id,
        username=kwargs.pop("username", f"name-{user_id}"),
        email=kwargs.pop("email", f"{user_id}@example.com"),
        team_id=team_id,
        **kwargs,
    )
