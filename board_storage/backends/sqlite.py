"""
SQLite store backend.

Implements the full StoreBackend contract over a single aiosqlite
connection. Ideal for single-node deployments, embedded use and testing.

Transactional operations are thin public coroutines that open
``transaction()`` and delegate to a private ``_op(db, ...)`` worker; the
workers take the connection explicitly so they can be composed inside one
unit of work. Reads go through ``_reader()``, which shares the same lock,
so no reader ever observes a half-applied unit of work.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import sqlite3
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import yaml

from ..exceptions import (
    DuplicateError,
    InvalidBlockError,
    InvalidBoardsAndBlocksError,
    NotFoundError,
    StorageConnectionError,
    StorageIOError,
    ValidationError,
)
from ..id_utils import IDType, id_type_for_block, new_id
from ..logging_utils import StorageLoggerAdapter, configure_structured_logging
from ..model import (
    TYPE_CARD,
    Block,
    BlockPatch,
    BlockPatchBatch,
    Board,
    BoardMember,
    BoardPatch,
    BoardsAndBlocks,
    Category,
    CategoryBlocks,
    DeleteBoardsAndBlocks,
    NotificationHint,
    PatchBoardsAndBlocks,
    QueryBlockHistoryOptions,
    QuerySubtreeOptions,
    Session,
    Sharing,
    Subscriber,
    Subscription,
    Team,
    User,
)
from ..utils import get_millis, millis_after
from .base import StoreBackend

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Upper bound on parent hops when resolving a block to its card
MAX_CARD_LOOKUP_DEPTH = 20

# Backends whose lock the current task (or its parent) is holding
_held_stores: ContextVar[frozenset[int]] = ContextVar("held_stores", default=frozenset())


# =============================================================================
# Column Definitions - Centralized for consistency and maintainability
# =============================================================================

BLOCK_COLUMNS = (
    "id",
    "board_id",
    "parent_id",
    "root_id",
    "created_by",
    "modified_by",
    "schema",
    "type",
    "title",
    "fields",
    "create_at",
    "update_at",
    "delete_at",
)

BOARD_COLUMNS = (
    "id",
    "team_id",
    "channel_id",
    "created_by",
    "modified_by",
    "type",
    "title",
    "description",
    "icon",
    "show_description",
    "is_template",
    "template_version",
    "properties",
    "card_properties",
    "create_at",
    "update_at",
    "delete_at",
)

MEMBER_COLUMNS = (
    "board_id",
    "user_id",
    "roles",
    "scheme_admin",
    "scheme_editor",
    "scheme_commenter",
    "scheme_viewer",
)

USER_COLUMNS = (
    "id",
    "username",
    "email",
    "password",
    "mfa_secret",
    "auth_service",
    "auth_data",
    "props",
    "team_id",
    "create_at",
    "update_at",
    "delete_at",
    "is_bot",
    "is_guest",
)

SESSION_COLUMNS = ("id", "token", "user_id", "auth_service", "props", "create_at", "update_at")

TEAM_COLUMNS = ("id", "title", "signup_token", "settings", "modified_by", "update_at")

SHARING_COLUMNS = ("id", "enabled", "token", "modified_by", "update_at")

CATEGORY_COLUMNS = (
    "id",
    "name",
    "user_id",
    "team_id",
    "create_at",
    "update_at",
    "delete_at",
    "collapsed",
)

SUBSCRIPTION_COLUMNS = (
    "block_type",
    "block_id",
    "subscriber_type",
    "subscriber_id",
    "notified_at",
    "create_at",
    "delete_at",
)

HINT_COLUMNS = ("block_type", "block_id", "modified_by_id", "create_at", "notify_at")


def _select(columns: Sequence[str], alias: str = "") -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(f"{prefix}{column}" for column in columns)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _row_to_block(row: Any) -> Block:
    return Block(
        id=row["id"],
        board_id=row["board_id"],
        parent_id=row["parent_id"],
        root_id=row["root_id"],
        created_by=row["created_by"],
        modified_by=row["modified_by"],
        schema=row["schema"],
        type=row["type"],
        title=row["title"],
        fields=json.loads(row["fields"]) if row["fields"] else {},
        create_at=row["create_at"],
        update_at=row["update_at"],
        delete_at=row["delete_at"],
    )


def _block_values(block: Block) -> tuple[Any, ...]:
    return (
        block.id,
        block.board_id,
        block.parent_id,
        block.root_id,
        block.created_by,
        block.modified_by,
        block.schema,
        block.type,
        block.title,
        json.dumps(block.fields),
        block.create_at,
        block.update_at,
        block.delete_at,
    )


def _row_to_board(row: Any) -> Board:
    return Board(
        id=row["id"],
        team_id=row["team_id"],
        channel_id=row["channel_id"],
        created_by=row["created_by"],
        modified_by=row["modified_by"],
        type=row["type"],
        title=row["title"],
        description=row["description"],
        icon=row["icon"],
        show_description=bool(row["show_description"]),
        is_template=bool(row["is_template"]),
        template_version=row["template_version"],
        properties=json.loads(row["properties"]) if row["properties"] else {},
        card_properties=json.loads(row["card_properties"]) if row["card_properties"] else [],
        create_at=row["create_at"],
        update_at=row["update_at"],
        delete_at=row["delete_at"],
    )


def _board_values(board: Board) -> tuple[Any, ...]:
    return (
        board.id,
        board.team_id,
        board.channel_id,
        board.created_by,
        board.modified_by,
        board.type,
        board.title,
        board.description,
        board.icon,
        int(board.show_description),
        int(board.is_template),
        board.template_version,
        json.dumps(board.properties),
        json.dumps(board.card_properties),
        board.create_at,
        board.update_at,
        board.delete_at,
    )


def _row_to_member(row: Any) -> BoardMember:
    return BoardMember(
        board_id=row["board_id"],
        user_id=row["user_id"],
        roles=row["roles"],
        scheme_admin=bool(row["scheme_admin"]),
        scheme_editor=bool(row["scheme_editor"]),
        scheme_commenter=bool(row["scheme_commenter"]),
        scheme_viewer=bool(row["scheme_viewer"]),
    )


def _row_to_user(row: Any) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        password=row["password"],
        mfa_secret=row["mfa_secret"],
        auth_service=row["auth_service"],
        auth_data=row["auth_data"],
        props=json.loads(row["props"]) if row["props"] else {},
        team_id=row["team_id"],
        create_at=row["create_at"],
        update_at=row["update_at"],
        delete_at=row["delete_at"],
        is_bot=bool(row["is_bot"]),
        is_guest=bool(row["is_guest"]),
    )


def _row_to_session(row: Any) -> Session:
    return Session(
        id=row["id"],
        token=row["token"],
        user_id=row["user_id"],
        auth_service=row["auth_service"],
        props=json.loads(row["props"]) if row["props"] else {},
        create_at=row["create_at"],
        update_at=row["update_at"],
    )


def _row_to_team(row: Any) -> Team:
    return Team(
        id=row["id"],
        title=row["title"],
        signup_token=row["signup_token"],
        settings=json.loads(row["settings"]) if row["settings"] else {},
        modified_by=row["modified_by"],
        update_at=row["update_at"],
    )


def _row_to_category(row: Any) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        user_id=row["user_id"],
        team_id=row["team_id"],
        create_at=row["create_at"],
        update_at=row["update_at"],
        delete_at=row["delete_at"],
        collapsed=bool(row["collapsed"]),
    )


def _row_to_subscription(row: Any) -> Subscription:
    return Subscription(
        block_type=row["block_type"],
        block_id=row["block_id"],
        subscriber_type=row["subscriber_type"],
        subscriber_id=row["subscriber_id"],
        notified_at=row["notified_at"],
        create_at=row["create_at"],
        delete_at=row["delete_at"],
    )


def _row_to_hint(row: Any) -> NotificationHint:
    return NotificationHint(
        block_type=row["block_type"],
        block_id=row["block_id"],
        modified_by_id=row["modified_by_id"],
        create_at=row["create_at"],
        notify_at=row["notify_at"],
    )


@dataclass
class SQLiteConfig:
    """Configuration for SQLite storage."""

    db_path: str | Path = ":memory:"
    table_prefix: str = ""
    busy_timeout_ms: int = 5000
    # Emit JSON lines on the ``board_storage`` logger when the backend starts
    log_json: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Create config from environment variables."""
        return cls(
            db_path=os.environ.get("BOARD_STORAGE_SQLITE_PATH", ":memory:"),
            table_prefix=os.environ.get("BOARD_STORAGE_TABLE_PREFIX", ""),
            busy_timeout_ms=int(os.environ.get("BOARD_STORAGE_BUSY_TIMEOUT_MS", "5000")),
            log_json=os.environ.get("BOARD_STORAGE_LOG_JSON", "").lower() in ("1", "true", "yes"),
            log_level=os.environ.get("BOARD_STORAGE_LOG_LEVEL", "INFO").upper(),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> SQLiteConfig:
        """Create config from the ``store`` section of a YAML file.

        ```yaml
        store:
          db_path: /var/lib/boards/boards.db
          table_prefix: "boards_"
          busy_timeout_ms: 10000
          log_json: true
          log_level: DEBUG
        ```

        Missing keys keep their defaults.
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        section = data.get("store") or {}
        defaults = cls()
        return cls(
            db_path=section.get("db_path", defaults.db_path),
            table_prefix=section.get("table_prefix", defaults.table_prefix),
            busy_timeout_ms=int(section.get("busy_timeout_ms", defaults.busy_timeout_ms)),
            log_json=bool(section.get("log_json", defaults.log_json)),
            log_level=str(section.get("log_level", defaults.log_level)).upper(),
        )


class SQLiteBackend(StoreBackend):
    """
    SQLite store backend.

    Features:
    - Single file (or in-memory) database
    - Explicit BEGIN IMMEDIATE / COMMIT / ROLLBACK units of work
    - Block and board revision history
    - Optional table name prefix for sharing a database file
    """

    def __init__(self, config: SQLiteConfig):
        """
        Initialize SQLite backend.

        Args:
            config: SQLite configuration
        """
        self.config = config
        self.conn: Any = None  # aiosqlite.Connection
        self._initialized = False
        self._lock = asyncio.Lock()
        self._log = StorageLoggerAdapter(
            logger, {"db_path": str(config.db_path), "table_prefix": config.table_prefix}
        )

    @classmethod
    async def create(cls, config: SQLiteConfig | None = None) -> SQLiteBackend:
        """Create and initialize SQLite backend."""
        if config is None:
            config = SQLiteConfig.from_env()

        backend = cls(config)
        await backend.initialize()
        return backend

    def _t(self, name: str) -> str:
        """Prefixed table name."""
        return f"{self.config.table_prefix}{name}"

    async def initialize(self) -> None:
        """Initialize SQLite connection and schema."""
        if self._initialized:
            return

        if self.config.log_json:
            configure_structured_logging(self.config.log_level)

        try:
            # Autocommit mode: units of work are delimited explicitly
            self.conn = await aiosqlite.connect(str(self.config.db_path), isolation_level=None)
            self.conn.row_factory = aiosqlite.Row

            # Pragmas return a row; drain it so no statement is left in progress
            await self._fetch_one(
                self.conn, f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)}"
            )
            if str(self.config.db_path) != ":memory:":
                await self._fetch_one(self.conn, "PRAGMA journal_mode = WAL")

            await self._create_schema()
            self._initialized = True
            self._log.info("SQLite backend initialized", extra={"operation": "initialize"})

        except Exception as e:
            if self.conn is not None:
                await self.conn.close()
                self.conn = None
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def shutdown(self) -> None:
        """Close SQLite connection."""
        if self.conn is not None:
            self._check_reentry("shutdown")
            async with self._lock:
                await self.conn.close()
                self.conn = None
            self._log.info("SQLite backend shut down", extra={"operation": "shutdown"})

        self._initialized = False

    # =========================================================================
    # Schema Management
    # =========================================================================

    async def _create_schema(self) -> None:
        t = self._t
        await self.conn.executescript(f"""
            BEGIN;

            CREATE TABLE IF NOT EXISTS {t('schema_meta')} (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS {t('blocks')} (
                id TEXT NOT NULL PRIMARY KEY,
                board_id TEXT NOT NULL,
                parent_id TEXT NOT NULL DEFAULT '',
                root_id TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL DEFAULT '',
                modified_by TEXT NOT NULL DEFAULT '',
                schema INTEGER NOT NULL DEFAULT 1,
                type TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                fields TEXT,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('blocks_history')} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                board_id TEXT NOT NULL,
                parent_id TEXT NOT NULL DEFAULT '',
                root_id TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL DEFAULT '',
                modified_by TEXT NOT NULL DEFAULT '',
                schema INTEGER NOT NULL DEFAULT 1,
                type TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                fields TEXT,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('boards')} (
                id TEXT NOT NULL PRIMARY KEY,
                team_id TEXT NOT NULL,
                channel_id TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL DEFAULT '',
                modified_by TEXT NOT NULL DEFAULT '',
                type TEXT NOT NULL DEFAULT 'O',
                title TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                icon TEXT NOT NULL DEFAULT '',
                show_description INTEGER NOT NULL DEFAULT 0,
                is_template INTEGER NOT NULL DEFAULT 0,
                template_version INTEGER NOT NULL DEFAULT 0,
                properties TEXT,
                card_properties TEXT,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('boards_history')} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                team_id TEXT NOT NULL,
                channel_id TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL DEFAULT '',
                modified_by TEXT NOT NULL DEFAULT '',
                type TEXT NOT NULL DEFAULT 'O',
                title TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                icon TEXT NOT NULL DEFAULT '',
                show_description INTEGER NOT NULL DEFAULT 0,
                is_template INTEGER NOT NULL DEFAULT 0,
                template_version INTEGER NOT NULL DEFAULT 0,
                properties TEXT,
                card_properties TEXT,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('board_members')} (
                board_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                roles TEXT NOT NULL DEFAULT '',
                scheme_admin INTEGER NOT NULL DEFAULT 0,
                scheme_editor INTEGER NOT NULL DEFAULT 0,
                scheme_commenter INTEGER NOT NULL DEFAULT 0,
                scheme_viewer INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (board_id, user_id)
            );

            CREATE TABLE IF NOT EXISTS {t('users')} (
                id TEXT NOT NULL PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL DEFAULT '',
                mfa_secret TEXT NOT NULL DEFAULT '',
                auth_service TEXT NOT NULL DEFAULT '',
                auth_data TEXT NOT NULL DEFAULT '',
                props TEXT,
                team_id TEXT NOT NULL DEFAULT '0',
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0,
                is_bot INTEGER NOT NULL DEFAULT 0,
                is_guest INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('sessions')} (
                id TEXT NOT NULL PRIMARY KEY,
                token TEXT NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                auth_service TEXT NOT NULL DEFAULT '',
                props TEXT,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('system_settings')} (
                id TEXT NOT NULL PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS {t('sharing')} (
                id TEXT NOT NULL PRIMARY KEY,
                enabled INTEGER NOT NULL DEFAULT 0,
                token TEXT NOT NULL DEFAULT '',
                modified_by TEXT NOT NULL DEFAULT '',
                update_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('teams')} (
                id TEXT NOT NULL PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                signup_token TEXT NOT NULL DEFAULT '',
                settings TEXT,
                modified_by TEXT NOT NULL DEFAULT '',
                update_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('categories')} (
                id TEXT NOT NULL PRIMARY KEY,
                name TEXT NOT NULL,
                user_id TEXT NOT NULL,
                team_id TEXT NOT NULL,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0,
                collapsed INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('category_blocks')} (
                id TEXT NOT NULL PRIMARY KEY,
                user_id TEXT NOT NULL,
                category_id TEXT NOT NULL,
                block_id TEXT NOT NULL,
                create_at INTEGER NOT NULL DEFAULT 0,
                update_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS {t('subscriptions')} (
                block_type TEXT NOT NULL,
                block_id TEXT NOT NULL,
                subscriber_type TEXT NOT NULL,
                subscriber_id TEXT NOT NULL,
                notified_at INTEGER NOT NULL DEFAULT 0,
                create_at INTEGER NOT NULL DEFAULT 0,
                delete_at INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (block_id, subscriber_id)
            );

            CREATE TABLE IF NOT EXISTS {t('notification_hints')} (
                block_type TEXT NOT NULL,
                block_id TEXT NOT NULL PRIMARY KEY,
                modified_by_id TEXT NOT NULL,
                create_at INTEGER NOT NULL DEFAULT 0,
                notify_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS {t('idx_blocks_board_parent')}
                ON {t('blocks')} (board_id, parent_id);
            CREATE INDEX IF NOT EXISTS {t('idx_blocks_board_root')}
                ON {t('blocks')} (board_id, root_id);
            CREATE INDEX IF NOT EXISTS {t('idx_blocks_history_id')}
                ON {t('blocks_history')} (id, update_at);
            CREATE INDEX IF NOT EXISTS {t('idx_boards_team')}
                ON {t('boards')} (team_id, is_template);
            CREATE INDEX IF NOT EXISTS {t('idx_members_user')}
                ON {t('board_members')} (user_id);
            CREATE INDEX IF NOT EXISTS {t('idx_sessions_update')}
                ON {t('sessions')} (update_at);
            CREATE INDEX IF NOT EXISTS {t('idx_category_blocks_user')}
                ON {t('category_blocks')} (user_id, block_id);
            CREATE INDEX IF NOT EXISTS {t('idx_subscriptions_subscriber')}
                ON {t('subscriptions')} (subscriber_id);
            CREATE INDEX IF NOT EXISTS {t('idx_hints_notify')}
                ON {t('notification_hints')} (notify_at);

            INSERT INTO {t('schema_meta')} (key, value) VALUES ('version', '{SCHEMA_VERSION}')
                ON CONFLICT (key) DO NOTHING;

            COMMIT;
        """)
        logger.debug("Schema ready (version %d)", SCHEMA_VERSION)

    # =========================================================================
    # Units of Work
    # =========================================================================

    def _require_conn(self, operation: str) -> Any:
        if self.conn is None:
            raise StorageIOError(operation, cause=RuntimeError("Not initialized"))
        return self.conn

    def _check_reentry(self, operation: str) -> None:
        if id(self) in _held_stores.get():
            raise StorageIOError(
                operation, cause=RuntimeError("store called from inside its own transaction")
            )

    @asynccontextmanager
    async def _locked(self, operation: str) -> AsyncIterator[Any]:
        """Hold the store lock, failing fast instead of deadlocking on re-entry.

        The holder is recorded in a context variable, so tasks spawned while
        the lock is held are refused too.
        """
        self._check_reentry(operation)
        async with self._lock:
            token = _held_stores.set(_held_stores.get() | {id(self)})
            try:
                yield self._require_conn(operation)
            finally:
                _held_stores.reset(token)

    @asynccontextmanager
    async def transaction(self, operation: str = "transaction") -> AsyncIterator[Any]:
        """
        Run a unit of work.

        Yields the connection inside BEGIN IMMEDIATE. The transaction commits
        when the block exits normally and rolls back if it raises. Store
        operations may not be called inside the block; they raise
        StorageIOError. Use the yielded connection instead.

        Example:
            async with backend.transaction("import") as db:
                await db.execute(...)
        """
        async with self._locked(operation) as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                self._log.warning("Rolled back unit of work", extra={"operation": operation})
                raise
            else:
                await conn.execute("COMMIT")

    @asynccontextmanager
    async def _reader(self, operation: str) -> AsyncIterator[Any]:
        async with self._locked(operation) as conn:
            yield conn

    async def _fetch_one(self, db: Any, query: str, params: Sequence[Any] = ()) -> Any:
        async with db.execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetch_all(self, db: Any, query: str, params: Sequence[Any] = ()) -> list[Any]:
        async with db.execute(query, params) as cursor:
            return list(await cursor.fetchall())

    async def _execute(self, db: Any, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a write statement and return the number of affected rows."""
        cursor = await db.execute(query, params)
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    # =========================================================================
    # Block Operations
    # =========================================================================

    async def _query_blocks(
        self,
        db: Any,
        where: str,
        params: Sequence[Any],
        order_by: str = "create_at, id",
        limit: int = 0,
    ) -> list[Block]:
        query = (
            f"SELECT {_select(BLOCK_COLUMNS)} FROM {self._t('blocks')} "
            f"WHERE {where} ORDER BY {order_by}"
        )
        params = list(params)
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        rows = await self._fetch_all(db, query, params)
        return [_row_to_block(row) for row in rows]

    async def _fetch_block(self, db: Any, block_id: str) -> Block | None:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(BLOCK_COLUMNS)} FROM {self._t('blocks')} WHERE id = ?",
            (block_id,),
        )
        return _row_to_block(row) if row else None

    async def _get_block(self, db: Any, block_id: str) -> Block:
        block = await self._fetch_block(db, block_id)
        if block is None:
            raise NotFoundError("block")
        return block

    async def get_blocks_with_parent_and_type(
        self, board_id: str, parent_id: str, block_type: str
    ) -> list[Block]:
        async with self._reader("get_blocks_with_parent_and_type") as db:
            return await self._query_blocks(
                db, "board_id = ? AND parent_id = ? AND type = ?", (board_id, parent_id, block_type)
            )

    async def get_blocks_with_parent(self, board_id: str, parent_id: str) -> list[Block]:
        async with self._reader("get_blocks_with_parent") as db:
            return await self._query_blocks(
                db, "board_id = ? AND parent_id = ?", (board_id, parent_id)
            )

    async def get_blocks_with_root_id(self, board_id: str, root_id: str) -> list[Block]:
        async with self._reader("get_blocks_with_root_id") as db:
            return await self._query_blocks(db, "board_id = ? AND root_id = ?", (board_id, root_id))

    async def get_blocks_with_type(self, board_id: str, block_type: str) -> list[Block]:
        async with self._reader("get_blocks_with_type") as db:
            return await self._query_blocks(db, "board_id = ? AND type = ?", (board_id, block_type))

    async def get_blocks_for_board(self, board_id: str) -> list[Block]:
        async with self._reader("get_blocks_for_board") as db:
            return await self._query_blocks(db, "board_id = ?", (board_id,))

    async def _get_sub_tree(
        self,
        db: Any,
        board_id: str,
        block_id: str,
        levels: int,
        opts: QuerySubtreeOptions,
    ) -> list[Block]:
        """Collect ``levels`` levels of the tree rooted at ``block_id``."""
        ids = [block_id]
        seen = {block_id}
        frontier = [block_id]
        for _ in range(levels - 1):
            rows = await self._fetch_all(
                db,
                f"SELECT id FROM {self._t('blocks')} "
                f"WHERE board_id = ? AND parent_id IN ({_placeholders(len(frontier))})",
                [board_id, *frontier],
            )
            frontier = [row["id"] for row in rows if row["id"] not in seen]
            if not frontier:
                break
            seen.update(frontier)
            ids.extend(frontier)

        where = [f"board_id = ? AND id IN ({_placeholders(len(ids))})"]
        params: list[Any] = [board_id, *ids]
        if opts.before_update_at:
            where.append("update_at <= ?")
            params.append(opts.before_update_at)
        if opts.after_update_at:
            where.append("update_at >= ?")
            params.append(opts.after_update_at)

        return await self._query_blocks(
            db, " AND ".join(where), params, order_by="update_at, id", limit=opts.limit
        )

    async def get_sub_tree2(
        self, board_id: str, block_id: str, opts: QuerySubtreeOptions
    ) -> list[Block]:
        async with self._reader("get_sub_tree2") as db:
            return await self._get_sub_tree(db, board_id, block_id, 2, opts)

    async def get_sub_tree3(
        self, board_id: str, block_id: str, opts: QuerySubtreeOptions
    ) -> list[Block]:
        async with self._reader("get_sub_tree3") as db:
            return await self._get_sub_tree(db, board_id, block_id, 3, opts)

    async def _check_parent(
        self, db: Any, block: Block, pending: Mapping[str, Block] | None = None
    ) -> None:
        """A parent must be empty, the block's board, or a block on the same board.

        ``pending`` holds the other blocks of the batch being inserted.
        """
        parent_id = block.parent_id
        if parent_id and parent_id == block.id:
            raise InvalidBlockError("parentId", "block cannot be its own parent", block.id)
        if not parent_id or parent_id == block.board_id:
            return

        parent = (pending or {}).get(parent_id) or await self._fetch_block(db, parent_id)
        if parent is None:
            raise InvalidBlockError("parentId", "parent block does not exist", parent_id)
        if parent.board_id != block.board_id:
            raise InvalidBlockError("parentId", "parent block is on another board", parent_id)

    async def _insert_block_history(self, db: Any, block: Block) -> None:
        await db.execute(
            f"INSERT INTO {self._t('blocks_history')} ({_select(BLOCK_COLUMNS)}) "
            f"VALUES ({_placeholders(len(BLOCK_COLUMNS))})",
            _block_values(block),
        )

    async def _insert_block(self, db: Any, block: Block, user_id: str) -> None:
        """Upsert a stamped copy of a block; the caller has already validated it."""
        existing = await self._fetch_block(db, block.id)
        now = get_millis()

        if existing is not None:
            create_at, created_by = existing.create_at, existing.created_by
        else:
            create_at, created_by = block.create_at or now, block.created_by or user_id
        stamped = replace(
            block,
            created_by=created_by,
            create_at=create_at,
            modified_by=user_id,
            update_at=now,
            delete_at=0,
        )

        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in BLOCK_COLUMNS if column != "id"
        )
        await db.execute(
            f"INSERT INTO {self._t('blocks')} ({_select(BLOCK_COLUMNS)}) "
            f"VALUES ({_placeholders(len(BLOCK_COLUMNS))}) "
            f"ON CONFLICT (id) DO UPDATE SET {assignments}",
            _block_values(stamped),
        )
        await self._insert_block_history(db, stamped)
        logger.debug("Stored block %s on board %s", block.id, block.board_id)

    async def _insert_blocks(self, db: Any, blocks: list[Block], user_id: str) -> None:
        pending = {block.id: block for block in blocks}
        for block in blocks:
            block.is_valid()
            await self._check_parent(db, block, pending)
        for block in blocks:
            await self._insert_block(db, block, user_id)

    async def insert_block(self, block: Block, user_id: str) -> None:
        async with self.transaction("insert_block") as db:
            await self._insert_blocks(db, [block], user_id)

    async def insert_blocks(self, blocks: list[Block], user_id: str) -> None:
        async with self.transaction("insert_blocks") as db:
            await self._insert_blocks(db, blocks, user_id)

    async def _delete_block(self, db: Any, block_id: str, modified_by: str) -> None:
        existing = await self._fetch_block(db, block_id)
        if existing is None:
            return

        now = get_millis()
        existing.modified_by = modified_by
        existing.update_at = now
        existing.delete_at = now
        await self._insert_block_history(db, existing)
        await db.execute(f"DELETE FROM {self._t('blocks')} WHERE id = ?", (block_id,))
        logger.debug("Deleted block %s", block_id)

    async def delete_block(self, block_id: str, modified_by: str) -> None:
        async with self.transaction("delete_block") as db:
            await self._delete_block(db, block_id, modified_by)

    async def get_block_counts_by_type(self) -> dict[str, int]:
        async with self.transaction("get_block_counts_by_type") as db:
            rows = await self._fetch_all(
                db, f"SELECT type, COUNT(*) AS total FROM {self._t('blocks')} GROUP BY type"
            )
            return {row["type"]: row["total"] for row in rows}

    async def get_block(self, block_id: str) -> Block:
        async with self._reader("get_block") as db:
            return await self._get_block(db, block_id)

    async def _patch_block(
        self, db: Any, block_id: str, block_patch: BlockPatch, user_id: str
    ) -> None:
        existing = await self._get_block(db, block_id)
        patched = block_patch.patch(existing)
        patched.is_valid()
        await self._check_parent(db, patched)
        await self._insert_block(db, patched, user_id)

    async def patch_block(self, block_id: str, block_patch: BlockPatch, user_id: str) -> None:
        async with self.transaction("patch_block") as db:
            await self._patch_block(db, block_id, block_patch, user_id)

    async def patch_blocks(self, block_patches: BlockPatchBatch, user_id: str) -> None:
        block_patches.is_valid()
        async with self.transaction("patch_blocks") as db:
            for block_id, block_patch in zip(
                block_patches.block_ids, block_patches.block_patches, strict=True
            ):
                await self._patch_block(db, block_id, block_patch, user_id)

    async def get_block_history(
        self, block_id: str, opts: QueryBlockHistoryOptions
    ) -> list[Block]:
        where = ["id = ?"]
        params: list[Any] = [block_id]
        if opts.before_update_at:
            where.append("update_at < ?")
            params.append(opts.before_update_at)
        if opts.after_update_at:
            where.append("update_at > ?")
            params.append(opts.after_update_at)

        direction = "DESC" if opts.descending else "ASC"
        query = (
            f"SELECT {_select(BLOCK_COLUMNS)} FROM {self._t('blocks_history')} "
            f"WHERE {' AND '.join(where)} ORDER BY update_at {direction}, seq {direction}"
        )
        if opts.limit:
            query += " LIMIT ?"
            params.append(opts.limit)

        async with self._reader("get_block_history") as db:
            rows = await self._fetch_all(db, query, params)
        return [_row_to_block(row) for row in rows]

    async def _get_board_and_card(self, db: Any, block: Block) -> tuple[Board, Block]:
        card = block
        hops = 0
        while card.type != TYPE_CARD:
            parent_id = card.parent_id
            if hops >= MAX_CARD_LOOKUP_DEPTH:
                raise NotFoundError("card")
            if not parent_id or parent_id in (card.id, card.board_id):
                raise NotFoundError("card")
            parent = await self._fetch_block(db, parent_id)
            if parent is None:
                raise NotFoundError("card")
            card = parent
            hops += 1

        board = await self._get_board(db, card.board_id)
        return board, card

    async def get_board_and_card_by_id(self, block_id: str) -> tuple[Board, Block]:
        async with self._reader("get_board_and_card_by_id") as db:
            block = await self._get_block(db, block_id)
            return await self._get_board_and_card(db, block)

    async def get_board_and_card(self, block: Block) -> tuple[Board, Block]:
        async with self._reader("get_board_and_card") as db:
            return await self._get_board_and_card(db, block)

    async def duplicate_board(
        self, board_id: str, user_id: str, as_template: bool
    ) -> tuple[BoardsAndBlocks, list[BoardMember]]:
        async with self.transaction("duplicate_board") as db:
            board = await self._get_board(db, board_id)
            blocks = await self._query_blocks(db, "board_id = ?", (board_id,))

            id_map = {board_id: new_id(IDType.BOARD)}
            for block in blocks:
                id_map[block.id] = new_id(id_type_for_block(block.type))

            new_board = copy.deepcopy(board)
            new_board.id = id_map[board_id]
            new_board.is_template = as_template
            new_board.created_by = user_id
            new_board.create_at = 0

            new_blocks = []
            for block in blocks:
                new_block = copy.deepcopy(block)
                new_block.id = id_map[block.id]
                new_block.board_id = new_board.id
                new_block.parent_id = id_map.get(block.parent_id, block.parent_id)
                new_block.root_id = id_map.get(block.root_id, block.root_id)
                new_block.created_by = user_id
                new_block.create_at = 0
                new_blocks.append(new_block)

            bab, members = await self._create_boards_and_blocks_with_admin(
                db, BoardsAndBlocks(boards=[new_board], blocks=new_blocks), user_id
            )

        self._log.bind(operation="duplicate_board", board_id=board_id, user_id=user_id).info(
            f"Duplicated board as {new_board.id}"
        )
        return bab, members

    # =========================================================================
    # System Settings
    # =========================================================================

    async def get_system_setting(self, key: str) -> str:
        async with self._reader("get_system_setting") as db:
            row = await self._fetch_one(
                db, f"SELECT value FROM {self._t('system_settings')} WHERE id = ?", (key,)
            )
        if row is None:
            raise NotFoundError("system setting")
        return row["value"]

    async def get_system_settings(self) -> dict[str, str]:
        async with self._reader("get_system_settings") as db:
            rows = await self._fetch_all(db, f"SELECT id, value FROM {self._t('system_settings')}")
        return {row["id"]: row["value"] for row in rows}

    async def set_system_setting(self, key: str, value: str) -> None:
        async with self.transaction("set_system_setting") as db:
            await db.execute(
                f"""
                INSERT INTO {self._t('system_settings')} (id, value) VALUES (?, ?)
                ON CONFLICT (id) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # =========================================================================
    # Users
    # =========================================================================

    async def get_registered_user_count(self) -> int:
        async with self._reader("get_registered_user_count") as db:
            row = await self._fetch_one(
                db, f"SELECT COUNT(*) FROM {self._t('users')} WHERE delete_at = 0"
            )
        return row[0]

    async def _get_user_by(self, operation: str, column: str, value: str) -> User:
        async with self._reader(operation) as db:
            row = await self._fetch_one(
                db,
                f"SELECT {_select(USER_COLUMNS)} FROM {self._t('users')} "
                f"WHERE {column} = ? AND delete_at = 0",
                (value,),
            )
        if row is None:
            raise NotFoundError("user")
        return _row_to_user(row)

    async def get_user_by_id(self, user_id: str) -> User:
        return await self._get_user_by("get_user_by_id", "id", user_id)

    async def get_user_by_email(self, email: str) -> User:
        return await self._get_user_by("get_user_by_email", "email", email)

    async def get_user_by_username(self, username: str) -> User:
        return await self._get_user_by("get_user_by_username", "username", username)

    async def create_user(self, user: User) -> None:
        if not user.id:
            raise ValidationError("id", "user id is required")

        now = get_millis()
        user = replace(user, create_at=user.create_at or now, update_at=now)
        try:
            async with self.transaction("create_user") as db:
                await db.execute(
                    f"INSERT INTO {self._t('users')} ({_select(USER_COLUMNS)}) "
                    f"VALUES ({_placeholders(len(USER_COLUMNS))})",
                    (
                        user.id,
                        user.username,
                        user.email,
                        user.password,
                        user.mfa_secret,
                        user.auth_service,
                        user.auth_data,
                        json.dumps(user.props),
                        user.team_id,
                        user.create_at,
                        user.update_at,
                        user.delete_at,
                        int(user.is_bot),
                        int(user.is_guest),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError("user", user.id) from e

    async def update_user(self, user: User) -> None:
        user = replace(user, update_at=get_millis())
        try:
            async with self.transaction("update_user") as db:
                updated = await self._execute(
                    db,
                    f"""
                    UPDATE {self._t('users')}
                    SET username = ?, email = ?, props = ?, team_id = ?, mfa_secret = ?,
                        auth_service = ?, auth_data = ?, is_bot = ?, is_guest = ?, update_at = ?
                    WHERE id = ?
                    """,
                    (
                        user.username,
                        user.email,
                        json.dumps(user.props),
                        user.team_id,
                        user.mfa_secret,
                        user.auth_service,
                        user.auth_data,
                        int(user.is_bot),
                        int(user.is_guest),
                        user.update_at,
                        user.id,
                    ),
                )
                if updated == 0:
                    raise NotFoundError("user")
        except sqlite3.IntegrityError as e:
            raise DuplicateError("user", user.id) from e

    async def _update_password(self, operation: str, column: str, value: str, password: str) -> None:
        async with self.transaction(operation) as db:
            updated = await self._execute(
                db,
                f"UPDATE {self._t('users')} SET password = ?, update_at = ? WHERE {column} = ?",
                (password, get_millis(), value),
            )
            if updated == 0:
                raise NotFoundError("user")

    async def update_user_password(self, username: str, password: str) -> None:
        await self._update_password("update_user_password", "username", username, password)

    async def update_user_password_by_id(self, user_id: str, password: str) -> None:
        await self._update_password("update_user_password_by_id", "id", user_id, password)

    async def get_users_by_team(self, team_id: str) -> list[User]:
        async with self._reader("get_users_by_team") as db:
            rows = await self._fetch_all(
                db,
                f"SELECT {_select(USER_COLUMNS)} FROM {self._t('users')} "
                "WHERE team_id = ? AND delete_at = 0 ORDER BY username",
                (team_id,),
            )
        return [_row_to_user(row) for row in rows]

    # =========================================================================
    # Sessions
    # =========================================================================

    async def get_active_user_count(self, updated_seconds_ago: int) -> int:
        since = get_millis() - updated_seconds_ago * 1000
        async with self._reader("get_active_user_count") as db:
            row = await self._fetch_one(
                db,
                f"SELECT COUNT(DISTINCT user_id) FROM {self._t('sessions')} WHERE update_at > ?",
                (since,),
            )
        return row[0]

    async def get_session(self, token: str, expire_time: int) -> Session:
        since = get_millis() - expire_time * 1000
        async with self._reader("get_session") as db:
            row = await self._fetch_one(
                db,
                f"SELECT {_select(SESSION_COLUMNS)} FROM {self._t('sessions')} "
                "WHERE token = ? AND update_at > ?",
                (token, since),
            )
        if row is None:
            raise NotFoundError("session")
        return _row_to_session(row)

    async def create_session(self, session: Session) -> None:
        now = get_millis()
        session = replace(
            session, create_at=session.create_at or now, update_at=session.update_at or now
        )
        try:
            async with self.transaction("create_session") as db:
                await db.execute(
                    f"INSERT INTO {self._t('sessions')} ({_select(SESSION_COLUMNS)}) "
                    f"VALUES ({_placeholders(len(SESSION_COLUMNS))})",
                    (
                        session.id,
                        session.token,
                        session.user_id,
                        session.auth_service,
                        json.dumps(session.props),
                        session.create_at,
                        session.update_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError("session", session.id) from e

    async def refresh_session(self, session: Session) -> None:
        now = get_millis()
        async with self.transaction("refresh_session") as db:
            updated = await self._execute(
                db,
                f"UPDATE {self._t('sessions')} SET update_at = ? WHERE token = ?",
                (now, session.token),
            )
            if updated == 0:
                raise NotFoundError("session")
        session.update_at = now

    async def update_session(self, session: Session) -> None:
        now = get_millis()
        async with self.transaction("update_session") as db:
            updated = await self._execute(
                db,
                f"UPDATE {self._t('sessions')} SET props = ?, update_at = ? WHERE id = ?",
                (json.dumps(session.props), now, session.id),
            )
            if updated == 0:
                raise NotFoundError("session")
        session.update_at = now

    async def delete_session(self, session_id: str) -> None:
        async with self.transaction("delete_session") as db:
            await db.execute(f"DELETE FROM {self._t('sessions')} WHERE id = ?", (session_id,))

    async def clean_up_sessions(self, expire_time: int) -> None:
        cutoff = get_millis() - expire_time * 1000
        async with self.transaction("clean_up_sessions") as db:
            removed = await self._execute(
                db, f"DELETE FROM {self._t('sessions')} WHERE update_at < ?", (cutoff,)
            )
        if removed:
            self._log.info(
                f"Cleaned up {removed} expired sessions", extra={"operation": "clean_up_sessions"}
            )

    # =========================================================================
    # Sharing
    # =========================================================================

    async def upsert_sharing(self, sharing: Sharing) -> None:
        sharing = replace(sharing, update_at=get_millis())
        async with self.transaction("upsert_sharing") as db:
            await db.execute(
                f"""
                INSERT INTO {self._t('sharing')} ({_select(SHARING_COLUMNS)})
                VALUES ({_placeholders(len(SHARING_COLUMNS))})
                ON CONFLICT (id) DO UPDATE SET
                    enabled = excluded.enabled,
                    token = excluded.token,
                    modified_by = excluded.modified_by,
                    update_at = excluded.update_at
                """,
                (
                    sharing.id,
                    int(sharing.enabled),
                    sharing.token,
                    sharing.modified_by,
                    sharing.update_at,
                ),
            )

    async def get_sharing(self, root_id: str) -> Sharing:
        async with self._reader("get_sharing") as db:
            row = await self._fetch_one(
                db,
                f"SELECT {_select(SHARING_COLUMNS)} FROM {self._t('sharing')} WHERE id = ?",
                (root_id,),
            )
        if row is None:
            raise NotFoundError("sharing")
        return Sharing(
            id=row["id"],
            enabled=bool(row["enabled"]),
            token=row["token"],
            modified_by=row["modified_by"],
            update_at=row["update_at"],
        )

    # =========================================================================
    # Teams
    # =========================================================================

    async def _upsert_team_column(self, operation: str, team: Team, column: str) -> None:
        """Create the team if needed, otherwise update only ``column``."""
        team = replace(team, update_at=get_millis())
        async with self.transaction(operation) as db:
            await db.execute(
                f"""
                INSERT INTO {self._t('teams')} ({_select(TEAM_COLUMNS)})
                VALUES ({_placeholders(len(TEAM_COLUMNS))})
                ON CONFLICT (id) DO UPDATE SET
                    {column} = excluded.{column},
                    modified_by = excluded.modified_by,
                    update_at = excluded.update_at
                """,
                (
                    team.id,
                    team.title,
                    team.signup_token,
                    json.dumps(team.settings),
                    team.modified_by,
                    team.update_at,
                ),
            )

    async def upsert_team_signup_token(self, team: Team) -> None:
        await self._upsert_team_column("upsert_team_signup_token", team, "signup_token")

    async def upsert_team_settings(self, team: Team) -> None:
        await self._upsert_team_column("upsert_team_settings", team, "settings")

    async def get_team(self, team_id: str) -> Team:
        async with self._reader("get_team") as db:
            row = await self._fetch_one(
                db,
                f"SELECT {_select(TEAM_COLUMNS)} FROM {self._t('teams')} WHERE id = ?",
                (team_id,),
            )
        if row is None:
            raise NotFoundError("team")
        return _row_to_team(row)

    async def get_teams_for_user(self, user_id: str) -> list[Team]:
        """The user's own team plus the teams of boards the user is a member of."""
        async with self._reader("get_teams_for_user") as db:
            rows = await self._fetch_all(
                db,
                f"""
                SELECT {_select(TEAM_COLUMNS)} FROM {self._t('teams')}
                WHERE id IN (
                    SELECT team_id FROM {self._t('users')} WHERE id = ? AND delete_at = 0
                    UNION
                    SELECT b.team_id FROM {self._t('boards')} b
                    JOIN {self._t('board_members')} m ON m.board_id = b.id
                    WHERE m.user_id = ?
                )
                ORDER BY id
                """,
                (user_id, user_id),
            )
        return [_row_to_team(row) for row in rows]

    async def get_all_teams(self) -> list[Team]:
        async with self._reader("get_all_teams") as db:
            rows = await self._fetch_all(
                db, f"SELECT {_select(TEAM_COLUMNS)} FROM {self._t('teams')} ORDER BY id"
            )
        return [_row_to_team(row) for row in rows]

    async def get_team_count(self) -> int:
        async with self._reader("get_team_count") as db:
            row = await self._fetch_one(db, f"SELECT COUNT(*) FROM {self._t('teams')}")
        return row[0]

    # =========================================================================
    # Boards & Members
    # =========================================================================

    async def _fetch_board(self, db: Any, board_id: str) -> Board | None:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(BOARD_COLUMNS)} FROM {self._t('boards')} WHERE id = ?",
            (board_id,),
        )
        return _row_to_board(row) if row else None

    async def _get_board(self, db: Any, board_id: str) -> Board:
        board = await self._fetch_board(db, board_id)
        if board is None:
            raise NotFoundError("board")
        return board

    async def _query_boards(self, db: Any, where: str, params: Sequence[Any]) -> list[Board]:
        rows = await self._fetch_all(
            db,
            f"SELECT {_select(BOARD_COLUMNS, 'b')} FROM {self._t('boards')} b "
            f"WHERE {where} ORDER BY b.title, b.id",
            params,
        )
        return [_row_to_board(row) for row in rows]

    async def _insert_board_history(self, db: Any, board: Board) -> None:
        await db.execute(
            f"INSERT INTO {self._t('boards_history')} ({_select(BOARD_COLUMNS)}) "
            f"VALUES ({_placeholders(len(BOARD_COLUMNS))})",
            _board_values(board),
        )

    async def _insert_board(self, db: Any, board: Board, user_id: str) -> Board:
        if not board.id:
            raise ValidationError("id", "board id is required")
        if not board.team_id:
            raise ValidationError("teamId", "board team id is required", board.id)

        existing = await self._fetch_board(db, board.id)
        now = get_millis()

        if existing is not None:
            create_at, created_by = existing.create_at, existing.created_by
        else:
            create_at, created_by = board.create_at or now, board.created_by or user_id
        stamped = replace(
            board,
            created_by=created_by,
            create_at=create_at,
            modified_by=user_id,
            update_at=now,
            delete_at=0,
        )

        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in BOARD_COLUMNS if column != "id"
        )
        await db.execute(
            f"INSERT INTO {self._t('boards')} ({_select(BOARD_COLUMNS)}) "
            f"VALUES ({_placeholders(len(BOARD_COLUMNS))}) "
            f"ON CONFLICT (id) DO UPDATE SET {assignments}",
            _board_values(stamped),
        )
        await self._insert_board_history(db, stamped)
        return await self._get_board(db, board.id)

    async def insert_board(self, board: Board, user_id: str) -> Board:
        async with self.transaction("insert_board") as db:
            return await self._insert_board(db, board, user_id)

    async def _insert_board_with_admin(
        self, db: Any, board: Board, user_id: str
    ) -> tuple[Board, BoardMember]:
        stored = await self._insert_board(db, board, user_id)
        member = await self._save_member(db, BoardMember.admin(stored.id, user_id))
        return stored, member

    async def insert_board_with_admin(
        self, board: Board, user_id: str
    ) -> tuple[Board, BoardMember]:
        async with self.transaction("insert_board_with_admin") as db:
            return await self._insert_board_with_admin(db, board, user_id)

    async def _patch_board(
        self, db: Any, board_id: str, board_patch: BoardPatch, user_id: str
    ) -> Board:
        existing = await self._get_board(db, board_id)
        return await self._insert_board(db, board_patch.patch(existing), user_id)

    async def patch_board(self, board_id: str, board_patch: BoardPatch, user_id: str) -> Board:
        async with self.transaction("patch_board") as db:
            return await self._patch_board(db, board_id, board_patch, user_id)

    async def get_board(self, board_id: str) -> Board:
        async with self._reader("get_board") as db:
            return await self._get_board(db, board_id)

    async def get_boards_for_user_and_team(self, user_id: str, team_id: str) -> list[Board]:
        async with self._reader("get_boards_for_user_and_team") as db:
            return await self._query_boards(
                db,
                f"b.team_id = ? AND b.is_template = 0 AND b.id IN "
                f"(SELECT board_id FROM {self._t('board_members')} WHERE user_id = ?)",
                (team_id, user_id),
            )

    async def _delete_board(self, db: Any, board_id: str, user_id: str) -> None:
        existing = await self._fetch_board(db, board_id)
        if existing is None:
            return

        now = get_millis()
        existing.modified_by = user_id
        existing.update_at = now
        existing.delete_at = now
        await self._insert_board_history(db, existing)

        stamped = ("modified_by", "update_at", "delete_at")
        history_columns = [column for column in BLOCK_COLUMNS if column not in stamped]
        await db.execute(
            f"""
            INSERT INTO {self._t('blocks_history')}
                ({_select(history_columns)}, modified_by, update_at, delete_at)
            SELECT {_select(history_columns)}, ?, ?, ?
            FROM {self._t('blocks')} WHERE board_id = ?
            """,
            (user_id, now, now, board_id),
        )
        await db.execute(f"DELETE FROM {self._t('blocks')} WHERE board_id = ?", (board_id,))
        await db.execute(
            f"DELETE FROM {self._t('board_members')} WHERE board_id = ?", (board_id,)
        )
        await db.execute(f"DELETE FROM {self._t('boards')} WHERE id = ?", (board_id,))
        logger.debug("Deleted board %s", board_id)

    async def delete_board(self, board_id: str, user_id: str) -> None:
        async with self.transaction("delete_board") as db:
            await self._delete_board(db, board_id, user_id)

    async def _save_member(self, db: Any, member: BoardMember) -> BoardMember:
        await db.execute(
            f"""
            INSERT INTO {self._t('board_members')} ({_select(MEMBER_COLUMNS)})
            VALUES ({_placeholders(len(MEMBER_COLUMNS))})
            ON CONFLICT (board_id, user_id) DO UPDATE SET
                roles = excluded.roles,
                scheme_admin = excluded.scheme_admin,
                scheme_editor = excluded.scheme_editor,
                scheme_commenter = excluded.scheme_commenter,
                scheme_viewer = excluded.scheme_viewer
            """,
            (
                member.board_id,
                member.user_id,
                member.roles,
                int(member.scheme_admin),
                int(member.scheme_editor),
                int(member.scheme_commenter),
                int(member.scheme_viewer),
            ),
        )
        return await self._get_member(db, member.board_id, member.user_id)

    async def save_member(self, member: BoardMember) -> BoardMember:
        async with self.transaction("save_member") as db:
            return await self._save_member(db, member)

    async def delete_member(self, board_id: str, user_id: str) -> None:
        async with self.transaction("delete_member") as db:
            await db.execute(
                f"DELETE FROM {self._t('board_members')} WHERE board_id = ? AND user_id = ?",
                (board_id, user_id),
            )

    async def _get_member(self, db: Any, board_id: str, user_id: str) -> BoardMember:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(MEMBER_COLUMNS)} FROM {self._t('board_members')} "
            "WHERE board_id = ? AND user_id = ?",
            (board_id, user_id),
        )
        if row is None:
            raise NotFoundError("board member")
        return _row_to_member(row)

    async def get_member_for_board(self, board_id: str, user_id: str) -> BoardMember:
        async with self._reader("get_member_for_board") as db:
            return await self._get_member(db, board_id, user_id)

    async def get_members_for_board(self, board_id: str) -> list[BoardMember]:
        async with self._reader("get_members_for_board") as db:
            rows = await self._fetch_all(
                db,
                f"SELECT {_select(MEMBER_COLUMNS)} FROM {self._t('board_members')} "
                "WHERE board_id = ? ORDER BY user_id",
                (board_id,),
            )
        return [_row_to_member(row) for row in rows]

    async def search_boards_for_user_and_team(
        self, term: str, user_id: str, team_id: str
    ) -> list[Board]:
        async with self._reader("search_boards_for_user_and_team") as db:
            return await self._query_boards(
                db,
                f"b.team_id = ? AND b.is_template = 0 AND LOWER(b.title) LIKE ? AND b.id IN "
                f"(SELECT board_id FROM {self._t('board_members')} WHERE user_id = ?)",
                (team_id, f"%{term.lower()}%", user_id),
            )

    # =========================================================================
    # Combined Boards & Blocks
    # =========================================================================

    async def _create_boards_and_blocks(
        self, db: Any, bab: BoardsAndBlocks, user_id: str
    ) -> BoardsAndBlocks:
        bab.is_valid()

        boards = [await self._insert_board(db, board, user_id) for board in bab.boards]
        await self._insert_blocks(db, bab.blocks, user_id)
        blocks = [await self._get_block(db, block.id) for block in bab.blocks]
        return BoardsAndBlocks(boards=boards, blocks=blocks)

    async def _create_boards_and_blocks_with_admin(
        self, db: Any, bab: BoardsAndBlocks, user_id: str
    ) -> tuple[BoardsAndBlocks, list[BoardMember]]:
        created = await self._create_boards_and_blocks(db, bab, user_id)
        members = [
            await self._save_member(db, BoardMember.admin(board.id, user_id))
            for board in created.boards
        ]
        return created, members

    async def create_boards_and_blocks_with_admin(
        self, bab: BoardsAndBlocks, user_id: str
    ) -> tuple[BoardsAndBlocks, list[BoardMember]]:
        async with self.transaction("create_boards_and_blocks_with_admin") as db:
            return await self._create_boards_and_blocks_with_admin(db, bab, user_id)

    async def create_boards_and_blocks(
        self, bab: BoardsAndBlocks, user_id: str
    ) -> BoardsAndBlocks:
        async with self.transaction("create_boards_and_blocks") as db:
            return await self._create_boards_and_blocks(db, bab, user_id)

    async def patch_boards_and_blocks(
        self, pbab: PatchBoardsAndBlocks, user_id: str
    ) -> BoardsAndBlocks:
        pbab.is_valid()
        async with self.transaction("patch_boards_and_blocks") as db:
            boards = [
                await self._patch_board(db, board_id, board_patch, user_id)
                for board_id, board_patch in zip(pbab.board_ids, pbab.board_patches, strict=True)
            ]

            board_ids = set(pbab.board_ids)
            blocks = []
            for block_id, block_patch in zip(pbab.block_ids, pbab.block_patches, strict=True):
                existing = await self._get_block(db, block_id)
                if existing.board_id not in board_ids:
                    raise InvalidBoardsAndBlocksError(
                        "blockIds", "block does not belong to any of the boards", block_id
                    )
                await self._patch_block(db, block_id, block_patch, user_id)
                blocks.append(await self._get_block(db, block_id))

            return BoardsAndBlocks(boards=boards, blocks=blocks)

    async def delete_boards_and_blocks(self, dbab: DeleteBoardsAndBlocks, user_id: str) -> None:
        dbab.is_valid()
        async with self.transaction("delete_boards_and_blocks") as db:
            board_ids = set(dbab.boards)
            for block_id in dbab.blocks:
                block = await self._fetch_block(db, block_id)
                if block is not None and block.board_id not in board_ids:
                    raise InvalidBoardsAndBlocksError(
                        "blocks", "block does not belong to any of the boards", block_id
                    )
                await self._delete_block(db, block_id, user_id)

            for board_id in dbab.boards:
                await self._delete_board(db, board_id, user_id)

    # =========================================================================
    # Categories
    # =========================================================================

    async def _fetch_category(self, db: Any, category_id: str) -> Category | None:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(CATEGORY_COLUMNS)} FROM {self._t('categories')} WHERE id = ?",
            (category_id,),
        )
        return _row_to_category(row) if row else None

    async def get_category(self, category_id: str) -> Category:
        async with self._reader("get_category") as db:
            category = await self._fetch_category(db, category_id)
        if category is None:
            raise NotFoundError("category")
        return category

    async def create_category(self, category: Category) -> None:
        category.is_valid()
        now = get_millis()
        category = replace(
            category, create_at=category.create_at or now, update_at=now, delete_at=0
        )
        try:
            async with self.transaction("create_category") as db:
                await db.execute(
                    f"INSERT INTO {self._t('categories')} ({_select(CATEGORY_COLUMNS)}) "
                    f"VALUES ({_placeholders(len(CATEGORY_COLUMNS))})",
                    (
                        category.id,
                        category.name,
                        category.user_id,
                        category.team_id,
                        category.create_at,
                        category.update_at,
                        category.delete_at,
                        int(category.collapsed),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError("category", category.id) from e

    async def update_category(self, category: Category) -> None:
        category.is_valid()
        category = replace(category, update_at=get_millis())
        async with self.transaction("update_category") as db:
            updated = await self._execute(
                db,
                f"""
                UPDATE {self._t('categories')}
                SET name = ?, collapsed = ?, update_at = ?
                WHERE id = ? AND user_id = ? AND team_id = ? AND delete_at = 0
                """,
                (
                    category.name,
                    int(category.collapsed),
                    category.update_at,
                    category.id,
                    category.user_id,
                    category.team_id,
                ),
            )
            if updated == 0:
                raise NotFoundError("category")

    async def delete_category(self, category_id: str, user_id: str, team_id: str) -> None:
        now = get_millis()
        async with self.transaction("delete_category") as db:
            deleted = await self._execute(
                db,
                f"""
                UPDATE {self._t('categories')} SET delete_at = ?, update_at = ?
                WHERE id = ? AND user_id = ? AND team_id = ? AND delete_at = 0
                """,
                (now, now, category_id, user_id, team_id),
            )
            if deleted:
                await db.execute(
                    f"DELETE FROM {self._t('category_blocks')} WHERE category_id = ?",
                    (category_id,),
                )

    async def get_user_category_blocks(self, user_id: str, team_id: str) -> list[CategoryBlocks]:
        async with self._reader("get_user_category_blocks") as db:
            category_rows = await self._fetch_all(
                db,
                f"SELECT {_select(CATEGORY_COLUMNS)} FROM {self._t('categories')} "
                "WHERE user_id = ? AND team_id = ? AND delete_at = 0 ORDER BY name, id",
                (user_id, team_id),
            )
            block_rows = await self._fetch_all(
                db,
                f"SELECT category_id, block_id FROM {self._t('category_blocks')} "
                "WHERE user_id = ? AND delete_at = 0 ORDER BY create_at, id",
                (user_id,),
            )

        result = [CategoryBlocks(category=_row_to_category(row)) for row in category_rows]
        by_category = {entry.category.id: entry for entry in result}
        for row in block_rows:
            entry = by_category.get(row["category_id"])
            if entry is not None:
                entry.block_ids.append(row["block_id"])
        return result

    async def add_update_category_block(
        self, user_id: str, category_id: str, block_id: str
    ) -> None:
        now = get_millis()
        async with self.transaction("add_update_category_block") as db:
            category = await self._fetch_category(db, category_id)
            if category is None or category.delete_at or category.user_id != user_id:
                raise NotFoundError("category")

            await db.execute(
                f"DELETE FROM {self._t('category_blocks')} WHERE user_id = ? AND block_id = ?",
                (user_id, block_id),
            )
            await db.execute(
                f"""
                INSERT INTO {self._t('category_blocks')}
                    (id, user_id, category_id, block_id, create_at, update_at, delete_at)
                VALUES (?, ?, ?, ?, ?, ?, 0)
                """,
                (new_id(IDType.NONE), user_id, category_id, block_id, now, now),
            )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def _get_subscription(self, db: Any, block_id: str, subscriber_id: str) -> Subscription:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(SUBSCRIPTION_COLUMNS)} FROM {self._t('subscriptions')} "
            "WHERE block_id = ? AND subscriber_id = ? AND delete_at = 0",
            (block_id, subscriber_id),
        )
        if row is None:
            raise NotFoundError("subscription")
        return _row_to_subscription(row)

    async def create_subscription(self, sub: Subscription) -> Subscription:
        sub.is_valid()
        now = get_millis()
        async with self.transaction("create_subscription") as db:
            # notified_at starts now so the first notification skips older history.
            # An active subscription keeps its times; a soft-deleted one restarts.
            await db.execute(
                f"""
                INSERT INTO {self._t('subscriptions')} ({_select(SUBSCRIPTION_COLUMNS)})
                VALUES ({_placeholders(len(SUBSCRIPTION_COLUMNS))})
                ON CONFLICT (block_id, subscriber_id) DO UPDATE SET
                    block_type = excluded.block_type,
                    subscriber_type = excluded.subscriber_type,
                    notified_at = CASE WHEN delete_at > 0
                        THEN excluded.notified_at ELSE notified_at END,
                    create_at = CASE WHEN delete_at > 0
                        THEN excluded.create_at ELSE create_at END,
                    delete_at = 0
                """,
                (sub.block_type, sub.block_id, sub.subscriber_type, sub.subscriber_id, now, now, 0),
            )
            return await self._get_subscription(db, sub.block_id, sub.subscriber_id)

    async def delete_subscription(self, block_id: str, subscriber_id: str) -> None:
        async with self.transaction("delete_subscription") as db:
            deleted = await self._execute(
                db,
                f"""
                UPDATE {self._t('subscriptions')} SET delete_at = ?
                WHERE block_id = ? AND subscriber_id = ? AND delete_at = 0
                """,
                (get_millis(), block_id, subscriber_id),
            )
            if deleted == 0:
                raise NotFoundError("subscription")

    async def get_subscription(self, block_id: str, subscriber_id: str) -> Subscription:
        async with self._reader("get_subscription") as db:
            return await self._get_subscription(db, block_id, subscriber_id)

    async def get_subscriptions(self, subscriber_id: str) -> list[Subscription]:
        async with self._reader("get_subscriptions") as db:
            rows = await self._fetch_all(
                db,
                f"SELECT {_select(SUBSCRIPTION_COLUMNS)} FROM {self._t('subscriptions')} "
                "WHERE subscriber_id = ? AND delete_at = 0 ORDER BY create_at, block_id",
                (subscriber_id,),
            )
        return [_row_to_subscription(row) for row in rows]

    async def get_subscribers_for_block(self, block_id: str) -> list[Subscriber]:
        async with self._reader("get_subscribers_for_block") as db:
            rows = await self._fetch_all(
                db,
                f"""
                SELECT subscriber_type, subscriber_id, notified_at
                FROM {self._t('subscriptions')}
                WHERE block_id = ? AND delete_at = 0
                ORDER BY notified_at, subscriber_id
                """,
                (block_id,),
            )
        return [
            Subscriber(
                subscriber_type=row["subscriber_type"],
                subscriber_id=row["subscriber_id"],
                notified_at=row["notified_at"],
            )
            for row in rows
        ]

    async def get_subscribers_count_for_block(self, block_id: str) -> int:
        async with self._reader("get_subscribers_count_for_block") as db:
            row = await self._fetch_one(
                db,
                f"SELECT COUNT(*) FROM {self._t('subscriptions')} "
                "WHERE block_id = ? AND delete_at = 0",
                (block_id,),
            )
        return row[0]

    async def update_subscribers_notified_at(self, block_id: str, notified_at: int) -> None:
        async with self.transaction("update_subscribers_notified_at") as db:
            await db.execute(
                f"UPDATE {self._t('subscriptions')} SET notified_at = ? "
                "WHERE block_id = ? AND delete_at = 0",
                (notified_at, block_id),
            )

    # =========================================================================
    # Notification Hints
    # =========================================================================

    async def _fetch_hint(self, db: Any, block_id: str) -> NotificationHint | None:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(HINT_COLUMNS)} FROM {self._t('notification_hints')} "
            "WHERE block_id = ?",
            (block_id,),
        )
        return _row_to_hint(row) if row else None

    async def upsert_notification_hint(
        self, hint: NotificationHint, notification_freq: timedelta
    ) -> NotificationHint:
        hint.is_valid()
        hint = replace(hint, create_at=get_millis(), notify_at=millis_after(notification_freq))
        async with self.transaction("upsert_notification_hint") as db:
            await db.execute(
                f"""
                INSERT INTO {self._t('notification_hints')} ({_select(HINT_COLUMNS)})
                VALUES ({_placeholders(len(HINT_COLUMNS))})
                ON CONFLICT (block_id) DO UPDATE SET
                    notify_at = excluded.notify_at,
                    modified_by_id = excluded.modified_by_id
                """,
                (hint.block_type, hint.block_id, hint.modified_by_id, hint.create_at, hint.notify_at),
            )
            stored = await self._fetch_hint(db, hint.block_id)
        if stored is None:
            raise NotFoundError("notification hint")
        return stored

    async def delete_notification_hint(self, block_id: str) -> None:
        async with self.transaction("delete_notification_hint") as db:
            deleted = await self._execute(
                db,
                f"DELETE FROM {self._t('notification_hints')} WHERE block_id = ?",
                (block_id,),
            )
            if deleted == 0:
                raise NotFoundError("notification hint")

    async def get_notification_hint(self, block_id: str) -> NotificationHint:
        async with self._reader("get_notification_hint") as db:
            hint = await self._fetch_hint(db, block_id)
        if hint is None:
            raise NotFoundError("notification hint")
        return hint

    async def _get_next_notification_hint(self, db: Any, remove: bool) -> NotificationHint:
        row = await self._fetch_one(
            db,
            f"SELECT {_select(HINT_COLUMNS)} FROM {self._t('notification_hints')} "
            "ORDER BY notify_at, block_id LIMIT 1",
        )
        if row is None:
            raise NotFoundError("notification hint")
        hint = _row_to_hint(row)

        if remove:
            # Conditional on notify_at so a hint pushed back in the meantime is not claimed
            claimed = await self._execute(
                db,
                f"DELETE FROM {self._t('notification_hints')} "
                "WHERE block_id = ? AND notify_at = ?",
                (hint.block_id, hint.notify_at),
            )
            if claimed == 0:
                raise NotFoundError("notification hint")

        return hint

    async def get_next_notification_hint(self, remove: bool) -> NotificationHint:
        if remove:
            async with self.transaction("get_next_notification_hint") as db:
                return await self._get_next_notification_hint(db, remove)
        async with self._reader("get_next_notification_hint") as db:
            return await self._get_next_notification_hint(db, remove)

    # =========================================================================
    # Templates
    # =========================================================================

    async def remove_default_templates(self, boards: list[Board]) -> None:
        for board in boards:
            if not board.is_template:
                raise ValidationError("isTemplate", "board is not a template", board.id)

        async with self.transaction("remove_default_templates") as db:
            # Built-in templates are removed without writing history
            for board in boards:
                await db.execute(f"DELETE FROM {self._t('blocks')} WHERE board_id = ?", (board.id,))
                await db.execute(
                    f"DELETE FROM {self._t('board_members')} WHERE board_id = ?", (board.id,)
                )
                await db.execute(f"DELETE FROM {self._t('boards')} WHERE id = ?", (board.id,))

        self._log.info(
            f"Removed {len(boards)} default templates",
            extra={"operation": "remove_default_templates"},
        )

    async def get_template_boards(self, team_id: str) -> list[Board]:
        async with self._reader("get_template_boards") as db:
            return await self._query_boards(
                db, "b.team_id = ? AND b.is_template = 1 AND b.delete_at = 0", (team_id,)
            )
