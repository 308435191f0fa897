"""
Abstract base class for store backends.

All store implementations (SQLite, test doubles) must implement this interface.
Operations documented as transactional apply all of their writes or none of them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from ..exceptions import is_not_found
from ..model import (
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


class StoreBackend(ABC):
    """
    Abstract data-access facade for the board tool.

    Conventions:
    - Lookups by identifier return the entity or raise NotFoundError,
      never None.
    - Operations marked "Transactional" run as one unit of work.
    - Any other backend failure propagates unchanged.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend (connections, schema, indexes)."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release connections and other held resources.

        Calls made after shutdown fail fast.
        """
        pass

    async def close(self) -> None:
        """Alias for shutdown()."""
        await self.shutdown()

    async def __aenter__(self) -> StoreBackend:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.shutdown()

    def is_err_not_found(self, err: BaseException | None) -> bool:
        """True if ``err`` is or wraps a NotFoundError."""
        return is_not_found(err)

    # =========================================================================
    # Block Operations
    # =========================================================================

    @abstractmethod
    async def get_blocks_with_parent_and_type(
        self, board_id: str, parent_id: str, block_type: str
    ) -> list[Block]:
        pass

    @abstractmethod
    async def get_blocks_with_parent(self, board_id: str, parent_id: str) -> list[Block]:
        pass

    @abstractmethod
    async def get_blocks_with_root_id(self, board_id: str, root_id: str) -> list[Block]:
        pass

    @abstractmethod
    async def get_blocks_with_type(self, board_id: str, block_type: str) -> list[Block]:
        pass

    @abstractmethod
    async def get_sub_tree2(
        self, board_id: str, block_id: str, opts: QuerySubtreeOptions
    ) -> list[Block]:
        """Return the block and its direct children (two levels)."""
        pass

    @abstractmethod
    async def get_sub_tree3(
        self, board_id: str, block_id: str, opts: QuerySubtreeOptions
    ) -> list[Block]:
        """Return the block, its children and grandchildren (three levels)."""
        pass

    @abstractmethod
    async def get_blocks_for_board(self, board_id: str) -> list[Block]:
        pass

    @abstractmethod
    async def insert_block(self, block: Block, user_id: str) -> None:
        """
        Insert or update a block. Transactional.

        Args:
            block: Block to store; its timestamps and modifier are filled in
            user_id: Acting user, recorded as modifier (and creator for new blocks)

        Raises:
            InvalidBlockError: If the block is malformed or its parent does not exist
        """
        pass

    @abstractmethod
    async def delete_block(self, block_id: str, modified_by: str) -> None:
        """Delete a block. Transactional. Deleting an unknown id is a no-op."""
        pass

    @abstractmethod
    async def insert_blocks(self, blocks: list[Block], user_id: str) -> None:
        """Insert several blocks as one unit. Transactional.

        If any block is invalid, none is stored.
        """
        pass

    @abstractmethod
    async def get_block_counts_by_type(self) -> dict[str, int]:
        """Count live blocks per block type. Transactional."""
        pass

    @abstractmethod
    async def get_block(self, block_id: str) -> Block:
        pass

    @abstractmethod
    async def patch_block(self, block_id: str, block_patch: BlockPatch, user_id: str) -> None:
        """Apply a partial update to a block. Transactional."""
        pass

    @abstractmethod
    async def get_block_history(
        self, block_id: str, opts: QueryBlockHistoryOptions
    ) -> list[Block]:
        """Return every stored revision of a block, deletions included."""
        pass

    @abstractmethod
    async def get_board_and_card_by_id(self, block_id: str) -> tuple[Board, Block]:
        pass

    @abstractmethod
    async def get_board_and_card(self, block: Block) -> tuple[Board, Block]:
        """
        Resolve a block to its board and nearest card.

        The block itself is returned as the card when it is card-typed;
        otherwise its ancestors are walked until a card is found.

        Raises:
            NotFoundError: If no card ancestor or no board exists
        """
        pass

    @abstractmethod
    async def duplicate_board(
        self, board_id: str, user_id: str, as_template: bool
    ) -> tuple[BoardsAndBlocks, list[BoardMember]]:
        """
        Copy a board and all its blocks under fresh ids. Transactional.

        Args:
            board_id: Board to copy
            user_id: Acting user, made admin of the copy
            as_template: Whether the copy is a template

        Returns:
            The new board with its blocks, and the new board's members
        """
        pass

    @abstractmethod
    async def patch_blocks(self, block_patches: BlockPatchBatch, user_id: str) -> None:
        """Apply several block patches as one unit. Transactional."""
        pass

    # =========================================================================
    # System Settings
    # =========================================================================

    @abstractmethod
    async def get_system_setting(self, key: str) -> str:
        pass

    @abstractmethod
    async def get_system_settings(self) -> dict[str, str]:
        pass

    @abstractmethod
    async def set_system_setting(self, key: str, value: str) -> None:
        pass

    # =========================================================================
    # Users
    # =========================================================================

    @abstractmethod
    async def get_registered_user_count(self) -> int:
        """Count users that have not been deleted."""
        pass

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> User:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User:
        pass

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User:
        pass

    @abstractmethod
    async def create_user(self, user: User) -> None:
        """Create a user. Raises DuplicateError on id, email or username collision."""
        pass

    @abstractmethod
    async def update_user(self, user: User) -> None:
        pass

    @abstractmethod
    async def update_user_password(self, username: str, password: str) -> None:
        """Store a new password credential. The value is stored as given."""
        pass

    @abstractmethod
    async def update_user_password_by_id(self, user_id: str, password: str) -> None:
        pass

    @abstractmethod
    async def get_users_by_team(self, team_id: str) -> list[User]:
        pass

    # =========================================================================
    # Sessions
    # =========================================================================

    @abstractmethod
    async def get_active_user_count(self, updated_seconds_ago: int) -> int:
        """Count distinct users with a session updated in the last N seconds."""
        pass

    @abstractmethod
    async def get_session(self, token: str, expire_time: int) -> Session:
        """
        Look up a session by token.

        Args:
            token: Session token
            expire_time: Seconds after the last update at which a session expires

        Raises:
            NotFoundError: If no unexpired session has this token
        """
        pass

    @abstractmethod
    async def create_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def refresh_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def update_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def clean_up_sessions(self, expire_time: int) -> None:
        """Delete sessions not updated in the last ``expire_time`` seconds."""
        pass

    # =========================================================================
    # Sharing
    # =========================================================================

    @abstractmethod
    async def upsert_sharing(self, sharing: Sharing) -> None:
        pass

    @abstractmethod
    async def get_sharing(self, root_id: str) -> Sharing:
        pass

    # =========================================================================
    # Teams
    # =========================================================================

    @abstractmethod
    async def upsert_team_signup_token(self, team: Team) -> None:
        pass

    @abstractmethod
    async def upsert_team_settings(self, team: Team) -> None:
        pass

    @abstractmethod
    async def get_team(self, team_id: str) -> Team:
        pass

    @abstractmethod
    async def get_teams_for_user(self, user_id: str) -> list[Team]:
        pass

    @abstractmethod
    async def get_all_teams(self) -> list[Team]:
        pass

    @abstractmethod
    async def get_team_count(self) -> int:
        pass

    # =========================================================================
    # Boards & Members
    # =========================================================================

    @abstractmethod
    async def insert_board(self, board: Board, user_id: str) -> Board:
        """Insert or update a board and return the stored board."""
        pass

    @abstractmethod
    async def insert_board_with_admin(
        self, board: Board, user_id: str
    ) -> tuple[Board, BoardMember]:
        """Insert a board and make ``user_id`` its admin. Transactional."""
        pass

    @abstractmethod
    async def patch_board(self, board_id: str, board_patch: BoardPatch, user_id: str) -> Board:
        """Apply a partial update to a board. Transactional."""
        pass

    @abstractmethod
    async def get_board(self, board_id: str) -> Board:
        pass

    @abstractmethod
    async def get_boards_for_user_and_team(self, user_id: str, team_id: str) -> list[Board]:
        pass

    @abstractmethod
    async def delete_board(self, board_id: str, user_id: str) -> None:
        """Delete a board with its blocks and memberships. Transactional."""
        pass

    @abstractmethod
    async def save_member(self, member: BoardMember) -> BoardMember:
        pass

    @abstractmethod
    async def delete_member(self, board_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    async def get_member_for_board(self, board_id: str, user_id: str) -> BoardMember:
        pass

    @abstractmethod
    async def get_members_for_board(self, board_id: str) -> list[BoardMember]:
        pass

    @abstractmethod
    async def search_boards_for_user_and_team(
        self, term: str, user_id: str, team_id: str
    ) -> list[Board]:
        pass

    # =========================================================================
    # Combined Boards & Blocks
    # =========================================================================

    @abstractmethod
    async def create_boards_and_blocks_with_admin(
        self, bab: BoardsAndBlocks, user_id: str
    ) -> tuple[BoardsAndBlocks, list[BoardMember]]:
        """Like create_boards_and_blocks, also making ``user_id`` admin of each board."""
        pass

    @abstractmethod
    async def create_boards_and_blocks(
        self, bab: BoardsAndBlocks, user_id: str
    ) -> BoardsAndBlocks:
        """Insert boards and their blocks as one unit. Transactional."""
        pass

    @abstractmethod
    async def patch_boards_and_blocks(
        self, pbab: PatchBoardsAndBlocks, user_id: str
    ) -> BoardsAndBlocks:
        """Patch boards and blocks as one unit. Transactional."""
        pass

    @abstractmethod
    async def delete_boards_and_blocks(self, dbab: DeleteBoardsAndBlocks, user_id: str) -> None:
        """Delete boards and blocks as one unit. Transactional."""
        pass

    # =========================================================================
    # Categories
    # =========================================================================

    @abstractmethod
    async def get_category(self, category_id: str) -> Category:
        pass

    @abstractmethod
    async def create_category(self, category: Category) -> None:
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> None:
        pass

    @abstractmethod
    async def delete_category(self, category_id: str, user_id: str, team_id: str) -> None:
        pass

    @abstractmethod
    async def get_user_category_blocks(self, user_id: str, team_id: str) -> list[CategoryBlocks]:
        pass

    @abstractmethod
    async def add_update_category_block(
        self, user_id: str, category_id: str, block_id: str
    ) -> None:
        """File a block under a category, moving it out of any previous one."""
        pass

    # =========================================================================
    # Subscriptions
    # =========================================================================

    @abstractmethod
    async def create_subscription(self, sub: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def delete_subscription(self, block_id: str, subscriber_id: str) -> None:
        pass

    @abstractmethod
    async def get_subscription(self, block_id: str, subscriber_id: str) -> Subscription:
        pass

    @abstractmethod
    async def get_subscriptions(self, subscriber_id: str) -> list[Subscription]:
        pass

    @abstractmethod
    async def get_subscribers_for_block(self, block_id: str) -> list[Subscriber]:
        pass

    @abstractmethod
    async def get_subscribers_count_for_block(self, block_id: str) -> int:
        pass

    @abstractmethod
    async def update_subscribers_notified_at(self, block_id: str, notified_at: int) -> None:
        pass

    # =========================================================================
    # Notification Hints
    # =========================================================================

    @abstractmethod
    async def upsert_notification_hint(
        self, hint: NotificationHint, notification_freq: timedelta
    ) -> NotificationHint:
        """Store a hint due ``notification_freq`` from now, pushing back an existing one."""
        pass

    @abstractmethod
    async def delete_notification_hint(self, block_id: str) -> None:
        pass

    @abstractmethod
    async def get_notification_hint(self, block_id: str) -> NotificationHint:
        pass

    @abstractmethod
    async def get_next_notification_hint(self, remove: bool) -> NotificationHint:
        """
        Return the hint with the earliest due time.

        With ``remove``, the hint is claimed: concurrent callers never
        receive the same hint.

        Raises:
            NotFoundError: If no hint is queued
        """
        pass

    # =========================================================================
    # Templates
    # =========================================================================

    @abstractmethod
    async def remove_default_templates(self, boards: list[Board]) -> None:
        pass

    @abstractmethod
    async def get_template_boards(self, team_id: str) -> list[Board]:
        pass
