"""
Data model for board storage.

Entities are plain dataclasses; timestamps are epoch milliseconds.
"""

from .block import (
    BLOCK_TYPES,
    TYPE_BOARD,
    TYPE_CARD,
    TYPE_CHECKBOX,
    TYPE_COMMENT,
    TYPE_DIVIDER,
    TYPE_IMAGE,
    TYPE_TEXT,
    TYPE_VIEW,
    Block,
    BlockPatch,
    BlockPatchBatch,
    QueryBlockHistoryOptions,
    QuerySubtreeOptions,
)
from .board import (
    BOARD_TYPE_OPEN,
    BOARD_TYPE_PRIVATE,
    GLOBAL_TEAM_ID,
    Board,
    BoardMember,
    BoardPatch,
    BoardsAndBlocks,
    DeleteBoardsAndBlocks,
    PatchBoardsAndBlocks,
)
from .category import Category, CategoryBlocks
from .subscription import (
    SUBSCRIBER_TYPE_CHANNEL,
    SUBSCRIBER_TYPE_USER,
    NotificationHint,
    Subscriber,
    Subscription,
)
from .user import Session, Sharing, Team, User

__all__ = [
    # Blocks
    "Block",
    "BlockPatch",
    "BlockPatchBatch",
    "QuerySubtreeOptions",
    "QueryBlockHistoryOptions",
    "BLOCK_TYPES",
    "TYPE_BOARD",
    "TYPE_CARD",
    "TYPE_VIEW",
    "TYPE_TEXT",
    "TYPE_CHECKBOX",
    "TYPE_COMMENT",
    "TYPE_IMAGE",
    "TYPE_DIVIDER",
    # Boards
    "Board",
    "BoardPatch",
    "BoardMember",
    "BoardsAndBlocks",
    "PatchBoardsAndBlocks",
    "DeleteBoardsAndBlocks",
    "BOARD_TYPE_OPEN",
    "BOARD_TYPE_PRIVATE",
    "GLOBAL_TEAM_ID",
    # Accounts
    "User",
    "Session",
    "Team",
    "Sharing",
    # Categories
    "Category",
    "CategoryBlocks",
    # Subscriptions
    "Subscription",
    "Subscriber",
    "NotificationHint",
    "SUBSCRIBER_TYPE_USER",
    "SUBSCRIBER_TYPE_CHANNEL",
]
