"""
Board, board membership and the combined boards-and-blocks batches.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import InvalidBoardsAndBlocksError
from ..utils import merge_patch
from .block import Block, BlockPatch

BOARD_TYPE_OPEN = "O"
BOARD_TYPE_PRIVATE = "P"

# Team id used for built-in templates shared by every team
GLOBAL_TEAM_ID = "0"


@dataclass
class Board:
    """A container of blocks, owned by a team."""

    id: str
    team_id: str
    title: str = ""
    type: str = BOARD_TYPE_OPEN
    channel_id: str = ""
    created_by: str = ""
    modified_by: str = ""
    description: str = ""
    icon: str = ""
    show_description: bool = False
    is_template: bool = False
    template_version: int = 0
    properties: dict[str, Any] = field(default_factory=dict)
    card_properties: list[dict[str, Any]] = field(default_factory=list)
    create_at: int = 0
    update_at: int = 0
    delete_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary using the wire field names."""
        return {
            "id": self.id,
            "teamId": self.team_id,
            "channelId": self.channel_id,
            "createdBy": self.created_by,
            "modifiedBy": self.modified_by,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "showDescription": self.show_description,
            "isTemplate": self.is_template,
            "templateVersion": self.template_version,
            "properties": self.properties,
            "cardProperties": self.card_properties,
            "createAt": self.create_at,
            "updateAt": self.update_at,
            "deleteAt": self.delete_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Board:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            team_id=data.get("teamId", ""),
            channel_id=data.get("channelId", ""),
            created_by=data.get("createdBy", ""),
            modified_by=data.get("modifiedBy", ""),
            type=data.get("type", BOARD_TYPE_OPEN),
            title=data.get("title", ""),
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            show_description=data.get("showDescription", False),
            is_template=data.get("isTemplate", False),
            template_version=data.get("templateVersion", 0),
            properties=data.get("properties") or {},
            card_properties=data.get("cardProperties") or [],
            create_at=data.get("createAt", 0),
            update_at=data.get("updateAt", 0),
            delete_at=data.get("deleteAt", 0),
        )


@dataclass
class BoardPatch:
    """A partial update to a board. ``None`` leaves a field unchanged."""

    type: str | None = None
    title: str | None = None
    description: str | None = None
    icon: str | None = None
    show_description: bool | None = None
    channel_id: str | None = None
    updated_properties: dict[str, Any] = field(default_factory=dict)
    deleted_properties: list[str] = field(default_factory=list)
    updated_card_properties: list[dict[str, Any]] = field(default_factory=list)
    deleted_card_properties: list[str] = field(default_factory=list)

    def patch(self, board: Board) -> Board:
        """Return a copy of ``board`` with this patch applied.

        Card properties are matched by their ``id`` key: updated entries
        replace existing ones in place, new ones are appended.
        """
        patched = copy.deepcopy(board)
        if self.type is not None:
            patched.type = self.type
        if self.title is not None:
            patched.title = self.title
        if self.description is not None:
            patched.description = self.description
        if self.icon is not None:
            patched.icon = self.icon
        if self.show_description is not None:
            patched.show_description = self.show_description
        if self.channel_id is not None:
            patched.channel_id = self.channel_id

        patched.properties = merge_patch(
            patched.properties, self.updated_properties, self.deleted_properties
        )

        if self.updated_card_properties or self.deleted_card_properties:
            by_id = {prop.get("id"): prop for prop in self.updated_card_properties}
            card_properties = []
            for prop in patched.card_properties:
                prop_id = prop.get("id")
                if prop_id in self.deleted_card_properties:
                    continue
                card_properties.append(by_id.pop(prop_id, prop))
            card_properties.extend(by_id.values())
            patched.card_properties = card_properties

        return patched


@dataclass
class BoardMember:
    """Membership of a user on a board, with role flags."""

    board_id: str
    user_id: str
    roles: str = ""
    scheme_admin: bool = False
    scheme_editor: bool = False
    scheme_commenter: bool = False
    scheme_viewer: bool = False

    @classmethod
    def admin(cls, board_id: str, user_id: str) -> BoardMember:
        """Membership granting every scheme role."""
        return cls(
            board_id=board_id,
            user_id=user_id,
            scheme_admin=True,
            scheme_editor=True,
            scheme_commenter=True,
            scheme_viewer=True,
        )


@dataclass
class BoardsAndBlocks:
    """Boards plus blocks that live on them, handled as one unit."""

    boards: list[Board] = field(default_factory=list)
    blocks: list[Block] = field(default_factory=list)

    def is_valid(self) -> None:
        """Every block must belong to one of the boards."""
        if not self.boards:
            raise InvalidBoardsAndBlocksError("boards", "at least one board is required")

        board_ids = {board.id for board in self.boards}
        for block in self.blocks:
            if block.board_id not in board_ids:
                raise InvalidBoardsAndBlocksError(
                    "blocks", "block does not belong to any of the boards", block.id
                )


@dataclass
class PatchBoardsAndBlocks:
    """Board and block patches applied as one unit."""

    board_ids: list[str] = field(default_factory=list)
    board_patches: list[BoardPatch] = field(default_factory=list)
    block_ids: list[str] = field(default_factory=list)
    block_patches: list[BlockPatch] = field(default_factory=list)

    def is_valid(self) -> None:
        if not self.board_ids:
            raise InvalidBoardsAndBlocksError("boardIds", "at least one board id is required")
        if len(self.board_ids) != len(self.board_patches):
            raise InvalidBoardsAndBlocksError(
                "boardPatches", "board ids and board patches must have the same length"
            )
        if len(self.block_ids) != len(self.block_patches):
            raise InvalidBoardsAndBlocksError(
                "blockPatches", "block ids and block patches must have the same length"
            )


@dataclass
class DeleteBoardsAndBlocks:
    """Board and block ids deleted as one unit."""

    boards: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)

    def is_valid(self) -> None:
        if not self.boards:
            raise InvalidBoardsAndBlocksError("boards", "at least one board id is required")
