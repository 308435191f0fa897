"""
Block types and patches.

A block is the smallest content unit of a board. Blocks form a tree
through ``parent_id``; ``root_id`` names the top of the tree the block
was created under.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import InvalidBlockError
from ..utils import merge_patch

TYPE_BOARD = "board"
TYPE_CARD = "card"
TYPE_VIEW = "view"
TYPE_TEXT = "text"
TYPE_CHECKBOX = "checkbox"
TYPE_COMMENT = "comment"
TYPE_IMAGE = "image"
TYPE_DIVIDER = "divider"

BLOCK_TYPES = frozenset(
    {
        TYPE_BOARD,
        TYPE_CARD,
        TYPE_VIEW,
        TYPE_TEXT,
        TYPE_CHECKBOX,
        TYPE_COMMENT,
        TYPE_IMAGE,
        TYPE_DIVIDER,
    }
)


@dataclass
class Block:
    """A content node on a board.

    Attributes:
        id: Unique block identifier
        board_id: Board the block lives on
        parent_id: Parent block (or the board id for top-level blocks)
        root_id: Root of the tree the block belongs to
        created_by: User who created the block
        modified_by: User who last changed the block
        schema: Schema version of ``fields``
        type: Block type tag (card, view, text, ...)
        title: Display title
        fields: Type-specific payload
        create_at: Creation time, epoch millis
        update_at: Last update time, epoch millis
        delete_at: Deletion time, epoch millis (0 when live)
    """

    id: str
    board_id: str
    type: str
    parent_id: str = ""
    root_id: str = ""
    created_by: str = ""
    modified_by: str = ""
    schema: int = 1
    title: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    create_at: int = 0
    update_at: int = 0
    delete_at: int = 0

    def is_valid(self) -> None:
        """Raise InvalidBlockError if the block cannot be stored."""
        if not self.id:
            raise InvalidBlockError("id", "block id is required")
        if not self.board_id:
            raise InvalidBlockError("boardId", "block board id is required", self.id)
        if not self.type:
            raise InvalidBlockError("type", "block type is required", self.id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary using the wire field names."""
        return {
            "id": self.id,
            "boardId": self.board_id,
            "parentId": self.parent_id,
            "rootId": self.root_id,
            "createdBy": self.created_by,
            "modifiedBy": self.modified_by,
            "schema": self.schema,
            "type": self.type,
            "title": self.title,
            "fields": self.fields,
            "createAt": self.create_at,
            "updateAt": self.update_at,
            "deleteAt": self.delete_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Block:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            board_id=data.get("boardId", ""),
            type=data.get("type", ""),
            parent_id=data.get("parentId", ""),
            root_id=data.get("rootId", ""),
            created_by=data.get("createdBy", ""),
            modified_by=data.get("modifiedBy", ""),
            schema=data.get("schema", 1),
            title=data.get("title", ""),
            fields=data.get("fields") or {},
            create_at=data.get("createAt", 0),
            update_at=data.get("updateAt", 0),
            delete_at=data.get("deleteAt", 0),
        )


@dataclass
class BlockPatch:
    """A partial update to a block. ``None`` leaves a field unchanged."""

    parent_id: str | None = None
    root_id: str | None = None
    schema: int | None = None
    type: str | None = None
    title: str | None = None
    updated_fields: dict[str, Any] = field(default_factory=dict)
    deleted_fields: list[str] = field(default_factory=list)

    def patch(self, block: Block) -> Block:
        """Return a copy of ``block`` with this patch applied."""
        patched = copy.deepcopy(block)
        if self.parent_id is not None:
            patched.parent_id = self.parent_id
        if self.root_id is not None:
            patched.root_id = self.root_id
        if self.schema is not None:
            patched.schema = self.schema
        if self.type is not None:
            patched.type = self.type
        if self.title is not None:
            patched.title = self.title
        patched.fields = merge_patch(patched.fields, self.updated_fields, self.deleted_fields)
        return patched

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockPatch:
        """Deserialize from dictionary."""
        return cls(
            parent_id=data.get("parentId"),
            root_id=data.get("rootId"),
            schema=data.get("schema"),
            type=data.get("type"),
            title=data.get("title"),
            updated_fields=data.get("updatedFields") or {},
            deleted_fields=data.get("deletedFields") or [],
        )


@dataclass
class BlockPatchBatch:
    """Patches for several blocks; ``block_ids[i]`` gets ``block_patches[i]``."""

    block_ids: list[str] = field(default_factory=list)
    block_patches: list[BlockPatch] = field(default_factory=list)

    def is_valid(self) -> None:
        if len(self.block_ids) != len(self.block_patches):
            raise InvalidBlockError(
                "blockPatches", "block ids and block patches must have the same length"
            )


@dataclass
class QuerySubtreeOptions:
    """Filters for subtree queries. Zero means unset."""

    before_update_at: int = 0  # inclusive upper bound on update_at
    after_update_at: int = 0  # inclusive lower bound on update_at
    limit: int = 0


@dataclass
class QueryBlockHistoryOptions:
    """Filters for block history queries. Zero means unset."""

    before_update_at: int = 0  # exclusive upper bound on update_at
    after_update_at: int = 0  # exclusive lower bound on update_at
    limit: int = 0
    descending: bool = False
