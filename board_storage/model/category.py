"""
User-defined categories grouping boards/blocks in a team's sidebar.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..exceptions import ValidationError


@dataclass
class Category:
    id: str
    name: str
    user_id: str
    team_id: str
    create_at: int = 0
    update_at: int = 0
    delete_at: int = 0
    collapsed: bool = False

    def is_valid(self) -> None:
        if not self.id:
            raise ValidationError("id", "category id is required")
        if not self.name:
            raise ValidationError("name", "category name is required", self.id)
        if not self.user_id:
            raise ValidationError("userId", "category user id is required", self.id)
        if not self.team_id:
            raise ValidationError("teamId", "category team id is required", self.id)


@dataclass
class CategoryBlocks:
    """A category together with the ids of the blocks filed under it."""

    category: Category
    block_ids: list[str] = field(default_factory=list)
