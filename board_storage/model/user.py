"""
User accounts, sessions and teams.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .board import GLOBAL_TEAM_ID


@dataclass
class User:
    """A user account. Unique by id, email and username."""

    id: str
    username: str
    email: str
    password: str = ""
    mfa_secret: str = ""
    auth_service: str = ""
    auth_data: str = ""
    props: dict[str, Any] = field(default_factory=dict)
    team_id: str = GLOBAL_TEAM_ID
    create_at: int = 0
    update_at: int = 0
    delete_at: int = 0
    is_bot: bool = False
    is_guest: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary. Credentials are never included."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "props": self.props,
            "teamId": self.team_id,
            "create_at": self.create_at,
            "update_at": self.update_at,
            "delete_at": self.delete_at,
            "is_bot": self.is_bot,
            "is_guest": self.is_guest,
        }


@dataclass
class Session:
    """An authentication token bound to a user."""

    id: str
    token: str
    user_id: str
    auth_service: str = ""
    props: dict[str, Any] = field(default_factory=dict)
    create_at: int = 0
    update_at: int = 0


@dataclass
class Team:
    """A tenant grouping users and boards."""

    id: str
    title: str = ""
    signup_token: str = ""
    settings: dict[str, Any] = field(default_factory=dict)
    modified_by: str = ""
    update_at: int = 0


@dataclass
class Sharing:
    """Public sharing configuration for a board or root block."""

    id: str
    enabled: bool = False
    token: str = ""
    modified_by: str = ""
    update_at: int = 0
