"""
Block subscriptions and pending-notification hints.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import InvalidNotificationHintError, ValidationError

SUBSCRIBER_TYPE_USER = "user"
SUBSCRIBER_TYPE_CHANNEL = "channel"


@dataclass
class Subscription:
    """A subscriber watching a block."""

    block_type: str
    block_id: str
    subscriber_type: str
    subscriber_id: str
    notified_at: int = 0
    create_at: int = 0
    delete_at: int = 0

    def is_valid(self) -> None:
        if not self.block_id:
            raise ValidationError("blockId", "subscription block id is required")
        if not self.block_type:
            raise ValidationError("blockType", "subscription block type is required")
        if not self.subscriber_id:
            raise ValidationError("subscriberId", "subscriber id is required")
        if self.subscriber_type not in (SUBSCRIBER_TYPE_USER, SUBSCRIBER_TYPE_CHANNEL):
            raise ValidationError(
                "subscriberType", "invalid subscriber type", self.subscriber_type
            )


@dataclass
class Subscriber:
    subscriber_type: str
    subscriber_id: str
    notified_at: int = 0


@dataclass
class NotificationHint:
    """Marks a block as having changes pending notification until ``notify_at``."""

    block_type: str
    block_id: str
    modified_by_id: str
    create_at: int = 0
    notify_at: int = 0

    def is_valid(self) -> None:
        if not self.block_id:
            raise InvalidNotificationHintError("blockId", "hint block id is required")
        if not self.block_type:
            raise InvalidNotificationHintError(
                "blockType", "hint block type is required", self.block_id
            )
        if not self.modified_by_id:
            raise InvalidNotificationHintError(
                "modifiedById", "hint modified by id is required", self.block_id
            )
