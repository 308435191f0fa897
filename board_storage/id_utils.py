"""ID generation utilities for board storage.

Centralizes the ID format so callers never need to construct IDs by hand.

IDs are 27 characters: a one-letter type prefix followed by 26 characters
of base32 (using an unambiguous alphabet) derived from a random UUID.
"""

from __future__ import annotations

import base64
import uuid
from enum import Enum

_STANDARD_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_ID_ALPHABET = "ybndrfg8ejkmcpqxot1uwisza345h769"
_TRANSLATION = str.maketrans(_STANDARD_ALPHABET, _ID_ALPHABET)


class IDType(Enum):
    """Prefix letters for generated IDs."""

    NONE = "7"
    TEAM = "t"
    BOARD = "b"
    CARD = "c"
    VIEW = "v"
    SESSION = "s"
    USER = "u"
    TOKEN = "k"
    BLOCK = "a"
    CATEGORY = "y"


def new_id(id_type: IDType = IDType.NONE) -> str:
    """Generate a new globally unique ID with the given type prefix."""
    encoded = base64.b32encode(uuid.uuid4().bytes).decode("ascii")
    return id_type.value + encoded.translate(_TRANSLATION)[:26]


def id_type_for_block(block_type: str) -> IDType:
    """Pick the ID prefix used when generating an ID for a block of this type."""
    if block_type == "card":
        return IDType.CARD
    if block_type == "view":
        return IDType.VIEW
    if block_type == "board":
        return IDType.BOARD
    return IDType.BLOCK
