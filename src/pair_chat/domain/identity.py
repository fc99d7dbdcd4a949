"""Deterministic room identity for a pair of users."""

from typing import Any

from .exceptions import ValidationError

ROOM_ID_SEPARATOR = "-"


def normalize_id(value: Any, field: str = "userId") -> str:
    """Return the canonical form of a user or chat identifier."""
    if value is None:
        raise ValidationError(f"Missing required field: {field}")
    normalized = str(value).strip()
    if not normalized:
        raise ValidationError(f"Missing required field: {field}")
    if "/" in normalized:
        raise ValidationError(f"Invalid identifier for {field}: '/' is not allowed")
    return normalized


def room_id(first: str, second: str) -> str:
    """Derive the room id shared by two users, independent of argument order.

    ``room_id(a, b) == room_id(b, a)`` for every pair, so two senders converge on
    the same room without coordinating.
    """
    pair = [
        normalize_id(first, "senderId"),
        normalize_id(second, "receiverId"),
    ]
    return ROOM_ID_SEPARATOR.join(sorted(pair))
