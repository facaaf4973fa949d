"""Data shapes shared by the social services."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Mapping


@dataclass
class User:
    """A user as presented to API clients."""

    id: int = 0
    name: str = ""
    follow_count: int = 0
    follower_count: int = 0
    is_follow: bool = False
    avatar: str = ""
    background_image: str = ""
    signature: str = ""
    total_favorited: int = 0
    work_count: int = 0
    favorite_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation of the user."""
        return {f.name: getattr(self, f.name) for f in fields(User)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        """Build a user from its JSON representation, ignoring unknown keys."""
        known = {f.name for f in fields(User)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class FriendUser(User):
    """A friend, carrying the latest message exchanged with them."""

    msg_content: str = ""
    msg_type: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.msg_content:
            data["message"] = self.msg_content
        data["msg_type"] = self.msg_type
        return data


@dataclass
class Message:
    """A chat message between two users."""

    id: int = 0
    sender_id: int = 0
    receiver_id: int = 0
    action_type: int = 0
    content: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None