"""
Data models for documents the engine reads but does not own.

These are simple dataclasses that map to store documents,
separate from the game engine models.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class UserProfile:
    """
    Engine-visible slice of an account profile.

    current_room_id is a cached back-reference to the game the user is in;
    the game roster is the source of truth for membership.
    """
    user_id: str
    display_name: str
    current_room_id: str | None = None
    rewards: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "current_room_id": self.current_room_id,
            "rewards": list(self.rewards),
        }

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any]) -> "UserProfile":
        return cls(
            user_id=user_id,
            display_name=data.get("display_name", "Player"),
            current_room_id=data.get("current_room_id"),
            rewards=list(data.get("rewards", [])),
        )


@dataclass
class GameSummary:
    """Lightweight game info for lobby listings."""
    id: str
    status: str
    player_count: int
    player_names: list[str]
    created_at: str | None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "player_count": self.player_count,
            "player_names": self.player_names,
            "created_at": self.created_at,
        }
