"""
Player state management.
"""
from dataclasses import dataclass

from shared.constants import PLAYER_COLORS, STARTING_MONEY


@dataclass
class Player:
    """Represents a player inside a game document."""

    user_id: str
    display_name: str
    color: str
    money: int = STARTING_MONEY
    property_count: int = 0
    position: int = 0

    @property
    def color_index(self) -> int:
        """Index of this player's color in the fixed palette."""
        return PLAYER_COLORS.index(self.color)

    def add_money(self, amount: int) -> int:
        """
        Add money to player's balance.

        Args:
            amount: Amount to add (can be negative for payments)

        Returns:
            New balance
        """
        self.money += amount
        return self.money

    def pay_clamped(self, amount: int) -> int:
        """
        Pay an amount without going below zero.

        Returns:
            New balance
        """
        self.money = max(0, self.money - amount)
        return self.money

    def can_afford(self, amount: int) -> bool:
        """Check if player can afford a given amount."""
        return self.money >= amount

    def to_dict(self) -> dict:
        """Convert player to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "color": self.color,
            "money": self.money,
            "property_count": self.property_count,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Player":
        """Create player from dictionary."""
        return cls(
            user_id=data["user_id"],
            display_name=data.get("display_name", "Player"),
            color=data["color"],
            money=data.get("money", STARTING_MONEY),
            property_count=data.get("property_count", 0),
            position=data.get("position", 0),
        )
