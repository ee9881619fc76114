"""
Dice rolling mechanics.
"""
import random

from shared.constants import DIE_SIDES


class Dice:
    """Handles all dice rolling for the game."""

    def __init__(self, seed: int | None = None, sides: int = DIE_SIDES):
        """
        Initialize dice roller.

        Args:
            seed: Optional seed for reproducible rolls (useful for testing)
            sides: Number of faces on the die
        """
        self._random = random.Random(seed)
        self.sides = sides

    def roll(self) -> int:
        """
        Roll a single die.

        Returns:
            Value in [1, sides]
        """
        return self._random.randint(1, self.sides)

    def set_seed(self, seed: int) -> None:
        """Set random seed for reproducible results."""
        self._random.seed(seed)
