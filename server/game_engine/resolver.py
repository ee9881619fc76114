"""
Square resolution: decides what landing on a square means for the mover.
"""
from dataclasses import dataclass

from shared.enums import SquareOutcome

from .board import BoardLayout, BoardSquare
from .game import Game
from .player import Player


@dataclass
class SquareResolution:
    """Classified outcome of a landing."""
    outcome: SquareOutcome
    position: int
    color_index: int | None
    # Other player whose color owns the square, if any
    color_owner: Player | None = None
    # Property built on the square, if any
    square: BoardSquare | None = None

    @property
    def rent(self) -> int:
        return self.square.rent if self.square else 0

    @property
    def needs_challenge(self) -> bool:
        return self.outcome in (SquareOutcome.RENT, SquareOutcome.EQUATION_CHALLENGE)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "position": self.position,
            "color_index": self.color_index,
            "color_owner_id": self.color_owner.user_id if self.color_owner else None,
            "rent": self.rent,
        }


class SquareResolver:
    """
    Classifies a landing, in order of precedence:

    1. own color, nothing built   -> BUILD_OFFER
    2. own color, already built   -> SAFE_ZONE
    3. another player's color, built by that player -> RENT (then a challenge)
    4. another player's color, nothing built        -> EQUATION_CHALLENGE
    5. anything else              -> SAFE_ZONE
    """

    def __init__(self, layout: BoardLayout | None = None):
        self.layout = layout or BoardLayout()

    def resolve(self, mover: Player, position: int, game: Game) -> SquareResolution:
        color_index = self.layout.color_index(position)
        square = game.board_state.get(position)
        own_color = color_index is not None and mover.color_index == color_index
        color_owner = game.color_owner(color_index, exclude_id=mover.user_id)

        if own_color:
            outcome = SquareOutcome.SAFE_ZONE if square else SquareOutcome.BUILD_OFFER
        elif color_owner and square and square.owner_id == color_owner.user_id:
            outcome = SquareOutcome.RENT
        elif color_owner and not square:
            outcome = SquareOutcome.EQUATION_CHALLENGE
        else:
            outcome = SquareOutcome.SAFE_ZONE

        return SquareResolution(
            outcome=outcome,
            position=position,
            color_index=color_index,
            color_owner=color_owner,
            square=square,
        )
