"""
Board layout and built properties.
"""
from dataclasses import dataclass

from shared.constants import BOARD_SIZE, PALETTE_SIZE, RENT_AMOUNT


@dataclass
class BoardSquare:
    """A property built on a square."""
    owner_id: str
    rent: int = RENT_AMOUNT

    def to_dict(self) -> dict:
        return {"owner_id": self.owner_id, "rent": self.rent}

    @classmethod
    def from_dict(cls, data: dict) -> "BoardSquare":
        return cls(owner_id=data["owner_id"], rent=data.get("rent", RENT_AMOUNT))


class BoardLayout:
    """
    Maps board squares to palette colors.

    By default a square belongs to palette index ``position % palette_size``.
    Pass ``square_colors`` to describe a board whose colors are laid out
    differently; entries may be None for squares that belong to nobody.
    """

    def __init__(
        self,
        board_size: int = BOARD_SIZE,
        palette_size: int = PALETTE_SIZE,
        square_colors: list[int | None] | None = None
    ):
        if board_size <= 0:
            raise ValueError("board_size must be positive")
        if square_colors is not None and len(square_colors) != board_size:
            raise ValueError(
                f"square_colors has {len(square_colors)} entries for a board of {board_size}"
            )
        self.board_size = board_size
        self.palette_size = palette_size
        self._square_colors = list(square_colors) if square_colors is not None else None

    def color_index(self, position: int) -> int | None:
        """Palette index that owns a square, or None if the square is unassigned."""
        position %= self.board_size
        if self._square_colors is not None:
            return self._square_colors[position]
        return position % self.palette_size

    def advance(self, position: int, spaces: int) -> int:
        """Position reached after moving forward around the track."""
        return (position + spaces) % self.board_size

    def squares_for_color(self, color_index: int) -> list[int]:
        """Every square that belongs to a palette index."""
        return [
            position for position in range(self.board_size)
            if self.color_index(position) == color_index
        ]
