"""
Game document model.

A Game is rebuilt from a store snapshot for every operation and turned back
into top-level field updates when committing; nothing here is cached
between operations.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from shared.constants import (
    MAX_PLAYERS,
    MIN_PLAYERS_TO_START,
    PLAYER_COLORS,
    STARTING_BANK_MONEY,
)
from shared.enums import GameStatus, InvitationStatus

from .board import BoardSquare
from .player import Player


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Invitation:
    """An invitation to join a waiting game, embedded in the game document."""
    sender_id: str
    recipient_id: str
    game_id: str
    sender_display_name: str
    status: InvitationStatus = InvitationStatus.PENDING
    invite_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "invite_id": self.invite_id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "game_id": self.game_id,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "sender_display_name": self.sender_display_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invitation":
        return cls(
            sender_id=data["sender_id"],
            recipient_id=data["recipient_id"],
            game_id=data["game_id"],
            sender_display_name=data.get("sender_display_name", ""),
            status=InvitationStatus(data.get("status", InvitationStatus.PENDING.value)),
            invite_id=data.get("invite_id") or str(uuid.uuid4()),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class Game:
    """
    Shared state of one game.

    Player order in ``players`` is the turn order.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    players: list[Player] = field(default_factory=list)
    current_player_id: str | None = None
    status: GameStatus = GameStatus.WAITING
    board_state: dict[int, BoardSquare] = field(default_factory=dict)
    turn_count: int = 0
    bank_money: int = STARTING_BANK_MONEY
    invitations: list[Invitation] = field(default_factory=list)
    winner: str | None = None
    winner_ids: list[str] = field(default_factory=list)
    final_summary: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    revision: int = 0

    # =========== Roster ===========

    @property
    def player_ids(self) -> list[str]:
        return [p.user_id for p in self.players]

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    @property
    def should_auto_start(self) -> bool:
        return self.status == GameStatus.WAITING and len(self.players) >= MIN_PLAYERS_TO_START

    def get_player(self, user_id: str) -> Player | None:
        for player in self.players:
            if player.user_id == user_id:
                return player
        return None

    def player_index(self, user_id: str | None) -> int:
        """Index of a player in turn order, or -1 when absent."""
        for index, player in enumerate(self.players):
            if player.user_id == user_id:
                return index
        return -1

    def has_player(self, user_id: str) -> bool:
        return self.player_index(user_id) != -1

    def next_free_color(self) -> str | None:
        """First palette color nobody in the roster uses yet."""
        taken = {p.color for p in self.players}
        for color in PLAYER_COLORS:
            if color not in taken:
                return color
        return None

    def next_player_id(self) -> str | None:
        """
        Player after the one currently holding the turn.

        Uses the current holder's index at read time; a holder missing from
        the roster wraps to the first player.
        """
        if not self.players:
            return None
        index = self.player_index(self.current_player_id)
        return self.players[(index + 1) % len(self.players)].user_id

    def color_owner(self, color_index: int | None, exclude_id: str | None = None) -> Player | None:
        """Player whose color has the given palette index."""
        if color_index is None:
            return None
        for player in self.players:
            if player.color_index == color_index and player.user_id != exclude_id:
                return player
        return None

    # =========== Invitations ===========

    def find_invitation(self, invite_id: str) -> Invitation | None:
        for invitation in self.invitations:
            if invitation.invite_id == invite_id:
                return invitation
        return None

    def pending_invitations_for(self, recipient_id: str) -> list[Invitation]:
        return [
            inv for inv in self.invitations
            if inv.recipient_id == recipient_id and inv.is_pending
        ]

    # =========== Serialization ===========

    def players_dict(self) -> list[dict]:
        return [p.to_dict() for p in self.players]

    def board_state_dict(self) -> dict[str, dict]:
        return {str(pos): square.to_dict() for pos, square in self.board_state.items()}

    def invitations_dict(self) -> list[dict]:
        return [inv.to_dict() for inv in self.invitations]

    def to_dict(self) -> dict:
        """Convert game state to the stored document body."""
        return {
            "players": self.players_dict(),
            "current_player_id": self.current_player_id,
            "status": self.status.value,
            "board_state": self.board_state_dict(),
            "turn_count": self.turn_count,
            "bank_money": self.bank_money,
            "invitations": self.invitations_dict(),
            "winner": self.winner,
            "winner_ids": list(self.winner_ids),
            "final_summary": self.final_summary,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, game_id: str, data: dict, revision: int = 0) -> "Game":
        """Create game from a stored document body."""
        return cls(
            id=game_id,
            players=[Player.from_dict(p) for p in data.get("players", [])],
            current_player_id=data.get("current_player_id"),
            status=GameStatus(data.get("status", GameStatus.WAITING.value)),
            board_state={
                int(pos): BoardSquare.from_dict(square)
                for pos, square in (data.get("board_state") or {}).items()
            },
            turn_count=data.get("turn_count", 0),
            bank_money=data.get("bank_money", STARTING_BANK_MONEY),
            invitations=[Invitation.from_dict(i) for i in data.get("invitations", [])],
            winner=data.get("winner"),
            winner_ids=list(data.get("winner_ids") or []),
            final_summary=data.get("final_summary"),
            created_at=data.get("created_at") or utc_now_iso(),
            revision=revision,
        )

    def get_state_for_player(self, user_id: str) -> dict:
        """Game state formatted for one connected player."""
        state = self.to_dict()
        state.update({
            "game_id": self.id,
            "revision": self.revision,
            "is_your_turn": self.status == GameStatus.IN_PROGRESS and self.current_player_id == user_id,
            "invitations": [
                inv.to_dict() for inv in self.invitations
                if user_id in (inv.sender_id, inv.recipient_id)
            ],
        })
        return state
