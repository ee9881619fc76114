"""
Rule enforcement and validation.

Validators never mutate anything; callers run them against a freshly read
game inside a transaction so a rejected action writes nothing.
"""
from dataclasses import dataclass
from enum import Enum, auto

from shared.constants import MAX_PLAYERS, PROPERTY_COST
from shared.enums import GameStatus

from .game import Game


class ActionResult(Enum):
    """Result of attempting an action."""
    SUCCESS = auto()
    GAME_NOT_FOUND = auto()
    GAME_FULL = auto()
    GAME_ALREADY_STARTED = auto()
    GAME_NOT_STARTED = auto()
    GAME_FINISHED = auto()
    ALREADY_JOINED = auto()
    NOT_IN_GAME = auto()
    NOT_YOUR_TURN = auto()
    DECISION_PENDING = auto()
    NO_PENDING_DECISION = auto()
    INSUFFICIENT_FUNDS = auto()
    TURN_ALREADY_ADVANCED = auto()
    USER_NOT_FOUND = auto()
    CANNOT_INVITE_SELF = auto()
    DUPLICATE_INVITATION = auto()
    INVITATION_NOT_FOUND = auto()
    CONFLICT = auto()

    @property
    def code(self) -> str:
        return self.name


@dataclass
class ValidationResult:
    """Result of validating an action."""
    valid: bool
    result: ActionResult
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "ValidationResult":
        return cls(valid=True, result=ActionResult.SUCCESS, message=message)

    @classmethod
    def failure(cls, result: ActionResult, message: str = "") -> "ValidationResult":
        return cls(valid=False, result=result, message=message)


class RuleEngine:
    """Validates lobby and turn actions against a game snapshot."""

    def validate_join(self, game: Game | None, user_id: str) -> ValidationResult:
        """Validate if a user can join a game."""
        if game is None:
            return ValidationResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.")

        if game.status != GameStatus.WAITING:
            return ValidationResult.failure(
                ActionResult.GAME_ALREADY_STARTED,
                "This game is already in progress or finished."
            )

        if game.has_player(user_id):
            # Informational, not an error
            return ValidationResult(
                valid=True,
                result=ActionResult.ALREADY_JOINED,
                message="You are already in this game."
            )

        if game.is_full or game.next_free_color() is None:
            return ValidationResult.failure(
                ActionResult.GAME_FULL,
                f"This game is full (max {MAX_PLAYERS} players)."
            )

        return ValidationResult.success()

    def validate_roll(self, game: Game | None, user_id: str) -> ValidationResult:
        """Validate if a player can roll the die."""
        if game is None:
            return ValidationResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.")

        if game.status == GameStatus.WAITING:
            return ValidationResult.failure(
                ActionResult.GAME_NOT_STARTED,
                "The game has not started yet."
            )

        if game.status == GameStatus.FINISHED:
            return ValidationResult.failure(ActionResult.GAME_FINISHED, "The game is over.")

        if not game.has_player(user_id):
            return ValidationResult.failure(ActionResult.NOT_IN_GAME, "You are not in this game.")

        if game.current_player_id != user_id:
            return ValidationResult.failure(ActionResult.NOT_YOUR_TURN, "It's not your turn.")

        return ValidationResult.success()

    def validate_turn_still_open(
        self,
        game: Game,
        user_id: str,
        turn_count: int
    ) -> ValidationResult:
        """
        Check that a turn has not been closed by someone else.

        Guards every commit that resolves a pending decision so one decision
        can never advance the turn twice.
        """
        if game.status != GameStatus.IN_PROGRESS:
            return ValidationResult.failure(ActionResult.GAME_FINISHED, "The game is no longer running.")

        if game.current_player_id != user_id or game.turn_count != turn_count:
            return ValidationResult.failure(
                ActionResult.TURN_ALREADY_ADVANCED,
                "This turn has already ended."
            )

        return ValidationResult.success()

    def can_build(self, game: Game, user_id: str, position: int) -> ValidationResult:
        """Validate building a property on a square."""
        player = game.get_player(user_id)
        if player is None:
            return ValidationResult.failure(ActionResult.NOT_IN_GAME, "You are not in this game.")

        if position in game.board_state:
            return ValidationResult.failure(
                ActionResult.CONFLICT,
                f"Square {position} already has a property."
            )

        if not player.can_afford(PROPERTY_COST):
            return ValidationResult.failure(
                ActionResult.INSUFFICIENT_FUNDS,
                "You do not have enough money to build a property."
            )

        return ValidationResult.success()

    def validate_invite(
        self,
        game: Game | None,
        sender_id: str,
        recipient_id: str,
        recipient_exists: bool
    ) -> ValidationResult:
        """Validate sending an invitation."""
        if not recipient_exists:
            return ValidationResult.failure(
                ActionResult.USER_NOT_FOUND,
                "User with this ID does not exist."
            )

        if recipient_id == sender_id:
            return ValidationResult.failure(
                ActionResult.CANNOT_INVITE_SELF,
                "You cannot invite yourself."
            )

        if game is None:
            return ValidationResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.")

        if game.is_full:
            return ValidationResult.failure(
                ActionResult.GAME_FULL,
                "The game is full. Cannot invite more players."
            )

        for invitation in game.invitations:
            if (invitation.sender_id == sender_id
                    and invitation.recipient_id == recipient_id
                    and invitation.game_id == game.id
                    and invitation.is_pending):
                return ValidationResult.failure(
                    ActionResult.DUPLICATE_INVITATION,
                    "You have already sent an invitation to this player for this game."
                )

        return ValidationResult.success()
