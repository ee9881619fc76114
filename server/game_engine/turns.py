"""
Turn processing for one user.

A TurnProcessor runs the acting player's side of a turn: roll, move,
resolve the square, wait on the decision the square asks for, then close
the turn. Each user's session owns its own processor and writes straight to
the game document through optimistic transactions; there is no central
authority deciding turns.

Every commit that closes a turn re-checks, against freshly read state, that
the mover still holds the turn and the turn counter has not moved. A
decision resolved twice therefore advances the turn at most once.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from server.completion import CompletionService, hint_prompt
from server.config import settings
from server.store.base import TransactionConflictError
from shared.constants import (
    BANK_AMOUNT_PER_CORRECT_ANSWER,
    EQUATION_SOLVER_CHANCE,
    EQUATION_SOLVER_REWARD,
    MAX_TURNS,
    PROPERTY_COST,
    RENT_AMOUNT,
)
from shared.enums import AnswerVerdict, DecisionKind, SquareOutcome, TurnPhase

from .board import BoardLayout, BoardSquare
from .dice import Dice
from .equations import Equation, EquationGenerator
from .game import Game
from .resolver import SquareResolution, SquareResolver
from .rules import ActionResult, RuleEngine, ValidationResult
from .scoring import EndGameEvaluator, finish_fields


logger = logging.getLogger(__name__)


_PHASE_FOR_DECISION = {
    DecisionKind.BUILD: TurnPhase.BUILD_DECISION,
    DecisionKind.CHALLENGE: TurnPhase.CHALLENGE_PENDING,
    DecisionKind.HINT: TurnPhase.HINT_OFFERED,
}


@dataclass
class PendingDecision:
    """A question the acting player must answer before the turn can end."""
    kind: DecisionKind
    game_id: str
    # Turn the decision belongs to; used to guard the closing commit
    turn_count: int
    position: int
    equation: Equation | None = None
    # Player whose color posed the challenge
    setter_id: str | None = None
    deadline: datetime | None = None

    @property
    def phase(self) -> TurnPhase:
        return _PHASE_FOR_DECISION[self.kind]

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.deadline is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.deadline

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "game_id": self.game_id,
            "turn_count": self.turn_count,
            "position": self.position,
            "equation": self.equation.display_text if self.equation else None,
            "setter_id": self.setter_id,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }


@dataclass
class UnfinishedMove:
    """A committed move whose landing square has not been settled yet."""
    game_id: str
    turn_count: int
    roll: int
    position: int


@dataclass
class TurnResult:
    """What happened when a turn action was processed."""
    success: bool
    message: str
    phase: TurnPhase
    code: ActionResult = ActionResult.SUCCESS
    game_id: str | None = None
    roll: int | None = None
    position: int | None = None
    resolution: SquareResolution | None = None
    equation: str | None = None
    verdict: AnswerVerdict | None = None
    correct_answer: int | None = None
    rent_paid: int = 0
    built: bool = False
    hint: str | None = None
    rewards: list[str] = field(default_factory=list)
    game_over: bool = False
    winner: str | None = None
    summary: str | None = None
    # Scratch values reported by the closing transaction
    context: dict = field(default_factory=dict, repr=False)

    @classmethod
    def failure(
        cls,
        code: ActionResult,
        message: str,
        phase: TurnPhase = TurnPhase.IDLE,
        game_id: str | None = None
    ) -> "TurnResult":
        return cls(success=False, message=message, phase=phase, code=code, game_id=game_id)

    @classmethod
    def rejected(cls, validation: ValidationResult, phase: TurnPhase = TurnPhase.IDLE,
                 game_id: str | None = None) -> "TurnResult":
        return cls.failure(validation.result, validation.message, phase, game_id)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "phase": self.phase.value,
            "code": self.code.code,
            "game_id": self.game_id,
            "roll": self.roll,
            "position": self.position,
            "outcome": self.resolution.outcome.value if self.resolution else None,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "equation": self.equation,
            "verdict": self.verdict.value if self.verdict else None,
            "correct_answer": self.correct_answer,
            "rent_paid": self.rent_paid,
            "built": self.built,
            "hint": self.hint,
            "rewards": list(self.rewards),
            "game_over": self.game_over,
            "winner": self.winner,
            "summary": self.summary,
        }


# Applies the closing turn's own changes to a fresh Game and returns the
# fields they touched.
TurnChanges = Callable[[Game, dict], dict]


class TurnProcessor:
    """
    Drives one user's turns.

    At most one decision is pending at a time. Public actions first resolve
    a pending decision whose deadline has passed, using the default answer
    for its kind.
    """

    def __init__(
        self,
        user_id: str,
        games,
        profiles,
        completion: CompletionService,
        layout: BoardLayout | None = None,
        dice: Dice | None = None,
        equations: EquationGenerator | None = None,
        rules: RuleEngine | None = None,
        rng: random.Random | None = None,
        decision_timeout: float | None = None,
    ):
        self.user_id = user_id
        self._games = games
        self._profiles = profiles
        self._completion = completion
        self._layout = layout or BoardLayout()
        self._resolver = SquareResolver(self._layout)
        self._dice = dice or Dice()
        self._equations = equations or EquationGenerator()
        self._rules = rules or RuleEngine()
        self._rng = rng or random.Random()
        self._end_game = EndGameEvaluator(games, profiles, completion)
        self.decision_timeout = (
            decision_timeout if decision_timeout is not None else settings.DECISION_TIMEOUT
        )
        self.pending: PendingDecision | None = None
        # Set when the move committed but settling the square lost a race
        self.unfinished: UnfinishedMove | None = None

    @property
    def phase(self) -> TurnPhase:
        if self.pending:
            return self.pending.phase
        return TurnPhase.MOVED if self.unfinished else TurnPhase.IDLE

    def discard_pending(self, game_id: str | None = None) -> None:
        """Forget a pending decision or unfinished move, e.g. after leaving its game."""
        if self.pending and (game_id is None or self.pending.game_id == game_id):
            logger.debug(f"Discarding pending {self.pending.kind.value} for {self.user_id}")
            self.pending = None
        if self.unfinished and (game_id is None or self.unfinished.game_id == game_id):
            self.unfinished = None

    # =========== Roll ===========

    async def roll_dice(self, game_id: str) -> TurnResult:
        """
        Roll the die, move, and resolve the landing square.

        If an earlier move committed but its square could not be settled,
        that square is settled again instead of rolling.
        """
        await self._expire_if_due()
        if self.pending:
            return TurnResult.failure(
                ActionResult.DECISION_PENDING,
                "Finish your current decision first.",
                self.phase,
                game_id,
            )

        if self.unfinished is not None and self.unfinished.game_id == game_id:
            return await self._resume_move(self.unfinished)

        roll = self._dice.roll()

        def move(game: Game, scratch: dict):
            validation = self._rules.validate_roll(game, self.user_id)
            scratch["validation"] = validation
            if not validation.valid:
                return None
            player = game.get_player(self.user_id)
            player.position = self._layout.advance(player.position, roll)
            return {"players": game.players_dict()}

        try:
            tx = await self._games.transact(game_id, move)
        except TransactionConflictError as e:
            logger.warning(f"Roll by {self.user_id} in {game_id} gave up: {e}")
            return TurnResult.failure(ActionResult.CONFLICT, "The game is busy, try again.",
                                      game_id=game_id)

        if tx.game is None:
            # Deleted between the click and the roll
            logger.debug(f"Roll by {self.user_id} ignored: game {game_id} is gone")
            return TurnResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.", game_id=game_id)

        if not tx.committed:
            return TurnResult.rejected(tx.context["validation"], game_id=game_id)

        game = tx.game
        mover = game.get_player(self.user_id)
        logger.info(f"{mover.display_name} rolled {roll} and moved to square {mover.position} in {game_id}")
        return await self._settle_landing(game, roll, mover.position)

    async def _resume_move(self, move: UnfinishedMove) -> TurnResult:
        game = await self._games.get(move.game_id)
        if game is None:
            self.unfinished = None
            return TurnResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.",
                                      game_id=move.game_id)
        validation = self._rules.validate_turn_still_open(game, self.user_id, move.turn_count)
        if not validation.valid:
            self.unfinished = None
            return TurnResult.rejected(validation, game_id=move.game_id)
        logger.info(f"Settling square {move.position} again for {self.user_id} in {move.game_id}")
        return await self._settle_landing(game, move.roll, move.position)

    async def _settle_landing(self, game: Game, roll: int, position: int) -> TurnResult:
        """Resolve the square the mover is standing on."""
        self.unfinished = None
        game_id = game.id
        mover = game.get_player(self.user_id)
        resolution = self._resolver.resolve(mover, position, game)
        logger.info(f"Square {position} is {resolution.outcome.value} for {mover.display_name}")

        if resolution.outcome == SquareOutcome.BUILD_OFFER:
            self.pending = self._decision(DecisionKind.BUILD, game, position)
            return TurnResult(
                success=True,
                message=(
                    f"You landed on your own color! Do you want to build a property "
                    f"on square {position} for ${PROPERTY_COST}?"
                ),
                phase=TurnPhase.BUILD_DECISION,
                game_id=game_id,
                roll=roll,
                position=position,
                resolution=resolution,
            )

        if resolution.outcome == SquareOutcome.SAFE_ZONE:
            if game.board_state.get(position):
                message = f"You landed on your own property (square {position}). Safe zone."
            else:
                message = f"You landed on square {position}. Safe zone."
            try:
                result = await self._close_turn(game_id, game.turn_count, message)
            except TransactionConflictError as e:
                logger.warning(f"Closing safe-zone turn for {self.user_id} gave up: {e}")
                return self._interrupted(game, roll, position)
            result.roll = roll
            result.position = position
            result.resolution = resolution
            return result

        rent_paid = 0
        if resolution.outcome == SquareOutcome.RENT:
            try:
                rent = await self._pay_rent(game, resolution)
            except TransactionConflictError as e:
                logger.warning(f"Rent payment by {self.user_id} gave up: {e}")
                return self._interrupted(game, roll, position)
            if rent is None:
                return TurnResult.failure(
                    ActionResult.TURN_ALREADY_ADVANCED,
                    "This turn has already ended.",
                    game_id=game_id,
                )
            rent_paid = rent

        equation = self._equations.generate()
        self.pending = self._decision(
            DecisionKind.CHALLENGE, game, position,
            equation=equation,
            setter_id=resolution.color_owner.user_id if resolution.color_owner else None,
        )
        owner_name = resolution.color_owner.display_name if resolution.color_owner else "another player"
        if rent_paid:
            message = (
                f"You landed on {owner_name}'s property and paid ${rent_paid} rent. "
                f"Now solve {owner_name}'s equation: {equation.display_text}"
            )
        else:
            message = f"You landed on {owner_name}'s color. Solve: {equation.display_text}"
        return TurnResult(
            success=True,
            message=message,
            phase=TurnPhase.CHALLENGE_PENDING,
            game_id=game_id,
            roll=roll,
            position=position,
            resolution=resolution,
            equation=equation.display_text,
            rent_paid=rent_paid,
        )

    def _interrupted(self, game: Game, roll: int, position: int) -> TurnResult:
        # The move stands; the next roll settles this square instead of moving
        self.unfinished = UnfinishedMove(game.id, game.turn_count, roll, position)
        return TurnResult.failure(ActionResult.CONFLICT, "The game is busy, try again.",
                                  TurnPhase.MOVED, game.id)

    async def _pay_rent(self, game: Game, resolution: SquareResolution) -> int | None:
        """
        Move rent from the mover to the square's owner.

        The mover's balance is clamped at zero while the owner always
        receives the full rent. Returns the amount charged, or None if the
        turn closed before the payment could be written.
        """
        owner_id = resolution.square.owner_id
        rent = resolution.rent or RENT_AMOUNT

        def pay(current: Game, scratch: dict):
            validation = self._rules.validate_turn_still_open(
                current, self.user_id, game.turn_count
            )
            if not validation.valid:
                return None
            current.get_player(self.user_id).pay_clamped(rent)
            owner = current.get_player(owner_id)
            if owner is not None:
                owner.add_money(rent)
            return {"players": current.players_dict()}

        tx = await self._games.transact(game.id, pay)
        if not tx.committed:
            return None
        logger.info(f"{self.user_id} paid ${rent} rent to {owner_id} in {game.id}")
        return rent

    # =========== Decisions ===========

    async def submit_build_decision(self, accept: bool) -> TurnResult:
        """Accept or decline the build offer, then close the turn."""
        await self._expire_if_due()
        pending = self._require(DecisionKind.BUILD)
        if isinstance(pending, TurnResult):
            return pending
        return await self._resolve_build(pending, accept)

    async def _resolve_build(self, pending: PendingDecision, accept: bool) -> TurnResult:
        position = pending.position

        def build(game: Game, scratch: dict) -> dict:
            if not accept:
                return {}
            validation = self._rules.can_build(game, self.user_id, position)
            scratch["build_check"] = validation
            if not validation.valid:
                return {}
            player = game.get_player(self.user_id)
            player.add_money(-PROPERTY_COST)
            player.property_count += 1
            game.board_state[position] = BoardSquare(owner_id=self.user_id, rent=RENT_AMOUNT)
            return {
                "players": game.players_dict(),
                "board_state": game.board_state_dict(),
            }

        result = await self._close_pending(pending, "", build)
        if not result.success:
            return result

        check = result.context.get("build_check")
        if not accept:
            result.message = "You chose not to build property."
        elif check is not None and not check.valid:
            result.message = check.message
        else:
            result.built = True
            result.message = f"You built a property on square {position}!"
        result.message = _with_game_over(result)
        return result

    async def submit_equation_answer(self, value) -> TurnResult:
        """Answer the pending equation challenge."""
        await self._expire_if_due()
        pending = self._require(DecisionKind.CHALLENGE)
        if isinstance(pending, TurnResult):
            return pending
        return await self._resolve_answer(pending, value)

    async def _resolve_answer(self, pending: PendingDecision, value) -> TurnResult:
        equation = pending.equation
        verdict = equation.check(value)
        logger.info(f"{self.user_id} answered {value!r} to {equation.display_text}: {verdict.value}")

        if verdict == AnswerVerdict.INCORRECT:
            # Turn stays open until the hint offer is answered
            self.pending = PendingDecision(
                kind=DecisionKind.HINT,
                game_id=pending.game_id,
                turn_count=pending.turn_count,
                position=pending.position,
                equation=equation,
                setter_id=pending.setter_id,
                deadline=self._deadline(),
            )
            return TurnResult(
                success=True,
                message=(
                    f"Incorrect answer. The correct answer was {equation.answer}. "
                    f"Would you like a hint on how to solve it?"
                ),
                phase=TurnPhase.HINT_OFFERED,
                game_id=pending.game_id,
                position=pending.position,
                equation=equation.display_text,
                verdict=verdict,
                correct_answer=equation.answer,
            )

        if verdict == AnswerVerdict.UNPARSEABLE:
            result = await self._close_pending(pending, "That answer could not be read. Turn over.")
            result.verdict = verdict
            result.equation = equation.display_text
            result.message = _with_game_over(result)
            return result

        def payout(game: Game, scratch: dict) -> dict:
            game.get_player(self.user_id).add_money(BANK_AMOUNT_PER_CORRECT_ANSWER)
            game.bank_money -= BANK_AMOUNT_PER_CORRECT_ANSWER
            return {"players": game.players_dict(), "bank_money": game.bank_money}

        result = await self._close_pending(
            pending,
            f"Correct! You earned ${BANK_AMOUNT_PER_CORRECT_ANSWER} from the bank.",
            payout,
        )
        result.verdict = verdict
        result.equation = equation.display_text
        if result.success:
            if self._rng.random() < EQUATION_SOLVER_CHANCE:
                if await self._profiles.grant_reward(self.user_id, EQUATION_SOLVER_REWARD):
                    result.rewards.append(EQUATION_SOLVER_REWARD)
                    result.message += f" You earned the '{EQUATION_SOLVER_REWARD}' reward!"
            result.message = _with_game_over(result)
        return result

    async def respond_hint(self, accept: bool) -> TurnResult:
        """Take or refuse a hint for the missed equation, then close the turn."""
        await self._expire_if_due()
        pending = self._require(DecisionKind.HINT)
        if isinstance(pending, TurnResult):
            return pending
        return await self._resolve_hint(pending, accept)

    async def _resolve_hint(self, pending: PendingDecision, accept: bool) -> TurnResult:
        hint = None
        if accept:
            hint = await self._completion.complete(hint_prompt(pending.equation.display_text))
        result = await self._close_pending(pending, "Turn over.")
        result.hint = hint
        result.equation = pending.equation.display_text
        result.message = _with_game_over(result)
        return result

    # =========== Expiry ===========

    async def expire_pending(self, now: datetime | None = None) -> TurnResult | None:
        """
        Resolve a decision whose deadline has passed.

        A build offer is declined, a challenge counts as unanswered and a
        hint offer is refused. Returns None when nothing was due.
        """
        pending = self.pending
        if pending is None or not pending.is_expired(now):
            return None

        logger.info(f"{pending.kind.value} decision for {self.user_id} timed out")
        if pending.kind == DecisionKind.BUILD:
            return await self._resolve_build(pending, False)
        if pending.kind == DecisionKind.CHALLENGE:
            return await self._resolve_answer(pending, None)
        return await self._resolve_hint(pending, False)

    async def _expire_if_due(self) -> None:
        await self.expire_pending()

    # =========== Turn closing ===========

    def _require(self, kind: DecisionKind) -> PendingDecision | TurnResult:
        if self.pending is None or self.pending.kind != kind:
            return TurnResult.failure(
                ActionResult.NO_PENDING_DECISION,
                "There is no such decision waiting for you.",
                self.phase,
            )
        return self.pending

    def _decision(self, kind: DecisionKind, game: Game, position: int,
                  equation: Equation | None = None,
                  setter_id: str | None = None) -> PendingDecision:
        return PendingDecision(
            kind=kind,
            game_id=game.id,
            turn_count=game.turn_count,
            position=position,
            equation=equation,
            setter_id=setter_id,
            deadline=self._deadline(),
        )

    def _deadline(self) -> datetime | None:
        if not self.decision_timeout:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=self.decision_timeout)

    async def _close_pending(
        self,
        pending: PendingDecision,
        message: str,
        changes: TurnChanges | None = None
    ) -> TurnResult:
        """Close the turn a decision belongs to; a conflict keeps it pending."""
        try:
            result = await self._close_turn(pending.game_id, pending.turn_count, message, changes)
        except TransactionConflictError as e:
            logger.warning(f"Closing turn for {self.user_id} gave up: {e}")
            return TurnResult.failure(ActionResult.CONFLICT, "The game is busy, try again.",
                                      pending.phase, pending.game_id)
        if self.pending is pending:
            self.pending = None
        result.position = pending.position
        return result

    async def _close_turn(
        self,
        game_id: str,
        turn_count: int,
        message: str,
        changes: TurnChanges | None = None
    ) -> TurnResult:
        """
        Commit the turn's own changes together with the turn advance.

        Reaching the turn limit finishes the game instead of advancing; the
        closing turn's changes are applied before ranking.
        """
        def close(game: Game, scratch: dict):
            validation = self._rules.validate_turn_still_open(game, self.user_id, turn_count)
            scratch["validation"] = validation
            if not validation.valid:
                return None

            fields = dict(changes(game, scratch)) if changes else {}
            next_turn = turn_count + 1
            fields["turn_count"] = next_turn
            if next_turn >= MAX_TURNS:
                fields.update(finish_fields(game))
                scratch["finished"] = True
            else:
                fields["current_player_id"] = game.next_player_id()
            return fields

        tx = await self._games.transact(game_id, close)

        if tx.game is None:
            logger.debug(f"Turn close for {self.user_id} ignored: game {game_id} is gone")
            return TurnResult.failure(ActionResult.GAME_NOT_FOUND, "Game not found.", game_id=game_id)

        if not tx.committed:
            validation = tx.context.get("validation")
            logger.info(f"Turn {turn_count} in {game_id} was already closed")
            return TurnResult.rejected(validation, game_id=game_id)

        result = TurnResult(
            success=True,
            message=message,
            phase=TurnPhase.TURN_ENDED,
            game_id=game_id,
            context=tx.context,
        )

        if tx.context.get("finished"):
            result.phase = TurnPhase.GAME_OVER
            result.game_over = True
            result.winner = tx.game.winner
            result.summary = await self._end_game.finalize(tx.game)
        else:
            logger.debug(f"Turn {turn_count} closed in {game_id}; next is {tx.game.current_player_id}")
        return result


def _with_game_over(result: TurnResult) -> str:
    if not result.game_over:
        return result.message
    return f"{result.message} Game over! {result.winner}"
