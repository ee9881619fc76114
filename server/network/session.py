"""
Player session: everything one connected user can do.

A session carries the user's identity, the game they are in and their turn
processor. It talks to the document store directly; two sessions never
share state except through the store.
"""

import inspect
import logging
from typing import Any, Callable

from server.completion import CompletionService
from server.game_engine import Game
from server.game_engine.game import Invitation
from server.game_engine.rules import ActionResult
from server.game_engine.turns import TurnProcessor, TurnResult
from server.store.base import Subscription, TransactionConflictError
from server.store.models import UserProfile
from server.store.repository import GameRepository, ProfileRepository, summarize
from shared.enums import GameStatus

from .game_manager import GameManager
from .invitations import InvitationManager


logger = logging.getLogger(__name__)


GameCallback = Callable[[Game | None], Any]
LobbyCallback = Callable[[list], Any]
InvitationCallback = Callable[[Invitation], Any]


class PlayerSession:
    """
    Facade over the engine for one user.

    Lobby operations return ``(success, message, ...)`` tuples; turn
    operations return a TurnResult. Store conflicts that outlast the retry
    budget come back as failures rather than exceptions.
    """

    def __init__(
        self,
        user_id: str,
        display_name: str,
        games: GameRepository,
        profiles: ProfileRepository,
        completion: CompletionService,
        **turn_options
    ):
        self.user_id = user_id
        self.display_name = display_name
        self._games = games
        self._profiles = profiles
        self.game_manager = GameManager(games, profiles)
        self.invitations = InvitationManager(games, profiles, self.game_manager)
        self.turns = TurnProcessor(user_id, games, profiles, completion, **turn_options)

        self.current_game_id: str | None = None
        self._game_subscription: Subscription | None = None
        self._lobby_subscription: Subscription | None = None
        # invite_ids already pushed to this user
        self._seen_invitations: set[str] = set()

    async def open(self) -> UserProfile:
        """Load (or create) the user's profile and pick up their back-reference."""
        profile = await self._profiles.ensure(self.user_id, self.display_name)
        self.display_name = profile.display_name
        if profile.current_room_id:
            game = await self._games.get(profile.current_room_id)
            if game is not None and game.has_player(self.user_id):
                self.current_game_id = game.id
            else:
                await self._profiles.clear_current_room(self.user_id, profile.current_room_id)
        logger.info(f"Session opened for {self.display_name} ({self.user_id})")
        return profile

    # =========================================================================
    # Lobby
    # =========================================================================

    async def create_game(self) -> tuple[bool, str, Game | None]:
        success, message, game = await self.game_manager.create_game(
            self.user_id, self.display_name
        )
        if success:
            self.current_game_id = game.id
        return success, message, game

    async def join_game(self, game_id: str) -> tuple[bool, str, ActionResult, Game | None]:
        try:
            success, message, result, game = await self.game_manager.join_game(
                game_id, self.user_id, self.display_name
            )
        except TransactionConflictError as e:
            logger.warning(f"Join of {game_id} by {self.user_id} gave up: {e}")
            return False, "The game is busy, try again.", ActionResult.CONFLICT, None
        if success:
            self.current_game_id = game_id
        return success, message, result, game

    async def leave_game(self, game_id: str | None = None) -> tuple[bool, str, Game | None]:
        game_id = game_id or self.current_game_id
        if not game_id:
            return False, "You are not in a game.", None

        try:
            success, message, game = await self.game_manager.leave_game(game_id, self.user_id)
        except TransactionConflictError as e:
            logger.warning(f"Leave of {game_id} by {self.user_id} gave up: {e}")
            return False, "The game is busy, try again.", None

        self.turns.discard_pending(game_id)
        if self.current_game_id == game_id:
            self.current_game_id = None
            self._stop_watching_game()
        return success, message, game

    async def list_games(self) -> list:
        return await self.game_manager.list_waiting_games()

    # =========================================================================
    # Turns
    # =========================================================================

    async def roll_dice(self) -> TurnResult:
        if not self.current_game_id:
            return TurnResult.failure(ActionResult.NOT_IN_GAME, "You are not in a game.")
        return await self.turns.roll_dice(self.current_game_id)

    async def submit_build_decision(self, accept: bool) -> TurnResult:
        return await self.turns.submit_build_decision(accept)

    async def submit_equation_answer(self, value) -> TurnResult:
        return await self.turns.submit_equation_answer(value)

    async def respond_hint(self, accept: bool) -> TurnResult:
        return await self.turns.respond_hint(accept)

    async def expire_pending(self) -> TurnResult | None:
        return await self.turns.expire_pending()

    # =========================================================================
    # Invitations
    # =========================================================================

    async def invite_player(self, recipient_id: str) -> tuple[bool, str, ActionResult, Invitation | None]:
        if not self.current_game_id:
            return False, "You are not in a game.", ActionResult.NOT_IN_GAME, None
        try:
            return await self.invitations.invite(
                self.current_game_id, self.user_id, self.display_name, recipient_id
            )
        except TransactionConflictError as e:
            logger.warning(f"Invite from {self.user_id} gave up: {e}")
            return False, "The game is busy, try again.", ActionResult.CONFLICT, None

    async def respond_invitation(
        self,
        invite_id: str,
        accept: bool
    ) -> tuple[bool, str, ActionResult, Game | None]:
        try:
            success, message, result, game = await self.invitations.respond(
                invite_id, self.user_id, self.display_name, accept
            )
        except TransactionConflictError as e:
            logger.warning(f"Invitation answer from {self.user_id} gave up: {e}")
            return False, "The game is busy, try again.", ActionResult.CONFLICT, None
        if success and accept and game is not None:
            self.current_game_id = game.id
        return success, message, result, game

    # =========================================================================
    # Observation
    # =========================================================================

    def watch_game(
        self,
        on_state: GameCallback,
        game_id: str | None = None,
        on_error: Callable[[Exception], Any] | None = None
    ) -> Subscription | None:
        """
        Follow a game document.

        Every observation repairs the user's back-reference and starts the
        game once enough players are present. on_state gets None once the
        game is deleted.
        """
        game_id = game_id or self.current_game_id
        if not game_id:
            return None
        self._stop_watching_game()

        async def observe(game: Game | None):
            if game is None:
                logger.info(f"Game {game_id} is gone; {self.user_id} returns to the lobby")
                await self._profiles.clear_current_room(self.user_id, game_id)
                self.turns.discard_pending(game_id)
                if self.current_game_id == game_id:
                    self.current_game_id = None
                    self._stop_watching_game()
                return await _maybe_await(on_state(None))

            if game.has_player(self.user_id):
                await self._profiles.set_current_room(self.user_id, game.id)
            if game.should_auto_start:
                await self.game_manager.ensure_started(game.id)
            return await _maybe_await(on_state(game))

        self._game_subscription = self._games.watch(game_id, observe, on_error)
        return self._game_subscription

    def watch_lobby(
        self,
        on_games: LobbyCallback,
        on_invitation: InvitationCallback | None = None,
        on_error: Callable[[Exception], Any] | None = None
    ) -> Subscription:
        """
        Follow the waiting-games listing.

        on_games gets the full listing on every change; on_invitation gets
        each pending invitation addressed to this user once.
        """
        self._stop_watching_lobby()

        async def observe(games: list[Game], changed: list[Game]):
            await _maybe_await(on_games([summarize(game) for game in games]))
            # Forget invitations that were answered or whose game stopped waiting
            self._seen_invitations &= {
                invitation.invite_id
                for game in games
                for invitation in game.pending_invitations_for(self.user_id)
            }
            if on_invitation is None:
                return
            for game in changed:
                if game.id == self.current_game_id:
                    continue
                for invitation in game.pending_invitations_for(self.user_id):
                    if invitation.invite_id in self._seen_invitations:
                        continue
                    self._seen_invitations.add(invitation.invite_id)
                    await _maybe_await(on_invitation(invitation))

        self._lobby_subscription = self._games.watch_status(GameStatus.WAITING, observe, on_error)
        return self._lobby_subscription

    def _stop_watching_game(self) -> None:
        if self._game_subscription:
            self._game_subscription.unsubscribe()
            self._game_subscription = None

    def _stop_watching_lobby(self) -> None:
        if self._lobby_subscription:
            self._lobby_subscription.unsubscribe()
            self._lobby_subscription = None

    def close(self) -> None:
        """Stop every subscription. The user stays in their game."""
        self._stop_watching_game()
        self._stop_watching_lobby()
        logger.info(f"Session closed for {self.user_id}")


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result
