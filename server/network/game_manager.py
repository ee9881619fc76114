"""
Game manager for game lifecycle transitions.

Manages creation, joining, leaving and starting of games. Holds no game
state itself: every transition is a transaction on the shared game document,
and the player's profile back-reference is kept in step afterwards.
"""

import logging

from server.game_engine import Game, Player, RuleEngine
from server.game_engine.rules import ActionResult
from server.store.repository import DELETE_DOCUMENT, GameRepository, ProfileRepository
from server.store.models import GameSummary
from shared.constants import PLAYER_COLORS
from shared.enums import GameStatus


logger = logging.getLogger(__name__)


class GameManager:
    """
    Runs lifecycle transitions against the document store.

    Provides methods for:
    - Creating new games
    - Joining and leaving games
    - Starting games once enough players are present
    - Listing games waiting for players
    """

    def __init__(
        self,
        games: GameRepository,
        profiles: ProfileRepository,
        rules: RuleEngine | None = None
    ):
        self._games = games
        self._profiles = profiles
        self._rules = rules or RuleEngine()

    # =========================================================================
    # Game Creation
    # =========================================================================

    async def create_game(
        self,
        user_id: str,
        display_name: str
    ) -> tuple[bool, str, Game | None]:
        """
        Create a new game with the creator as its only player.

        Returns:
            Tuple of (success, message, Game or None)
        """
        creator = Player(user_id=user_id, display_name=display_name, color=PLAYER_COLORS[0])
        game = Game(players=[creator], current_player_id=user_id)
        game = await self._games.create(game)
        await self._profiles.set_current_room(user_id, game.id)

        logger.info(f"Game {game.id} created by {display_name}")

        return True, f"Game created: {game.id}", game

    # =========================================================================
    # Joining and Leaving
    # =========================================================================

    async def join_game(
        self,
        game_id: str,
        user_id: str,
        display_name: str
    ) -> tuple[bool, str, ActionResult, Game | None]:
        """
        Add a player to a waiting game.

        Joining a game you are already in is reported as ALREADY_JOINED and
        still counts as success.

        Returns:
            Tuple of (success, message, result code, Game or None)
        """
        def add_player(game: Game, scratch: dict):
            validation = self._rules.validate_join(game, user_id)
            scratch["validation"] = validation
            if not validation.valid or validation.result == ActionResult.ALREADY_JOINED:
                return None
            game.players.append(Player(
                user_id=user_id,
                display_name=display_name,
                color=game.next_free_color(),
            ))
            return {"players": game.players_dict()}

        tx = await self._games.transact(game_id, add_player)
        if tx.game is None:
            return False, "Game not found.", ActionResult.GAME_NOT_FOUND, None

        validation = tx.context["validation"]
        if not validation.valid:
            logger.info(f"{display_name} could not join {game_id}: {validation.result.code}")
            return False, validation.message, validation.result, tx.game

        await self._profiles.set_current_room(user_id, game_id)

        if validation.result == ActionResult.ALREADY_JOINED:
            return True, validation.message, validation.result, tx.game

        logger.info(f"Player {display_name} ({user_id}) joined game {game_id}")
        return True, f"Joined game: {game_id}", ActionResult.SUCCESS, tx.game

    async def leave_game(self, game_id: str, user_id: str) -> tuple[bool, str, Game | None]:
        """
        Remove a player from a game.

        The last player out deletes the game. If the leaver held the turn, it
        passes to the new roster entry at the leaver's old index plus one,
        taken modulo the old roster length, or to the first remaining player
        when that index falls past the end. The back-reference is cleared
        even when the game no longer exists.

        Returns:
            Tuple of (success, message, remaining Game or None)
        """
        def remove_player(game: Game, scratch: dict):
            index = game.player_index(user_id)
            if index == -1:
                return None

            remaining = [p for p in game.players if p.user_id != user_id]
            if not remaining:
                return DELETE_DOCUMENT

            current_player_id = game.current_player_id
            if current_player_id == user_id:
                next_index = (index + 1) % len(game.players)
                fallback = remaining[next_index] if next_index < len(remaining) else remaining[0]
                current_player_id = fallback.user_id
            game.players = remaining
            return {"players": game.players_dict(), "current_player_id": current_player_id}

        tx = await self._games.transact(game_id, remove_player)
        await self._profiles.clear_current_room(user_id, game_id)

        if tx.deleted:
            logger.info(f"Game {game_id} deleted as no players left")
            return True, "You left the game.", None

        if tx.game is None:
            return True, "You left the game.", None

        if tx.committed:
            logger.info(f"Player {user_id} left game {game_id}")
        return True, "You left the game.", tx.game

    # =========================================================================
    # Game Flow
    # =========================================================================

    async def ensure_started(self, game_id: str) -> bool:
        """
        Start a waiting game once it has enough players.

        Safe to call on every observation; returns True only for the call
        that made the transition.
        """
        def start(game: Game, scratch: dict):
            if not game.should_auto_start:
                return None
            fields = {"status": GameStatus.IN_PROGRESS.value}
            if not game.has_player(game.current_player_id):
                fields["current_player_id"] = game.players[0].user_id
            return fields

        tx = await self._games.transact(game_id, start)
        if tx.committed:
            logger.info(f"Game {game_id} started with {len(tx.game.players)} players")
        return tx.committed

    async def list_waiting_games(self) -> list[GameSummary]:
        """Get games that are waiting for players."""
        return await self._games.list_summaries(GameStatus.WAITING)
