"""
Repository layer over the document store.

Translates between store snapshots and engine models, and wraps the
optimistic transaction helper with typed mutators.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from server.game_engine.game import Game
from server.store.base import DocumentStore, QuerySnapshot, Snapshot, Subscription
from server.store.models import GameSummary, UserProfile
from server.store.transaction import DELETE_DOCUMENT, run_transaction
from shared.constants import GAMES_COLLECTION, USERS_COLLECTION
from shared.enums import GameStatus


logger = logging.getLogger(__name__)


def game_from_snapshot(snapshot: Snapshot | None) -> Game | None:
    if snapshot is None:
        return None
    return Game.from_dict(snapshot.id, snapshot.data, snapshot.revision)


@dataclass
class GameTransaction:
    """Outcome of a game transaction."""
    committed: bool
    # Game after the commit, or as last read when nothing was written
    game: Game | None
    deleted: bool = False
    # Whatever the mutator stashed in its scratch dict (validation results etc.)
    context: dict = field(default_factory=dict)


class GameRepository:
    """
    Repository for game documents.

    Provides typed access to games, abstracting away snapshot handling.
    """

    def __init__(self, store: DocumentStore, max_attempts: int | None = None):
        self.store = store
        self.max_attempts = max_attempts

    async def create(self, game: Game) -> Game:
        """Store a new game document."""
        snapshot = await self.store.set(GAMES_COLLECTION, game.id, game.to_dict())
        return game_from_snapshot(snapshot)

    async def get(self, game_id: str) -> Game | None:
        """Get a game by ID."""
        if not game_id:
            return None
        return game_from_snapshot(await self.store.get(GAMES_COLLECTION, game_id))

    async def list_by_status(self, status: GameStatus) -> list[Game]:
        """Get every game with a given status."""
        snapshots = await self.store.query(GAMES_COLLECTION, "status", status.value)
        return [game_from_snapshot(s) for s in snapshots]

    async def list_summaries(self, status: GameStatus = GameStatus.WAITING) -> list[GameSummary]:
        """Get lightweight listings for the lobby."""
        return [summarize(game) for game in await self.list_by_status(status)]

    async def transact(
        self,
        game_id: str,
        mutate: Callable[[Game, dict], dict | object | None]
    ) -> GameTransaction:
        """
        Run an optimistic transaction on a game.

        The mutator receives a fresh Game plus a scratch dict it may use to
        report back (it is reset on every retry), and returns the fields to
        write, DELETE_DOCUMENT, or None to write nothing.
        """
        scratch: dict = {}

        def apply(data: dict):
            scratch.clear()
            game = Game.from_dict(game_id, data)
            return mutate(game, scratch)

        result = await run_transaction(
            self.store, GAMES_COLLECTION, game_id, apply, self.max_attempts
        )
        return GameTransaction(
            committed=result.committed,
            game=game_from_snapshot(result.snapshot),
            deleted=result.deleted,
            context=dict(scratch),
        )

    def watch(
        self,
        game_id: str,
        on_update: Callable[[Game | None], Any],
        on_error: Callable[[Exception], Any] | None = None
    ) -> Subscription:
        """Subscribe to one game; on_update gets None once it is deleted."""
        def deliver(snapshot: Snapshot | None):
            return on_update(game_from_snapshot(snapshot))

        return self.store.subscribe(GAMES_COLLECTION, game_id, deliver, on_error)

    def watch_status(
        self,
        status: GameStatus,
        on_update: Callable[[list[Game], list[Game]], Any],
        on_error: Callable[[Exception], Any] | None = None
    ) -> Subscription:
        """Subscribe to every game with a status; on_update gets (all, changed)."""
        def deliver(query: QuerySnapshot):
            return on_update(
                [game_from_snapshot(s) for s in query.documents],
                [game_from_snapshot(s) for s in query.changes],
            )

        return self.store.subscribe_query(GAMES_COLLECTION, "status", status.value, deliver, on_error)


def summarize(game: Game) -> GameSummary:
    return GameSummary(
        id=game.id,
        status=game.status.value,
        player_count=len(game.players),
        player_names=[p.display_name for p in game.players],
        created_at=game.created_at,
    )


class ProfileRepository:
    """Reads and writes the engine-owned fields of user profiles."""

    def __init__(self, store: DocumentStore, max_attempts: int | None = None):
        self.store = store
        self.max_attempts = max_attempts

    async def get(self, user_id: str) -> UserProfile | None:
        if not user_id:
            return None
        snapshot = await self.store.get(USERS_COLLECTION, user_id)
        if snapshot is None:
            return None
        return UserProfile.from_dict(user_id, snapshot.data)

    async def exists(self, user_id: str) -> bool:
        return await self.get(user_id) is not None

    async def ensure(self, user_id: str, display_name: str) -> UserProfile:
        """Create a profile if the account has none yet."""
        profile = await self.get(user_id)
        if profile is not None:
            return profile
        profile = UserProfile(user_id=user_id, display_name=display_name)
        await self.store.set(USERS_COLLECTION, user_id, profile.to_dict())
        logger.info(f"Created profile for {display_name} ({user_id})")
        return profile

    async def set_current_room(self, user_id: str, game_id: str) -> bool:
        """Point a profile's back-reference at a game."""
        def mutate(data: dict):
            if data.get("current_room_id") == game_id:
                return None
            return {"current_room_id": game_id}

        result = await run_transaction(
            self.store, USERS_COLLECTION, user_id, mutate, self.max_attempts
        )
        if not result.found:
            logger.warning(f"No profile for {user_id}; back-reference not set")
        return result.committed

    async def clear_current_room(self, user_id: str, game_id: str | None = None) -> bool:
        """
        Clear a profile's back-reference.

        With game_id, only clears it while it still points at that game.
        """
        def mutate(data: dict):
            current = data.get("current_room_id")
            if current is None:
                return None
            if game_id is not None and current != game_id:
                return None
            return {"current_room_id": None}

        result = await run_transaction(
            self.store, USERS_COLLECTION, user_id, mutate, self.max_attempts
        )
        return result.committed

    async def grant_reward(self, user_id: str, reward: str) -> bool:
        """Add a reward once. Returns True only when it was newly granted."""
        def mutate(data: dict):
            rewards = list(data.get("rewards") or [])
            if reward in rewards:
                return None
            rewards.append(reward)
            return {"rewards": rewards}

        result = await run_transaction(
            self.store, USERS_COLLECTION, user_id, mutate, self.max_attempts
        )
        if result.committed:
            logger.info(f"Granted '{reward}' to {user_id}")
        return result.committed


__all__ = [
    "DELETE_DOCUMENT",
    "GameRepository",
    "GameTransaction",
    "ProfileRepository",
    "game_from_snapshot",
    "summarize",
]
