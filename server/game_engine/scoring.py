"""
End-of-game ranking and wrap-up.
"""
import logging

from server.completion import summary_prompt
from server.store.base import StoreError
from shared.constants import GAME_CHAMPION_REWARD, SUMMARY_FALLBACK
from shared.enums import GameStatus

from .game import Game
from .player import Player


logger = logging.getLogger(__name__)


def rank_winners(players: list[Player]) -> list[Player]:
    """
    Players tied for first place.

    Most properties wins, money breaks ties, and anyone still level shares
    the win.
    """
    if not players:
        return []
    best = max((p.property_count, p.money) for p in players)
    return [p for p in players if (p.property_count, p.money) == best]


def winner_message(winners: list[Player]) -> str:
    if not winners:
        return "No winner."
    if len(winners) > 1:
        names = ", ".join(p.display_name for p in winners)
        return f"It's a tie! Winners by money: {names}"
    winner = winners[0]
    return (
        f"Winner: {winner.display_name} with {winner.property_count} properties "
        f"and ${winner.money}!"
    )


def finish_fields(game: Game) -> dict:
    """
    Field updates that move an in-progress game to finished.

    Computed from the game as it will be committed, so the ranking sees the
    final balances of the closing turn.
    """
    winners = rank_winners(game.players)
    return {
        "status": GameStatus.FINISHED.value,
        "winner": winner_message(winners),
        "winner_ids": [p.user_id for p in winners],
    }


class EndGameEvaluator:
    """Runs the follow-up work once a game has been committed as finished."""

    def __init__(self, games, profiles, completion):
        self._games = games
        self._profiles = profiles
        self._completion = completion

    async def finalize(self, game: Game) -> str:
        """
        Write the summary, clear back-references and grant champion rewards.

        The finished status is already committed; nothing here can undo it.
        Returns the summary text.
        """
        players_text = ", ".join(
            f"{p.display_name} (Money: ${p.money}, Properties: {p.property_count})"
            for p in game.players
        )
        summary = await self._completion.complete(
            summary_prompt(players_text, game.winner or ""),
            fallback=SUMMARY_FALLBACK,
        )

        def mutate(current: Game, scratch: dict):
            if current.final_summary:
                return None
            return {"final_summary": summary}

        try:
            await self._games.transact(game.id, mutate)
        except StoreError as e:
            logger.warning(f"Could not save summary for game {game.id}: {e}")

        for player in game.players:
            await self._profiles.clear_current_room(player.user_id, game.id)

        for winner_id in game.winner_ids:
            await self._profiles.grant_reward(winner_id, GAME_CHAMPION_REWARD)

        logger.info(f"Game {game.id} finished: {game.winner}")
        return summary
