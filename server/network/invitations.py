"""
Invitations to waiting games.

Invitations live inside the game document they invite to. Recipients find
theirs by looking through every waiting game.
"""

import logging

from server.game_engine import Game, RuleEngine
from server.game_engine.game import Invitation
from server.game_engine.rules import ActionResult
from server.store.repository import GameRepository, ProfileRepository
from shared.enums import GameStatus, InvitationStatus

from .game_manager import GameManager


logger = logging.getLogger(__name__)


class InvitationManager:
    """Sends invitations and records the recipient's answer."""

    def __init__(
        self,
        games: GameRepository,
        profiles: ProfileRepository,
        game_manager: GameManager,
        rules: RuleEngine | None = None
    ):
        self._games = games
        self._profiles = profiles
        self._game_manager = game_manager
        self._rules = rules or RuleEngine()

    async def invite(
        self,
        game_id: str,
        sender_id: str,
        sender_display_name: str,
        recipient_id: str
    ) -> tuple[bool, str, ActionResult, Invitation | None]:
        """
        Invite a user to a game.

        Returns:
            Tuple of (success, message, result code, Invitation or None)
        """
        recipient = await self._profiles.get(recipient_id)

        def append(game: Game, scratch: dict):
            validation = self._rules.validate_invite(
                game, sender_id, recipient_id, recipient is not None
            )
            scratch["validation"] = validation
            if not validation.valid:
                return None
            invitation = Invitation(
                sender_id=sender_id,
                recipient_id=recipient_id,
                game_id=game.id,
                sender_display_name=sender_display_name,
            )
            scratch["invitation"] = invitation
            game.invitations.append(invitation)
            return {"invitations": game.invitations_dict()}

        tx = await self._games.transact(game_id, append)
        if tx.game is None:
            validation = self._rules.validate_invite(
                None, sender_id, recipient_id, recipient is not None
            )
            return False, validation.message, validation.result, None

        validation = tx.context["validation"]
        if not validation.valid:
            return False, validation.message, validation.result, None

        logger.info(f"{sender_display_name} invited {recipient_id} to {game_id}")
        return (
            True,
            f"Invitation sent to {recipient.display_name}.",
            ActionResult.SUCCESS,
            tx.context["invitation"],
        )

    async def pending_for(self, recipient_id: str) -> list[Invitation]:
        """Every pending invitation addressed to a user, across waiting games."""
        invitations = []
        for game in await self._games.list_by_status(GameStatus.WAITING):
            invitations.extend(game.pending_invitations_for(recipient_id))
        return invitations

    async def respond(
        self,
        invite_id: str,
        recipient_id: str,
        recipient_display_name: str,
        accept: bool
    ) -> tuple[bool, str, ActionResult, Game | None]:
        """
        Accept or decline an invitation.

        Accepting joins the game first; if the join is rejected the
        invitation stays pending.

        Returns:
            Tuple of (success, message, result code, Game or None)
        """
        invitation = None
        for candidate in await self.pending_for(recipient_id):
            if candidate.invite_id == invite_id:
                invitation = candidate
                break
        if invitation is None:
            return False, "Invitation not found.", ActionResult.INVITATION_NOT_FOUND, None

        game = None
        if accept:
            success, message, result, game = await self._game_manager.join_game(
                invitation.game_id, recipient_id, recipient_display_name
            )
            if not success:
                return False, message, result, game

        status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
        marked = await self._mark(invitation.game_id, invite_id, status)
        if marked is not None:
            game = marked

        logger.info(f"{recipient_id} {status.value} invitation {invite_id}")
        if accept:
            return True, f"Joined game: {invitation.game_id}", ActionResult.SUCCESS, game
        return True, "You declined the invitation.", ActionResult.SUCCESS, game

    async def _mark(self, game_id: str, invite_id: str, status: InvitationStatus) -> Game | None:
        def update(game: Game, scratch: dict):
            invitation = game.find_invitation(invite_id)
            if invitation is None or not invitation.is_pending:
                return None
            invitation.status = status
            return {"invitations": game.invitations_dict()}

        tx = await self._games.transact(game_id, update)
        return tx.game
