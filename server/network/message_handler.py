"""
Message handler for routing client messages to session operations.

Parses incoming messages, validates them, runs the matching operation on
the sender's PlayerSession and formats the response. Game state reaches
clients through store subscriptions, not through the responses here.
"""

import logging
from dataclasses import dataclass

from server.game_engine import Game
from server.game_engine.game import Invitation
from server.game_engine.turns import TurnResult
from server.network.connection_manager import ConnectionManager, UserConnection
from shared.protocol import (
    Message,
    ErrorMessage,
    ActionResultMessage,
    GameDeletedMessage,
    GameListMessage,
    GameStateMessage,
    InvitationReceivedMessage,
    TurnResultMessage,
    parse_message,
)
from shared.enums import MessageType


logger = logging.getLogger(__name__)


@dataclass
class HandleResult:
    """Result of handling a message."""
    # Response to send back to the requesting user (None if no response needed)
    response: Message | None = None
    # Game the requesting user should now be watching
    watch_game_id: str | None = None


class MessageHandler:
    """
    Routes incoming messages to session operations.

    Each handler method returns a HandleResult containing:
    - A response to send to the requesting user
    - The game to start watching, if the request put the user in one
    """

    def __init__(self, connection_manager: ConnectionManager):
        self._connections = connection_manager

    async def handle_message(
        self,
        user_id: str,
        message: Message | str | dict
    ) -> HandleResult:
        """
        Handle an incoming message from a user.

        Args:
            user_id: ID of the user sending the message
            message: The message (Message object, JSON string, or dict)

        Returns:
            HandleResult with the response
        """
        # Parse message if needed
        if isinstance(message, str):
            try:
                message = parse_message(message)
            except Exception as e:
                logger.error(f"Failed to parse message: {e}")
                return HandleResult(
                    response=ErrorMessage.create(f"Invalid message format: {e}", "PARSE_ERROR")
                )
        elif isinstance(message, dict):
            try:
                message = Message.from_dict(message)
            except Exception as e:
                logger.error(f"Failed to parse message dict: {e}")
                return HandleResult(
                    response=ErrorMessage.create(f"Invalid message format: {e}", "PARSE_ERROR")
                )

        connection = self._connections.get_connection_by_user_id(user_id)
        if connection is None:
            return HandleResult(
                response=ErrorMessage.create("Not connected", "NOT_CONNECTED", message.request_id)
            )

        # Route to appropriate handler
        handler = self._get_handler(message.type)
        if not handler:
            return HandleResult(
                response=ErrorMessage.create(
                    f"Unknown message type: {message.type.value}",
                    "UNKNOWN_MESSAGE_TYPE",
                    message.request_id
                )
            )

        try:
            result = await handler(connection, message)

            if result.watch_game_id:
                self.watch_game(connection, result.watch_game_id)

            # Preserve request_id in response
            if result.response and message.request_id:
                result.response.request_id = message.request_id

            return result

        except Exception as e:
            logger.exception(f"Error handling message {message.type}: {e}")
            return HandleResult(
                response=ErrorMessage.create(
                    f"Internal error: {e}",
                    "INTERNAL_ERROR",
                    message.request_id
                )
            )

    def _get_handler(self, message_type: MessageType):
        """Get the handler method for a message type."""
        handlers = {
            # Lobby
            MessageType.LIST_GAMES: self._handle_list_games,
            MessageType.CREATE_GAME: self._handle_create_game,
            MessageType.JOIN_GAME: self._handle_join_game,
            MessageType.LEAVE_GAME: self._handle_leave_game,
            MessageType.WATCH_GAME: self._handle_watch_game,

            # Turn actions
            MessageType.ROLL_DICE: self._handle_roll_dice,
            MessageType.SUBMIT_BUILD_DECISION: self._handle_build_decision,
            MessageType.SUBMIT_ANSWER: self._handle_submit_answer,
            MessageType.RESPOND_HINT: self._handle_respond_hint,

            # Invitations
            MessageType.INVITE_PLAYER: self._handle_invite_player,
            MessageType.RESPOND_INVITATION: self._handle_respond_invitation,
        }
        return handlers.get(message_type)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def attach(self, connection: UserConnection) -> None:
        """Start the pushes every connected user gets."""
        session = connection.session
        user_id = connection.user_id

        async def push_games(summaries: list) -> None:
            await self._connections.send_to_user(
                user_id, GameListMessage.create([s.to_dict() for s in summaries])
            )

        async def push_invitation(invitation: Invitation) -> None:
            await self._connections.send_to_user(
                user_id, InvitationReceivedMessage.create(invitation.to_dict())
            )

        session.watch_lobby(push_games, push_invitation, self._subscription_error(user_id))

        if session.current_game_id:
            self.watch_game(connection, session.current_game_id)

    def watch_game(self, connection: UserConnection, game_id: str) -> None:
        """Push GAME_STATE for a game to one user until it is deleted."""
        user_id = connection.user_id

        async def push_state(game: Game | None) -> None:
            if game is None:
                await self._connections.send_to_user(user_id, GameDeletedMessage.create(game_id))
                return
            await self._connections.send_to_user(
                user_id, GameStateMessage.create(game.get_state_for_player(user_id))
            )

        connection.session.watch_game(push_state, game_id, self._subscription_error(user_id))

    def _subscription_error(self, user_id: str):
        async def report(error: Exception) -> None:
            await self._connections.send_to_user(
                user_id, ErrorMessage.create(f"Subscription failed: {error}", "SUBSCRIPTION_ERROR")
            )
        return report

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _action_result(
        success: bool,
        message: str,
        code: str,
        game: Game | None = None,
        **extra
    ) -> ActionResultMessage:
        if game is not None:
            extra["game_id"] = game.id
        return ActionResultMessage.create(success, message, code, extra)

    @staticmethod
    def _turn_response(result: TurnResult) -> HandleResult:
        return HandleResult(response=TurnResultMessage.create(result.to_dict()))

    @staticmethod
    def _parse_bool(message: Message, key: str) -> bool | None:
        value = message.data.get(key)
        return value if isinstance(value, bool) else None

    # =========================================================================
    # Lobby Handlers
    # =========================================================================

    async def _handle_list_games(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle LIST_GAMES request."""
        summaries = await connection.session.list_games()
        return HandleResult(
            response=GameListMessage.create([s.to_dict() for s in summaries])
        )

    async def _handle_create_game(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle CREATE_GAME request."""
        success, msg, game = await connection.session.create_game()
        return HandleResult(
            response=self._action_result(success, msg, "SUCCESS", game),
            watch_game_id=game.id if game else None,
        )

    async def _handle_join_game(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle JOIN_GAME request."""
        game_id = message.data.get("game_id")
        if not game_id:
            return HandleResult(response=ErrorMessage.create("Game ID required", "MISSING_GAME_ID"))

        success, msg, result, game = await connection.session.join_game(game_id)
        return HandleResult(
            response=self._action_result(success, msg, result.code, game),
            watch_game_id=game_id if success else None,
        )

    async def _handle_leave_game(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle LEAVE_GAME request."""
        success, msg, _ = await connection.session.leave_game(message.data.get("game_id"))
        code = "SUCCESS" if success else "NOT_IN_GAME"
        return HandleResult(
            response=self._action_result(success, msg, code),
        )

    async def _handle_watch_game(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle WATCH_GAME request."""
        game_id = message.data.get("game_id") or connection.session.current_game_id
        if not game_id:
            return HandleResult(response=ErrorMessage.create("You are not in a game", "NOT_IN_GAME"))
        return HandleResult(watch_game_id=game_id)

    # =========================================================================
    # Turn Handlers
    # =========================================================================

    async def _handle_roll_dice(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle ROLL_DICE request."""
        return self._turn_response(await connection.session.roll_dice())

    async def _handle_build_decision(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle SUBMIT_BUILD_DECISION request."""
        accept = self._parse_bool(message, "accept")
        if accept is None:
            return HandleResult(response=ErrorMessage.create("'accept' must be true or false", "INVALID_DATA"))
        return self._turn_response(await connection.session.submit_build_decision(accept))

    async def _handle_submit_answer(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle SUBMIT_ANSWER request. Any value is accepted; unreadable ones end the turn."""
        answer = message.data.get("answer")
        return self._turn_response(await connection.session.submit_equation_answer(answer))

    async def _handle_respond_hint(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle RESPOND_HINT request."""
        accept = self._parse_bool(message, "accept")
        if accept is None:
            return HandleResult(response=ErrorMessage.create("'accept' must be true or false", "INVALID_DATA"))
        return self._turn_response(await connection.session.respond_hint(accept))

    # =========================================================================
    # Invitation Handlers
    # =========================================================================

    async def _handle_invite_player(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle INVITE_PLAYER request."""
        recipient_id = message.data.get("recipient_id")
        if not recipient_id:
            return HandleResult(response=ErrorMessage.create("Recipient ID required", "MISSING_RECIPIENT"))

        success, msg, result, invitation = await connection.session.invite_player(recipient_id)
        extra = {"invitation": invitation.to_dict()} if invitation else {}
        return HandleResult(response=self._action_result(success, msg, result.code, **extra))

    async def _handle_respond_invitation(self, connection: UserConnection, message: Message) -> HandleResult:
        """Handle RESPOND_INVITATION request."""
        invite_id = message.data.get("invite_id")
        accept = self._parse_bool(message, "accept")
        if not invite_id or accept is None:
            return HandleResult(
                response=ErrorMessage.create("'invite_id' and 'accept' are required", "INVALID_DATA")
            )

        success, msg, result, game = await connection.session.respond_invitation(invite_id, accept)
        return HandleResult(
            response=self._action_result(success, msg, result.code, game),
            watch_game_id=game.id if success and accept and game else None,
        )
