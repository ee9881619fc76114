"""
Message protocol for client-gateway communication.

All messages are JSON objects with a "type" field and optional "data" field.
"""

from dataclasses import dataclass, field
from typing import Any
import json

from shared.enums import MessageType


@dataclass
class Message:
    """Base message structure for all client-gateway communication."""
    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None  # Optional, for matching requests to responses

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps(self.to_dict())

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "data": self.data,
            "request_id": self.request_id,
        }

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        """Deserialize message from JSON string."""
        raw = json.loads(json_str)
        if not isinstance(raw, dict):
            raise ValueError("Message must be a JSON object")
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "Message":
        """Create message from dictionary."""
        return cls(
            type=MessageType(raw["type"]),
            data=raw.get("data") or {},
            request_id=raw.get("request_id"),
        )


@dataclass
class ErrorMessage(Message):
    """Error response message."""
    type: MessageType = MessageType.ERROR

    @classmethod
    def create(cls, message: str, code: str = "ERROR", request_id: str | None = None) -> "ErrorMessage":
        """Create an error message."""
        return cls(
            data={"message": message, "code": code},
            request_id=request_id,
        )


@dataclass
class ActionResultMessage(Message):
    """Generic response to a lobby or invitation request."""
    type: MessageType = MessageType.ACTION_RESULT

    @classmethod
    def create(
        cls,
        success: bool,
        message: str,
        code: str = "SUCCESS",
        extra: dict | None = None,
        request_id: str | None = None
    ) -> "ActionResultMessage":
        data = {"success": success, "message": message, "code": code}
        data.update(extra or {})
        return cls(data=data, request_id=request_id)


# =============================================================================
# Client -> Gateway
# =============================================================================

@dataclass
class ConnectRequest(Message):
    """First message on every connection: who is this?"""
    type: MessageType = MessageType.CONNECT

    @classmethod
    def create(cls, user_id: str, display_name: str, request_id: str | None = None) -> "ConnectRequest":
        return cls(data={"user_id": user_id, "display_name": display_name}, request_id=request_id)


@dataclass
class CreateGameRequest(Message):
    """Request to create a new game."""
    type: MessageType = MessageType.CREATE_GAME

    @classmethod
    def create(cls, request_id: str | None = None) -> "CreateGameRequest":
        return cls(request_id=request_id)


@dataclass
class JoinGameRequest(Message):
    """Request to join an existing game."""
    type: MessageType = MessageType.JOIN_GAME

    @classmethod
    def create(cls, game_id: str, request_id: str | None = None) -> "JoinGameRequest":
        return cls(data={"game_id": game_id}, request_id=request_id)


@dataclass
class LeaveGameRequest(Message):
    """Request to leave current game."""
    type: MessageType = MessageType.LEAVE_GAME

    @classmethod
    def create(cls, game_id: str | None = None, request_id: str | None = None) -> "LeaveGameRequest":
        data = {"game_id": game_id} if game_id else {}
        return cls(data=data, request_id=request_id)


@dataclass
class ListGamesRequest(Message):
    """Request the list of games waiting for players."""
    type: MessageType = MessageType.LIST_GAMES

    @classmethod
    def create(cls, request_id: str | None = None) -> "ListGamesRequest":
        return cls(request_id=request_id)


@dataclass
class WatchGameRequest(Message):
    """Start receiving GAME_STATE pushes for a game."""
    type: MessageType = MessageType.WATCH_GAME

    @classmethod
    def create(cls, game_id: str | None = None, request_id: str | None = None) -> "WatchGameRequest":
        data = {"game_id": game_id} if game_id else {}
        return cls(data=data, request_id=request_id)


@dataclass
class RollDiceRequest(Message):
    """Request to roll the die."""
    type: MessageType = MessageType.ROLL_DICE

    @classmethod
    def create(cls, request_id: str | None = None) -> "RollDiceRequest":
        return cls(request_id=request_id)


@dataclass
class BuildDecisionRequest(Message):
    """Answer to a build offer."""
    type: MessageType = MessageType.SUBMIT_BUILD_DECISION

    @classmethod
    def create(cls, accept: bool, request_id: str | None = None) -> "BuildDecisionRequest":
        return cls(data={"accept": accept}, request_id=request_id)


@dataclass
class SubmitAnswerRequest(Message):
    """Answer to an equation challenge."""
    type: MessageType = MessageType.SUBMIT_ANSWER

    @classmethod
    def create(cls, answer: Any, request_id: str | None = None) -> "SubmitAnswerRequest":
        return cls(data={"answer": answer}, request_id=request_id)


@dataclass
class RespondHintRequest(Message):
    """Take or refuse a hint after a wrong answer."""
    type: MessageType = MessageType.RESPOND_HINT

    @classmethod
    def create(cls, accept: bool, request_id: str | None = None) -> "RespondHintRequest":
        return cls(data={"accept": accept}, request_id=request_id)


@dataclass
class InvitePlayerRequest(Message):
    """Invite another user to the current game."""
    type: MessageType = MessageType.INVITE_PLAYER

    @classmethod
    def create(cls, recipient_id: str, request_id: str | None = None) -> "InvitePlayerRequest":
        return cls(data={"recipient_id": recipient_id}, request_id=request_id)


@dataclass
class RespondInvitationRequest(Message):
    """Accept or decline an invitation."""
    type: MessageType = MessageType.RESPOND_INVITATION

    @classmethod
    def create(cls, invite_id: str, accept: bool, request_id: str | None = None) -> "RespondInvitationRequest":
        return cls(data={"invite_id": invite_id, "accept": accept}, request_id=request_id)


# =============================================================================
# Gateway -> Client
# =============================================================================

@dataclass
class GameStateMessage(Message):
    """Full game snapshot, pushed on every change."""
    type: MessageType = MessageType.GAME_STATE

    @classmethod
    def create(cls, game_state: dict, request_id: str | None = None) -> "GameStateMessage":
        return cls(data={"game": game_state}, request_id=request_id)


@dataclass
class GameDeletedMessage(Message):
    """The watched game no longer exists."""
    type: MessageType = MessageType.GAME_DELETED

    @classmethod
    def create(cls, game_id: str) -> "GameDeletedMessage":
        return cls(data={"game_id": game_id})


@dataclass
class GameListMessage(Message):
    """Games waiting for players."""
    type: MessageType = MessageType.GAME_LIST

    @classmethod
    def create(cls, games: list[dict], request_id: str | None = None) -> "GameListMessage":
        return cls(data={"games": games}, request_id=request_id)


@dataclass
class TurnResultMessage(Message):
    """Outcome of a turn action."""
    type: MessageType = MessageType.TURN_RESULT

    @classmethod
    def create(cls, result: dict, request_id: str | None = None) -> "TurnResultMessage":
        return cls(data=result, request_id=request_id)


@dataclass
class InvitationReceivedMessage(Message):
    """A pending invitation addressed to the connected user."""
    type: MessageType = MessageType.INVITATION_RECEIVED

    @classmethod
    def create(cls, invitation: dict) -> "InvitationReceivedMessage":
        return cls(data={"invitation": invitation})


# =============================================================================
# Helper function for parsing incoming messages
# =============================================================================

def parse_message(json_str: str) -> Message:
    """
    Parse a JSON string into a Message.

    Returns the base Message class; the message handler uses the type field
    to decide how to process it.
    """
    return Message.from_json(json_str)
