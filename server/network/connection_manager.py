"""
Connection manager for WebSocket clients.

Tracks connected clients and the player session each one drives.
Handles sending messages to individual users or to everyone connected.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from websockets.asyncio.server import ServerConnection

from shared.protocol import Message

from .session import PlayerSession


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserConnection:
    """Tracks a connected user's state."""
    user_id: str
    display_name: str
    websocket: ServerConnection
    session: PlayerSession
    connected_at: datetime = field(default_factory=_utc_now)
    last_activity: datetime = field(default_factory=_utc_now)

    def update_activity(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = _utc_now()


class ConnectionManager:
    """
    Manages WebSocket connections and their sessions.

    Provides methods for:
    - Tracking user connections
    - Sending messages to specific users
    - Broadcasting messages to everyone connected
    """

    def __init__(self):
        # websocket -> UserConnection
        self._connections: dict[ServerConnection, UserConnection] = {}

        # user_id -> websocket (for quick lookup)
        self._user_to_socket: dict[str, ServerConnection] = {}

        # Lock for thread-safe operations
        self._lock = asyncio.Lock()

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(
        self,
        websocket: ServerConnection,
        session: PlayerSession
    ) -> UserConnection:
        """
        Register a new connection.

        A user connecting again replaces their older connection, whose
        session is closed.

        Returns:
            The UserConnection object
        """
        async with self._lock:
            previous = self._user_to_socket.get(session.user_id)
            if previous is not None and previous is not websocket:
                old = self._connections.pop(previous, None)
                if old:
                    old.session.close()
                    logger.info(f"User {session.user_id} reconnected; dropping older connection")

            connection = UserConnection(
                user_id=session.user_id,
                display_name=session.display_name,
                websocket=websocket,
                session=session,
            )
            self._connections[websocket] = connection
            self._user_to_socket[session.user_id] = websocket

            logger.info(f"User {session.display_name} ({session.user_id}) connected")
            return connection

    async def disconnect(self, websocket: ServerConnection) -> UserConnection | None:
        """
        Handle a disconnection.

        The user stays in their game; the game document is unaffected.

        Returns:
            The UserConnection if found, None otherwise
        """
        async with self._lock:
            connection = self._connections.pop(websocket, None)

            if connection:
                if self._user_to_socket.get(connection.user_id) is websocket:
                    del self._user_to_socket[connection.user_id]
                connection.session.close()
                logger.info(
                    f"User {connection.display_name} ({connection.user_id}) disconnected"
                )

            return connection

    # =========================================================================
    # Queries
    # =========================================================================

    def get_connection(self, websocket: ServerConnection) -> UserConnection | None:
        """Get connection info for a websocket."""
        return self._connections.get(websocket)

    def get_connection_by_user_id(self, user_id: str) -> UserConnection | None:
        """Get connection info for a user ID."""
        websocket = self._user_to_socket.get(user_id)
        if websocket:
            return self._connections.get(websocket)
        return None

    def get_user_id(self, websocket: ServerConnection) -> str | None:
        """Get user ID for a websocket."""
        connection = self._connections.get(websocket)
        return connection.user_id if connection else None

    def is_user_connected(self, user_id: str) -> bool:
        """Check if a user is currently connected."""
        return user_id in self._user_to_socket

    def sessions(self) -> list[PlayerSession]:
        """Sessions of every connected user."""
        return [conn.session for conn in self._connections.values()]

    # =========================================================================
    # Messaging
    # =========================================================================

    async def send_to_user(self, user_id: str, message: Message | dict | str) -> bool:
        """
        Send a message to a specific user.

        Returns:
            True if sent successfully, False if user not connected
        """
        websocket = self._user_to_socket.get(user_id)
        if not websocket:
            return False

        return await self._send_to_websocket(websocket, message)

    async def send_to_connection(
        self,
        websocket: ServerConnection,
        message: Message | dict | str
    ) -> bool:
        """
        Send a message to a specific websocket connection.

        Returns:
            True if sent successfully, False on error
        """
        return await self._send_to_websocket(websocket, message)

    async def broadcast_to_all(self, message: Message | dict | str) -> int:
        """
        Broadcast a message to every connected user.

        Returns:
            Number of users the message was sent to
        """
        sent_count = 0
        for websocket in list(self._connections.keys()):
            if await self._send_to_websocket(websocket, message):
                sent_count += 1
        return sent_count

    async def _send_to_websocket(
        self,
        websocket: ServerConnection,
        message: Message | dict | str
    ) -> bool:
        """Internal helper to send a message to a websocket."""
        try:
            if isinstance(message, Message):
                data = message.to_json()
            elif isinstance(message, dict):
                data = json.dumps(message)
            else:
                data = message

            await websocket.send(data)

            connection = self._connections.get(websocket)
            if connection:
                connection.update_activity()

            return True

        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            return False

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        in_game = [c for c in self._connections.values() if c.session.current_game_id]
        return {
            "total_connections": len(self._connections),
            "total_users": len(self._user_to_socket),
            "users_in_game": len(in_game),
        }
