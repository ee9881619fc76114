"""
WebSocket gateway for Equation Challengers.

Main entry point that ties together the document store, connection
management and message handling. The gateway decides no game rules: it
hosts one PlayerSession per connection, and each session works against the
shared store on its own.
"""

import asyncio
import json
import logging
import signal
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection, serve

from server.completion import TextCompletionClient
from server.config import settings
from server.network.connection_manager import ConnectionManager
from server.network.message_handler import MessageHandler
from server.network.session import PlayerSession
from server.store import DocumentStore, create_store
from server.store.repository import GameRepository, ProfileRepository
from shared.protocol import ErrorMessage, Message, TurnResultMessage
from shared.enums import MessageType


logger = logging.getLogger(__name__)

# Seconds between checks for decisions whose deadline has passed
EXPIRY_SWEEP_INTERVAL = 1.0


class EquationServer:
    """
    WebSocket gateway for Equation Challengers games.

    Handles client connections, routes messages, and sweeps expired
    decisions when a decision timeout is configured.
    """

    def __init__(
        self,
        host: str = None,
        port: int = None,
        store: DocumentStore | None = None,
        completion=None,
        decision_timeout: float | None = None
    ):
        self.host = host or settings.HOST
        self.port = port or settings.PORT
        self.decision_timeout = (
            decision_timeout if decision_timeout is not None else settings.DECISION_TIMEOUT
        )

        # Shared store and collaborators
        self._store = store or create_store()
        self._games = GameRepository(self._store)
        self._profiles = ProfileRepository(self._store)
        self._completion = completion or TextCompletionClient()

        # Initialize managers
        self._connections = ConnectionManager()
        self._handler = MessageHandler(self._connections)

        # Server state
        self._server = None
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._expiry_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._running = True
        self._shutdown_event.clear()

        self._server = await serve(
            self._handle_client,
            self.host,
            self.port,
            ping_interval=30,
            ping_timeout=10,
        )

        if self.decision_timeout:
            self._expiry_task = asyncio.create_task(self._expire_decisions())

        logger.info(f"Equation Challengers gateway started on ws://{self.host}:{self.port}")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Shutting down server...")
        self._running = False

        if self._expiry_task:
            self._expiry_task.cancel()
            self._expiry_task = None

        if self._server:
            self._server.close()
            await self._server.wait_closed()

        if isinstance(self._completion, TextCompletionClient):
            await self._completion.aclose()

        self._shutdown_event.set()
        logger.info("Server stopped")

    def request_shutdown(self) -> None:
        """Request server shutdown (can be called from signal handler)."""
        asyncio.create_task(self.stop())

    def create_session(self, user_id: str, display_name: str) -> PlayerSession:
        """Build the session a new connection will drive."""
        return PlayerSession(
            user_id,
            display_name,
            self._games,
            self._profiles,
            self._completion,
            decision_timeout=self.decision_timeout,
        )

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """
        Handle a client connection.

        The first message must be a CONNECT message with user_id and
        display_name. After that, messages are routed through the message
        handler.
        """
        user_id = None

        try:
            # Wait for initial connect message
            user_id = await self._handle_connect(websocket)

            if not user_id:
                return

            # Handle messages until disconnect
            async for raw_message in websocket:
                if not self._running:
                    break

                await self._handle_message(websocket, user_id, raw_message)

        except websockets.ConnectionClosed:
            logger.debug(f"Connection closed for user {user_id}")
        except Exception as e:
            logger.exception(f"Error handling client {user_id}: {e}")
        finally:
            if user_id:
                await self._connections.disconnect(websocket)

    async def _handle_connect(self, websocket: ServerConnection) -> str | None:
        """
        Handle initial connection.

        Expects a CONNECT message with user_id and display_name.
        Returns user_id if successful, None otherwise.
        """
        try:
            # Wait for connect message with timeout
            raw = await asyncio.wait_for(websocket.recv(), timeout=30.0)
            data = json.loads(raw)

            if not isinstance(data, dict) or data.get("type") != MessageType.CONNECT.value:
                await self._send_error(
                    websocket,
                    "First message must be CONNECT",
                    "CONNECT_REQUIRED"
                )
                return None

            payload = data.get("data") or {}
            user_id = payload.get("user_id")
            display_name = payload.get("display_name", "Player")

            if not user_id:
                await self._send_error(
                    websocket,
                    "user_id is required",
                    "MISSING_USER_ID"
                )
                return None

            session = self.create_session(user_id, display_name)
            profile = await session.open()
            connection = await self._connections.connect(websocket, session)

            # Send connect acknowledgment
            await websocket.send(Message(
                type=MessageType.CONNECT,
                data={
                    "success": True,
                    "user_id": user_id,
                    "display_name": profile.display_name,
                    "current_game_id": session.current_game_id,
                    "rewards": list(profile.rewards),
                },
                request_id=data.get("request_id"),
            ).to_json())

            self._handler.attach(connection)
            return user_id

        except asyncio.TimeoutError:
            await self._send_error(websocket, "Connection timeout", "TIMEOUT")
            return None
        except json.JSONDecodeError:
            await self._send_error(websocket, "Invalid JSON", "PARSE_ERROR")
            return None
        except websockets.ConnectionClosed:
            return None
        except Exception as e:
            logger.exception(f"Error during connect: {e}")
            await self._send_error(websocket, str(e), "CONNECT_ERROR")
            return None

    async def _handle_message(
        self,
        websocket: ServerConnection,
        user_id: str,
        raw_message: str
    ) -> None:
        """Handle an incoming message from a connected user."""
        try:
            result = await self._handler.handle_message(user_id, raw_message)

            # Send response to requester
            if result.response:
                await websocket.send(result.response.to_json())

        except websockets.ConnectionClosed:
            raise
        except Exception as e:
            logger.exception(f"Error handling message from {user_id}: {e}")
            await self._send_error(websocket, f"Internal error: {e}", "INTERNAL_ERROR")

    async def _expire_decisions(self) -> None:
        """Resolve decisions whose deadline passed and tell the user what happened."""
        while self._running:
            await asyncio.sleep(EXPIRY_SWEEP_INTERVAL)
            for session in self._connections.sessions():
                try:
                    result = await session.expire_pending()
                except Exception as e:
                    logger.exception(f"Expiring decision for {session.user_id} failed: {e}")
                    continue
                if result is not None:
                    await self._connections.send_to_user(
                        session.user_id, TurnResultMessage.create(result.to_dict())
                    )

    async def _send_error(
        self,
        websocket: ServerConnection,
        message: str,
        code: str
    ) -> None:
        """Send an error message to a websocket."""
        try:
            error = ErrorMessage.create(message, code)
            await websocket.send(error.to_json())
        except websockets.ConnectionClosed:
            logger.debug(f"Could not send {code}: connection already closed")

    def get_stats(self) -> dict[str, Any]:
        """Get server statistics."""
        return {
            "running": self._running,
            "connections": self._connections.get_stats(),
        }


async def run_server(host: str = None, port: int = None) -> None:
    """
    Run the gateway.

    Sets up signal handlers for graceful shutdown.
    """
    server = EquationServer(host, port)

    # Set up signal handlers
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, server.request_shutdown)

    try:
        await server.start()
    finally:
        # Clean up signal handlers
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main():
    """Entry point for running the server."""
    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print(f"Starting Equation Challengers gateway on ws://{settings.HOST}:{settings.PORT}")
    print("Press Ctrl+C to stop")

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
