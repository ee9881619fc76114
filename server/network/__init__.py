"""
Network layer for the Equation Challengers gateway.

Provides the per-user session, WebSocket server, connection management,
and message handling.
"""

from server.network.session import PlayerSession
from server.network.game_manager import GameManager
from server.network.invitations import InvitationManager
from server.network.connection_manager import ConnectionManager, UserConnection
from server.network.message_handler import MessageHandler, HandleResult
from server.network.server import EquationServer, run_server


__all__ = [
    "PlayerSession",
    "GameManager",
    "InvitationManager",
    "ConnectionManager",
    "UserConnection",
    "MessageHandler",
    "HandleResult",
    "EquationServer",
    "run_server",
]
