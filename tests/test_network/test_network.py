"""
Test suite for the Equation Challengers gateway.

Covers game management, invitations, player sessions, connection
management, message handling and the message protocol. Everything runs
against the in-memory document store.

Run from project root: python -m pytest tests/test_network -v
Or run directly: python tests/test_network/test_network.py
"""

import json
import sys
import unittest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from server.completion import StaticCompletion
from server.game_engine.rules import ActionResult
from server.network.connection_manager import ConnectionManager
from server.network.game_manager import GameManager
from server.network.invitations import InvitationManager
from server.network.message_handler import MessageHandler
from server.network.server import EquationServer
from server.network.session import PlayerSession
from server.store import InMemoryDocumentStore
from server.store.repository import GameRepository, ProfileRepository
from shared.constants import GAMES_COLLECTION, MAX_PLAYERS, PLAYER_COLORS
from shared.enums import GameStatus, InvitationStatus, MessageType
from shared.protocol import (
    ActionResultMessage,
    BuildDecisionRequest,
    ErrorMessage,
    JoinGameRequest,
    Message,
    RespondInvitationRequest,
    parse_message,
)


# =============================================================================
# Mock WebSocket for unit tests
# =============================================================================

class MockWebSocket:
    """Mock WebSocket for testing without real connections."""

    def __init__(self, id: str, incoming: list[str] | None = None):
        self.id = id
        self.sent_messages = []
        self.incoming = list(incoming or [])
        self.closed = False

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("Connection closed")
        self.sent_messages.append(data)

    async def recv(self) -> str:
        if not self.incoming:
            raise NotImplementedError("No queued messages")
        return self.incoming.pop(0)

    async def close(self) -> None:
        self.closed = True

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        return isinstance(other, MockWebSocket) and self.id == other.id

    def get_messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent_messages]

    def messages_of_type(self, message_type: MessageType) -> list[dict]:
        return [m for m in self.get_messages() if m["type"] == message_type.value]

    def clear_messages(self) -> None:
        self.sent_messages.clear()


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh store, repositories and profiles for alice, bob and carol."""

    USERS = {"alice": "Alice", "bob": "Bob", "carol": "Carol"}

    async def asyncSetUp(self):
        self.store = InMemoryDocumentStore()
        self.games = GameRepository(self.store)
        self.profiles = ProfileRepository(self.store)
        self.manager = GameManager(self.games, self.profiles)
        for user_id, name in self.USERS.items():
            await self.profiles.ensure(user_id, name)

    def session(self, user_id: str) -> PlayerSession:
        return PlayerSession(
            user_id, self.USERS.get(user_id, user_id),
            self.games, self.profiles, StaticCompletion("hint"),
        )

    async def fill(self, game_id: str, count: int) -> None:
        """Add filler players until the roster has count members."""
        game = await self.games.get(game_id)
        for n in range(len(game.players), count):
            user_id = f"filler{n}"
            await self.profiles.ensure(user_id, f"Filler {n}")
            await self.manager.join_game(game_id, user_id, f"Filler {n}")

    async def room_of(self, user_id: str) -> str | None:
        return (await self.profiles.get(user_id)).current_room_id


# =============================================================================
# Game Manager
# =============================================================================

class TestGameManager(StoreTestCase):

    async def test_create_game(self):
        success, _, game = await self.manager.create_game("alice", "Alice")

        self.assertTrue(success)
        self.assertEqual(game.status, GameStatus.WAITING)
        self.assertEqual(game.player_ids, ["alice"])
        self.assertEqual(game.players[0].color, PLAYER_COLORS[0])
        self.assertEqual(game.current_player_id, "alice")
        self.assertEqual(await self.room_of("alice"), game.id)

    async def test_join_game(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        success, _, result, joined = await self.manager.join_game(game.id, "bob", "Bob")

        self.assertTrue(success)
        self.assertEqual(result, ActionResult.SUCCESS)
        self.assertEqual(joined.player_ids, ["alice", "bob"])
        self.assertEqual(joined.players[1].color, PLAYER_COLORS[1])
        self.assertEqual(await self.room_of("bob"), game.id)

    async def test_join_twice_keeps_roster(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")
        success, _, result, joined = await self.manager.join_game(game.id, "bob", "Bob")

        self.assertTrue(success)
        self.assertEqual(result, ActionResult.ALREADY_JOINED)
        self.assertEqual(joined.player_ids, ["alice", "bob"])

    async def test_join_missing_game(self):
        success, _, result, game = await self.manager.join_game("nope", "bob", "Bob")
        self.assertFalse(success)
        self.assertEqual(result, ActionResult.GAME_NOT_FOUND)
        self.assertIsNone(game)
        self.assertIsNone(await self.room_of("bob"))

    async def test_join_full_game(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.fill(game.id, MAX_PLAYERS)

        success, _, result, _ = await self.manager.join_game(game.id, "bob", "Bob")
        self.assertFalse(success)
        self.assertEqual(result, ActionResult.GAME_FULL)
        self.assertEqual(len((await self.games.get(game.id)).players), MAX_PLAYERS)

    async def test_join_started_game(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.manager.ensure_started(game.id)

        success, _, result, _ = await self.manager.join_game(game.id, "carol", "Carol")
        self.assertFalse(success)
        self.assertEqual(result, ActionResult.GAME_ALREADY_STARTED)

    async def test_ensure_started(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        self.assertFalse(await self.manager.ensure_started(game.id))

        await self.manager.join_game(game.id, "bob", "Bob")
        self.assertTrue(await self.manager.ensure_started(game.id))
        self.assertFalse(await self.manager.ensure_started(game.id))

        started = await self.games.get(game.id)
        self.assertEqual(started.status, GameStatus.IN_PROGRESS)
        self.assertEqual(started.current_player_id, "alice")

    async def test_turn_holder_leaving_passes_the_turn(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.manager.join_game(game.id, "carol", "Carol")

        success, _, remaining = await self.manager.leave_game(game.id, "alice")

        self.assertTrue(success)
        self.assertEqual(remaining.player_ids, ["bob", "carol"])
        # Old index 0 plus one, read from the new roster
        self.assertEqual(remaining.current_player_id, "carol")
        self.assertIsNone(await self.room_of("alice"))

    async def test_last_turn_holder_leaving_wraps_to_first(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.manager.join_game(game.id, "carol", "Carol")
        await self.store.update(GAMES_COLLECTION, game.id, {"current_player_id": "carol"})

        _, _, remaining = await self.manager.leave_game(game.id, "carol")

        self.assertEqual(remaining.player_ids, ["alice", "bob"])
        self.assertEqual(remaining.current_player_id, "alice")

    async def test_middle_turn_holder_leaving_falls_back_to_first(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.manager.join_game(game.id, "carol", "Carol")
        await self.store.update(GAMES_COLLECTION, game.id, {"current_player_id": "bob"})

        _, _, remaining = await self.manager.leave_game(game.id, "bob")

        # Old index 1 plus one is past the end of the two remaining players
        self.assertEqual(remaining.current_player_id, "alice")

    async def test_turn_stays_with_a_member_through_any_leave_order(self):
        orders = [
            ["alice", "bob", "carol", "filler3"],
            ["filler3", "carol", "bob", "alice"],
            ["bob", "filler3", "alice", "carol"],
            ["carol", "alice", "filler3", "bob"],
        ]
        for order in orders:
            for holder in ["alice", "bob", "carol", "filler3"]:
                with self.subTest(order=order, holder=holder):
                    _, _, game = await self.manager.create_game("alice", "Alice")
                    await self.manager.join_game(game.id, "bob", "Bob")
                    await self.manager.join_game(game.id, "carol", "Carol")
                    await self.fill(game.id, 4)
                    await self.store.update(
                        GAMES_COLLECTION, game.id, {"current_player_id": holder}
                    )

                    for leaver in order[:-1]:
                        _, _, remaining = await self.manager.leave_game(game.id, leaver)
                        self.assertIn(remaining.current_player_id, remaining.player_ids)

                    _, _, remaining = await self.manager.leave_game(game.id, order[-1])
                    self.assertIsNone(remaining)
                    self.assertIsNone(await self.games.get(game.id))

    async def test_other_player_leaving_keeps_the_turn(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        await self.manager.join_game(game.id, "bob", "Bob")

        _, _, remaining = await self.manager.leave_game(game.id, "bob")
        self.assertEqual(remaining.current_player_id, "alice")

    async def test_last_player_leaving_deletes_game(self):
        _, _, game = await self.manager.create_game("alice", "Alice")

        success, _, remaining = await self.manager.leave_game(game.id, "alice")

        self.assertTrue(success)
        self.assertIsNone(remaining)
        self.assertIsNone(await self.games.get(game.id))
        self.assertIsNone(await self.room_of("alice"))

    async def test_leaving_a_vanished_game_clears_back_reference(self):
        await self.profiles.set_current_room("bob", "ghost")
        success, _, _ = await self.manager.leave_game("ghost", "bob")
        self.assertTrue(success)
        self.assertIsNone(await self.room_of("bob"))

    async def test_list_waiting_games(self):
        _, _, waiting = await self.manager.create_game("alice", "Alice")
        _, _, started = await self.manager.create_game("bob", "Bob")
        await self.manager.join_game(started.id, "carol", "Carol")
        await self.manager.ensure_started(started.id)

        listed = await self.manager.list_waiting_games()
        self.assertEqual([s.id for s in listed], [waiting.id])


# =============================================================================
# Invitations
# =============================================================================

class TestInvitations(StoreTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.invitations = InvitationManager(self.games, self.profiles, self.manager)
        _, _, self.game = await self.manager.create_game("alice", "Alice")

    async def invite(self, recipient_id: str, sender_id: str = "alice", game_id: str | None = None):
        return await self.invitations.invite(
            game_id or self.game.id, sender_id, self.USERS.get(sender_id, sender_id), recipient_id
        )

    async def test_invite(self):
        success, _, result, invitation = await self.invite("bob")

        self.assertTrue(success)
        self.assertEqual(result, ActionResult.SUCCESS)
        self.assertEqual(invitation.status, InvitationStatus.PENDING)
        self.assertEqual(invitation.sender_display_name, "Alice")
        pending = await self.invitations.pending_for("bob")
        self.assertEqual([i.invite_id for i in pending], [invitation.invite_id])

    async def test_unknown_recipient(self):
        success, _, result, _ = await self.invite("nobody")
        self.assertFalse(success)
        self.assertEqual(result, ActionResult.USER_NOT_FOUND)

    async def test_cannot_invite_self(self):
        _, _, result, _ = await self.invite("alice")
        self.assertEqual(result, ActionResult.CANNOT_INVITE_SELF)

    async def test_missing_game(self):
        _, _, result, _ = await self.invite("bob", game_id="ghost")
        self.assertEqual(result, ActionResult.GAME_NOT_FOUND)

    async def test_full_game(self):
        await self.fill(self.game.id, MAX_PLAYERS)
        _, _, result, _ = await self.invite("bob")
        self.assertEqual(result, ActionResult.GAME_FULL)

    async def test_duplicate_invitation(self):
        await self.invite("bob")
        _, _, result, _ = await self.invite("bob")
        self.assertEqual(result, ActionResult.DUPLICATE_INVITATION)

    async def test_accept_joins_game(self):
        _, _, _, invitation = await self.invite("bob")

        success, _, result, game = await self.invitations.respond(
            invitation.invite_id, "bob", "Bob", True
        )

        self.assertTrue(success)
        self.assertEqual(result, ActionResult.SUCCESS)
        self.assertIn("bob", game.player_ids)
        self.assertEqual(game.find_invitation(invitation.invite_id).status, InvitationStatus.ACCEPTED)
        self.assertEqual(await self.room_of("bob"), self.game.id)
        self.assertEqual(await self.invitations.pending_for("bob"), [])

    async def test_decline(self):
        _, _, _, invitation = await self.invite("bob")

        success, _, _, game = await self.invitations.respond(
            invitation.invite_id, "bob", "Bob", False
        )

        self.assertTrue(success)
        self.assertNotIn("bob", game.player_ids)
        self.assertEqual(game.find_invitation(invitation.invite_id).status, InvitationStatus.DECLINED)
        # A declined invitation frees the sender to invite again
        success, _, _, _ = await self.invite("bob")
        self.assertTrue(success)

    async def test_failed_join_leaves_invitation_pending(self):
        _, _, _, invitation = await self.invite("bob")
        await self.fill(self.game.id, MAX_PLAYERS)

        success, _, result, _ = await self.invitations.respond(
            invitation.invite_id, "bob", "Bob", True
        )

        self.assertFalse(success)
        self.assertEqual(result, ActionResult.GAME_FULL)
        game = await self.games.get(self.game.id)
        self.assertEqual(game.find_invitation(invitation.invite_id).status, InvitationStatus.PENDING)

    async def test_unknown_invitation(self):
        _, _, _, invitation = await self.invite("bob")
        _, _, result, _ = await self.invitations.respond("missing", "bob", "Bob", True)
        self.assertEqual(result, ActionResult.INVITATION_NOT_FOUND)
        # Only the recipient can answer
        _, _, result, _ = await self.invitations.respond(invitation.invite_id, "carol", "Carol", True)
        self.assertEqual(result, ActionResult.INVITATION_NOT_FOUND)


# =============================================================================
# Player Session
# =============================================================================

class TestPlayerSession(StoreTestCase):

    async def test_open_picks_up_back_reference(self):
        _, _, game = await self.manager.create_game("alice", "Alice")
        session = self.session("alice")
        await session.open()
        self.assertEqual(session.current_game_id, game.id)

    async def test_open_repairs_stale_back_reference(self):
        await self.profiles.set_current_room("bob", "ghost")
        session = self.session("bob")
        await session.open()
        self.assertIsNone(session.current_game_id)
        self.assertIsNone(await self.room_of("bob"))

    async def test_open_creates_profile(self):
        session = PlayerSession("dave", "Dave", self.games, self.profiles, StaticCompletion())
        profile = await session.open()
        self.assertEqual(profile.display_name, "Dave")
        self.assertTrue(await self.profiles.exists("dave"))

    async def test_watching_starts_the_game(self):
        alice, bob = self.session("alice"), self.session("bob")
        _, _, game = await alice.create_game()
        await bob.join_game(game.id)

        states = []
        alice.watch_game(states.append)
        await self.store.drain()

        self.assertEqual((await self.games.get(game.id)).status, GameStatus.IN_PROGRESS)
        self.assertEqual(states[-1].status, GameStatus.IN_PROGRESS)

    async def test_deleted_game_returns_user_to_lobby(self):
        alice, bob = self.session("alice"), self.session("bob")
        _, _, game = await alice.create_game()
        await bob.join_game(game.id)

        states = []
        bob.watch_game(states.append)
        await self.store.drain()

        await self.store.delete(GAMES_COLLECTION, game.id)
        await self.store.drain()

        self.assertIsNone(states[-1])
        self.assertIsNone(bob.current_game_id)
        self.assertIsNone(await self.room_of("bob"))

    async def test_leave_clears_current_game(self):
        alice = self.session("alice")
        _, _, game = await alice.create_game()
        success, _, _ = await alice.leave_game()
        self.assertTrue(success)
        self.assertIsNone(alice.current_game_id)

        success, _, _ = await alice.leave_game()
        self.assertFalse(success)

    async def test_lobby_delivers_each_invitation_once(self):
        alice, bob = self.session("alice"), self.session("bob")
        _, _, game = await alice.create_game()

        listings, invitations = [], []
        bob.watch_lobby(listings.append, invitations.append)
        await self.store.drain()
        self.assertEqual([s.id for s in listings[-1]], [game.id])

        await alice.invite_player("bob")
        await self.store.drain()
        await self.manager.join_game(game.id, "carol", "Carol")
        await self.store.drain()

        self.assertEqual(len(invitations), 1)
        self.assertEqual(invitations[0].sender_id, "alice")

    async def test_lobby_forgets_answered_invitations(self):
        alice, bob = self.session("alice"), self.session("bob")
        _, _, game = await alice.create_game()
        invitations = []
        bob.watch_lobby(lambda games: None, invitations.append)

        await alice.invite_player("bob")
        await self.store.drain()
        self.assertEqual(bob._seen_invitations, {invitations[0].invite_id})

        await bob.respond_invitation(invitations[0].invite_id, False)
        await self.store.drain()
        self.assertEqual(bob._seen_invitations, set())

        await alice.invite_player("bob")
        await self.store.drain()
        self.assertEqual(len(invitations), 2)
        self.assertEqual(bob._seen_invitations, {invitations[1].invite_id})

    async def test_operations_outside_a_game(self):
        bob = self.session("bob")
        result = await bob.roll_dice()
        self.assertFalse(result.success)
        self.assertEqual(result.code, ActionResult.NOT_IN_GAME)

        success, _, code, _ = await bob.invite_player("alice")
        self.assertFalse(success)
        self.assertEqual(code, ActionResult.NOT_IN_GAME)

        result = await bob.submit_build_decision(True)
        self.assertEqual(result.code, ActionResult.NO_PENDING_DECISION)

    async def test_close_stops_pushes(self):
        alice = self.session("alice")
        _, _, game = await alice.create_game()
        states = []
        alice.watch_game(states.append)
        await self.store.drain()
        alice.close()

        count = len(states)
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.store.drain()
        self.assertEqual(len(states), count)


# =============================================================================
# Connection Manager
# =============================================================================

class TestConnectionManager(StoreTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.connections = ConnectionManager()

    async def test_connect_and_lookup(self):
        ws = MockWebSocket("ws1")
        connection = await self.connections.connect(ws, self.session("alice"))

        self.assertEqual(connection.user_id, "alice")
        self.assertIs(self.connections.get_connection(ws), connection)
        self.assertIs(self.connections.get_connection_by_user_id("alice"), connection)
        self.assertEqual(self.connections.get_user_id(ws), "alice")
        self.assertTrue(self.connections.is_user_connected("alice"))
        self.assertEqual(self.connections.get_stats()["total_connections"], 1)

    async def test_send_to_user(self):
        ws = MockWebSocket("ws1")
        await self.connections.connect(ws, self.session("alice"))

        self.assertTrue(await self.connections.send_to_user("alice", ErrorMessage.create("x")))
        self.assertTrue(await self.connections.send_to_user("alice", {"type": "PING"}))
        self.assertFalse(await self.connections.send_to_user("bob", "hello"))
        self.assertEqual(len(ws.get_messages()), 2)

    async def test_send_to_closed_socket(self):
        ws = MockWebSocket("ws1")
        await self.connections.connect(ws, self.session("alice"))
        await ws.close()
        self.assertFalse(await self.connections.send_to_user("alice", "hello"))

    async def test_reconnect_replaces_old_connection(self):
        old_ws, new_ws = MockWebSocket("old"), MockWebSocket("new")
        old_session = self.session("alice")
        _, _, game = await old_session.create_game()
        states = []
        old_session.watch_game(states.append)
        await self.store.drain()

        await self.connections.connect(old_ws, old_session)
        await self.connections.connect(new_ws, self.session("alice"))

        self.assertIsNone(self.connections.get_connection(old_ws))
        self.assertIs(self.connections.get_connection_by_user_id("alice").websocket, new_ws)

        # The old session no longer receives pushes
        count = len(states)
        await self.manager.join_game(game.id, "bob", "Bob")
        await self.store.drain()
        self.assertEqual(len(states), count)

    async def test_disconnect(self):
        ws = MockWebSocket("ws1")
        await self.connections.connect(ws, self.session("alice"))

        connection = await self.connections.disconnect(ws)
        self.assertEqual(connection.user_id, "alice")
        self.assertFalse(self.connections.is_user_connected("alice"))
        self.assertIsNone(await self.connections.disconnect(ws))

    async def test_broadcast(self):
        ws1, ws2 = MockWebSocket("ws1"), MockWebSocket("ws2")
        await self.connections.connect(ws1, self.session("alice"))
        await self.connections.connect(ws2, self.session("bob"))

        sent = await self.connections.broadcast_to_all(ErrorMessage.create("maintenance"))
        self.assertEqual(sent, 2)
        self.assertEqual(len(self.connections.sessions()), 2)


# =============================================================================
# Message Handler
# =============================================================================

class TestMessageHandler(StoreTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.connections = ConnectionManager()
        self.handler = MessageHandler(self.connections)
        self.sockets = {}
        for user_id in ("alice", "bob"):
            ws = MockWebSocket(user_id)
            session = self.session(user_id)
            await session.open()
            connection = await self.connections.connect(ws, session)
            self.handler.attach(connection)
            self.sockets[user_id] = ws
        await self.store.drain()

    async def send(self, user_id: str, message_type: MessageType, **data) -> dict:
        result = await self.handler.handle_message(
            user_id, Message(type=message_type, data=data, request_id="req-1")
        )
        return result.response.to_dict() if result.response else None

    async def test_parse_error(self):
        result = await self.handler.handle_message("alice", "{not json")
        self.assertEqual(result.response.data["code"], "PARSE_ERROR")

        result = await self.handler.handle_message("alice", '["a list"]')
        self.assertEqual(result.response.data["code"], "PARSE_ERROR")

        result = await self.handler.handle_message("alice", {"type": "NOT_A_TYPE"})
        self.assertEqual(result.response.data["code"], "PARSE_ERROR")

    async def test_not_connected(self):
        result = await self.handler.handle_message("ghost", {"type": "LIST_GAMES"})
        self.assertEqual(result.response.data["code"], "NOT_CONNECTED")

    async def test_unknown_message_type(self):
        response = await self.send("alice", MessageType.GAME_STATE)
        self.assertEqual(response["data"]["code"], "UNKNOWN_MESSAGE_TYPE")
        self.assertEqual(response["request_id"], "req-1")

    async def test_attach_pushes_lobby_listing(self):
        listings = self.sockets["alice"].messages_of_type(MessageType.GAME_LIST)
        self.assertTrue(listings)
        self.assertEqual(listings[0]["data"]["games"], [])

    async def test_create_game_pushes_state(self):
        response = await self.send("alice", MessageType.CREATE_GAME)
        await self.store.drain()

        self.assertEqual(response["type"], MessageType.ACTION_RESULT.value)
        self.assertTrue(response["data"]["success"])
        game_id = response["data"]["game_id"]

        states = self.sockets["alice"].messages_of_type(MessageType.GAME_STATE)
        self.assertEqual(states[-1]["data"]["game"]["game_id"], game_id)

        # Bob sees the new game in his lobby
        listings = self.sockets["bob"].messages_of_type(MessageType.GAME_LIST)
        self.assertEqual([g["id"] for g in listings[-1]["data"]["games"]], [game_id])

    async def test_join_and_roll(self):
        created = await self.send("alice", MessageType.CREATE_GAME)
        game_id = created["data"]["game_id"]

        joined = await self.send("bob", MessageType.JOIN_GAME, game_id=game_id)
        await self.store.drain()
        self.assertTrue(joined["data"]["success"])
        self.assertEqual(joined["data"]["code"], "SUCCESS")

        state = self.sockets["bob"].messages_of_type(MessageType.GAME_STATE)[-1]["data"]["game"]
        self.assertEqual(state["status"], GameStatus.IN_PROGRESS.value)
        self.assertFalse(state["is_your_turn"])

        response = await self.send("bob", MessageType.ROLL_DICE)
        self.assertEqual(response["type"], MessageType.TURN_RESULT.value)
        self.assertFalse(response["data"]["success"])
        self.assertEqual(response["data"]["code"], "NOT_YOUR_TURN")

        response = await self.send("alice", MessageType.ROLL_DICE)
        self.assertTrue(response["data"]["success"])
        self.assertIn(response["data"]["roll"], range(1, 7))

    async def test_join_requires_game_id(self):
        response = await self.send("bob", MessageType.JOIN_GAME)
        self.assertEqual(response["data"]["code"], "MISSING_GAME_ID")

    async def test_decisions_require_booleans(self):
        response = await self.send("alice", MessageType.SUBMIT_BUILD_DECISION, accept="yes")
        self.assertEqual(response["data"]["code"], "INVALID_DATA")

        response = await self.send("alice", MessageType.RESPOND_HINT)
        self.assertEqual(response["data"]["code"], "INVALID_DATA")

        response = await self.send("alice", MessageType.RESPOND_INVITATION, invite_id="x")
        self.assertEqual(response["data"]["code"], "INVALID_DATA")

    async def test_invitation_flow(self):
        created = await self.send("alice", MessageType.CREATE_GAME)
        game_id = created["data"]["game_id"]

        response = await self.send("alice", MessageType.INVITE_PLAYER, recipient_id="bob")
        await self.store.drain()
        self.assertTrue(response["data"]["success"])
        invite_id = response["data"]["invitation"]["invite_id"]

        pushed = self.sockets["bob"].messages_of_type(MessageType.INVITATION_RECEIVED)
        self.assertEqual(pushed[0]["data"]["invitation"]["invite_id"], invite_id)

        response = await self.send(
            "bob", MessageType.RESPOND_INVITATION, invite_id=invite_id, accept=True
        )
        await self.store.drain()
        self.assertTrue(response["data"]["success"])
        self.assertEqual(response["data"]["game_id"], game_id)
        self.assertTrue(self.sockets["bob"].messages_of_type(MessageType.GAME_STATE))

    async def test_leave_game(self):
        await self.send("alice", MessageType.CREATE_GAME)
        response = await self.send("alice", MessageType.LEAVE_GAME)
        self.assertTrue(response["data"]["success"])

        response = await self.send("alice", MessageType.LEAVE_GAME)
        self.assertEqual(response["data"]["code"], "NOT_IN_GAME")

    async def test_list_games(self):
        await self.send("alice", MessageType.CREATE_GAME)
        response = await self.send("bob", MessageType.LIST_GAMES)
        self.assertEqual(response["type"], MessageType.GAME_LIST.value)
        self.assertEqual(len(response["data"]["games"]), 1)


# =============================================================================
# Gateway connect handshake
# =============================================================================

class TestEquationServer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = InMemoryDocumentStore()
        self.server = EquationServer(
            "localhost", 0, store=self.store, completion=StaticCompletion()
        )

    async def test_connect_handshake(self):
        hello = Message(
            type=MessageType.CONNECT,
            data={"user_id": "alice", "display_name": "Alice"},
            request_id="r1",
        ).to_json()
        ws = MockWebSocket("ws1", [hello])

        user_id = await self.server._handle_connect(ws)
        await self.store.drain()

        self.assertEqual(user_id, "alice")
        ack = ws.messages_of_type(MessageType.CONNECT)[0]
        self.assertTrue(ack["data"]["success"])
        self.assertIsNone(ack["data"]["current_game_id"])
        self.assertEqual(ack["data"]["rewards"], [])
        self.assertEqual(ack["request_id"], "r1")
        self.assertTrue(ws.messages_of_type(MessageType.GAME_LIST))
        self.assertEqual(self.server.get_stats()["connections"]["total_users"], 1)

    async def test_first_message_must_be_connect(self):
        ws = MockWebSocket("ws1", [json.dumps({"type": "LIST_GAMES"})])
        self.assertIsNone(await self.server._handle_connect(ws))
        self.assertEqual(ws.get_messages()[0]["data"]["code"], "CONNECT_REQUIRED")

    async def test_user_id_required(self):
        ws = MockWebSocket("ws1", [json.dumps({"type": "CONNECT", "data": {}})])
        self.assertIsNone(await self.server._handle_connect(ws))
        self.assertEqual(ws.get_messages()[0]["data"]["code"], "MISSING_USER_ID")

    async def test_invalid_json(self):
        ws = MockWebSocket("ws1", ["{oops"])
        self.assertIsNone(await self.server._handle_connect(ws))
        self.assertEqual(ws.get_messages()[0]["data"]["code"], "PARSE_ERROR")


# =============================================================================
# Protocol
# =============================================================================

class TestProtocol(unittest.TestCase):

    def test_round_trip(self):
        message = JoinGameRequest.create("g1", request_id="r9")
        parsed = parse_message(message.to_json())
        self.assertEqual(parsed.type, MessageType.JOIN_GAME)
        self.assertEqual(parsed.data, {"game_id": "g1"})
        self.assertEqual(parsed.request_id, "r9")

    def test_request_payloads(self):
        self.assertEqual(BuildDecisionRequest.create(False).data, {"accept": False})
        self.assertEqual(
            RespondInvitationRequest.create("i1", True).data,
            {"invite_id": "i1", "accept": True},
        )

    def test_missing_data_defaults_to_empty(self):
        parsed = parse_message('{"type": "ROLL_DICE"}')
        self.assertEqual(parsed.data, {})
        self.assertIsNone(parsed.request_id)

    def test_rejects_bad_messages(self):
        with self.assertRaises(ValueError):
            parse_message('"just a string"')
        with self.assertRaises(ValueError):
            parse_message('{"type": "NOT_A_TYPE"}')
        with self.assertRaises(KeyError):
            parse_message('{"data": {}}')

    def test_action_result_extra_fields(self):
        message = ActionResultMessage.create(True, "ok", extra={"game_id": "g1"})
        self.assertEqual(
            message.data, {"success": True, "message": "ok", "code": "SUCCESS", "game_id": "g1"}
        )


if __name__ == "__main__":
    unittest.main()
