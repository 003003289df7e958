"""
Test suite for Room and RoomManager operations.

Covers:
- Room creation, code format and uniqueness
- Case-insensitive lookup and join refusals
- Player add/remove with host reassignment
- Ready flags, kicking and starting a game
- Departures during a game
- Message broadcast and send_to through per-connection outboxes

Run with: pytest test_room.py -v
"""

import asyncio

import pytest

from game import Game
from outbox import Outbox
from room import ErrorCode, Room, RoomError, RoomManager


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)


class BrokenWebSocket:
    """WebSocket whose peer has gone away."""

    async def send_json(self, data: dict):
        raise RuntimeError("connection closed")


def make_room(*names: str, ready: bool = False) -> Room:
    """Room seated with players whose IDs are the lowercase names."""
    room = Room(code="ABCDE")
    for name in names:
        room.add_player(name.lower(), name)
        room.players[name.lower()].ready = ready
    return room


# =============================================================================
# RoomManager tests
# =============================================================================

class TestRoomManagerCreate:

    def test_create_room_seats_creator_as_host(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        assert room.code in rm.rooms
        assert list(room.players) == ["p1"]
        assert room.host_id == "p1"

    def test_code_format(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        assert len(room.code) == 5
        assert all(ch in RoomManager.CODE_ALPHABET for ch in room.code)

    def test_create_multiple_rooms_unique_codes(self):
        rm = RoomManager()
        codes = {rm.create_room(f"p{i}", "P").code for i in range(50)}
        assert len(codes) == 50

    def test_remove_room(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        rm.remove_room(room.code)
        assert room.code not in rm.rooms

    def test_remove_nonexistent_room(self):
        rm = RoomManager()
        rm.remove_room("NOPE1")


class TestRoomManagerLookup:

    def test_get_room_case_insensitive(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        assert rm.get_room(room.code.lower()) is room

    def test_get_room_not_found(self):
        assert RoomManager().get_room("ZZZZZ") is None

    def test_find_player_rooms(self):
        rm = RoomManager()
        r1 = rm.create_room("p1", "Alice")
        rm.create_room("p2", "Bob")
        assert rm.find_player_rooms("p1") == [r1]
        assert rm.find_player_rooms("nobody") == []


class TestRoomManagerJoin:

    def test_join_appends_in_order(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        rm.join_room("p2", "Bob", room.code)
        rm.join_room("p3", "Carol", room.code.lower())
        assert list(room.players) == ["p1", "p2", "p3"]
        assert room.host_id == "p1"

    def test_join_unknown_code(self):
        rm = RoomManager()
        with pytest.raises(RoomError) as exc_info:
            rm.join_room("p2", "Bob", "QQQQQ")
        assert exc_info.value.code == ErrorCode.ROOM_NOT_FOUND

    def test_join_full_room(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        for i in range(2, 5):
            rm.join_room(f"p{i}", f"P{i}", room.code)

        with pytest.raises(RoomError) as exc_info:
            rm.join_room("p5", "Eve", room.code)
        assert exc_info.value.code == ErrorCode.ROOM_FULL
        assert len(room.players) == 4

    def test_join_during_game(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        rm.join_room("p2", "Bob", room.code)
        room.game = Game.deal([("p1", "Alice"), ("p2", "Bob")], seed=1)

        with pytest.raises(RoomError) as exc_info:
            rm.join_room("p3", "Carol", room.code)
        assert exc_info.value.code == ErrorCode.GAME_IN_PROGRESS

    def test_rejoin_is_idempotent(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        rm.join_room("p2", "Bob", room.code)
        rm.join_room("p2", "Bob", room.code)
        assert list(room.players) == ["p1", "p2"]

    def test_error_message_shape(self):
        message = RoomError(ErrorCode.ROOM_FULL).to_message()
        assert message == {"type": "error", "code": "room_full", "message": "Room is full"}


class TestRoomManagerLeave:

    def test_last_player_leaving_destroys_room(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        departure = rm.leave_room(room, "p1")
        assert departure.player.id == "p1"
        assert room.code not in rm.rooms

    def test_leave_keeps_room_with_members(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        rm.join_room("p2", "Bob", room.code)
        rm.leave_room(room, "p2")
        assert room.code in rm.rooms

    def test_leave_non_member(self):
        rm = RoomManager()
        room = rm.create_room("p1", "Alice")
        assert rm.leave_room(room, "ghost") is None
        assert room.code in rm.rooms


# =============================================================================
# Room tests
# =============================================================================

class TestRoomMembership:

    def test_first_player_is_host(self):
        room = make_room("Alice", "Bob")
        assert room.host_id == "alice"
        assert room.is_host("alice")
        assert not room.is_host("bob")

    def test_host_reassigned_in_seating_order(self):
        room = make_room("Host", "B", "C")
        departure = room.remove_player("host")
        assert departure.host_changed
        assert room.host_id == "b"
        assert list(room.players) == ["b", "c"]

    def test_non_host_leaving_keeps_host(self):
        room = make_room("Host", "B", "C")
        departure = room.remove_player("b")
        assert not departure.host_changed
        assert room.host_id == "host"

    def test_empty_room_has_no_host(self):
        room = make_room("Alice")
        room.remove_player("alice")
        assert room.is_empty()
        assert room.host_id is None

    def test_toggle_ready(self):
        room = make_room("Alice")
        assert room.toggle_ready("alice")
        assert room.players["alice"].ready
        assert room.toggle_ready("alice")
        assert not room.players["alice"].ready

    def test_toggle_ready_non_member(self):
        assert not make_room("Alice").toggle_ready("ghost")

    def test_player_list(self):
        room = make_room("Alice", "Bob")
        assert room.player_list() == [
            {"id": "alice", "name": "Alice", "ready": False, "is_host": True},
            {"id": "bob", "name": "Bob", "ready": False, "is_host": False},
        ]


class TestRoomKick:

    def test_host_kicks_member(self):
        room = make_room("Host", "B")
        departure = room.kick("host", "b")
        assert departure.player.id == "b"
        assert "b" not in room.players

    def test_non_host_cannot_kick(self):
        room = make_room("Host", "B", "C")
        assert room.kick("b", "c") is None
        assert len(room.players) == 3

    def test_host_cannot_kick_self(self):
        room = make_room("Host", "B")
        assert room.kick("host", "host") is None
        assert room.host_id == "host"

    def test_kick_non_member(self):
        room = make_room("Host", "B")
        assert room.kick("host", "ghost") is None


class TestRoomStartGame:

    def test_start_deals_in_seating_order(self):
        room = make_room("Alice", "Bob", "Carol", ready=True)
        game = room.start_game("alice", seed=3)
        assert game is room.game
        assert game.order == ["alice", "bob", "carol"]
        assert all(len(hand) == 5 for hand in game.hands.values())

    def test_start_needs_two_players(self):
        room = make_room("Alice", ready=True)
        with pytest.raises(RoomError) as exc_info:
            room.start_game("alice")
        assert exc_info.value.code == ErrorCode.NOT_ENOUGH_PLAYERS
        assert room.game is None

    def test_start_needs_everyone_ready(self):
        room = make_room("Alice", "Bob", ready=True)
        room.players["bob"].ready = False
        with pytest.raises(RoomError) as exc_info:
            room.start_game("alice")
        assert exc_info.value.code == ErrorCode.PLAYERS_NOT_READY
        assert room.game is None

    def test_non_host_start_ignored(self):
        room = make_room("Alice", "Bob", ready=True)
        assert room.start_game("bob") is None
        assert room.game is None

    def test_start_while_running_ignored(self):
        room = make_room("Alice", "Bob", ready=True)
        game = room.start_game("alice")
        assert room.start_game("alice") is None
        assert room.game is game

    def test_finish_game_resets_ready(self):
        room = make_room("Alice", "Bob", ready=True)
        room.start_game("alice")
        room.finish_game()
        assert room.game is None
        assert not any(p.ready for p in room.players.values())


class TestRoomDepartureDuringGame:

    def test_departure_unseats_player(self):
        room = make_room("Alice", "Bob", "Carol", ready=True)
        game = room.start_game("alice", seed=9)
        departure = room.remove_player("bob")
        assert departure.finished_game is None
        assert room.game is game
        assert game.order == ["alice", "carol"]
        assert game.is_consistent()

    def test_departure_to_one_player_forfeits(self):
        room = make_room("Alice", "Bob", ready=True)
        game = room.start_game("alice", seed=9)
        departure = room.remove_player("alice")
        assert departure.finished_game is game
        assert game.winner_id == "bob"
        assert game.finish_reason == "forfeit"
        assert room.game is None
        assert room.host_id == "bob"


# =============================================================================
# Messaging tests
# =============================================================================

def seat_with_sockets(*sockets) -> tuple[Room, list[Outbox]]:
    room = Room(code="ABCDE")
    outboxes = []
    for i, ws in enumerate(sockets, start=1):
        outbox = Outbox(ws)
        room.add_player(f"p{i}", f"P{i}", outbox)
        outboxes.append(outbox)
    return room, outboxes


async def flush(outboxes):
    for outbox in outboxes:
        await outbox.flush()


class TestRoomMessaging:

    @pytest.mark.asyncio
    async def test_broadcast_to_all(self):
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room, outboxes = seat_with_sockets(ws1, ws2)

        room.broadcast({"type": "test"})
        await flush(outboxes)

        assert ws1.messages == [{"type": "test"}]
        assert ws2.messages == [{"type": "test"}]

    @pytest.mark.asyncio
    async def test_broadcast_with_exclude(self):
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room, outboxes = seat_with_sockets(ws1, ws2)

        room.broadcast({"type": "test"}, exclude="p1")
        await flush(outboxes)

        assert ws1.messages == []
        assert len(ws2.messages) == 1

    @pytest.mark.asyncio
    async def test_broken_socket_does_not_stop_broadcast(self):
        ws2 = MockWebSocket()
        room, outboxes = seat_with_sockets(BrokenWebSocket(), ws2)

        room.broadcast({"type": "first"})
        room.broadcast({"type": "second"})
        await flush(outboxes)

        assert [m["type"] for m in ws2.messages] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_send_to_unknown_player(self):
        room = Room(code="ABCDE")
        room.send_to("ghost", {"type": "test"})

    @pytest.mark.asyncio
    async def test_member_without_connection_is_skipped(self):
        room = Room(code="ABCDE")
        room.add_player("p1", "Alice")
        room.broadcast({"type": "test"})

    @pytest.mark.asyncio
    async def test_game_state_is_personal(self):
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room, outboxes = seat_with_sockets(ws1, ws2)
        room.game = Game.deal([("p1", "P1"), ("p2", "P2")], seed=4)

        room.send_game_state()
        await flush(outboxes)

        state1 = ws1.messages[0]["game_state"]
        state2 = ws2.messages[0]["game_state"]
        assert state1["hand"] == [c.to_dict() for c in room.game.hands["p1"]]
        assert state2["hand"] == [c.to_dict() for c in room.game.hands["p2"]]
        assert ws1.messages[0]["type"] == "game_state"


# =============================================================================
# Outbox tests
# =============================================================================

class StalledWebSocket(MockWebSocket):
    """Peer that stops reading until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_json(self, data: dict):
        await self.release.wait()
        self.messages.append(data)


class TestOutbox:

    @pytest.mark.asyncio
    async def test_delivers_in_post_order(self):
        ws = MockWebSocket()
        outbox = Outbox(ws)
        for i in range(5):
            outbox.post({"type": "n", "i": i})
        await outbox.flush()
        assert [m["i"] for m in ws.messages] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_post_does_not_wait_for_slow_peer(self):
        slow, fast = StalledWebSocket(), MockWebSocket()
        room, (slow_box, fast_box) = seat_with_sockets(slow, fast)

        room.broadcast({"type": "one"})
        room.broadcast({"type": "two"})
        await asyncio.wait_for(fast_box.flush(), timeout=1)

        assert [m["type"] for m in fast.messages] == ["one", "two"]
        assert slow.messages == []

        slow.release.set()
        await asyncio.wait_for(slow_box.flush(), timeout=1)
        assert [m["type"] for m in slow.messages] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_closed_outbox_drops_messages(self):
        ws = MockWebSocket()
        outbox = Outbox(ws)
        await outbox.close()
        outbox.post({"type": "late"})
        assert ws.messages == []

    @pytest.mark.asyncio
    async def test_close_cancels_stalled_send(self):
        ws = StalledWebSocket()
        outbox = Outbox(ws)
        outbox.post({"type": "stuck"})
        await asyncio.sleep(0)
        await asyncio.wait_for(outbox.close(), timeout=1)
        assert ws.messages == []
