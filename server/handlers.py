"""WebSocket message handlers for the Mau card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Every handler that touches a room does so under ``room.lock``. Inside the
lock the room and game are mutated synchronously and the resulting messages
are posted to each recipient's Outbox; the socket writes happen afterwards
in the connection's sender task. Lobby refusals are unicast to the requester
as ``error`` messages; illegal game moves are dropped without a reply.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from game import Game
from models.requests import (
    CreateRoomRequest,
    JoinRoomRequest,
    KickPlayerRequest,
    PlayCardsRequest,
    RoomRequest,
    SetForcedSuitRequest,
)
from outbox import Outbox
from room import Departure, ErrorCode, Room, RoomError, RoomManager

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    player_id: str
    current_room: Optional[Room] = None
    outbox: Optional[Outbox] = None

    def __post_init__(self) -> None:
        if self.outbox is None:
            self.outbox = Outbox(self.websocket)


def parse_request(model: type[BaseModel], data: dict) -> Optional[BaseModel]:
    """Validate a raw message, returning None when it is malformed."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Malformed {data.get('type')} request: {e.error_count()} errors")
        return None


def resolve_room(request: RoomRequest, ctx: ConnectionContext, room_manager: RoomManager) -> Optional[Room]:
    """Find the room a request targets, defaulting to the sender's room."""
    if request.room_code:
        return room_manager.get_room(request.room_code)
    return ctx.current_room


def game_over_message(room: Room, game: Game) -> dict:
    winner = game.winner_id
    return {
        "type": "game_over",
        "room_code": room.code,
        "winner_id": winner,
        "winner_name": game.names.get(winner) if winner else None,
        "reason": game.finish_reason,
    }


def send_error(ctx: ConnectionContext, error: RoomError) -> None:
    ctx.outbox.post(error.to_message())


def announce_departure(room: Room, departure: Departure) -> None:
    """Tell the remaining members about a departure (caller holds the lock)."""
    if room.is_empty():
        return
    room.broadcast(room.roster_message())
    if departure.finished_game is not None:
        room.broadcast(game_over_message(room, departure.finished_game))
    elif room.game is not None:
        room.send_game_state()


async def handle_departure(player_id: str, room_manager: RoomManager, keep: Optional[Room] = None) -> None:
    """
    Remove a player from every room they occupy, except ``keep``.

    Runs on disconnect and leave, and before a player settles into a new
    room so nobody is a member of two rooms at once.
    """
    for room in room_manager.find_player_rooms(player_id):
        if room is keep:
            continue
        async with room.lock:
            departure = room_manager.leave_room(room, player_id)
            if departure:
                logger.info(f"Player {player_id} left room {room.code}")
                announce_departure(room, departure)


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(CreateRoomRequest, data)
    if request is None:
        send_error(ctx, RoomError(ErrorCode.INVALID_REQUEST))
        return

    await handle_departure(ctx.player_id, room_manager)

    room = room_manager.create_room(ctx.player_id, request.player_name, ctx.outbox)
    ctx.current_room = room

    async with room.lock:
        ctx.outbox.post({
            "type": "room_created",
            "room_code": room.code,
            "player_id": ctx.player_id,
        })
        room.broadcast(room.roster_message())


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(JoinRoomRequest, data)
    if request is None:
        send_error(ctx, RoomError(ErrorCode.INVALID_REQUEST))
        return

    room = room_manager.get_room(request.room_code)
    if room is None:
        send_error(ctx, RoomError(ErrorCode.ROOM_NOT_FOUND))
        return

    async with room.lock:
        try:
            # Looked up again under the lock: the room may have closed meanwhile
            room = room_manager.join_room(ctx.player_id, request.player_name, request.room_code, ctx.outbox)
        except RoomError as e:
            send_error(ctx, e)
            return

        ctx.current_room = room
        ctx.outbox.post({
            "type": "room_joined",
            "room_code": room.code,
            "player_id": ctx.player_id,
        })
        room.broadcast(room.roster_message())

    # Only one room lock is held at a time
    await handle_departure(ctx.player_id, room_manager, keep=room)


async def handle_set_ready(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(RoomRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        if room.toggle_ready(ctx.player_id):
            room.broadcast(room.roster_message())


async def handle_kick_player(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(KickPlayerRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        departure = room.kick(ctx.player_id, request.target_id)
        if departure is None:
            return
        if departure.player.outbox:
            departure.player.outbox.post({
                "type": "kicked",
                "room_code": room.code,
            })
        announce_departure(room, departure)


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    if ctx.current_room:
        room = ctx.current_room
        ctx.current_room = None
        async with room.lock:
            departure = room_manager.leave_room(room, ctx.player_id)
            if departure:
                announce_departure(room, departure)


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(RoomRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        try:
            game = room.start_game(ctx.player_id)
        except RoomError as e:
            send_error(ctx, e)
            return
        if game is None:
            return
        room.send_game_state("game_started")


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

def _after_move(room: Room) -> None:
    """Queue the result of an accepted move (caller holds the lock)."""
    if room.game.is_over:
        finished = room.finish_game()
        room.broadcast(game_over_message(room, finished))
        room.broadcast(room.roster_message())
        return

    room.send_game_state()
    if room.game.awaiting_suit:
        room.send_to(room.game.current_player_id, {
            "type": "choose_suit",
            "room_code": room.code,
        })


async def handle_play_cards(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(PlayCardsRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        if room.game is None or not room.game.play_cards(ctx.player_id, request.to_cards()):
            return
        _after_move(room)


async def handle_draw_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(RoomRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        if room.game is None:
            return
        drawn = room.game.draw_card(ctx.player_id)
        if drawn is None:
            return
        logger.debug(f"Room {room.code}: {ctx.player_id} drew {len(drawn)} card(s)")
        _after_move(room)


async def handle_stand_ace(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(RoomRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        if room.game is None or not room.game.stand_ace(ctx.player_id):
            return
        _after_move(room)


async def handle_set_forced_suit(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    request = parse_request(SetForcedSuitRequest, data)
    room = resolve_room(request, ctx, room_manager) if request else None
    if room is None:
        return

    async with room.lock:
        if room.game is None or not room.game.set_forced_suit(ctx.player_id, request.suit):
            return
        _after_move(room)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_room": handle_create_room,
    "join_room": handle_join_room,
    "set_ready": handle_set_ready,
    "kick_player": handle_kick_player,
    "leave_room": handle_leave_room,
    "start_game": handle_start_game,
    "play_cards": handle_play_cards,
    "draw_card": handle_draw_card,
    "stand_ace": handle_stand_ace,
    "set_forced_suit": handle_set_forced_suit,
}
