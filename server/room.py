"""
Room management for multiplayer Mau games.

This module is the session directory: it maps room codes to rooms and
handles the roster, ready flags, host authority and membership churn.

A Room contains:
    - A unique 5-character code for joining
    - An ordered roster of RoomPlayers (join order is seating order)
    - The host's player ID
    - An optional Game while a hand is being played
    - An asyncio.Lock that serializes every mutation of the room

Messages to members are queued on their connection's Outbox, so nothing in
this module awaits the network while a room lock is held.
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import MAX_PLAYERS_PER_ROOM, MIN_PLAYERS_TO_START, ROOM_CODE_LENGTH
from game import Game
from outbox import Outbox

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """User-facing lobby rejections, unicast to the requester."""

    ROOM_NOT_FOUND = "room_not_found"
    ROOM_FULL = "room_full"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    PLAYERS_NOT_READY = "players_not_ready"
    GAME_IN_PROGRESS = "game_in_progress"
    INVALID_REQUEST = "invalid_request"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.ROOM_NOT_FOUND: "Room not found",
    ErrorCode.ROOM_FULL: "Room is full",
    ErrorCode.NOT_ENOUGH_PLAYERS: f"Need at least {MIN_PLAYERS_TO_START} players",
    ErrorCode.PLAYERS_NOT_READY: "Not all players are ready",
    ErrorCode.GAME_IN_PROGRESS: "Game already in progress",
    ErrorCode.INVALID_REQUEST: "Invalid request",
}


class RoomError(Exception):
    """A lobby request was refused; the room is unchanged."""

    def __init__(self, code: ErrorCode, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        super().__init__(self.message)

    def to_message(self) -> dict:
        return {"type": "error", "code": self.code.value, "message": self.message}


@dataclass
class RoomPlayer:
    """
    A player in a game room (lobby-level representation).

    Attributes:
        id: Opaque player identifier issued by the gateway per connection.
        name: Display name.
        outbox: Delivery queue of the player's connection (None without transport).
        ready: Whether the player has signalled they are ready to start.
    """

    id: str
    name: str
    outbox: Optional[Outbox] = None
    ready: bool = False


@dataclass
class Departure:
    """
    Outcome of removing a player from a room.

    Attributes:
        player: The removed player.
        host_changed: True if the host role moved to someone else.
        finished_game: The game this departure ended by forfeit, if any.
    """

    player: RoomPlayer
    host_changed: bool = False
    finished_game: Optional[Game] = None


@dataclass
class Room:
    """
    A game room/lobby that hosts one Mau game at a time.

    Attributes:
        code: Room code for joining (e.g., "K7QZ2").
        host_id: ID of the player allowed to kick and start.
        players: Dict mapping player IDs to RoomPlayer, in seating order.
        game: The active Game, or None while in the lobby.
        lock: asyncio.Lock serializing all mutations of this room.
    """

    code: str
    host_id: Optional[str] = None
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Optional[Game] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def add_player(
        self,
        player_id: str,
        name: str,
        outbox: Optional[Outbox] = None,
    ) -> RoomPlayer:
        """
        Seat a player at the end of the roster.

        The first player to join becomes the host. Joining twice returns
        the existing seat.

        Args:
            player_id: Unique identifier for the player.
            name: Display name.
            outbox: Delivery queue of the player's connection.

        Returns:
            The RoomPlayer object.
        """
        existing = self.players.get(player_id)
        if existing:
            return existing

        if not self.players:
            self.host_id = player_id
        room_player = RoomPlayer(id=player_id, name=name, outbox=outbox)
        self.players[player_id] = room_player
        return room_player

    def remove_player(self, player_id: str) -> Optional[Departure]:
        """
        Remove a player from the room.

        Reassigns the host to the first remaining player in seating order
        and unseats the player from an active game, which may end it.

        Args:
            player_id: ID of the player to remove.

        Returns:
            The Departure, or None if the player was not in the room.
        """
        if player_id not in self.players:
            return None

        departure = Departure(player=self.players.pop(player_id))

        if player_id == self.host_id:
            self.host_id = next(iter(self.players), None)
            departure.host_changed = self.host_id is not None
            if departure.host_changed:
                logger.info(f"Room {self.code}: host passed to {self.host_id}")

        if self.game is not None and self.game.remove_player(player_id) and self.game.is_over:
            logger.info(f"Room {self.code}: game forfeited, winner {self.game.winner_id}")
            departure.finished_game = self.finish_game()

        return departure

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a player by ID, or None if not found."""
        return self.players.get(player_id)

    def is_host(self, player_id: str) -> bool:
        return player_id == self.host_id

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return len(self.players) == 0

    def toggle_ready(self, player_id: str) -> bool:
        """
        Flip a player's ready flag.

        Returns:
            True if the player is a member and the flag changed.
        """
        player = self.players.get(player_id)
        if not player:
            return False
        player.ready = not player.ready
        return True

    def kick(self, requester_id: str, target_id: str) -> Optional[Departure]:
        """
        Remove ``target_id`` on behalf of the host.

        Returns:
            The Departure, or None if the requester is not host, targets
            themself, or the target is not in the room.
        """
        if not self.is_host(requester_id) or target_id == requester_id:
            return None
        departure = self.remove_player(target_id)
        if departure:
            logger.info(f"Room {self.code}: host kicked {target_id}")
        return departure

    def start_game(self, requester_id: str, seed: Optional[int] = None) -> Optional[Game]:
        """
        Deal a new game for everyone in the room.

        Args:
            requester_id: Must be the host.
            seed: Optional shuffle seed.

        Returns:
            The new Game, or None if the requester is not host or a game
            is already running.

        Raises:
            RoomError: NOT_ENOUGH_PLAYERS or PLAYERS_NOT_READY.
        """
        if not self.is_host(requester_id) or self.game is not None:
            return None
        if len(self.players) < MIN_PLAYERS_TO_START:
            raise RoomError(ErrorCode.NOT_ENOUGH_PLAYERS)
        if not all(p.ready for p in self.players.values()):
            raise RoomError(ErrorCode.PLAYERS_NOT_READY)

        self.game = Game.deal([(p.id, p.name) for p in self.players.values()], seed=seed)
        logger.info(f"Room {self.code}: game started with {len(self.players)} players")
        return self.game

    def finish_game(self) -> Optional[Game]:
        """
        Discard the finished game and return everyone to the lobby.

        Ready flags are cleared so the next game needs a fresh go-ahead.

        Returns:
            The game that was discarded.
        """
        game = self.game
        self.game = None
        for player in self.players.values():
            player.ready = False
        if game is not None:
            logger.info(f"Room {self.code}: game over ({game.finish_reason}), winner {game.winner_id}")
        return game

    def player_list(self) -> list[dict]:
        """Get list of players for client display."""
        return [
            {
                "id": p.id,
                "name": p.name,
                "ready": p.ready,
                "is_host": p.id == self.host_id,
            }
            for p in self.players.values()
        ]

    def roster_message(self) -> dict:
        return {
            "type": "roster",
            "room_code": self.code,
            "host_id": self.host_id,
            "players": self.player_list(),
        }

    def game_state_messages(self, message_type: str = "game_state") -> dict[str, dict]:
        """Build one per-player game snapshot message for each member."""
        if self.game is None:
            return {}
        return {
            pid: {
                "type": message_type,
                "room_code": self.code,
                "game_state": self.game.get_state(pid),
            }
            for pid in self.players
        }

    def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Queue a message for all players in the room.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id in list(self.players):
            if player_id != exclude:
                self.send_to(player_id, message)

    def send_to(self, player_id: str, message: dict) -> None:
        """
        Queue a message for a specific player.

        Args:
            player_id: ID of the recipient player.
            message: JSON-serializable message dict.
        """
        player = self.players.get(player_id)
        if player and player.outbox:
            player.outbox.post(message)

    def send_game_state(self, message_type: str = "game_state") -> None:
        """Queue every member their own view of the game."""
        for player_id, message in self.game_state_messages(message_type).items():
            self.send_to(player_id, message)


class RoomManager:
    """
    Manages all active game rooms.

    Provides room creation with unique codes, lookup, joining and cleanup.
    A single RoomManager instance is used by the server; rooms are only
    mutated under their own lock.
    """

    CODE_ALPHABET = string.ascii_uppercase + string.digits

    def __init__(self) -> None:
        """Initialize an empty room manager."""
        self.rooms: dict[str, Room] = {}

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code."""
        for _ in range(max_attempts):
            code = "".join(random.choices(self.CODE_ALPHABET, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(
        self,
        player_id: str,
        name: str,
        outbox: Optional[Outbox] = None,
    ) -> Room:
        """
        Create a new room with the requester as sole player and host.

        Returns:
            The newly created Room.
        """
        code = self._generate_code()
        room = Room(code=code)
        room.add_player(player_id, name, outbox)
        self.rooms[code] = room
        logger.info(f"Room {code} created by {player_id}")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """
        Get a room by its code (case-insensitive).

        Args:
            code: The room code.

        Returns:
            The Room if found, None otherwise.
        """
        return self.rooms.get(code.upper())

    def join_room(
        self,
        player_id: str,
        name: str,
        code: str,
        outbox: Optional[Outbox] = None,
    ) -> Room:
        """
        Add a player to an existing room.

        Returns:
            The joined Room.

        Raises:
            RoomError: ROOM_NOT_FOUND, ROOM_FULL or GAME_IN_PROGRESS.
        """
        room = self.get_room(code)
        if room is None:
            raise RoomError(ErrorCode.ROOM_NOT_FOUND)
        if player_id in room.players:
            return room
        if len(room.players) >= MAX_PLAYERS_PER_ROOM:
            raise RoomError(ErrorCode.ROOM_FULL)
        if room.game is not None:
            raise RoomError(ErrorCode.GAME_IN_PROGRESS)
        room.add_player(player_id, name, outbox)
        return room

    def leave_room(self, room: Room, player_id: str) -> Optional[Departure]:
        """
        Remove a player from a room, destroying the room if it empties.

        Returns:
            The Departure, or None if the player was not in the room.
        """
        departure = room.remove_player(player_id)
        if departure and room.is_empty():
            self.remove_room(room.code)
        return departure

    def remove_room(self, code: str) -> None:
        """
        Delete a room.

        Args:
            code: The room code to remove.
        """
        if code in self.rooms:
            del self.rooms[code]
            logger.info(f"Room {code} closed")

    def find_player_rooms(self, player_id: str) -> list[Room]:
        """
        Find every room a player is in.

        Args:
            player_id: The player ID to search for.

        Returns:
            Rooms containing the player (normally zero or one).
        """
        return [room for room in self.rooms.values() if player_id in room.players]
