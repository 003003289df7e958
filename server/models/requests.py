"""
Inbound WebSocket request models.

Every client message is a JSON object with a ``type`` field; the remaining
fields are validated against the model registered for that type. Room codes
and display names are checked here, at the gateway, so the room and game
layers can treat them as opaque strings.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from config import config
from game import Card, Rank, Suit


def _clean_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("name must not be blank")
    return value


def _clean_code(value: Optional[str]) -> Optional[str]:
    return value.strip().upper() if value else value


class CardPayload(BaseModel):
    """A card as sent by the client: {"rank": "Q", "suit": "hearts"}."""
    rank: Rank
    suit: Suit

    def to_card(self) -> Card:
        return Card(self.rank, self.suit)


class RoomRequest(BaseModel):
    """Base for requests aimed at a room; defaults to the sender's room."""
    room_code: Optional[str] = Field(default=None, max_length=config.ROOM_CODE_LENGTH)

    @field_validator("room_code")
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        return _clean_code(value)


class CreateRoomRequest(BaseModel):
    """Create a room and become its host."""
    player_name: str = Field(default="Player", min_length=1, max_length=config.MAX_NAME_LENGTH)

    @field_validator("player_name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _clean_name(value)


class JoinRoomRequest(BaseModel):
    """Join a room by code."""
    room_code: str = Field(..., min_length=1, max_length=config.ROOM_CODE_LENGTH)
    player_name: str = Field(default="Player", min_length=1, max_length=config.MAX_NAME_LENGTH)

    @field_validator("room_code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return _clean_code(value)

    @field_validator("player_name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _clean_name(value)


class KickPlayerRequest(RoomRequest):
    """Host removes another player."""
    target_id: str = Field(..., min_length=1)


class PlayCardsRequest(RoomRequest):
    """Lay one card, or several of the same rank."""
    cards: list[CardPayload] = Field(..., min_length=1, max_length=config.rules.burn_size)

    def to_cards(self) -> list[Card]:
        return [c.to_card() for c in self.cards]


class SetForcedSuitRequest(RoomRequest):
    """Name the suit to follow after a Queen."""
    suit: Suit
