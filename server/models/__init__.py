"""Request models for the Mau game server."""

from .requests import (
    CardPayload,
    CreateRoomRequest,
    JoinRoomRequest,
    KickPlayerRequest,
    PlayCardsRequest,
    RoomRequest,
    SetForcedSuitRequest,
)

__all__ = [
    "CardPayload",
    "CreateRoomRequest",
    "JoinRoomRequest",
    "KickPlayerRequest",
    "PlayCardsRequest",
    "RoomRequest",
    "SetForcedSuitRequest",
]
