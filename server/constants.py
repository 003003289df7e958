"""
Rule constants for the Mau card game.

This module is the single source of truth for rule numbers used by game.py.
Values come from config.py (environment-aware) so a deployment can tune
them without touching game logic.

Standard rules:
    - Each player is dealt 5 cards
    - A played Seven adds 3 cards to the pending draw penalty (stacks)
    - Four cards of one rank laid down together burn the table
"""

from config import config

HAND_SIZE: int = config.rules.hand_size
SEVEN_PENALTY: int = config.rules.seven_penalty
BURN_SIZE: int = config.rules.burn_size

MAX_PLAYERS_PER_ROOM: int = config.MAX_PLAYERS_PER_ROOM
MIN_PLAYERS_TO_START: int = config.MIN_PLAYERS_TO_START
ROOM_CODE_LENGTH: int = config.ROOM_CODE_LENGTH

# Total cards in the universe: 8 ranks x 4 suits
DECK_SIZE: int = 32
