"""
Game logic for Mau, a 32-card shedding game.

This module implements the core game mechanics: cards and the deck, the
active-effect state machine, move validation and turn flow.

Mau Rules Summary:
    - 32-card deck (7 through Ace in four suits), 5 cards dealt to each player
    - One card is turned face-up as the table card
    - On your turn: play a card matching the table card's rank or suit, or draw
    - First player to empty their hand wins

Special cards:
    - Seven: next player draws 3 unless they answer with another Seven
      (penalties stack) or the green Jack
    - Queen: playable on anything; the player then names the suit that must
      be followed
    - Ace: stops the next player, who may stand (absorb the stop) or draw
    - Jack of clubs (green Jack): wildcard, playable in every situation and
      cancels any pending penalty or stop
    - Four of a kind laid down together burns the table: all effects are
      cleared and the same player goes again

Card conservation:
    deck + every hand + table card is always exactly the 32-card universe.
    Covered table cards go back under the draw pile.
"""

import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union

from constants import BURN_SIZE, HAND_SIZE, SEVEN_PENALTY

logger = logging.getLogger(__name__)


class Suit(Enum):
    """Card suits."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"

    @property
    def symbol(self) -> str:
        return SUIT_SYMBOLS[self]


SUIT_SYMBOLS: dict[Suit, str] = {
    Suit.HEARTS: "♥",
    Suit.DIAMONDS: "♦",
    Suit.CLUBS: "♣",
    Suit.SPADES: "♠",
}


class Rank(Enum):
    """Card ranks of the short (piquet) deck."""

    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"


@dataclass(frozen=True)
class Card:
    """
    An immutable playing card.

    Attributes:
        rank: The card's rank (7-10, J, Q, K, A).
        suit: The card's suit.
    """

    rank: Rank
    suit: Suit

    @property
    def is_green_jack(self) -> bool:
        """The Jack of clubs is the wildcard."""
        return self.rank == Rank.JACK and self.suit == Suit.CLUBS

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {"rank": self.rank.value, "suit": self.suit.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        """
        Build a card from its wire form.

        Raises:
            ValueError: If rank or suit is not a known value.
        """
        return cls(Rank(data["rank"]), Suit(data["suit"]))

    def __str__(self) -> str:
        return f"{self.rank.value}{self.suit.symbol}"


GREEN_JACK = Card(Rank.JACK, Suit.CLUBS)


def full_deck() -> list[Card]:
    """Return the 32-card universe in a fixed, sorted order."""
    return [Card(rank, suit) for suit in Suit for rank in Rank]


class Deck:
    """
    The draw pile.

    The top of the deck is the end of ``cards``. Shuffling is an explicit
    Fisher-Yates pass over a private ``random.Random`` so every permutation
    is equally likely and a stored seed reproduces the exact order.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        """
        Initialize a freshly shuffled 32-card deck.

        Args:
            seed: Optional random seed for deterministic shuffle.
                  If None, a random seed is generated and stored.
        """
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self._rng = random.Random(self.seed)
        self.cards: list[Card] = full_deck()
        self.shuffle()

    def shuffle(self) -> None:
        """Fisher-Yates shuffle in place."""
        cards = self.cards
        for i in range(len(cards) - 1, 0, -1):
            j = self._rng.randint(0, i)
            cards[i], cards[j] = cards[j], cards[i]

    def draw(self) -> Optional[Card]:
        """
        Draw the top card from the deck.

        Returns:
            The drawn Card, or None if deck is empty.
        """
        if self.cards:
            return self.cards.pop()
        return None

    def draw_many(self, count: int) -> list[Card]:
        """Draw up to ``count`` cards; fewer if the deck runs out."""
        drawn = []
        for _ in range(count):
            card = self.draw()
            if card is None:
                break
            drawn.append(card)
        return drawn

    def put_bottom(self, cards: list[Card]) -> None:
        """Slide cards underneath the draw pile."""
        self.cards[0:0] = cards

    def cards_remaining(self) -> int:
        """Return the number of cards left in the deck."""
        return len(self.cards)


# =============================================================================
# Active effects
# =============================================================================

@dataclass(frozen=True)
class NoEffect:
    """Ordinary rank/suit matching applies."""

    tag: ClassVar[str] = "none"


@dataclass(frozen=True)
class PendingPenalty:
    """Stacked Sevens: the current player must draw ``cards`` or answer."""

    cards: int
    tag: ClassVar[str] = "penalty"


@dataclass(frozen=True)
class ForcedSuit:
    """A Queen named ``suit``; only that suit may be played."""

    suit: Suit
    tag: ClassVar[str] = "forced_suit"


@dataclass(frozen=True)
class PendingStop:
    """An Ace stopped the current player; they may stand or draw."""

    tag: ClassVar[str] = "stop"


@dataclass(frozen=True)
class ChoosingSuit:
    """The current player played a Queen and must name a suit."""

    tag: ClassVar[str] = "choosing_suit"


Effect = Union[NoEffect, PendingPenalty, ForcedSuit, PendingStop, ChoosingSuit]


class PlayKind(str, Enum):
    """Classification of an accepted play, reported to clients."""

    BURN = "burn"
    QUEEN = "queen"
    ACE = "ace"
    SEVEN = "seven"
    GREEN_JACK = "green_jack"
    PLAIN = "plain"


def classify_play(cards: list[Card]) -> PlayKind:
    """
    Classify a set of cards that has already been taken from a hand.

    Four of one rank is a burn. Anything shorter resolves as its last card.
    """
    if len(cards) == BURN_SIZE and len({c.rank for c in cards}) == 1:
        return PlayKind.BURN
    last = cards[-1]
    if last.is_green_jack:
        return PlayKind.GREEN_JACK
    if last.rank == Rank.QUEEN:
        return PlayKind.QUEEN
    if last.rank == Rank.ACE:
        return PlayKind.ACE
    if last.rank == Rank.SEVEN:
        return PlayKind.SEVEN
    return PlayKind.PLAIN


def resolve_play(effect: Effect, cards: list[Card]) -> tuple[Effect, bool, PlayKind]:
    """
    Map (active effect, played cards) to (new effect, advance turn?, kind).

    Args:
        effect: The effect active before the play.
        cards: The cards actually removed from the player's hand.

    Returns:
        Tuple of the effect after the play, whether the turn passes to the
        next player, and the play classification.
    """
    kind = classify_play(cards)
    if kind == PlayKind.BURN:
        return NoEffect(), False, kind
    if kind == PlayKind.QUEEN:
        return ChoosingSuit(), False, kind
    if kind == PlayKind.ACE:
        return PendingStop(), True, kind
    if kind == PlayKind.SEVEN:
        stacked = effect.cards if isinstance(effect, PendingPenalty) else 0
        return PendingPenalty(stacked + SEVEN_PENALTY), True, kind
    # Green Jack and plain cards clear penalty, stop and forced suit alike
    return NoEffect(), True, kind


def is_playable(card: Card, table_card: Card, effect: Effect) -> bool:
    """
    Check whether ``card`` may be laid on ``table_card`` under ``effect``.

    The green Jack works in both directions: it can be played on anything,
    and anything can be played on it.
    """
    if isinstance(effect, ChoosingSuit):
        return False
    # Green Jack is wild under every constraint, a forced suit included
    if card.is_green_jack:
        return True
    if isinstance(effect, PendingPenalty):
        return card.rank == Rank.SEVEN
    if isinstance(effect, ForcedSuit):
        return card.suit == effect.suit
    if card.rank == Rank.QUEEN:
        return True
    if table_card.is_green_jack:
        return True
    return card.rank == table_card.rank or card.suit == table_card.suit


# =============================================================================
# Game
# =============================================================================

@dataclass
class Game:
    """
    State of one Mau game, owned by exactly one Room.

    Every public mutator returns a falsy value and leaves the state untouched
    when the request is illegal, so callers can drop the request silently.

    Attributes:
        order: Player IDs in seating order at deal time.
        names: Display name per player ID.
        hands: Cards held by each seated player.
        deck: The draw pile.
        table_card: The face-up card that must be matched.
        turn_index: Index into ``order`` of the player to act.
        effect: The active effect (penalty, forced suit, stop, ...).
        last_play: Classification of the most recent accepted play.
        winner_id: Set once the game is over.
        finish_reason: "win" or "forfeit" once the game is over.
    """

    order: list[str]
    names: dict[str, str]
    hands: dict[str, list[Card]]
    deck: Deck
    table_card: Card
    turn_index: int = 0
    effect: Effect = field(default_factory=NoEffect)
    last_play: Optional[PlayKind] = None
    winner_id: Optional[str] = None
    finish_reason: Optional[str] = None

    @classmethod
    def deal(cls, players: list[tuple[str, str]], seed: Optional[int] = None) -> "Game":
        """
        Shuffle a fresh deck and deal a new game.

        Args:
            players: (player_id, name) pairs in seating order.
            seed: Optional shuffle seed.

        Returns:
            The dealt Game with the first seated player to act.
        """
        deck = Deck(seed=seed)
        hands = {}
        for player_id, _ in players:
            hands[player_id] = deck.draw_many(HAND_SIZE)
        table_card = deck.draw()
        game = cls(
            order=[player_id for player_id, _ in players],
            names=dict(players),
            hands=hands,
            deck=deck,
            table_card=table_card,
        )
        logger.debug(f"Dealt {len(players)} hands, table card {table_card}, seed {deck.seed}")
        return game

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    @property
    def current_player_id(self) -> Optional[str]:
        """ID of the player whose turn it is."""
        if not self.order:
            return None
        return self.order[self.turn_index]

    @property
    def is_over(self) -> bool:
        return self.finish_reason is not None

    @property
    def pending_draw(self) -> int:
        return self.effect.cards if isinstance(self.effect, PendingPenalty) else 0

    @property
    def skip_count(self) -> int:
        return 1 if isinstance(self.effect, PendingStop) else 0

    @property
    def forced_suit(self) -> Optional[Suit]:
        return self.effect.suit if isinstance(self.effect, ForcedSuit) else None

    @property
    def awaiting_suit(self) -> bool:
        return isinstance(self.effect, ChoosingSuit)

    def _is_turn_of(self, player_id: str) -> bool:
        return not self.is_over and player_id == self.current_player_id

    def _next_turn(self) -> None:
        """Advance to the next player in seating order."""
        self.turn_index = (self.turn_index + 1) % len(self.order)

    # -------------------------------------------------------------------------
    # Turn actions
    # -------------------------------------------------------------------------

    def play_cards(self, player_id: str, cards: list[Card]) -> bool:
        """
        Lay one or more cards of the same rank on the table.

        Only the first card is checked against the table; the rest ride
        along so four of a kind can be burned in one move. Cards the player
        does not hold are skipped, except the first, which must be held.

        Args:
            player_id: ID of the player playing.
            cards: Cards to play, in order; the last becomes the table card.

        Returns:
            True if the play was accepted.
        """
        if not self._is_turn_of(player_id):
            return False
        if not cards or len(cards) > BURN_SIZE or len(set(cards)) != len(cards):
            return False
        if any(card.rank != cards[0].rank for card in cards):
            return False

        hand = self.hands[player_id]
        if cards[0] not in hand:
            return False
        if not is_playable(cards[0], self.table_card, self.effect):
            logger.debug(f"Rejected {cards[0]} on {self.table_card} ({self.effect.tag})")
            return False

        played = [card for card in cards if card in hand]
        for card in played:
            hand.remove(card)
        self.deck.put_bottom([self.table_card] + played[:-1])
        self.table_card = played[-1]

        if not hand:
            self.winner_id = player_id
            self.finish_reason = "win"
            self.last_play = None
            return True

        self.effect, advance, self.last_play = resolve_play(self.effect, played)
        if advance:
            self._next_turn()
        return True

    def set_forced_suit(self, player_id: str, suit: Suit) -> bool:
        """
        Name the suit to follow after playing a Queen.

        Returns:
            True if the player owed a suit choice and it was applied.
        """
        if not self._is_turn_of(player_id) or not self.awaiting_suit:
            return False
        self.effect = ForcedSuit(suit)
        self._next_turn()
        return True

    def stand_ace(self, player_id: str) -> bool:
        """Absorb a pending stop without drawing."""
        if not self._is_turn_of(player_id) or not isinstance(self.effect, PendingStop):
            return False
        self.effect = NoEffect()
        self.last_play = None
        self._next_turn()
        return True

    def draw_card(self, player_id: str) -> Optional[list[Card]]:
        """
        Draw instead of playing.

        Under a penalty the player draws the whole penalty (fewer if the
        deck runs dry); otherwise one card. The turn always passes.

        Returns:
            The drawn cards (possibly empty), or None if the draw was illegal.
        """
        if not self._is_turn_of(player_id) or self.awaiting_suit:
            return None

        if isinstance(self.effect, PendingPenalty):
            drawn = self.deck.draw_many(self.effect.cards)
            self.effect = NoEffect()
        else:
            drawn = self.deck.draw_many(1)
            if isinstance(self.effect, PendingStop):
                self.effect = NoEffect()

        self.hands[player_id].extend(drawn)
        self.last_play = None
        self._next_turn()
        return drawn

    def remove_player(self, player_id: str) -> bool:
        """
        Unseat a departing player mid-game.

        Their hand goes under the draw pile and their seat leaves the turn
        order. If they were to act, any effect aimed at them is dropped, but
        a forced suit stays in force. With fewer than two seats left the
        game ends and the last seated player wins by forfeit.

        Returns:
            True if the player was seated.
        """
        if self.is_over or player_id not in self.hands:
            return False

        index = self.order.index(player_id)
        was_current = index == self.turn_index
        self.deck.put_bottom(self.hands.pop(player_id))
        self.order.pop(index)

        # Effects aimed at the leaver go with them; a forced suit binds everyone
        if was_current and not isinstance(self.effect, ForcedSuit):
            self.effect = NoEffect()
        if index < self.turn_index:
            self.turn_index -= 1

        if len(self.order) < 2:
            self.turn_index = 0
            self.winner_id = self.order[0] if self.order else None
            self.finish_reason = "forfeit"
            return True

        self.turn_index %= len(self.order)
        return True

    # -------------------------------------------------------------------------
    # State queries
    # -------------------------------------------------------------------------

    def is_consistent(self) -> bool:
        """Check card conservation and turn validity."""
        locations = Counter(self.deck.cards)
        for hand in self.hands.values():
            locations.update(hand)
        locations[self.table_card] += 1
        if locations != Counter(full_deck()):
            return False
        if self.is_over:
            return True
        return 0 <= self.turn_index < len(self.order)

    def get_state(self, for_player_id: Optional[str]) -> dict:
        """
        Get the game state as seen by one player.

        Opponents' hands are reported as card counts only.

        Args:
            for_player_id: The player who will receive this state.

        Returns:
            Dict ready for JSON serialization.
        """
        players_data = []
        for player_id in self.order:
            players_data.append({
                "id": player_id,
                "name": self.names.get(player_id, ""),
                "card_count": len(self.hands[player_id]),
            })

        hand = self.hands.get(for_player_id, [])
        forced = self.forced_suit

        return {
            "players": players_data,
            "hand": [card.to_dict() for card in hand],
            "table_card": self.table_card.to_dict(),
            "current_player_id": self.current_player_id,
            "turn_index": self.turn_index,
            "effect": self.effect.tag,
            "last_play": self.last_play.value if self.last_play else None,
            "pending_draw": self.pending_draw,
            "skip_count": self.skip_count,
            "forced_suit": forced.value if forced else None,
            "awaiting_suit": self.awaiting_suit,
            "ace_decision": isinstance(self.effect, PendingStop),
            "deck_remaining": self.deck.cards_remaining(),
            "winner_id": self.winner_id,
        }
