from typing import Dict, List

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, require


class Card:
    """Represents a playing card."""

    SUITS = ["♠", "♥", "♦", "♣"]
    RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]

    def __init__(self, rank: str, suit: str):
        self.rank = rank
        self.suit = suit

    @property
    def value(self) -> int:
        """Get the blackjack value of the card."""
        if self.rank in ["J", "Q", "K"]:
            return 10
        elif self.rank == "A":
            return 11  # Ace is 11 by default, adjusted in hand calculation
        else:
            return int(self.rank)

    def __str__(self):
        return f"{self.rank}{self.suit}"

    def __repr__(self):
        return f"Card({self.rank!r}, {self.suit!r})"


class BlackjackHand:
    """Represents a blackjack hand."""

    def __init__(self):
        self.cards: List[Card] = []

    def add_card(self, card: Card):
        self.cards.append(card)

    @property
    def value(self) -> int:
        """Calculate the best hand value, adjusting aces as needed."""
        total = sum(card.value for card in self.cards)
        aces = sum(1 for card in self.cards if card.rank == "A")

        # Adjust aces from 11 to 1 if busting
        while total > 21 and aces > 0:
            total -= 10
            aces -= 1

        return total

    @property
    def is_bust(self) -> bool:
        return self.value > 21

    @property
    def is_blackjack(self) -> bool:
        return len(self.cards) == 2 and self.value == 21

    def to_list(self) -> List[str]:
        return [str(card) for card in self.cards]


class BlackjackGame:
    """
    Single-round blackjack resolved in one pass.

    The deck is a Fisher-Yates shuffle with one draw per swap (51 draws), so
    the whole round replays from the wager digest. The player hits until the
    hand reaches `stand_on`; the dealer draws to 17.
    """

    game_type = GameType.BLACKJACK

    DEALER_STANDS_ON = 17
    DECK_SIZE = 52

    PAYOUTS = {
        "blackjack": 2.5,  # 3:2 + bet
        "win": 2.0,
        "dealer_bust": 2.0,
        "push": 1.0,
        "lose": 0.0,
        "bust": 0.0,
        "dealer_blackjack": 0.0,
    }

    def validate(self, params: Dict) -> Dict:
        try:
            stand_on = int(params.get("stand_on", 17))
        except (TypeError, ValueError):
            raise InvalidWagerParams(f"Invalid stand_on: {params.get('stand_on')}")
        require(12 <= stand_on <= 21, f"Invalid stand_on: {stand_on}. Must be 12-21.")
        return {"stand_on": stand_on}

    def _create_deck(self) -> List[Card]:
        return [Card(rank, suit) for suit in Card.SUITS for rank in Card.RANKS]

    def shuffle(self, draws: Draws) -> List[Card]:
        """Fisher-Yates, swap i with j in [0, i] for i = 51..1."""
        deck = self._create_deck()
        for swap, i in enumerate(range(len(deck) - 1, 0, -1)):
            j = draws.below("shuffle", swap, i + 1)
            deck[i], deck[j] = deck[j], deck[i]
        return deck

    def _play(self, deck: List[Card], stand_on: int) -> Dict:
        cards = iter(deck)
        player_hand = BlackjackHand()
        dealer_hand = BlackjackHand()

        # Deal alternating cards
        player_hand.add_card(next(cards))
        dealer_hand.add_card(next(cards))
        player_hand.add_card(next(cards))
        dealer_hand.add_card(next(cards))

        if player_hand.is_blackjack:
            outcome = "push" if dealer_hand.is_blackjack else "blackjack"
        elif dealer_hand.is_blackjack:
            outcome = "dealer_blackjack"
        else:
            while player_hand.value < stand_on:
                player_hand.add_card(next(cards))

            if player_hand.is_bust:
                outcome = "bust"
            else:
                while dealer_hand.value < self.DEALER_STANDS_ON:
                    dealer_hand.add_card(next(cards))

                player_val = player_hand.value
                dealer_val = dealer_hand.value

                if dealer_hand.is_bust:
                    outcome = "dealer_bust"
                elif player_val > dealer_val:
                    outcome = "win"
                elif player_val < dealer_val:
                    outcome = "lose"
                else:
                    outcome = "push"

        return {
            "player_hand": player_hand.to_list(),
            "player_value": player_hand.value,
            "dealer_hand": dealer_hand.to_list(),
            "dealer_value": dealer_hand.value,
            "outcome": outcome,
        }

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        params = self.validate(params)
        deck = self.shuffle(draws)
        round_state = self._play(deck, params["stand_on"])

        return GameResult(
            game=self.game_type,
            outcome=dict(round_state, stand_on=params["stand_on"]),
            multiplier=self.PAYOUTS[round_state["outcome"]],
        )


# Singleton instance
blackjack_game = BlackjackGame()
