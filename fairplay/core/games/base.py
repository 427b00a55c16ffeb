from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from fairplay.core.exceptions import InvalidWagerParams


class GameType(str, Enum):
    COINFLIP = "coinflip"
    DICE = "dice"
    CRASH = "crash"
    SLOTS = "slots"
    ROULETTE = "roulette"
    PLINKO = "plinko"
    BLACKJACK = "blackjack"


class GameResult(BaseModel):
    """Resolved outcome of one wager. `multiplier` is total return per unit stake."""

    game: GameType
    outcome: Dict[str, Any] = Field(default_factory=dict)
    multiplier: float = 0.0
    jackpot: bool = False

    @property
    def win(self) -> bool:
        return self.multiplier > 0


def edge_multiplier(win_chance: float, house_edge: float) -> float:
    """Total return on a win for a bet that wins with `win_chance`."""
    return round((1 - house_edge) / win_chance, 4)


def require(condition: bool, message: str):
    if not condition:
        raise InvalidWagerParams(message)
