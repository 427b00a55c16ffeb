from typing import Dict, List, Tuple

from fairplay.config import GameConfig
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType


class SlotsGame:
    """
    3-reel slot machine with a fixed weight table and paytable.
    Three sevens pay the shared jackpot pool instead of a fixed multiplier.
    """

    game_type = GameType.SLOTS

    JACKPOT_SYMBOL = "seven"

    # Symbol definitions with weights (lower = rarer); order fixes the inversion
    SYMBOLS: List[Tuple[str, int]] = [
        ("seven", 1),
        ("diamond", 3),
        ("clover", 8),
        ("bell", 15),
        ("star", 25),
        ("cherry", 30),
        ("lemon", 40),
    ]

    DISPLAY = {
        "seven": "7️⃣",
        "diamond": "💎",
        "clover": "🍀",
        "bell": "🔔",
        "star": "⭐",
        "cherry": "🍒",
        "lemon": "🍋",
    }

    PAYOUTS_3X = {
        "diamond": 500,
        "clover": 100,
        "bell": 50,
        "star": 25,
        "cherry": 10,
        "lemon": 5,
    }

    PAYOUTS_2X = {
        "seven": 50,
        "diamond": 25,
        "clover": 10,
        "bell": 5,
        "star": 3,
        "cherry": 2,
        "lemon": 2,
    }

    REELS = 3

    def __init__(self):
        self._total_weight = sum(weight for _, weight in self.SYMBOLS)

    def validate(self, params: Dict) -> Dict:
        return {}

    def _spin_reel(self, u: float) -> str:
        """Cumulative-weight inversion of one draw."""
        target = u * self._total_weight
        cumulative = 0
        for symbol, weight in self.SYMBOLS:
            cumulative += weight
            if target < cumulative:
                return symbol
        return self.SYMBOLS[-1][0]

    def _calculate_multiplier(self, reels: List[str]) -> Tuple[float, str]:
        """
        Calculate the multiplier for a reel combination.
        Returns: (multiplier, win_type)
        """
        s1, s2, s3 = reels

        if s1 == s2 == s3:
            if s1 == self.JACKPOT_SYMBOL:
                return 0.0, "jackpot"
            return float(self.PAYOUTS_3X[s1]), "triple"

        # Two of a kind: first two, last two, or the outer pair
        for a, b in ((s1, s2), (s2, s3), (s1, s3)):
            if a == b:
                return float(self.PAYOUTS_2X[a]), "double"

        return 0.0, "lose"

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        """
        Spin the slot machine.

        A jackpot result carries multiplier 0 until the pool is claimed with
        `apply_jackpot`; the pool value is only known inside the pool lock.
        """
        reels = [self._spin_reel(draws.uniform("reel", i)) for i in range(self.REELS)]
        multiplier, win_type = self._calculate_multiplier(reels)

        return GameResult(
            game=self.game_type,
            outcome={
                "reels": reels,
                "display": [self.DISPLAY[s] for s in reels],
                "win_type": win_type,
            },
            multiplier=multiplier,
            jackpot=win_type == "jackpot",
        )

    def apply_jackpot(self, result: GameResult, paid: float, stake: float) -> GameResult:
        """Turn a claimed pool amount into the wager's total-return multiplier."""
        outcome = dict(result.outcome, jackpot_paid=paid)
        return result.model_copy(
            update={"outcome": outcome, "multiplier": paid / stake if stake > 0 else 0.0}
        )


# Singleton instance
slots_game = SlotsGame()
