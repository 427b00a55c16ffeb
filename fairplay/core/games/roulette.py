from typing import Dict

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, require


class RouletteGame:
    """
    European Roulette (37 pockets: 0-36).
    One bet per wager; the pocket comes from a single outcome draw.
    """

    game_type = GameType.ROULETTE

    POCKETS = 37

    RED_NUMBERS = {1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36}
    BLACK_NUMBERS = {2, 4, 6, 8, 10, 11, 13, 15, 17, 20, 22, 24, 26, 28, 29, 31, 33, 35}

    # Payout multipliers (includes original bet return)
    PAYOUTS = {
        "straight": 36,  # Single number (35:1 + bet)
        "dozen": 3,  # 12 numbers (2:1 + bet)
        "column": 3,  # 12 numbers (2:1 + bet)
        "red": 2,
        "black": 2,
        "odd": 2,
        "even": 2,
        "low": 2,  # 1-18
        "high": 2,  # 19-36
    }

    # Bet types that need a bet_value and its allowed range
    VALUE_RANGES = {
        "straight": (0, 36),
        "dozen": (1, 3),
        "column": (1, 3),
    }

    def validate(self, params: Dict) -> Dict:
        bet_type = str(params.get("bet_type", "")).lower().strip()
        require(bet_type in self.PAYOUTS, f"Invalid bet type: {bet_type}")

        bet_value = None
        if bet_type in self.VALUE_RANGES:
            low, high = self.VALUE_RANGES[bet_type]
            try:
                bet_value = int(params.get("bet_value"))
            except (TypeError, ValueError):
                raise InvalidWagerParams(f"Invalid bet value for {bet_type}: {params.get('bet_value')}")
            require(low <= bet_value <= high, f"Bet value for {bet_type} must be {low}-{high}.")

        return {"bet_type": bet_type, "bet_value": bet_value}

    def _get_color(self, number: int) -> str:
        if number == 0:
            return "green"
        elif number in self.RED_NUMBERS:
            return "red"
        else:
            return "black"

    def _check_win(self, number: int, bet_type: str, bet_value) -> bool:
        """Check if a bet wins based on the spin result."""

        if bet_type == "straight":
            return number == bet_value

        elif bet_type == "red":
            return number in self.RED_NUMBERS

        elif bet_type == "black":
            return number in self.BLACK_NUMBERS

        elif bet_type == "odd":
            return number != 0 and number % 2 == 1

        elif bet_type == "even":
            return number != 0 and number % 2 == 0

        elif bet_type == "low":
            return 1 <= number <= 18

        elif bet_type == "high":
            return 19 <= number <= 36

        elif bet_type == "dozen":
            return number != 0 and (number - 1) // 12 + 1 == bet_value

        elif bet_type == "column":
            # Column 1: 1,4,7... Column 2: 2,5,8... Column 3: 3,6,9...
            return number != 0 and number % 3 == bet_value % 3

        return False

    def spin(self, draws: Draws) -> int:
        return draws.below("outcome", 0, self.POCKETS)

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        params = self.validate(params)
        number = self.spin(draws)
        win = self._check_win(number, params["bet_type"], params["bet_value"])

        return GameResult(
            game=self.game_type,
            outcome={
                "number": number,
                "color": self._get_color(number),
                "bet_type": params["bet_type"],
                "bet_value": params["bet_value"],
            },
            multiplier=float(self.PAYOUTS[params["bet_type"]]) if win else 0.0,
        )


# Singleton instance
roulette_game = RouletteGame()
