import math
from typing import Dict

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, require


class CrashGame:
    """
    Crash with an automatic cash-out target.

    The crash point is fixed by one draw before the round is shown; the
    wager wins the cash-out multiplier if the curve reaches it.
    """

    game_type = GameType.CRASH

    MIN_CASHOUT = 1.01
    MAX_CRASH = 1000.0

    def validate(self, params: Dict) -> Dict:
        try:
            cashout = round(float(params.get("cashout", 2.0)), 2)
        except (TypeError, ValueError):
            raise InvalidWagerParams(f"Invalid cashout: {params.get('cashout')}")

        require(
            self.MIN_CASHOUT <= cashout <= self.MAX_CRASH,
            f"Invalid cashout: {cashout}. Must be {self.MIN_CASHOUT}-{self.MAX_CRASH}.",
        )
        return {"cashout": cashout}

    def crash_point(self, u: float, house_edge: float) -> float:
        """
        Map a uniform draw to a crash point.

        Draws under the house edge bust instantly at 1.00x. Above it,
        99 / (1 - u) is the crash point in hundredths, floored.
        """
        # The house formula floor(99 / (1 - u) * 100) / 100 mixes units: it
        # treats the hundredths value as a multiplier, so every round that
        # does not bust would crash at 100x or more. Read as hundredths here.
        if u < house_edge:
            return 1.0
        point = math.floor(99 / (1 - u)) / 100
        return max(1.0, min(point, self.MAX_CRASH))

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        params = self.validate(params)
        cashout = params["cashout"]

        point = self.crash_point(draws.uniform("outcome", 0), config.house_edge)
        cashed_out = cashout <= point

        return GameResult(
            game=self.game_type,
            outcome={
                "crash_point": point,
                "cashout": cashout,
                "cashed_out": cashed_out,
            },
            multiplier=min(cashout, point) if cashed_out else 0.0,
        )


# Singleton instance
crash_game = CrashGame()
