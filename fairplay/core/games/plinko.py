from typing import Dict, List

from fairplay.config import GameConfig
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, require


class PlinkoGame:
    """
    Plinko board simulation.
    Ball drops through rows of pegs, one independent draw per row.
    The number of right bounces is the landing slot.
    """

    ROWS = 12

    # 13 slots for 12 rows, symmetric around the center
    MULTIPLIERS: Dict[str, List[float]] = {
        "low": [3, 1.5, 1.2, 1.0, 0.7, 0.4, 0.3, 0.4, 0.7, 1.0, 1.2, 1.5, 3],
        "medium": [8, 3, 1.5, 0.5, 0.3, 0.2, 0.2, 0.2, 0.3, 0.5, 1.5, 3, 8],
        "high": [50, 15, 5, 3, 1.5, 0.5, 0.2, 0.5, 1.5, 3, 5, 15, 50],
    }

    DEFAULT_RIGHT_BIAS = 0.5

    game_type = GameType.PLINKO

    def validate(self, params: Dict) -> Dict:
        risk = str(params.get("risk", "medium")).lower().strip()
        require(risk in self.MULTIPLIERS, f"Invalid risk: {risk}. Must be 'low', 'medium', or 'high'.")
        return {"risk": risk}

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        """
        Drop the ball and resolve the bet.

        Returns:
            GameResult with path, landing slot and the slot multiplier
        """
        params = self.validate(params)
        multipliers = self.MULTIPLIERS[params["risk"]]
        right_bias = getattr(config, "right_bias", self.DEFAULT_RIGHT_BIAS)

        path = []
        for row in range(self.ROWS):
            path.append("R" if draws.uniform("peg", row) < right_bias else "L")

        slot = path.count("R")

        return GameResult(
            game=self.game_type,
            outcome={
                "path": path,
                "slot": slot,
                "risk": params["risk"],
            },
            multiplier=float(multipliers[slot]),
        )


# Singleton instance
plinko_game = PlinkoGame()
