"""
Dice - roll under or over a target on a 0-100 scale.
Win chance follows the target, the multiplier follows the win chance.
"""

from typing import Dict

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, edge_multiplier, require


class DiceGame:
    """
    Target dice. `target` is 1-99; roll_over=False wins below the target,
    roll_over=True wins above it.
    """

    game_type = GameType.DICE

    MIN_TARGET = 1
    MAX_TARGET = 99

    def validate(self, params: Dict) -> Dict:
        try:
            target = int(params.get("target", 50))
        except (TypeError, ValueError):
            raise InvalidWagerParams(f"Invalid target: {params.get('target')}")

        require(
            self.MIN_TARGET <= target <= self.MAX_TARGET,
            f"Invalid target: {target}. Must be {self.MIN_TARGET}-{self.MAX_TARGET}.",
        )
        return {"target": target, "roll_over": bool(params.get("roll_over", False))}

    def win_chance(self, target: int, roll_over: bool) -> float:
        return (100 - target) / 100 if roll_over else target / 100

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        """
        Roll the dice and resolve the bet.

        The win test is always `draw < win_chance`; the displayed roll is
        mirrored for roll-over bets so that it reads above the target on a win.
        """
        params = self.validate(params)
        target, roll_over = params["target"], params["roll_over"]
        chance = self.win_chance(target, roll_over)

        u = draws.uniform("outcome", 0)
        win = u < chance

        roll = (100 - u * 100) if roll_over else u * 100

        return GameResult(
            game=self.game_type,
            outcome={
                "roll": round(roll, 2),
                "target": target,
                "roll_over": roll_over,
                "win_chance": chance,
            },
            multiplier=edge_multiplier(chance, config.house_edge) if win else 0.0,
        )


# Singleton instance
dice_game = DiceGame()
