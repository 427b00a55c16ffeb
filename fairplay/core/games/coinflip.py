from typing import Dict

from fairplay.config import GameConfig
from fairplay.core.fairness import Draws
from fairplay.core.games.base import GameResult, GameType, edge_multiplier, require


class CoinflipGame:
    """
    Coin flip with selectable risk modes.
    The flip wins when the outcome draw lands under the mode's win chance.
    """

    game_type = GameType.COINFLIP

    # Win chance per mode (classic is a fair 50/50 double-or-nothing)
    MODES = {
        "classic": 0.50,
        "risky": 0.33,
        "extreme": 0.20,
    }

    # Largest stake each mode accepts, in SOL
    MODE_MAX_BET = {
        "classic": 10.0,
        "risky": 5.0,
        "extreme": 2.0,
    }

    SIDES = ("heads", "tails")

    def validate(self, params: Dict) -> Dict:
        choice = str(params.get("choice", "heads")).lower().strip()
        require(choice in self.SIDES, f"Invalid choice: {choice}. Must be 'heads' or 'tails'.")

        mode = str(params.get("mode", "classic")).lower().strip()
        require(mode in self.MODES, f"Invalid mode: {mode}. Must be one of {sorted(self.MODES)}.")

        return {"choice": choice, "mode": mode}

    def max_stake(self, params: Dict) -> float:
        return self.MODE_MAX_BET[params["mode"]]

    def resolve(self, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
        """
        Flip the coin and resolve the bet.

        Returns:
            GameResult with the landed side and the total-return multiplier
        """
        params = self.validate(params)
        win_chance = self.MODES[params["mode"]]

        roll = draws.uniform("outcome", 0)
        win = roll < win_chance

        choice = params["choice"]
        other = "tails" if choice == "heads" else "heads"

        return GameResult(
            game=self.game_type,
            outcome={
                "result": choice if win else other,
                "choice": choice,
                "mode": params["mode"],
                "win_chance": win_chance,
                "roll": roll,
            },
            multiplier=edge_multiplier(win_chance, config.house_edge) if win else 0.0,
        )


# Singleton instance
coinflip_game = CoinflipGame()
