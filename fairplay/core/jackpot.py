from typing import Dict

from fairplay.config import JackpotConfig, settings
from fairplay.core.database import Database
from fairplay.core.logger import get_logger

logger = get_logger("jackpot")


class JackpotPool:
    """
    Shared per-game jackpot counter.

    Every wager on a jackpot game adds `contribution_percent` of its stake.
    A hit pays the whole pool (contribution included) and resets it to the
    seed amount. Both steps happen in one database transaction, keyed by
    wager id, so a resumed or retried wager never contributes twice.
    """

    def __init__(self, db: Database, config: JackpotConfig = None):
        self.db = db
        self.config = config or settings.jackpot

    def contribution_for(self, stake: float) -> float:
        return round(stake * self.config.contribution_percent / 100, 9)

    def get(self, game: str) -> Dict:
        pool = self.db.get_jackpot(game, self.config.seed_amount)
        return {
            "game": game,
            "amount": round(pool["amount"], 9),
            "seed_amount": pool["seed_amount"],
            "hits": pool["hits"],
            "last_hit_at": pool["last_hit_at"],
        }

    def settle(self, wager_id: str, game: str, stake: float, hit: bool) -> Dict:
        """
        Contribute and, on a hit, claim the pool.

        Returns:
            Dict with contribution, paid (0 unless hit) and the pool afterwards
        """
        result = self.db.apply_jackpot(
            wager_id, game, self.contribution_for(stake), hit, self.config.seed_amount
        )
        if result["paid"] > 0 and not result["replayed"]:
            logger.info(
                f"JACKPOT! {wager_id} won {result['paid']:.9f} SOL on {game}",
                extra={"wager_id": wager_id, "amount": result["paid"]},
            )
        result["paid"] = round(result["paid"], 9)
        return result

    def set_amount(self, game: str, amount: float) -> Dict:
        logger.info(f"Jackpot for {game} set to {amount}")
        self.db.set_jackpot(game, amount, self.config.seed_amount)
        return self.get(game)
