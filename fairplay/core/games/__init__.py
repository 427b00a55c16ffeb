"""Outcome resolvers, one per game, dispatched by game type."""

from typing import Dict, Optional, Tuple

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws, SeedMaterial, fairness
from .base import GameResult, GameType
from .coinflip import CoinflipGame, coinflip_game
from .dice import DiceGame, dice_game
from .crash import CrashGame, crash_game
from .slots import SlotsGame, slots_game
from .roulette import RouletteGame, roulette_game
from .plinko import PlinkoGame, plinko_game
from .blackjack import BlackjackGame, blackjack_game

RESOLVERS = {
    GameType.COINFLIP: coinflip_game,
    GameType.DICE: dice_game,
    GameType.CRASH: crash_game,
    GameType.SLOTS: slots_game,
    GameType.ROULETTE: roulette_game,
    GameType.PLINKO: plinko_game,
    GameType.BLACKJACK: blackjack_game,
}


def parse_game_type(game: str) -> GameType:
    try:
        return GameType(str(game).lower().strip())
    except ValueError:
        raise InvalidWagerParams(f"Unknown game: {game}")


def validate_params(game_type: GameType, params: Dict) -> Dict:
    """Normalized params for the game, or InvalidWagerParams."""
    return RESOLVERS[game_type].validate(params or {})


def max_stake(game_type: GameType, params: Dict) -> Optional[float]:
    """Stake cap set by the validated params, for games whose options carry one."""
    resolver = RESOLVERS[game_type]
    if not hasattr(resolver, "max_stake"):
        return None
    return resolver.max_stake(params)


def resolve(game_type: GameType, draws: Draws, params: Dict, config: GameConfig) -> GameResult:
    """Run the game's resolver. Multipliers are never negative."""
    result = RESOLVERS[game_type].resolve(draws, params or {}, config)
    if result.multiplier < 0:
        raise ValueError(f"{game_type.value} produced a negative multiplier")
    return result


def replay(seed: SeedMaterial, game_type: GameType, params: Dict, config: GameConfig) -> Tuple[bytes, GameResult]:
    """
    Recompute a wager's digest and result from its revealed seed material.
    Jackpot results come back unclaimed (multiplier 0).
    """
    digest = fairness.derive(seed)
    return digest, resolve(game_type, Draws(digest), params, config)


__all__ = [
    "GameResult",
    "GameType",
    "RESOLVERS",
    "parse_game_type",
    "validate_params",
    "max_stake",
    "resolve",
    "replay",
    "CoinflipGame",
    "coinflip_game",
    "DiceGame",
    "dice_game",
    "CrashGame",
    "crash_game",
    "SlotsGame",
    "slots_game",
    "RouletteGame",
    "roulette_game",
    "PlinkoGame",
    "plinko_game",
    "BlackjackGame",
    "blackjack_game",
]
