import hashlib

import pytest

from fairplay.config import GameConfig
from fairplay.core.exceptions import InvalidWagerParams
from fairplay.core.fairness import Draws
from fairplay.core import games
from fairplay.core.games import (
    GameType,
    blackjack_game,
    coinflip_game,
    crash_game,
    dice_game,
    plinko_game,
    roulette_game,
    slots_game,
)
from fairplay.core.games.blackjack import Card


class FixedDraws:
    """Every draw returns the same value."""

    def __init__(self, value):
        self.value = value

    def uniform(self, domain_tag, index=0):
        return self.value

    def below(self, domain_tag, index, n):
        return min(int(self.value * n), n - 1)


def digests(count):
    for i in range(count):
        yield hashlib.sha256(f"seed-{i}".encode()).digest()


# ==================== Coinflip ====================

def test_coinflip_classic_pays_double():
    config = GameConfig()
    win = coinflip_game.resolve(FixedDraws(0.4999), {"choice": "tails"}, config)
    assert win.multiplier == 2.0
    assert win.outcome["result"] == "tails"

    lose = coinflip_game.resolve(FixedDraws(0.5), {"choice": "tails"}, config)
    assert lose.multiplier == 0.0
    assert lose.outcome["result"] == "heads"


def test_coinflip_modes_follow_win_chance():
    config = GameConfig()
    risky = coinflip_game.resolve(FixedDraws(0.32), {"mode": "risky"}, config)
    assert risky.multiplier == round(1 / 0.33, 4)
    extreme = coinflip_game.resolve(FixedDraws(0.2), {"mode": "extreme"}, config)
    assert extreme.multiplier == 0.0


def test_coinflip_house_edge_reduces_multiplier():
    result = coinflip_game.resolve(FixedDraws(0.1), {}, GameConfig(house_edge=0.02))
    assert result.multiplier == 1.96


# ==================== Dice ====================

def test_dice_fifty_percent_win_rate():
    config = GameConfig(house_edge=0.01)
    wins = sum(
        dice_game.resolve(Draws(digest), {"target": 50}, config).win
        for digest in digests(100_000)
    )
    assert 0.49 <= wins / 100_000 <= 0.51


def test_dice_roll_over_and_multiplier():
    config = GameConfig(house_edge=0.01)
    result = dice_game.resolve(FixedDraws(0.2), {"target": 75, "roll_over": True}, config)
    assert result.win
    assert result.multiplier == round(0.99 / 0.25, 4)
    assert result.outcome["roll"] > 75

    result = dice_game.resolve(FixedDraws(0.3), {"target": 25}, config)
    assert not result.win


@pytest.mark.parametrize("target", [0, 100, "abc"])
def test_dice_rejects_bad_target(target):
    with pytest.raises(InvalidWagerParams):
        dice_game.validate({"target": target})


# ==================== Crash ====================

def test_crash_below_edge_busts_at_one():
    assert crash_game.crash_point(0.005, 0.01) == 1.0
    assert crash_game.crash_point(0.0, 0.01) == 1.0


def test_crash_point_values():
    assert crash_game.crash_point(0.5, 0.01) == 1.98
    assert crash_game.crash_point(0.999999, 0.01) == 1000.0


def test_coinflip_mode_stake_caps():
    caps = {mode: games.max_stake(GameType.COINFLIP, {"choice": "heads", "mode": mode})
            for mode in coinflip_game.MODES}
    assert caps == {"classic": 10.0, "risky": 5.0, "extreme": 2.0}
    assert games.max_stake(GameType.DICE, {"target": 50, "roll_over": False}) is None


def test_crash_point_just_above_edge_is_near_one():
    # The first draws past the bust zone crash right at 1.00x, not at 100x
    assert crash_game.crash_point(0.01, 0.01) == 1.0
    assert crash_game.crash_point(0.02, 0.01) == 1.01
    assert crash_game.crash_point(0.75, 0.01) == 3.96


def test_crash_point_monotonic_above_edge():
    points = [crash_game.crash_point(0.01 + i * 0.0001, 0.01) for i in range(9800)]
    assert all(a <= b for a, b in zip(points, points[1:]))
    assert points[0] >= 1.0


def test_crash_cashout_rule():
    config = GameConfig(house_edge=0.01)
    win = crash_game.resolve(FixedDraws(0.5), {"cashout": 1.5}, config)
    assert win.multiplier == 1.5
    lose = crash_game.resolve(FixedDraws(0.5), {"cashout": 2.0}, config)
    assert lose.multiplier == 0.0
    assert lose.outcome["crash_point"] == 1.98


# ==================== Slots ====================

def test_slots_reel_inversion_edges():
    assert slots_game._spin_reel(0.0) == "seven"
    assert slots_game._spin_reel(0.9999) == "lemon"


@pytest.mark.parametrize(
    "reels, multiplier, win_type",
    [
        (["diamond", "diamond", "diamond"], 500.0, "triple"),
        (["cherry", "cherry", "lemon"], 2.0, "double"),
        (["lemon", "seven", "seven"], 50.0, "double"),
        (["bell", "star", "bell"], 5.0, "double"),
        (["bell", "star", "lemon"], 0.0, "lose"),
        (["seven", "seven", "seven"], 0.0, "jackpot"),
    ],
)
def test_slots_paytable(reels, multiplier, win_type):
    assert slots_game._calculate_multiplier(reels) == (multiplier, win_type)


def test_slots_jackpot_claim_sets_multiplier():
    result = slots_game.resolve(FixedDraws(0.0), {}, GameConfig())
    assert result.jackpot
    assert result.multiplier == 0.0

    claimed = slots_game.apply_jackpot(result, 75.0, 1.5)
    assert claimed.multiplier == 50.0
    assert claimed.outcome["jackpot_paid"] == 75.0


# ==================== Roulette ====================

def test_roulette_numbers_in_range():
    numbers = {roulette_game.spin(Draws(digest)) for digest in digests(3000)}
    assert numbers <= set(range(37))
    assert len(numbers) == 37


def test_roulette_straight_pays_36():
    for digest in digests(20):
        number = roulette_game.spin(Draws(digest))
        result = roulette_game.resolve(
            Draws(digest), {"bet_type": "straight", "bet_value": number}, GameConfig()
        )
        assert result.multiplier == 36.0


def test_roulette_outside_bets():
    assert roulette_game._check_win(0, "even", None) is False
    assert roulette_game._check_win(14, "red", None) is True
    assert roulette_game._check_win(25, "dozen", 3) is True
    assert roulette_game._check_win(34, "column", 1) is True
    assert roulette_game._check_win(36, "column", 3) is True


def test_roulette_rejects_bad_bets():
    with pytest.raises(InvalidWagerParams):
        roulette_game.validate({"bet_type": "corner"})
    with pytest.raises(InvalidWagerParams):
        roulette_game.validate({"bet_type": "straight", "bet_value": 37})


# ==================== Plinko ====================

def test_plinko_edges_of_board():
    config = GameConfig()
    right = plinko_game.resolve(FixedDraws(0.0), {"risk": "high"}, config)
    assert right.outcome["slot"] == 12
    assert right.multiplier == 50.0
    assert len(right.outcome["path"]) == 12

    left = plinko_game.resolve(FixedDraws(0.99), {"risk": "low"}, config)
    assert left.outcome["slot"] == 0
    assert left.multiplier == 3.0


def test_plinko_tables_are_symmetric():
    for table in plinko_game.MULTIPLIERS.values():
        assert len(table) == plinko_game.ROWS + 1
        assert table == table[::-1]


def test_plinko_right_bias_from_config():
    result = plinko_game.resolve(FixedDraws(0.6), {}, GameConfig(right_bias=0.7))
    assert result.outcome["slot"] == 12


# ==================== Blackjack ====================

def test_blackjack_shuffle_is_a_permutation():
    deck = blackjack_game.shuffle(Draws(next(digests(1))))
    assert len({str(card) for card in deck}) == 52
    again = blackjack_game.shuffle(Draws(next(digests(1))))
    assert [str(c) for c in deck] == [str(c) for c in again]


def test_blackjack_natural_pays_three_to_two():
    deck = [Card("A", "♠"), Card("9", "♥"), Card("K", "♠"), Card("7", "♦")]
    deck += blackjack_game._create_deck()
    state = blackjack_game._play(deck, 17)
    assert state["outcome"] == "blackjack"
    assert blackjack_game.PAYOUTS[state["outcome"]] == 2.5


def test_blackjack_player_bust():
    deck = [Card("10", "♠"), Card("9", "♥"), Card("5", "♠"), Card("8", "♦"), Card("K", "♣")]
    state = blackjack_game._play(deck, 17)
    assert state["outcome"] == "bust"
    assert state["player_value"] == 25


def test_blackjack_resolve_outcomes_valid():
    for digest in digests(200):
        result = blackjack_game.resolve(Draws(digest), {"stand_on": 16}, GameConfig())
        assert result.multiplier == blackjack_game.PAYOUTS[result.outcome["outcome"]]


# ==================== Dispatch ====================

def test_parse_game_type():
    assert games.parse_game_type(" Dice ") == GameType.DICE
    with pytest.raises(InvalidWagerParams):
        games.parse_game_type("baccarat")


def test_every_game_has_a_resolver():
    assert set(games.RESOLVERS) == set(GameType)


def test_resolve_never_negative():
    for game_type in GameType:
        params = games.validate_params(game_type, {"bet_type": "red"} if game_type == GameType.ROULETTE else {})
        for digest in digests(50):
            result = games.resolve(game_type, Draws(digest), params, GameConfig())
            assert result.multiplier >= 0
