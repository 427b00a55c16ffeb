import sqlite3
import time

import pytest

from fairplay.config import JackpotConfig, PayoutConfig
from fairplay.core.database import Database
from fairplay.core.jackpot import JackpotPool
from fairplay.core.payout_ledger import PayoutLedger, PayoutStatus


@pytest.fixture
def payouts(db):
    return PayoutLedger(db, PayoutConfig(backoff_base_seconds=2.0, max_attempts=3))


@pytest.fixture
def pool(db):
    return JackpotPool(db, JackpotConfig(seed_amount=50.0, contribution_percent=2.0))


# ==================== Payout ledger ====================

def test_record_pending_is_idempotent(payouts):
    first = payouts.record_pending("w1", "player", 2.0)
    second = payouts.record_pending("w1", "player", 3.0)
    assert first["status"] == PayoutStatus.PENDING.value
    assert second["amount"] == 2.0
    assert len(payouts.pending()) == 1


def test_backoff_doubles_and_caps(payouts):
    assert payouts.backoff_delay(0) == 0.0
    assert payouts.backoff_delay(1) == 2.0
    assert payouts.backoff_delay(2) == 4.0
    assert payouts.backoff_delay(30) == payouts.config.backoff_max_seconds


def test_mark_failed_requeues_then_escalates(payouts):
    payouts.record_pending("w1", "player", 2.0)

    record = payouts.mark_failed("w1", "rpc down")
    assert record["status"] == PayoutStatus.RETRY.value
    assert record["attempts"] == 1
    assert record["next_attempt_at"] > time.time()
    assert payouts.due() == []

    payouts.mark_failed("w1", "rpc down")
    record = payouts.mark_failed("w1", "rpc down")
    assert record["status"] == PayoutStatus.FAILED.value
    assert record["attempts"] == 3
    assert [r["wager_id"] for r in payouts.failed()] == ["w1"]


def test_mark_blocked_keeps_attempts(payouts):
    payouts.record_pending("w1", "player", 2.0)
    payouts.mark_failed("w1", "timeout")
    assert payouts.mark_blocked("w1", "house balance low")

    record = payouts.get("w1")
    assert record["status"] == PayoutStatus.BLOCKED.value
    assert record["attempts"] == 1
    assert [r["wager_id"] for r in payouts.due()] == ["w1"]


def test_single_confirmation_per_wager(payouts):
    payouts.record_pending("w1", "player", 2.0)
    assert payouts.mark_sent("w1", "sig-1")
    assert payouts.mark_confirmed("w1", "sig-1")
    assert not payouts.mark_confirmed("w1", "sig-2")
    assert payouts.get("w1")["reference"] == "sig-1"
    assert payouts.pending() == []


def test_unconfirmed_send_keeps_reference(payouts):
    payouts.record_pending("w1", "player", 2.0)
    payouts.mark_sent("w1", "sig-1")
    assert payouts.mark_unconfirmed("w1", "sig-1", delay=30.0)

    record = payouts.get("w1")
    assert record["status"] == PayoutStatus.SENT.value
    assert record["reference"] == "sig-1"
    assert record["attempts"] == 0
    assert payouts.due() == []
    assert [r["wager_id"] for r in payouts.due(now=time.time() + 31)] == ["w1"]
    assert payouts.in_flight() == 2.0


def test_failed_send_drops_reference(payouts):
    payouts.record_pending("w1", "player", 2.0)
    payouts.mark_sent("w1", "sig-1")
    record = payouts.mark_failed("w1", "transfer sig-1 failed on ledger")

    assert record["status"] == PayoutStatus.RETRY.value
    assert record["reference"] is None
    assert payouts.in_flight() == 0.0
    assert not payouts.mark_unconfirmed("w1", "sig-1", delay=1.0)


def test_latest_is_newest_first(payouts):
    for n in range(5):
        payouts.record_pending(f"w{n}", "player", 1.0)
        payouts.mark_confirmed(f"w{n}", f"sig-{n}")

    assert [r["wager_id"] for r in payouts.latest("confirmed", limit=3)] == ["w4", "w3", "w2"]
    assert [r["wager_id"] for r in payouts.by_status("confirmed")][:2] == ["w0", "w1"]


def test_reopen_resets_attempts(payouts):
    payouts.record_pending("w1", "player", 2.0)
    for _ in range(3):
        payouts.mark_failed("w1", "down")
    assert payouts.reopen("w1")
    record = payouts.get("w1")
    assert record["status"] == PayoutStatus.RETRY.value
    assert record["attempts"] == 0


def test_by_status_rejects_unknown(payouts):
    with pytest.raises(ValueError):
        payouts.by_status("lost")


# ==================== Jackpot pool ====================

def test_pool_starts_at_seed(pool):
    assert pool.get("slots")["amount"] == 50.0


def test_contribution_is_idempotent_per_wager(pool):
    first = pool.settle("w1", "slots", 1.0, hit=False)
    again = pool.settle("w1", "slots", 1.0, hit=False)
    assert first["contribution"] == 0.02
    assert again["replayed"]
    assert pool.get("slots")["amount"] == 50.02


def test_hit_pays_pool_and_resets(pool):
    pool.settle("w1", "slots", 5.0, hit=False)
    result = pool.settle("w2", "slots", 1.0, hit=True)
    assert result["paid"] == 50.12
    assert result["pool"] == 50.0

    state = pool.get("slots")
    assert state["amount"] == 50.0
    assert state["hits"] == 1

    replay = pool.settle("w2", "slots", 1.0, hit=True)
    assert replay["paid"] == 50.12
    assert pool.get("slots")["hits"] == 1


def test_set_amount(pool):
    assert pool.set_amount("slots", 80.0)["amount"] == 80.0


# ==================== Database ====================

def _wager_row(wager_id, escrow_reference):
    return {
        "id": wager_id,
        "player_address": "player",
        "game_type": "coinflip",
        "params": {},
        "stake": 1.0,
        "status": "escrow_pending",
        "nonce": "n",
        "nonce_hash": "h",
        "escrow_reference": escrow_reference,
    }


def test_escrow_reference_is_unique(db):
    db.create_wager(_wager_row("a", "sig-shared"))
    db.create_wager(_wager_row("b", None))
    db.create_wager(_wager_row("c", None))
    with pytest.raises(sqlite3.IntegrityError):
        db.create_wager(_wager_row("d", "sig-shared"))
    assert db.get_wager("d") is None


def test_existing_database_gains_escrow_index(tmp_path):
    path = tmp_path / "old.db"
    old = Database(path)
    old.create_wager(_wager_row("a", "sig-1"))
    with old.transaction() as cursor:
        cursor.execute("DROP INDEX idx_wagers_escrow_reference")
    old.close()

    migrated = Database(path)
    indexes = {row[1] for row in migrated._get_connection().execute("PRAGMA index_list(wagers)")}
    assert "idx_wagers_escrow_reference" in indexes
    assert migrated.get_wager_by_escrow("sig-1")["id"] == "a"
    migrated.close()
