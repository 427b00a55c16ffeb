import os
import sys
import tempfile

# Isolated database and sandbox bindings before any fairplay import
_TMP_DIR = tempfile.mkdtemp(prefix="fairplay-tests-")
os.environ["DB_PATH"] = os.path.join(_TMP_DIR, "fairplay.db")
os.environ["LEDGER_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import patch

import pytest

from fairplay.config import AppConfig
from fairplay.core.database import Database
from fairplay.core.fairness import SeedMaterial, fairness
from fairplay.core.ledger import InMemoryLedger, TransferStatus
from fairplay.core.seed_source import StaticSeedSource
from fairplay.core.settlement import WagerSettlementCoordinator
from fairplay.core.transport import LedgerTransport


def find_nonce(wager_id, public_hash, slot, escrow_reference, predicate):
    """First nonce whose outcome draw satisfies `predicate`."""
    for i in range(1000):
        nonce = f"{wager_id}-nonce-{i}"
        material = SeedMaterial(
            public_hash=public_hash,
            slot=slot,
            wager_id=wager_id,
            nonce=nonce,
            escrow_reference=escrow_reference,
        )
        if predicate(fairness.uniform(fairness.derive(material), "outcome", 0)):
            return nonce
    raise AssertionError("no nonce found")


@pytest.fixture
def app_config():
    config = AppConfig()
    config.payout.backoff_base_seconds = 0
    config.payout.confirm_timeout_seconds = 0
    config.escrow.poll_interval_seconds = 0
    config.escrow.timeout_seconds = 30
    return config


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "settlement.db")
    yield database
    database.close()


@pytest.fixture
def ledger():
    return InMemoryLedger("house", {"house": 100.0, "player": 50.0})


@pytest.fixture
def seed_source():
    return StaticSeedSource("test-blockhash", slot=1000)


@pytest.fixture
def coordinator(db, ledger, seed_source, app_config):
    transport = LedgerTransport(ledger, fee_reserve=app_config.ledger.fee_reserve)
    return WagerSettlementCoordinator(db, seed_source, ledger, transport, app_config)


@pytest.fixture
def make_wager(coordinator, ledger, seed_source):
    """
    Place, escrow and resolve a coinflip wager whose outcome is chosen up
    front by picking the server nonce.
    """

    async def _make(wager_id, win=True, stake=1.0, player="player", resolve=True):
        escrow_reference = f"escrow-{wager_id}"
        # Placement reads the current slot, resolution the next one
        resolution_slot = seed_source.slot + seed_source.step
        nonce = find_nonce(
            wager_id,
            seed_source.public_hash,
            resolution_slot,
            escrow_reference,
            (lambda u: u < 0.5) if win else (lambda u: u >= 0.5),
        )

        with patch("fairplay.core.settlement.secrets.token_hex", return_value=nonce):
            await coordinator.place_wager(player, "coinflip", {"choice": "heads"}, stake, wager_id=wager_id)

        ledger.register_transfer(escrow_reference, TransferStatus.CONFIRMED, player, "house", stake)
        await coordinator.submit_escrow(wager_id, escrow_reference)
        await coordinator.await_escrow(wager_id)
        if resolve:
            await coordinator.resolve(wager_id)
        return wager_id

    return _make
