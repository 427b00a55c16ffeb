"""
Durable payout queue.

One row per wager id. A row moves pending -> sent -> confirmed on the happy
path. A `sent` row keeps its reference until the ledger reports that
transfer confirmed or failed, and nothing new is sent for it meanwhile.
Failed sends go to `retry` with an exponential backoff until the
attempt cap, then to `failed` for operator escalation. `blocked` marks a
payout the house could not cover; it consumes no attempt.
"""

import time
from enum import Enum
from typing import Dict, List, Optional

from fairplay.config import PayoutConfig, settings
from fairplay.core.database import Database
from fairplay.core.logger import get_logger

logger = get_logger("payout_ledger")


class PayoutStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CONFIRMED = "confirmed"
    RETRY = "retry"
    BLOCKED = "blocked"
    FAILED = "failed"


# Statuses not yet terminal
OPEN = (
    PayoutStatus.PENDING.value,
    PayoutStatus.SENT.value,
    PayoutStatus.RETRY.value,
    PayoutStatus.BLOCKED.value,
)


class PayoutLedger:
    def __init__(self, db: Database, config: PayoutConfig = None):
        self.db = db
        self.config = config or settings.payout

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait after the given number of failed attempts."""
        if attempts <= 0:
            return 0.0
        delay = self.config.backoff_base_seconds * (2 ** (attempts - 1))
        return min(delay, self.config.backoff_max_seconds)

    def record_pending(self, wager_id: str, player_address: str, amount: float,
                       blockhash: str = None, slot: int = None) -> Dict:
        """
        Create the payout row for a wager, or return the existing one.
        The wager id is the idempotency key, so a second call never creates
        a second payout.
        """
        created = self.db.insert_payout({
            "wager_id": wager_id,
            "player_address": player_address,
            "amount": amount,
            "status": PayoutStatus.PENDING.value,
            "attempts": 0,
            "blockhash": blockhash,
            "slot": slot,
        })
        record = self.db.get_payout(wager_id)
        if created:
            logger.info(
                f"Payout queued for {wager_id}: {amount} SOL",
                extra={"wager_id": wager_id, "amount": amount},
            )
        elif abs(record["amount"] - amount) > 1e-9:
            logger.warning(
                f"Payout for {wager_id} already recorded with amount {record['amount']}, ignoring {amount}",
                extra={"wager_id": wager_id},
            )
        return record

    def get(self, wager_id: str) -> Optional[Dict]:
        return self.db.get_payout(wager_id)

    def mark_sent(self, wager_id: str, reference: str) -> bool:
        ok = self.db.update_payout(
            wager_id, OPEN,
            status=PayoutStatus.SENT.value, reference=reference, reason=None,
        )
        if ok:
            logger.info(f"Payout sent for {wager_id}: {reference}",
                        extra={"wager_id": wager_id, "reference": reference})
        return ok

    def mark_confirmed(self, wager_id: str, reference: str) -> bool:
        """Terminal success. Only one confirmation can land per wager id."""
        ok = self.db.update_payout(
            wager_id, OPEN,
            status=PayoutStatus.CONFIRMED.value,
            reference=reference,
            reason=None,
            next_attempt_at=None,
            confirmed_at=time.strftime("%Y-%m-%dT%H:%M:%S"),
        )
        if ok:
            logger.info(f"Payout confirmed for {wager_id}: {reference}",
                        extra={"wager_id": wager_id, "reference": reference})
        return ok

    def mark_failed(self, wager_id: str, reason: str) -> Dict:
        """
        Count a failed attempt. Re-queues with backoff, or escalates to
        `failed` once the attempt cap is reached.

        Returns:
            The updated payout record
        """
        record = self.db.get_payout(wager_id)
        if record is None:
            raise KeyError(wager_id)

        attempts = record["attempts"] + 1
        if attempts >= self.config.max_attempts:
            self.db.update_payout(
                wager_id, OPEN,
                status=PayoutStatus.FAILED.value,
                attempts=attempts,
                reference=None,
                reason=reason,
                next_attempt_at=None,
            )
            logger.error(
                f"Payout for {wager_id} failed after {attempts} attempts: {reason}",
                extra={"wager_id": wager_id, "attempts": attempts},
            )
        else:
            delay = self.backoff_delay(attempts)
            self.db.update_payout(
                wager_id, OPEN,
                status=PayoutStatus.RETRY.value,
                attempts=attempts,
                reference=None,
                reason=reason,
                next_attempt_at=time.time() + delay,
            )
            logger.warning(
                f"Payout attempt {attempts} for {wager_id} failed, retrying in {delay:.1f}s: {reason}",
                extra={"wager_id": wager_id, "attempts": attempts},
            )
        return self.db.get_payout(wager_id)

    def mark_unconfirmed(self, wager_id: str, reference: str, delay: float) -> bool:
        """The sent transfer has not landed yet; poll it again after `delay`."""
        ok = self.db.update_payout(
            wager_id, [PayoutStatus.SENT.value],
            reason=f"awaiting confirmation of {reference}",
            next_attempt_at=time.time() + delay,
        )
        if ok:
            logger.info(f"Payout for {wager_id} still unconfirmed: {reference}",
                        extra={"wager_id": wager_id, "reference": reference})
        return ok

    def mark_blocked(self, wager_id: str, reason: str) -> bool:
        """Insufficient house balance. The attempt count is left alone."""
        ok = self.db.update_payout(
            wager_id, OPEN,
            status=PayoutStatus.BLOCKED.value, reason=reason, next_attempt_at=None,
        )
        if ok:
            logger.warning(f"Payout blocked for {wager_id}: {reason}",
                           extra={"wager_id": wager_id})
        return ok

    def reopen(self, wager_id: str) -> bool:
        """Operator retry of an escalated payout: a fresh set of attempts."""
        return self.db.update_payout(
            wager_id, (PayoutStatus.FAILED.value, PayoutStatus.BLOCKED.value),
            status=PayoutStatus.RETRY.value, attempts=0, next_attempt_at=None,
        )

    def pending(self, limit: int = 100) -> List[Dict]:
        """Payouts not yet confirmed or escalated, blocked ones included."""
        return self.db.get_payouts_by_status(OPEN, limit)

    def failed(self, limit: int = 100) -> List[Dict]:
        return self.db.get_payouts_by_status([PayoutStatus.FAILED.value], limit)

    def blocked(self, limit: int = 100) -> List[Dict]:
        return self.db.get_payouts_by_status([PayoutStatus.BLOCKED.value], limit)

    def by_status(self, status: str, limit: int = 100) -> List[Dict]:
        return self.db.get_payouts_by_status([PayoutStatus(status).value], limit)

    def latest(self, status: str, limit: int = 50) -> List[Dict]:
        """Most recent rows first."""
        return self.db.get_payouts_by_status([PayoutStatus(status).value], limit, newest_first=True)

    def in_flight(self) -> float:
        """Total of sent payouts whose transfer has not reached a final state."""
        return self.db.sum_payouts([PayoutStatus.SENT.value])

    def due(self, now: float = None, limit: int = 50) -> List[Dict]:
        """Rows the worker should send or re-poll now."""
        return self.db.get_due_payouts(OPEN, now, limit)
