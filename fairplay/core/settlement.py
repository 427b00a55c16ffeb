"""
Wager settlement coordinator.

Drives each wager through escrow confirmation, outcome resolution and
payout:

    created -> escrow_pending -> escrow_confirmed -> resolving
        -> resolved_win | resolved_lose
        -> [payout_pending -> payout_confirmed] -> settled

with escrow_failed and payout_failed as the failure exits. Every status
change is a compare-and-set in the database, and every wager has a single
writer in this process (KeyedLocks), so repeated or concurrent calls for the
same wager cannot double-resolve or double-pay.
"""

import asyncio
import secrets
import sqlite3
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from fairplay.config import AppConfig, settings
from fairplay.core import games
from fairplay.core.database import Database
from fairplay.core.exceptions import (
    EscrowRejected,
    EscrowTimeout,
    InsufficientHouseBalance,
    InvalidTransition,
    InvalidWagerParams,
    LedgerUnavailable,
    PayoutSendFailed,
    PayoutUnconfirmed,
    SeedUnavailable,
    SettlementError,
    WagerNotFound,
)
from fairplay.core.fairness import Draws, SeedMaterial, fairness
from fairplay.core.games import GameResult, GameType, slots_game
from fairplay.core.idempotency import KeyedLocks
from fairplay.core.jackpot import JackpotPool
from fairplay.core.ledger import InMemoryLedger, Ledger, RpcLedger, TransferStatus
from fairplay.core.logger import get_logger
from fairplay.core.payout_ledger import PayoutLedger, PayoutStatus
from fairplay.core.rpc import SolanaRpcClient
from fairplay.core.seed_source import RpcSeedSource, SeedSource, StaticSeedSource
from fairplay.core.transport import PayoutTransport, select_transport

logger = get_logger("settlement")


class WagerStatus(str, Enum):
    CREATED = "created"
    ESCROW_PENDING = "escrow_pending"
    ESCROW_CONFIRMED = "escrow_confirmed"
    ESCROW_FAILED = "escrow_failed"
    RESOLVING = "resolving"
    RESOLVED_WIN = "resolved_win"
    RESOLVED_LOSE = "resolved_lose"
    PAYOUT_PENDING = "payout_pending"
    PAYOUT_CONFIRMED = "payout_confirmed"
    PAYOUT_FAILED = "payout_failed"
    SETTLED = "settled"


S = WagerStatus

# Games that feed a shared jackpot pool
JACKPOT_GAMES = {GameType.SLOTS}

RESOLVED = (S.RESOLVED_WIN, S.RESOLVED_LOSE, S.PAYOUT_PENDING, S.PAYOUT_CONFIRMED,
            S.PAYOUT_FAILED, S.SETTLED)


def _values(*statuses: WagerStatus) -> List[str]:
    return [s.value for s in statuses]


class WagerSettlementCoordinator:
    def __init__(self, db: Database, seed_source: SeedSource, ledger: Ledger,
                 transport: PayoutTransport, config: AppConfig = None,
                 payouts: PayoutLedger = None, jackpot: JackpotPool = None,
                 sleep=asyncio.sleep):
        self.db = db
        self.seed_source = seed_source
        self.ledger = ledger
        self.transport = transport
        self.config = config or settings
        self.payouts = payouts or PayoutLedger(db, self.config.payout)
        self.jackpot = jackpot or JackpotPool(db, self.config.jackpot)
        self.locks = KeyedLocks()
        self._sleep = sleep
        self._custody_lock = asyncio.Lock()

    # ==================== Helpers ====================

    def _get(self, wager_id: str) -> Dict:
        wager = self.db.get_wager(wager_id)
        if wager is None:
            raise WagerNotFound(f"Wager {wager_id} not found", wager_id)
        return wager

    def _transition(self, wager_id: str, from_statuses, to_status: WagerStatus, **fields) -> Dict:
        if not self.db.transition_wager(wager_id, _values(*from_statuses), to_status.value, **fields):
            current = self._get(wager_id)
            raise InvalidTransition(
                f"Wager {wager_id} is {current['status']}, cannot move to {to_status.value}",
                wager_id,
            )
        logger.info(f"Wager {wager_id} -> {to_status.value}",
                    extra={"wager_id": wager_id, "status": to_status.value})
        return self._get(wager_id)

    def _game_config(self, game_type: GameType):
        return self.config.games.get(game_type.value)

    def _receipt(self, wager: Dict, cached: bool = False) -> Dict:
        record = self.payouts.get(wager["id"])
        return {
            "wager_id": wager["id"],
            "status": wager["status"],
            "game": wager["game_type"],
            "stake": wager["stake"],
            "multiplier": wager["multiplier"],
            "payout_amount": wager["payout_amount"] or 0.0,
            "reference": record["reference"] if record else None,
            "attempts": record["attempts"] if record else 0,
            "result": wager["result"],
            "cached": cached,
        }

    # ==================== Placement & escrow ====================

    async def place_wager(self, player_address: str, game: str, params: Dict, stake: float,
                          wager_id: str = None) -> Dict:
        """
        Validate and record a wager. Nothing is transferred here.

        The public seed fetched now only anchors the escrow validity window;
        the outcome uses a seed observed after the escrow confirms.
        """
        game_type = games.parse_game_type(game)
        game_config = self._game_config(game_type)
        if not game_config or not game_config.enabled:
            raise InvalidWagerParams(f"Game {game_type.value} is disabled")

        if not isinstance(player_address, str) or not player_address.strip():
            raise InvalidWagerParams("Player address is required")

        try:
            stake = round(float(stake), 9)
        except (TypeError, ValueError):
            raise InvalidWagerParams(f"Invalid stake: {stake}")

        params = games.validate_params(game_type, params)

        max_bet = game_config.max_bet
        cap = games.max_stake(game_type, params)
        if cap is not None:
            max_bet = min(max_bet, cap)
        if not (game_config.min_bet <= stake <= max_bet):
            raise InvalidWagerParams(
                f"Stake {stake} outside [{game_config.min_bet}, {max_bet}] for {game_type.value}"
            )

        wager_id = wager_id or uuid.uuid4().hex
        if self.db.get_wager(wager_id) is not None:
            raise InvalidTransition(f"Wager {wager_id} already exists", wager_id)

        anchor_hash, anchor_slot = await self.seed_source.get_public_seed()

        nonce = secrets.token_hex(32)
        self.db.create_wager({
            "id": wager_id,
            "player_address": player_address.strip(),
            "game_type": game_type.value,
            "params": params,
            "stake": stake,
            "status": S.CREATED.value,
            "nonce": nonce,
            "nonce_hash": fairness.commit(nonce),
            "anchor_hash": anchor_hash,
            "anchor_slot": anchor_slot,
            "escrow_deadline": time.time() + self.config.escrow.timeout_seconds,
        })

        logger.info(
            f"Wager placed: {wager_id} {game_type.value} {stake} SOL by {player_address}",
            extra={"wager_id": wager_id, "game": game_type.value, "stake": stake},
        )
        return self.get_wager_status(wager_id)

    async def submit_escrow(self, wager_id: str, reference: str = None) -> Dict:
        """Record the escrow transfer, submitting it when no reference is given."""
        async with self.locks.hold(wager_id):
            await self._submit_escrow(wager_id, reference)
        return self.get_wager_status(wager_id)

    async def _submit_escrow(self, wager_id: str, reference: str = None) -> Dict:
        wager = self._get(wager_id)

        if wager["status"] == S.ESCROW_PENDING.value and reference in (None, wager["escrow_reference"]):
            return wager
        if wager["status"] != S.CREATED.value:
            raise InvalidTransition(
                f"Wager {wager_id} is {wager['status']}, escrow already handled", wager_id
            )

        if time.time() > wager["escrow_deadline"]:
            self._transition(wager_id, [S.CREATED], S.ESCROW_FAILED, error="escrow window expired")
            raise EscrowTimeout(f"Escrow window for {wager_id} expired", wager_id)

        if reference is None:
            reference = await self.ledger.submit_transfer(
                wager["player_address"], self.ledger.house_address, wager["stake"], memo=wager_id
            )
            logger.info(f"Escrow submitted for {wager_id}: {reference}",
                        extra={"wager_id": wager_id, "reference": reference})
        else:
            owner = self.db.get_wager_by_escrow(reference)
            if owner is not None and owner["id"] != wager_id:
                raise EscrowRejected(f"Escrow {reference} already funds wager {owner['id']}", wager_id)

        try:
            return self._transition(wager_id, [S.CREATED], S.ESCROW_PENDING, escrow_reference=reference)
        except sqlite3.IntegrityError:
            raise EscrowRejected(f"Escrow {reference} already funds another wager", wager_id)

    async def _accept_escrow(self, wager: Dict) -> Optional[Dict]:
        """
        Confirm the escrow once the ledger shows the transfer carrying the
        stake from the player to the house. None while the transfer details
        cannot be read yet.

        Raises:
            EscrowRejected: the transfer does not fund this wager
        """
        wager_id = wager["id"]
        reference = wager["escrow_reference"]
        try:
            funded = await self.ledger.verify_transfer(
                reference, wager["player_address"], self.ledger.house_address, wager["stake"]
            )
        except LedgerUnavailable as e:
            logger.warning(f"Escrow verification for {wager_id} failed: {e}", extra={"wager_id": wager_id})
            return None

        if funded is None:
            return None
        if not funded:
            self._transition(wager_id, [S.ESCROW_PENDING], S.ESCROW_FAILED,
                             error="escrow transfer does not fund this wager")
            raise EscrowRejected(
                f"Escrow {reference} does not carry {wager['stake']} SOL from "
                f"{wager['player_address']} to the house",
                wager_id,
            )
        return self._transition(wager_id, [S.ESCROW_PENDING], S.ESCROW_CONFIRMED)

    async def await_escrow(self, wager_id: str) -> Dict:
        async with self.locks.hold(wager_id):
            await self._await_escrow(wager_id)
        return self.get_wager_status(wager_id)

    async def _await_escrow(self, wager_id: str) -> Dict:
        """
        Poll the escrow transfer with backoff until it confirms, fails, or
        the validity window closes.
        """
        wager = self._get(wager_id)
        status = WagerStatus(wager["status"])

        if status == S.ESCROW_FAILED:
            raise EscrowRejected(f"Escrow for {wager_id} failed: {wager['error']}", wager_id)
        if status not in (S.ESCROW_PENDING, S.CREATED):
            return wager
        if status == S.CREATED:
            raise InvalidTransition(f"Wager {wager_id} has no escrow yet", wager_id)

        reference = wager["escrow_reference"]
        interval = self.config.escrow.poll_interval_seconds

        while True:
            try:
                transfer = await self.ledger.confirm_transfer(reference)
            except LedgerUnavailable as e:
                logger.warning(f"Escrow check for {wager_id} failed: {e}", extra={"wager_id": wager_id})
                transfer = TransferStatus.PENDING

            if transfer == TransferStatus.CONFIRMED:
                accepted = await self._accept_escrow(wager)
                if accepted is not None:
                    return accepted
            elif transfer == TransferStatus.FAILED:
                self._transition(wager_id, [S.ESCROW_PENDING], S.ESCROW_FAILED,
                                 error="escrow transfer failed")
                raise EscrowRejected(f"Escrow transfer {reference} failed", wager_id)

            remaining = wager["escrow_deadline"] - time.time()
            if remaining <= 0:
                self._transition(wager_id, [S.ESCROW_PENDING], S.ESCROW_FAILED,
                                 error="escrow not confirmed in time")
                raise EscrowTimeout(f"Escrow {reference} not confirmed in time", wager_id)

            await self._sleep(min(interval, remaining))
            interval = min(interval * 2, self.config.escrow.poll_max_interval_seconds)

    # ==================== Resolution ====================

    async def resolve(self, wager_id: str) -> Dict:
        async with self.locks.hold(wager_id):
            await self._resolve(wager_id)
        return self.get_wager_status(wager_id)

    async def _resolve(self, wager_id: str) -> Dict:
        wager = self._get(wager_id)
        status = WagerStatus(wager["status"])

        if status in RESOLVED:
            return wager
        if status not in (S.ESCROW_CONFIRMED, S.RESOLVING):
            raise InvalidTransition(
                f"Wager {wager_id} is {status.value}, escrow must be confirmed first", wager_id
            )

        if status == S.RESOLVING and wager["seed_hash"]:
            # Interrupted resolution: the seed is already fixed
            seed_hash, seed_slot = wager["seed_hash"], wager["seed_slot"]
        else:
            try:
                seed_hash, seed_slot = await self.seed_source.get_public_seed()
            except SeedUnavailable as e:
                self.db.update_wager(wager_id, error=e.message)
                e.wager_id = wager_id
                raise
            wager = self._transition(
                wager_id, [S.ESCROW_CONFIRMED, S.RESOLVING], S.RESOLVING,
                seed_hash=seed_hash, seed_slot=seed_slot,
            )

        game_type = GameType(wager["game_type"])
        material = SeedMaterial(
            public_hash=seed_hash,
            slot=seed_slot,
            wager_id=wager_id,
            nonce=wager["nonce"],
            escrow_reference=wager["escrow_reference"] or "",
        )
        digest = fairness.derive(material)
        result = games.resolve(game_type, Draws(digest), wager["params"], self._game_config(game_type))

        if game_type in JACKPOT_GAMES:
            pool = self.jackpot.settle(wager_id, game_type.value, wager["stake"], result.jackpot)
            if result.jackpot:
                result = slots_game.apply_jackpot(result, pool["paid"], wager["stake"])

        payout_amount = round(wager["stake"] * result.multiplier, 9)
        outcome = S.RESOLVED_WIN if result.win else S.RESOLVED_LOSE

        logger.info(
            f"Wager {wager_id} resolved: {game_type.value} x{result.multiplier} -> {payout_amount} SOL",
            extra={"wager_id": wager_id, "digest": digest.hex(), "multiplier": result.multiplier},
        )
        return self._transition(
            wager_id, [S.RESOLVING], outcome,
            digest=digest.hex(),
            result=result.model_dump(mode="json"),
            multiplier=result.multiplier,
            payout_amount=payout_amount,
            error=None,
        )

    # ==================== Settlement ====================

    async def settle(self, wager_id: str) -> Dict:
        """
        Pay out (if won) and settle. Settling an already settled wager
        returns its receipt without another transfer.
        """
        async with self.locks.hold(wager_id):
            return await self._settle(wager_id)

    async def _settle(self, wager_id: str) -> Dict:
        wager = self._get(wager_id)
        status = WagerStatus(wager["status"])

        if status == S.SETTLED:
            return self._receipt(wager, cached=True)
        if status == S.PAYOUT_CONFIRMED:
            return self._receipt(self._transition(wager_id, [S.PAYOUT_CONFIRMED], S.SETTLED))
        if status == S.RESOLVED_LOSE:
            return self._receipt(self._transition(wager_id, [S.RESOLVED_LOSE], S.SETTLED))
        if status == S.PAYOUT_FAILED:
            raise PayoutSendFailed(
                f"Payout for {wager_id} is escalated; use an operator retry",
                wager_id,
                attempts=(self.payouts.get(wager_id) or {}).get("attempts", 0),
            )
        if status not in (S.RESOLVED_WIN, S.PAYOUT_PENDING):
            raise InvalidTransition(f"Wager {wager_id} is {status.value}, not resolved", wager_id)

        return await self._pay(wager)

    async def _pay(self, wager: Dict) -> Dict:
        wager_id = wager["id"]
        self.payouts.record_pending(
            wager_id, wager["player_address"], wager["payout_amount"],
            blockhash=wager["seed_hash"], slot=wager["seed_slot"],
        )

        if wager["status"] == S.RESOLVED_WIN.value:
            self._transition(wager_id, [S.RESOLVED_WIN], S.PAYOUT_PENDING)

        try:
            record = await self._deliver(wager_id)
        except InsufficientHouseBalance:
            self._transition(wager_id, [S.PAYOUT_PENDING], S.RESOLVED_WIN,
                             error="insufficient house balance")
            raise
        except PayoutSendFailed as e:
            self._transition(wager_id, [S.PAYOUT_PENDING], S.PAYOUT_FAILED, error=e.message)
            raise

        self._transition(wager_id, [S.PAYOUT_PENDING], S.PAYOUT_CONFIRMED, error=None)
        wager = self._transition(wager_id, [S.PAYOUT_CONFIRMED], S.SETTLED)
        logger.info(
            f"Wager {wager_id} settled: paid {record['amount']} SOL ({record['reference']})",
            extra={"wager_id": wager_id, "reference": record["reference"]},
        )
        return self._receipt(wager)

    async def _check_transfer(self, reference: str) -> TransferStatus:
        try:
            return await self.transport.status(reference)
        except LedgerUnavailable as e:
            logger.warning(f"Status check for {reference} failed: {e}")
            return TransferStatus.PENDING

    async def _await_confirmation(self, reference: str) -> TransferStatus:
        deadline = time.monotonic() + self.config.payout.confirm_timeout_seconds
        interval = self.config.escrow.poll_interval_seconds

        while True:
            status = await self._check_transfer(reference)
            if status != TransferStatus.PENDING:
                return status
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return status
            await self._sleep(min(interval, remaining))
            interval = min(interval * 2, self.config.escrow.poll_max_interval_seconds)

    async def _deliver(self, payout_id: str) -> Dict:
        """
        Send the queued payout and see it confirmed.

        A sent transfer is only replaced once the ledger reports it failed or
        expired. While it may still land, PayoutUnconfirmed is raised and the
        row stays `sent` for the worker to poll again.

        Returns:
            The confirmed payout record
        """
        record = self.payouts.get(payout_id)

        while True:
            if record["status"] == PayoutStatus.CONFIRMED.value:
                return record
            if record["status"] == PayoutStatus.FAILED.value:
                raise PayoutSendFailed(
                    f"Payout {payout_id} failed after {record['attempts']} attempts: {record['reason']}",
                    payout_id, attempts=record["attempts"],
                )

            outstanding = record["reference"]
            if outstanding:
                confirmation = await self._await_confirmation(outstanding)
                if confirmation == TransferStatus.CONFIRMED:
                    self.payouts.mark_confirmed(payout_id, outstanding)
                    return self.payouts.get(payout_id)
                if confirmation == TransferStatus.PENDING:
                    delay = max(self.payouts.backoff_delay(1), self.config.escrow.poll_interval_seconds)
                    self.payouts.mark_unconfirmed(payout_id, outstanding, delay)
                    raise PayoutUnconfirmed(
                        f"Payout {payout_id} sent as {outstanding}, not confirmed yet",
                        payout_id, reference=outstanding,
                    )
                record = self.payouts.mark_failed(payout_id, f"transfer {outstanding} failed on ledger")
                if record["status"] == PayoutStatus.RETRY.value:
                    await self._sleep(self.payouts.backoff_delay(record["attempts"]))
                continue

            amount = record["amount"]
            reference = None
            async with self._custody_lock:
                available = await self.transport.available_balance()
                if available is not None:
                    # Sent but unconfirmed payouts may not show in the balance yet
                    available -= self.payouts.in_flight()
                    if available < amount:
                        reason = f"house balance {available:.9f} below payout {amount:.9f}"
                        self.payouts.mark_blocked(payout_id, reason)
                        raise InsufficientHouseBalance(
                            f"Insufficient house balance for {payout_id}: {reason}",
                            payout_id, required=amount, available=available,
                        )
                try:
                    reference = await self.transport.send(
                        payout_id, record["player_address"], amount,
                        blockhash=record["blockhash"], slot=record["slot"],
                    )
                except LedgerUnavailable as e:
                    failure = e.message
                else:
                    self.payouts.mark_sent(payout_id, reference)

            if reference is not None:
                record = self.payouts.get(payout_id)
                continue

            record = self.payouts.mark_failed(payout_id, failure)
            if record["status"] == PayoutStatus.RETRY.value:
                await self._sleep(self.payouts.backoff_delay(record["attempts"]))

    async def retry_payout(self, wager_id: str) -> Dict:
        """Operator retry of an escalated or blocked payout."""
        async with self.locks.hold(wager_id):
            wager = self.db.get_wager(wager_id)
            if wager is None:
                return await self._retry_direct(wager_id)
            status = WagerStatus(wager["status"])

            if status in (S.SETTLED, S.PAYOUT_CONFIRMED):
                return await self._settle(wager_id)
            if status not in (S.PAYOUT_FAILED, S.RESOLVED_WIN):
                raise InvalidTransition(f"Wager {wager_id} is {status.value}, nothing to retry", wager_id)

            logger.info(f"Operator retry for {wager_id}", extra={"wager_id": wager_id})
            self.payouts.reopen(wager_id)
            if status == S.PAYOUT_FAILED:
                wager = self._transition(wager_id, [S.PAYOUT_FAILED], S.RESOLVED_WIN)
            return await self._pay(wager)

    async def _retry_direct(self, game_id: str) -> Dict:
        """Retry for a payout recorded through request_payout, with no wager behind it."""
        record = self.payouts.get(game_id)
        if record is None:
            raise WagerNotFound(f"No wager or payout {game_id}", game_id)
        if record["status"] == PayoutStatus.CONFIRMED.value:
            return {"success": True, "signature": record["reference"],
                    "message": "Payout already processed"}

        logger.info(f"Operator retry for payout {game_id}", extra={"wager_id": game_id})
        self.payouts.reopen(game_id)
        record = await self._deliver(game_id)
        return {"success": True, "signature": record["reference"]}

    async def request_payout(self, player_wallet: str, amount: float, game_id: str,
                             blockhash: str = None, slot: int = None) -> Dict:
        """
        Direct payout request keyed by game id. Repeating a confirmed request
        returns the first signature instead of paying again.

        Raises:
            InvalidTransition: the game id is mid-payout or belongs to a wager
            InsufficientHouseBalance, PayoutSendFailed: nothing was paid
        """
        if not player_wallet or not game_id:
            raise InvalidWagerParams("Missing required fields: playerWallet, amount, gameId")
        try:
            amount = round(float(amount), 9)
        except (TypeError, ValueError):
            raise InvalidWagerParams(f"Invalid amount: {amount}")
        if amount <= 0:
            raise InvalidWagerParams(f"Invalid amount: {amount}")

        if self.db.get_wager(game_id) is not None:
            raise InvalidTransition(f"{game_id} is a wager; settle it instead", game_id)
        if self.locks.locked(game_id):
            raise InvalidTransition(f"Payout for {game_id} is already being processed", game_id)

        async with self.locks.hold(game_id):
            record = self.payouts.record_pending(game_id, player_wallet, amount, blockhash, slot)
            if record["status"] == PayoutStatus.CONFIRMED.value:
                return {"success": True, "signature": record["reference"],
                        "message": "Payout already processed"}

            record = await self._deliver(game_id)
            return {"success": True, "signature": record["reference"]}

    # ==================== End to end ====================

    async def process_wager(self, wager_id: str, escrow_reference: str = None) -> Dict:
        """Run a wager from wherever it stands through to settlement."""
        async with self.locks.hold(wager_id):
            wager = self._get(wager_id)
            if wager["status"] == S.CREATED.value:
                await self._submit_escrow(wager_id, escrow_reference)
            await self._await_escrow(wager_id)
            await self._resolve(wager_id)
            return await self._settle(wager_id)

    # ==================== Queries ====================

    def get_wager_status(self, wager_id: str) -> Dict:
        wager = self._get(wager_id)
        status = WagerStatus(wager["status"])
        data = {
            "wager_id": wager["id"],
            "status": status.value,
            "game": wager["game_type"],
            "player_address": wager["player_address"],
            "params": wager["params"],
            "stake": wager["stake"],
            "nonce_commitment": wager["nonce_hash"],
            "escrow_reference": wager["escrow_reference"],
            "escrow_deadline": wager["escrow_deadline"],
            "error": wager["error"],
            "created_at": wager["created_at"],
            "updated_at": wager["updated_at"],
        }
        if status in RESOLVED:
            data["result"] = wager["result"]
            data["multiplier"] = wager["multiplier"]
            data["payout_amount"] = wager["payout_amount"]
        record = self.payouts.get(wager_id)
        if record:
            data["payout"] = {
                "status": record["status"],
                "amount": record["amount"],
                "attempts": record["attempts"],
                "reference": record["reference"],
                "reason": record["reason"],
            }
        return data

    def audit(self, wager_id: str) -> Dict:
        """
        Reveal the seed material of a resolved wager and replay it.
        `verified` is True when the replay reproduces the recorded result.
        """
        wager = self._get(wager_id)
        if WagerStatus(wager["status"]) not in RESOLVED or not wager["digest"]:
            raise InvalidTransition(f"Wager {wager_id} is not resolved yet", wager_id)

        game_type = GameType(wager["game_type"])
        material = SeedMaterial(
            public_hash=wager["seed_hash"],
            slot=wager["seed_slot"],
            wager_id=wager_id,
            nonce=wager["nonce"],
            escrow_reference=wager["escrow_reference"] or "",
        )
        digest, replayed = games.replay(material, game_type, wager["params"], self._game_config(game_type))
        recorded = wager["result"]

        return {
            "wager_id": wager_id,
            "seed_material": material.model_dump(),
            "nonce_commitment": wager["nonce_hash"],
            "commitment_valid": fairness.commit(wager["nonce"]) == wager["nonce_hash"],
            "digest": digest.hex(),
            "digest_matches": digest.hex() == wager["digest"],
            "recorded_result": recorded,
            "replayed_result": replayed.model_dump(mode="json"),
            "verified": self._replay_matches(recorded, replayed),
        }

    @staticmethod
    def _replay_matches(recorded: Dict, replayed: GameResult) -> bool:
        replay = replayed.model_dump(mode="json")
        outcome = {k: v for k, v in recorded["outcome"].items() if k != "jackpot_paid"}
        if outcome != replay["outcome"] or recorded["jackpot"] != replay["jackpot"]:
            return False
        # Claimed jackpots carry the pool amount, which is not replayable
        return recorded["jackpot"] or recorded["multiplier"] == replay["multiplier"]

    def get_jackpot(self, game: str) -> Dict:
        game_type = games.parse_game_type(game)
        if game_type not in JACKPOT_GAMES:
            raise InvalidWagerParams(f"{game_type.value} has no jackpot")
        return self.jackpot.get(game_type.value)

    async def get_house_balance(self) -> Dict:
        address = self.ledger.house_address
        balance = await self.ledger.get_balance(address) if address else None
        return {
            "address": address,
            "balance": balance,
            "fee_reserve": self.config.ledger.fee_reserve,
            "available": max(balance - self.config.ledger.fee_reserve, 0.0) if balance is not None else None,
            "in_flight": self.payouts.in_flight(),
        }

    # ==================== Worker sweeps ====================

    async def cancel_expired_escrows(self, now: float = None) -> int:
        """Fail wagers whose escrow window closed without a confirmation."""
        now = time.time() if now is None else now
        cancelled = 0

        for wager in self.db.get_wagers_by_status(_values(S.CREATED, S.ESCROW_PENDING)):
            wager_id = wager["id"]
            if wager["escrow_deadline"] > now or self.locks.locked(wager_id):
                continue

            async with self.locks.hold(wager_id):
                wager = self._get(wager_id)
                if wager["status"] == S.ESCROW_PENDING.value:
                    # Last look: a confirmation that beat the deadline still counts
                    transfer = await self._check_transfer_on_ledger(wager["escrow_reference"])
                    if transfer == TransferStatus.CONFIRMED:
                        try:
                            accepted = await self._accept_escrow(wager)
                        except EscrowRejected:
                            cancelled += 1
                            continue
                        if accepted is not None:
                            continue
                elif wager["status"] != S.CREATED.value:
                    continue

                self._transition(wager_id, [S.CREATED, S.ESCROW_PENDING], S.ESCROW_FAILED,
                                 error="escrow window expired")
                cancelled += 1

        if cancelled:
            logger.info(f"Cancelled {cancelled} expired escrows")
        return cancelled

    async def _check_transfer_on_ledger(self, reference: str) -> TransferStatus:
        try:
            return await self.ledger.confirm_transfer(reference)
        except LedgerUnavailable as e:
            logger.warning(f"Escrow check for {reference} failed: {e}")
            return TransferStatus.PENDING

    async def resume_pending(self) -> int:
        """
        Move interrupted wagers forward: confirmed escrows get resolved and
        resolved wagers without a queued payout get settled. Pending escrows
        get one confirmation check.
        """
        resumed = 0
        statuses = _values(S.ESCROW_PENDING, S.ESCROW_CONFIRMED, S.RESOLVING,
                           S.RESOLVED_LOSE, S.RESOLVED_WIN, S.PAYOUT_CONFIRMED)

        for wager in self.db.get_wagers_by_status(statuses):
            wager_id = wager["id"]
            if self.locks.locked(wager_id):
                continue
            if wager["status"] == S.RESOLVED_WIN.value and self.payouts.get(wager_id):
                continue  # the payout queue owns it

            try:
                async with self.locks.hold(wager_id):
                    wager = self._get(wager_id)
                    if wager["status"] == S.ESCROW_PENDING.value:
                        transfer = await self._check_transfer_on_ledger(wager["escrow_reference"])
                        if transfer != TransferStatus.CONFIRMED:
                            continue
                        if await self._accept_escrow(wager) is None:
                            continue
                    await self._resolve(wager_id)
                    await self._settle(wager_id)
                    resumed += 1
            except PayoutUnconfirmed as e:
                logger.info(f"Resume of {wager_id} awaiting payout: {e.message}", extra={"wager_id": wager_id})
            except InsufficientHouseBalance as e:
                logger.warning(f"Resume of {wager_id} blocked: {e.message}", extra={"wager_id": wager_id})
            except SettlementError as e:
                logger.error(f"Resume of {wager_id} failed: {e.message}", extra={"wager_id": wager_id})

        return resumed

    async def drain_payout_queue(self) -> int:
        """Retry due payouts. Returns how many confirmed."""
        confirmed = 0

        for record in self.payouts.due():
            payout_id = record["wager_id"]
            if self.locks.locked(payout_id):
                continue

            try:
                async with self.locks.hold(payout_id):
                    wager = self.db.get_wager(payout_id)
                    if wager is None:
                        await self._deliver(payout_id)
                    else:
                        await self._settle(payout_id)
                    confirmed += 1
            except PayoutUnconfirmed as e:
                logger.info(f"Payout {payout_id} awaiting confirmation: {e.message}")
            except InsufficientHouseBalance as e:
                logger.warning(f"Payout {payout_id} still blocked: {e.message}")
            except SettlementError as e:
                logger.error(f"Payout {payout_id} not delivered: {e.message}")

        return confirmed

    async def close(self):
        await self.transport.close()
        await self.ledger.close()


def build_coordinator(config: AppConfig = None, db: Database = None) -> WagerSettlementCoordinator:
    """Wire the coordinator with the bindings named in config."""
    config = config or settings
    db = db or Database(config.paths.get_db_path())

    if config.ledger.backend == "memory":
        house = config.ledger.house_address or "house"
        ledger = InMemoryLedger(house, {house: config.ledger.sandbox_house_balance})
        seed_source = StaticSeedSource()
        logger.warning("Using in-memory sandbox ledger and static seed source")
    elif config.ledger.backend == "rpc":
        client = SolanaRpcClient(config.ledger.rpc_urls, config.ledger.request_timeout_seconds)
        ledger = RpcLedger(
            client,
            config.ledger.house_address,
            config.ledger.signer_url,
            commitment=config.ledger.commitment,
            timeout=config.ledger.request_timeout_seconds,
        )
        seed_source = RpcSeedSource(client, config.ledger.commitment)
    else:
        raise ValueError(f"Unknown ledger backend: {config.ledger.backend}")

    transport = select_transport(config, ledger)
    return WagerSettlementCoordinator(db, seed_source, ledger, transport, config)
