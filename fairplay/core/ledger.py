"""
Ledger bindings: balances, transfer submission and transfer status.

Amounts are SOL floats everywhere above this module; lamports only exist on
the wire.
"""

import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional

import httpx

from fairplay.core.exceptions import LedgerUnavailable
from fairplay.core.logger import get_logger
from fairplay.core.rpc import RpcError, SolanaRpcClient

logger = get_logger("ledger")

LAMPORTS_PER_SOL = 1_000_000_000


def to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


def from_lamports(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Ledger(ABC):
    house_address: str

    @abstractmethod
    async def submit_transfer(self, from_address: str, to_address: str, amount: float,
                              memo: Optional[str] = None) -> str:
        """Submit a transfer and return its reference (signature)."""

    @abstractmethod
    async def confirm_transfer(self, reference: str) -> TransferStatus:
        """Current status of a submitted transfer."""

    @abstractmethod
    async def verify_transfer(self, reference: str, from_address: str, to_address: str,
                              amount: float) -> Optional[bool]:
        """
        Whether a confirmed transfer moved at least `amount` from `from_address`
        to `to_address`. None while the transfer details are not readable yet.
        """

    @abstractmethod
    async def get_balance(self, address: str) -> float:
        ...

    async def close(self):
        pass


class RpcLedger(Ledger):
    """
    Reads go straight to Solana JSON-RPC. Signing stays out of this process:
    transfers are handed to a signer service that owns the custody keys and
    answers with the transaction signature.
    """

    # Commitment levels that count as confirmed
    CONFIRMED_LEVELS = {"confirmed": ("confirmed", "finalized"), "finalized": ("finalized",)}

    def __init__(self, client: SolanaRpcClient, house_address: str, signer_url: str,
                 commitment: str = "confirmed", timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = client
        self.house_address = house_address
        self.signer_url = signer_url.rstrip("/")
        self.commitment = commitment
        self._signer = httpx.AsyncClient(timeout=timeout, transport=transport)
        # Last block height at which each submitted transfer can still land
        self._valid_until: Dict[str, int] = {}

    async def get_balance(self, address: str) -> float:
        try:
            result = await self.client.call("getBalance", [address, {"commitment": self.commitment}])
        except RpcError as e:
            raise LedgerUnavailable(f"getBalance failed for {address}: {e}")
        return from_lamports(int(result["value"]))

    async def confirm_transfer(self, reference: str) -> TransferStatus:
        try:
            result = await self.client.call(
                "getSignatureStatuses",
                [[reference], {"searchTransactionHistory": True}],
            )
        except RpcError as e:
            raise LedgerUnavailable(f"getSignatureStatuses failed for {reference}: {e}")

        statuses = (result or {}).get("value") or [None]
        status = statuses[0]
        if status is None:
            if await self._expired(reference):
                logger.warning(f"Transfer {reference} expired without landing",
                               extra={"reference": reference})
                return TransferStatus.FAILED
            return TransferStatus.PENDING
        if status.get("err"):
            logger.warning(f"Transfer {reference} failed on chain: {status['err']}",
                           extra={"reference": reference})
            return TransferStatus.FAILED

        levels = self.CONFIRMED_LEVELS.get(self.commitment, ("confirmed", "finalized"))
        if status.get("confirmationStatus") in levels:
            return TransferStatus.CONFIRMED
        return TransferStatus.PENDING

    async def submit_transfer(self, from_address: str, to_address: str, amount: float,
                              memo: Optional[str] = None) -> str:
        payload = {
            "from": from_address,
            "to": to_address,
            "lamports": to_lamports(amount),
            "memo": memo,
        }
        try:
            response = await self._signer.post(f"{self.signer_url}/transfers", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerUnavailable(f"Signer rejected transfer to {to_address}: {e}")

        signature = data.get("signature")
        if not signature:
            raise LedgerUnavailable(f"Signer returned no signature: {data.get('error', data)}")
        if data.get("lastValidBlockHeight") is not None:
            self._valid_until[signature] = int(data["lastValidBlockHeight"])
        return signature

    async def _expired(self, reference: str) -> bool:
        """True once the chain is past the transfer's last valid block height."""
        valid_until = self._valid_until.get(reference)
        if valid_until is None:
            return False
        try:
            height = await self.client.call("getBlockHeight", [{"commitment": self.commitment}])
        except RpcError as e:
            raise LedgerUnavailable(f"getBlockHeight failed: {e}")
        return int(height) > valid_until

    async def verify_transfer(self, reference: str, from_address: str, to_address: str,
                              amount: float) -> Optional[bool]:
        try:
            result = await self.client.call(
                "getTransaction",
                [reference, {"encoding": "jsonParsed", "commitment": self.commitment,
                             "maxSupportedTransactionVersion": 0}],
            )
        except RpcError as e:
            raise LedgerUnavailable(f"getTransaction failed for {reference}: {e}")
        if result is None:
            return None
        if (result.get("meta") or {}).get("err"):
            return False

        required = to_lamports(amount)
        instructions = result.get("transaction", {}).get("message", {}).get("instructions", [])
        for instruction in instructions:
            parsed = instruction.get("parsed")
            if instruction.get("program") != "system" or not isinstance(parsed, dict):
                continue
            if parsed.get("type") not in ("transfer", "transferWithSeed"):
                continue
            info = parsed.get("info", {})
            if (info.get("source") == from_address and info.get("destination") == to_address
                    and int(info.get("lamports", 0)) >= required):
                return True
        return False

    async def close(self):
        await self._signer.aclose()
        await self.client.close()


class InMemoryLedger(Ledger):
    """
    Sandbox custody. Transfers settle instantly unless `auto_confirm` is off;
    `fail_submissions` makes the next N submissions raise.
    """

    def __init__(self, house_address: str = "house", balances: Dict[str, float] = None,
                 auto_confirm: bool = True):
        self.house_address = house_address
        self.balances: Dict[str, float] = dict(balances or {})
        self.auto_confirm = auto_confirm
        self.fail_submissions = 0
        self.transfers: Dict[str, Dict] = {}

    def credit(self, address: str, amount: float):
        self.balances[address] = round(self.balances.get(address, 0.0) + amount, 9)

    def register_transfer(self, reference: str, status: TransferStatus = TransferStatus.CONFIRMED,
                          from_address: str = None, to_address: str = None, amount: float = 0.0):
        """Record a transfer made outside this process (e.g. a client escrow)."""
        self.transfers[reference] = {
            "from": from_address,
            "to": to_address,
            "amount": amount,
            "status": TransferStatus(status),
        }

    def set_status(self, reference: str, status: TransferStatus):
        self.transfers[reference]["status"] = TransferStatus(status)

    async def submit_transfer(self, from_address: str, to_address: str, amount: float,
                              memo: Optional[str] = None) -> str:
        if self.fail_submissions > 0:
            self.fail_submissions -= 1
            raise LedgerUnavailable("Simulated ledger outage")

        available = self.balances.get(from_address, 0.0)
        if available < amount:
            raise LedgerUnavailable(
                f"Insufficient funds in {from_address}: {available} < {amount}"
            )

        reference = f"sim-{uuid.uuid4().hex}"
        self.balances[from_address] = round(available - amount, 9)
        self.credit(to_address, amount)
        self.register_transfer(
            reference,
            TransferStatus.CONFIRMED if self.auto_confirm else TransferStatus.PENDING,
            from_address,
            to_address,
            amount,
        )
        logger.debug(f"Sandbox transfer {reference}: {from_address} -> {to_address} {amount}")
        return reference

    async def confirm_transfer(self, reference: str) -> TransferStatus:
        transfer = self.transfers.get(reference)
        if transfer is None:
            return TransferStatus.PENDING
        return transfer["status"]

    async def verify_transfer(self, reference: str, from_address: str, to_address: str,
                              amount: float) -> Optional[bool]:
        transfer = self.transfers.get(reference)
        if transfer is None:
            return None
        return (transfer["from"] == from_address and transfer["to"] == to_address
                and transfer["amount"] >= amount - 1e-9)

    async def get_balance(self, address: str) -> float:
        return self.balances.get(address, 0.0)

    def sent_to(self, address: str) -> list:
        return [t for t in self.transfers.values() if t["to"] == address]
