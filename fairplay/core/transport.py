"""
Payout transports. One is selected at startup and injected into the
coordinator; the coordinator never knows which.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from fairplay.config import AppConfig
from fairplay.core.exceptions import LedgerUnavailable
from fairplay.core.ledger import Ledger, TransferStatus
from fairplay.core.logger import get_logger

logger = get_logger("transport")


class PayoutTransport(ABC):
    name = "base"

    def __init__(self, ledger: Ledger, fee_reserve: float = 0.0):
        self.ledger = ledger
        self.fee_reserve = fee_reserve

    @abstractmethod
    async def send(self, wager_id: str, to_address: str, amount: float,
                   blockhash: Optional[str] = None, slot: Optional[int] = None) -> str:
        """Send a payout; returns the transfer reference. Raises LedgerUnavailable."""

    async def status(self, reference: str) -> TransferStatus:
        return await self.ledger.confirm_transfer(reference)

    async def available_balance(self) -> Optional[float]:
        """House balance net of the fee reserve, or None when it cannot be known here."""
        if not self.ledger.house_address:
            return None
        balance = await self.ledger.get_balance(self.ledger.house_address)
        return max(balance - self.fee_reserve, 0.0)

    async def close(self):
        pass


class LedgerTransport(PayoutTransport):
    """House custody transfer through the ledger's signer."""

    name = "ledger"

    async def send(self, wager_id: str, to_address: str, amount: float,
                   blockhash: Optional[str] = None, slot: Optional[int] = None) -> str:
        return await self.ledger.submit_transfer(
            self.ledger.house_address, to_address, amount, memo=wager_id
        )


class RemoteApiTransport(PayoutTransport):
    """
    Delegates payouts to a remote payout API speaking
    `{playerWallet, amount, gameId, blockhash, slot} -> {success, signature | error}`.
    Confirmation is still read from the ledger.
    """

    name = "remote"

    def __init__(self, ledger: Ledger, url: str, fee_reserve: float = 0.0,
                 timeout: float = 10.0, auth: Optional[tuple] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(ledger, fee_reserve)
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, auth=auth, transport=transport)

    async def send(self, wager_id: str, to_address: str, amount: float,
                   blockhash: Optional[str] = None, slot: Optional[int] = None) -> str:
        payload = {
            "playerWallet": to_address,
            "amount": amount,
            "gameId": wager_id,
            "blockhash": blockhash,
            "slot": slot,
        }
        try:
            response = await self._client.post(self.url, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerUnavailable(f"Payout API unreachable: {e}")

        if not data.get("success") or not data.get("signature"):
            raise LedgerUnavailable(f"Payout API refused {wager_id}: {data.get('error', 'unknown error')}")
        return data["signature"]

    async def close(self):
        await self._client.aclose()


def select_transport(config: AppConfig, ledger: Ledger) -> PayoutTransport:
    """Pick the payout transport named in config."""
    fee_reserve = config.ledger.fee_reserve
    if config.payout.transport == "remote":
        logger.info(f"Payouts go through remote API at {config.payout.remote_url}")
        return RemoteApiTransport(
            ledger,
            config.payout.remote_url,
            fee_reserve=fee_reserve,
            timeout=config.ledger.request_timeout_seconds,
        )
    if config.payout.transport != "ledger":
        raise ValueError(f"Unknown payout transport: {config.payout.transport}")
    logger.info("Payouts go through house custody ledger")
    return LedgerTransport(ledger, fee_reserve=fee_reserve)
