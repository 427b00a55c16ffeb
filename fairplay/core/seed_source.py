"""
Public seed sources.

A seed is a recent ledger hash and its slot, values nobody can know before
the wager exists. There is no local-randomness fallback:
failure to fetch is `SeedUnavailable`.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from fairplay.core.exceptions import LedgerUnavailable, SeedUnavailable
from fairplay.core.logger import get_logger
from fairplay.core.rpc import RpcError, SolanaRpcClient

logger = get_logger("seed_source")


class SeedSource(ABC):
    @abstractmethod
    async def get_public_seed(self) -> Tuple[str, int]:
        """Returns (public_hash, slot)."""


class RpcSeedSource(SeedSource):
    """Latest blockhash and the slot it was observed at."""

    def __init__(self, client: SolanaRpcClient, commitment: str = "confirmed"):
        self.client = client
        self.commitment = commitment

    async def get_public_seed(self) -> Tuple[str, int]:
        try:
            result = await self.client.call(
                "getLatestBlockhash", [{"commitment": self.commitment}]
            )
        except (LedgerUnavailable, RpcError) as e:
            logger.error(f"Public seed unavailable: {e}")
            raise SeedUnavailable(f"Could not fetch public seed: {e}")

        try:
            blockhash = result["value"]["blockhash"]
            slot = int(result["context"]["slot"])
        except (KeyError, TypeError, ValueError):
            raise SeedUnavailable(f"Malformed getLatestBlockhash response: {result!r}")

        return blockhash, slot


class StaticSeedSource(SeedSource):
    """
    Fixed seed for tests and sandbox runs. Each call advances the slot so
    placement and resolution still see different material.
    """

    def __init__(self, public_hash: str = "sandbox-blockhash", slot: int = 1000,
                 step: int = 1):
        self.public_hash = public_hash
        self.slot = slot
        self.step = step
        self.available = True
        self.calls = 0

    async def get_public_seed(self) -> Tuple[str, int]:
        if not self.available:
            raise SeedUnavailable("Static seed source disabled")
        seed = (self.public_hash, self.slot)
        self.calls += 1
        self.slot += self.step
        return seed

    def set_next(self, public_hash: str, slot: Optional[int] = None):
        self.public_hash = public_hash
        if slot is not None:
            self.slot = slot
