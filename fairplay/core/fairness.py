"""
Provably fair randomness.

A wager's outcome is a pure function of its seed material: a public ledger
hash/slot observed after the escrow confirmed, the confirmed escrow
reference, the wager id and a server nonce committed to at placement. Anyone
holding the revealed material can recompute the digest and every draw.
"""

import hashlib
import hmac
from pydantic import BaseModel

# 52 bits fit exactly in a double's mantissa
_DRAW_BITS = 52
_DRAW_SCALE = float(1 << _DRAW_BITS)


class SeedMaterial(BaseModel):
    public_hash: str
    slot: int
    wager_id: str
    nonce: str
    escrow_reference: str = ""

    def canonical(self) -> bytes:
        """Colon-joined encoding hashed by `FairnessEngine.derive`."""
        parts = [
            self.public_hash,
            str(self.slot),
            self.wager_id,
            self.nonce,
            self.escrow_reference,
        ]
        return ":".join(parts).encode("utf-8")


class FairnessEngine:
    """
    Deterministic digest and uniform draws from seed material.
    """

    @staticmethod
    def derive(seed: SeedMaterial) -> bytes:
        """SHA-256 of the canonical seed encoding (32 bytes)."""
        return hashlib.sha256(seed.canonical()).digest()

    @staticmethod
    def uniform(digest: bytes, domain_tag: str, index: int = 0) -> float:
        """
        Returns a float in [0.0, 1.0) for one (domain_tag, index) purpose.

        Each draw is HMAC-SHA256 keyed by the digest, so draws for different
        tags or indices are independent of one another.
        """
        if index < 0:
            raise ValueError("draw index must be non-negative")
        message = f"{domain_tag}:{index}".encode("utf-8")
        mac = hmac.new(digest, message, hashlib.sha256).digest()
        value = int.from_bytes(mac[:8], "big") >> (64 - _DRAW_BITS)
        return value / _DRAW_SCALE

    @staticmethod
    def commit(nonce: str) -> str:
        """Public commitment to a server nonce, published before the outcome."""
        return hashlib.sha256(nonce.encode("utf-8")).hexdigest()


class Draws:
    """Draw source bound to a single wager digest."""

    def __init__(self, digest: bytes, engine: FairnessEngine = None):
        self.digest = digest
        self.engine = engine or fairness

    def uniform(self, domain_tag: str, index: int = 0) -> float:
        return self.engine.uniform(self.digest, domain_tag, index)

    def below(self, domain_tag: str, index: int, n: int) -> int:
        """Integer in [0, n) from one draw."""
        if n <= 0:
            raise ValueError("n must be positive")
        return min(int(self.uniform(domain_tag, index) * n), n - 1)

    @property
    def hex(self) -> str:
        return self.digest.hex()


# Singleton instance
fairness = FairnessEngine()
