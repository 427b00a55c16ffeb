"""
Error taxonomy for wager settlement.

Every error carries the HTTP status the API layer should answer with, so the
routers only translate; they never decide what a failure means.
"""

from typing import Optional


class SettlementError(Exception):
    """Base class for all settlement failures."""

    status_code = 500

    def __init__(self, message: str, wager_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.wager_id = wager_id

    def to_dict(self) -> dict:
        data = {"error": type(self).__name__, "detail": self.message}
        if self.wager_id:
            data["wager_id"] = self.wager_id
        return data


class InvalidWagerParams(SettlementError):
    """Rejected before any transfer or draw: bad game, params or stake."""

    status_code = 400


class WagerNotFound(SettlementError):
    status_code = 404


class InvalidTransition(SettlementError):
    """The wager is not in a state that allows the requested operation."""

    status_code = 409


class SeedUnavailable(SettlementError):
    """No public seed could be obtained. Never replaced by a weaker source."""

    status_code = 503


class EscrowTimeout(SettlementError):
    """Escrow was not confirmed inside its validity window."""

    status_code = 409


class EscrowRejected(SettlementError):
    """The ledger reported the escrow transfer as failed."""

    status_code = 409


class InsufficientHouseBalance(SettlementError):
    """House custody cannot cover the payout; nothing was sent."""

    status_code = 503

    def __init__(self, message: str, wager_id: Optional[str] = None,
                 required: float = 0.0, available: float = 0.0):
        super().__init__(message, wager_id)
        self.required = required
        self.available = available


class PayoutSendFailed(SettlementError):
    """Transfer attempts were exhausted; the payout sits in the operator queue."""

    status_code = 502

    def __init__(self, message: str, wager_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message, wager_id)
        self.attempts = attempts


class PayoutUnconfirmed(SettlementError):
    """
    A payout transfer was sent and has not landed yet. It is polled again
    later and never re-sent while it can still confirm.
    """

    status_code = 202

    def __init__(self, message: str, wager_id: Optional[str] = None, reference: Optional[str] = None):
        super().__init__(message, wager_id)
        self.reference = reference


class LedgerUnavailable(SettlementError):
    """Every configured ledger endpoint failed."""

    status_code = 503
