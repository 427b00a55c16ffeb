from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fairplay.core.logger import get_logger
from fairplay.core.payout_ledger import PayoutStatus
from fairplay.core.security import require_operator
from fairplay.core.settlement import WagerSettlementCoordinator, WagerStatus
from fairplay.routers.api import get_coordinator

logger = get_logger("admin")

router = APIRouter()


class SetJackpotRequest(BaseModel):
    amount: float


@router.get("/api/payouts")
async def list_payouts(
    status: Optional[str] = "failed",
    limit: int = 100,
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Payouts by status; `open` lists everything not yet confirmed or escalated."""
    if status == "open":
        return {"payouts": coordinator.payouts.pending(limit)}
    try:
        PayoutStatus(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown payout status: {status}")
    return {"payouts": coordinator.payouts.by_status(status, limit)}


@router.post("/api/payouts/{wager_id}/retry")
async def retry_payout(
    wager_id: str,
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Manual retry of an escalated or blocked payout."""
    logger.info(f"Operator {operator} retrying payout for {wager_id}", extra={"wager_id": wager_id})
    receipt = await coordinator.retry_payout(wager_id)
    return {"success": True, "receipt": receipt}


@router.get("/api/wagers")
async def list_wagers(
    status: str,
    limit: int = 100,
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    try:
        WagerStatus(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown wager status: {status}")
    wagers = coordinator.db.get_wagers_by_status([status], limit)
    for wager in wagers:
        wager.pop("nonce", None)
    return {"wagers": wagers}


@router.get("/api/stats")
async def get_stats(
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Wager and payout counts by status."""
    return coordinator.db.get_stats()


@router.post("/api/jackpot/{game}")
async def set_jackpot(
    game: str,
    data: SetJackpotRequest,
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Set a jackpot pool manually (e.g. after a refill)."""
    if data.amount < 0:
        raise HTTPException(status_code=400, detail="Amount must be non-negative")
    pool = coordinator.get_jackpot(game)
    logger.info(f"Operator {operator} set {pool['game']} jackpot to {data.amount}")
    return {"success": True, "jackpot": coordinator.jackpot.set_amount(pool["game"], data.amount)}
