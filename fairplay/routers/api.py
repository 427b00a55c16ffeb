from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from fairplay import __version__
from fairplay.config import settings
from fairplay.core.exceptions import PayoutUnconfirmed, SettlementError
from fairplay.core.logger import get_logger
from fairplay.core.security import require_operator
from fairplay.core.settlement import WagerSettlementCoordinator

logger = get_logger("api")

# Rate limiting setup
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit.enabled)

router = APIRouter()


# ==================== Request Models ====================

class PlaceWagerRequest(BaseModel):
    player_address: str
    game: str
    stake: float
    params: Dict[str, Any] = Field(default_factory=dict)
    wager_id: Optional[str] = None
    escrow_reference: Optional[str] = None
    wait: bool = False


class EscrowRequest(BaseModel):
    reference: Optional[str] = None
    wait: bool = False


class PayoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_wallet: str = Field(alias="playerWallet")
    amount: float
    game_id: str = Field(alias="gameId")
    blockhash: Optional[str] = None
    slot: Optional[int] = None


# ==================== Helpers ====================

def get_coordinator(request: Request) -> WagerSettlementCoordinator:
    return request.app.state.coordinator


async def run_wager(coordinator: WagerSettlementCoordinator, wager_id: str,
                    escrow_reference: str = None):
    """Background run of a wager. Failures are persisted on the wager itself."""
    try:
        await coordinator.process_wager(wager_id, escrow_reference)
    except SettlementError as e:
        logger.warning(f"Wager {wager_id} stopped: {type(e).__name__}: {e.message}",
                       extra={"wager_id": wager_id})


# ==================== Wagers ====================

@router.post("/wagers")
@limiter.limit(lambda: settings.rate_limit.wager_requests)
async def place_wager(
    request: Request,
    data: PlaceWagerRequest,
    background_tasks: BackgroundTasks,
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """
    Place a wager. With an escrow reference the wager also runs: inline
    when `wait` is set, otherwise in the background.
    """
    wager = await coordinator.place_wager(
        data.player_address, data.game, data.params, data.stake, wager_id=data.wager_id
    )
    wager_id = wager["wager_id"]

    if data.escrow_reference:
        if data.wait:
            receipt = await coordinator.process_wager(wager_id, data.escrow_reference)
            return {"wager_id": wager_id, "nonce_commitment": wager["nonce_commitment"],
                    "status": receipt["status"], "receipt": receipt}
        await coordinator.submit_escrow(wager_id, data.escrow_reference)
        background_tasks.add_task(run_wager, coordinator, wager_id)

    status = coordinator.get_wager_status(wager_id)["status"]
    return {
        "wager_id": wager_id,
        "nonce_commitment": wager["nonce_commitment"],
        "status": status,
        "escrow_deadline": wager["escrow_deadline"],
    }


@router.get("/wagers/{wager_id}")
async def get_wager(wager_id: str, coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return coordinator.get_wager_status(wager_id)


@router.post("/wagers/{wager_id}/escrow")
async def submit_escrow(
    wager_id: str,
    data: EscrowRequest,
    background_tasks: BackgroundTasks,
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Record the client's escrow transfer and run the wager."""
    if data.wait:
        receipt = await coordinator.process_wager(wager_id, data.reference)
        return {"wager_id": wager_id, "status": receipt["status"], "receipt": receipt}

    wager = await coordinator.submit_escrow(wager_id, data.reference)
    background_tasks.add_task(run_wager, coordinator, wager_id)
    return {"wager_id": wager_id, "status": wager["status"]}


@router.post("/wagers/{wager_id}/settle")
async def settle_wager(wager_id: str, coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return await coordinator.settle(wager_id)


@router.get("/wagers/{wager_id}/audit")
async def audit_wager(wager_id: str, coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return coordinator.audit(wager_id)


# ==================== Jackpot & House ====================

@router.get("/jackpot/{game}")
async def get_jackpot(game: str, coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return coordinator.get_jackpot(game)


@router.get("/house/balance")
async def get_house_balance(coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return await coordinator.get_house_balance()


@router.get("/health")
async def health(coordinator: WagerSettlementCoordinator = Depends(get_coordinator)):
    return {
        "status": "ok",
        "version": __version__,
        "ledger": settings.ledger.backend,
        "transport": coordinator.transport.name,
    }


# ==================== Payouts ====================

@router.post("/payout")
@limiter.limit(lambda: settings.rate_limit.payout_requests)
async def request_payout(
    request: Request,
    data: PayoutRequest,
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Idempotent payout keyed by gameId."""
    logger.info(
        f"Payout request from {operator}: {data.amount} SOL to {data.player_wallet} for {data.game_id}",
        extra={"wager_id": data.game_id},
    )
    try:
        return await coordinator.request_payout(
            data.player_wallet, data.amount, data.game_id, data.blockhash, data.slot
        )
    except PayoutUnconfirmed as e:
        logger.info(f"Payout for {data.game_id} sent, awaiting confirmation", extra={"wager_id": data.game_id})
        return JSONResponse(status_code=e.status_code,
                            content={"success": False, "signature": e.reference, "error": e.message})
    except SettlementError as e:
        logger.error(f"Payout failed for {data.game_id}: {e.message}", extra={"wager_id": data.game_id})
        return JSONResponse(status_code=e.status_code, content={"success": False, "error": e.message})


@router.get("/payouts")
async def get_payouts(
    operator: str = Depends(require_operator),
    coordinator: WagerSettlementCoordinator = Depends(get_coordinator),
):
    """Most recent confirmed payouts, newest first."""
    payouts = coordinator.payouts.latest("confirmed", limit=50)
    return {"total": len(payouts), "payouts": payouts}
