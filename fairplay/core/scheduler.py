from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fairplay.config import SchedulerConfig, settings
from fairplay.core.logger import get_logger
from fairplay.core.settlement import WagerSettlementCoordinator

logger = get_logger("scheduler")


class PayoutWorker:
    """Background sweeps: payout queue drain, escrow expiry and wager resume."""

    def __init__(self, coordinator: WagerSettlementCoordinator, config: SchedulerConfig = None):
        self.coordinator = coordinator
        self.config = config or settings.scheduler
        self.scheduler = AsyncIOScheduler()

    def start(self):
        # 1. Retry queued and blocked payouts
        self.scheduler.add_job(
            self.drain_payouts,
            IntervalTrigger(seconds=self.config.payout_drain_seconds),
            id="drain_payouts",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        # 2. Fail escrows past their validity window
        self.scheduler.add_job(
            self.cancel_expired,
            IntervalTrigger(seconds=self.config.recovery_sweep_seconds),
            id="cancel_expired_escrows",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        # 3. Resume wagers interrupted between escrow and payout
        self.scheduler.add_job(
            self.resume_pending,
            IntervalTrigger(seconds=self.config.recovery_sweep_seconds),
            id="resume_pending",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info("Payout worker started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Payout worker shutdown")

    async def drain_payouts(self):
        try:
            confirmed = await self.coordinator.drain_payout_queue()
            if confirmed:
                logger.info(f"Payout drain confirmed {confirmed} payouts")
        except Exception as e:
            logger.error(f"Error draining payout queue: {e}", exc_info=True)

    async def cancel_expired(self):
        try:
            await self.coordinator.cancel_expired_escrows()
        except Exception as e:
            logger.error(f"Error cancelling expired escrows: {e}", exc_info=True)

    async def resume_pending(self):
        try:
            resumed = await self.coordinator.resume_pending()
            if resumed:
                logger.info(f"Resumed {resumed} interrupted wagers")
        except Exception as e:
            logger.error(f"Error resuming wagers: {e}", exc_info=True)
