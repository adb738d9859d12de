"""
Background Jobs for Shipment Tracking v1.0.0

Periodic tracking sync: selects shipments whose tracking has gone stale and
refreshes them through ShippingService.sync_many, which caps concurrent
provider calls at the configured batch size.

Background jobs must be idempotent: a cycle can be re-run at any time.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from shipping_engine.core.config import settings
from shipping_engine.services.shipping_service import ShippingService, SyncResult

logger = logging.getLogger(__name__)

# Repeated failures for one shipment before escalating the log level
FAILURE_ESCALATION_THRESHOLD = 3


class ShippingJobRunner:
    """
    Manages and runs shipping background jobs.
    """

    def __init__(
        self,
        service: ShippingService,
        interval_seconds: Optional[int] = None,
        hours_threshold: Optional[int] = None,
    ):
        self.service = service
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.SHIPPING_TRACKING_SYNC_INTERVAL_SECONDS
        )
        self.hours_threshold = hours_threshold
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._consecutive_failures: Dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start all background jobs."""
        if self._running:
            logger.warning("Shipping jobs already running")
            return

        self._running = True
        logger.info(f"Starting tracking sync every {self.interval_seconds}s")

        self._tasks = [
            asyncio.create_task(self._tracking_sync_loop()),
        ]

    async def stop(self):
        """Stop all background jobs."""
        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        logger.info("Shipping background jobs stopped")

    # ==================== Tracking Sync Job ====================

    async def _tracking_sync_loop(self):
        """Main loop for tracking sync job."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Tracking sync job error: {e}")

            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> SyncResult:
        """Run a single tracking sync cycle."""
        shipments = await self.service.get_shipments_needing_sync(self.hours_threshold)

        if not shipments:
            logger.debug("No shipments need tracking update")
            return SyncResult()

        logger.info(f"Syncing tracking for {len(shipments)} shipments")
        result = await self.service.sync_many(shipments)

        for update in result.updates:
            self._consecutive_failures.pop(update["shipment_id"], None)

        for error in result.errors:
            self._handle_tracking_failure(error["shipment_id"], error.get("tracking_number"), error["error"])

        return result

    def _handle_tracking_failure(self, shipment_id: str, tracking_number: Optional[str], error: str):
        """Handle tracking update failure."""
        self._consecutive_failures[shipment_id] = self._consecutive_failures.get(shipment_id, 0) + 1
        failures = self._consecutive_failures[shipment_id]

        if failures >= FAILURE_ESCALATION_THRESHOLD:
            logger.error(
                f"Tracking sync for {tracking_number} ({shipment_id}) failed "
                f"{failures} times in a row: {error}"
            )

    def consecutive_failures(self, shipment_id: str) -> int:
        return self._consecutive_failures.get(shipment_id, 0)


# ==================== Job Scheduler Integration ====================


# Global job runner instance
_job_runner: Optional[ShippingJobRunner] = None


async def start_shipping_jobs(service: ShippingService):
    """Start the shipping background jobs if tracking sync is enabled."""
    global _job_runner

    if not settings.SHIPPING_TRACKING_SYNC_ENABLED:
        logger.info("Tracking sync disabled (SHIPPING_TRACKING_SYNC_ENABLED=false)")
        return

    if not service.gateway.is_configured:
        logger.info("Shipping provider not configured, tracking sync not started")
        return

    if _job_runner is None:
        _job_runner = ShippingJobRunner(service)

    await _job_runner.start()


async def stop_shipping_jobs():
    """Stop the shipping background jobs."""
    global _job_runner

    if _job_runner:
        await _job_runner.stop()
        _job_runner = None
