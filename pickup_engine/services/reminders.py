"""Background sweep that reminds customers about orders left waiting."""

import asyncio
from datetime import timedelta

from redis.exceptions import RedisError

from pickup_engine.errors import OrderEngineError
from pickup_engine.models.effects import DeliveryReceipt
from pickup_engine.services.orders import OrderService
from pickup_engine.utils.logging import OrderLogger


class ReminderSweeper:
    """
    Periodically sends one reminder per ready order left uncollected.

    The sweep never changes an order's status. Each reminder is claimed by
    flipping ``reminder_sent`` through compare-and-swap before it is sent, so
    sweeps can run alongside staff actions and alongside each other.
    """

    def __init__(
        self,
        service: OrderService,
        threshold: timedelta,
        interval_seconds: float = 60.0,
    ):
        self.service = service
        self.threshold = threshold
        self.interval_seconds = interval_seconds
        self.logger = OrderLogger("reminder_sweeper")
        self._task: asyncio.Task | None = None

    async def run_once(self) -> list[DeliveryReceipt]:
        """Send reminders that are due right now."""
        cutoff = self.service.clock.now() - self.threshold

        receipts = []
        for order in await self.service.repository.list_ready_older_than(cutoff):
            sent = await self.service.send_reminder(order, self.threshold)
            if sent is None:
                continue
            _, receipt = sent
            receipts.append(receipt)

        return receipts

    async def run_forever(self) -> None:
        """Sweep every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.run_once()
            except OrderEngineError as e:
                self.logger.logger.error("reminder_sweep_failed", error=e.message, code=e.code)
            except RedisError as e:
                self.logger.logger.error("reminder_sweep_failed", error=str(e), code="RedisError")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
            self.logger.logger.info(
                "reminder_sweeper_started",
                interval_seconds=self.interval_seconds,
                threshold_minutes=self.threshold.total_seconds() / 60,
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.logger.info("reminder_sweeper_stopped")
