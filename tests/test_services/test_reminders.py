"""Tests for the pickup reminder sweep."""

import asyncio
from datetime import timedelta

import pytest

from conftest import HAPPY_PATH, NOON, RecordingGateway
from pickup_engine.clock import FixedClock
from pickup_engine.config import Settings
from pickup_engine.models.effects import EffectKind
from pickup_engine.models.order import ContactInfo, OrderStatus
from pickup_engine.services import OrderService, ReminderSweeper, build_order_service
from pickup_engine.state.repository import InMemoryOrderRepository


async def _ready_order(service: OrderService, contact: ContactInfo):
    result = await service.create_order(pickup_time=NOON + timedelta(hours=1), contact=contact)
    for status in HAPPY_PATH[:3]:
        await service.transition(result.order.id, status)
    return await service.get_order(result.order.id)


@pytest.mark.asyncio
async def test_reminder_sent_once_after_threshold(
    order_service: OrderService,
    clock: FixedClock,
    gateway: RecordingGateway,
    sample_contact: ContactInfo,
) -> None:
    order = await _ready_order(order_service, sample_contact)
    sweeper = ReminderSweeper(order_service, threshold=timedelta(minutes=15))

    clock.advance(minutes=10)
    assert await sweeper.run_once() == []

    clock.advance(minutes=10)
    receipts = await sweeper.run_once()

    assert [r.delivered for r in receipts] == [True]
    assert gateway.sent[-1].kind == EffectKind.REMINDER
    assert gateway.sent[-1].payload["waiting_minutes"] == 20

    clock.advance(minutes=30)
    assert await sweeper.run_once() == []

    stored = await order_service.get_order(order.id)
    assert stored.reminder_sent
    assert stored.status == OrderStatus.READY


@pytest.mark.asyncio
async def test_reminder_does_not_touch_history(
    order_service: OrderService, clock: FixedClock, sample_contact: ContactInfo
) -> None:
    order = await _ready_order(order_service, sample_contact)
    before = await order_service.get_history(order.id)

    clock.advance(hours=1)
    await ReminderSweeper(order_service, threshold=timedelta(minutes=15)).run_once()

    assert await order_service.get_history(order.id) == before


@pytest.mark.asyncio
async def test_collected_orders_are_not_reminded(
    order_service: OrderService,
    clock: FixedClock,
    gateway: RecordingGateway,
    sample_contact: ContactInfo,
) -> None:
    order = await _ready_order(order_service, sample_contact)
    await order_service.transition(order.id, OrderStatus.PICKED_UP, actor="staff-1")
    sent_before = len(gateway.sent)

    clock.advance(hours=1)

    assert await ReminderSweeper(order_service, threshold=timedelta(minutes=15)).run_once() == []
    assert len(gateway.sent) == sent_before


@pytest.mark.asyncio
async def test_failed_reminder_is_retried_next_sweep(
    order_service: OrderService,
    clock: FixedClock,
    gateway: RecordingGateway,
    sample_contact: ContactInfo,
) -> None:
    order = await _ready_order(order_service, sample_contact)
    sweeper = ReminderSweeper(order_service, threshold=timedelta(minutes=15))
    clock.advance(minutes=20)

    gateway.failures = gateway.calls + 1
    first = await sweeper.run_once()
    second = await sweeper.run_once()

    assert [r.delivered for r in first] == [False]
    assert [r.delivered for r in second] == [True]
    assert (await order_service.get_order(order.id)).reminder_sent


@pytest.mark.asyncio
async def test_start_and_stop(order_service: OrderService) -> None:
    sweeper = ReminderSweeper(order_service, threshold=timedelta(minutes=15), interval_seconds=60)

    task = sweeper.start()
    assert sweeper.start() is task
    await asyncio.sleep(0)

    await sweeper.stop()
    assert task.cancelled()


class SlowGateway(RecordingGateway):
    """Gateway whose sends take long enough for other tasks to run."""

    async def send(self, effect):
        await asyncio.sleep(0.01)
        return await super().send(effect)


class PickupDuringSendGateway(RecordingGateway):
    """Gateway where staff hand over every ready order while a reminder is in flight."""

    def __init__(self):
        super().__init__()
        self.service: OrderService | None = None

    async def send(self, effect):
        receipt = await super().send(effect)
        if effect.kind == EffectKind.REMINDER and self.service is not None:
            service, self.service = self.service, None
            for order in await service.list_orders(OrderStatus.READY):
                await service.transition(order.id, OrderStatus.PICKED_UP, actor="staff-1")
        return receipt


class InterleavingRepository(InMemoryOrderRepository):
    """Repository that yields after listing, so concurrent sweeps share a snapshot."""

    async def list_ready_older_than(self, threshold):
        orders = await super().list_ready_older_than(threshold)
        await asyncio.sleep(0)
        return orders


@pytest.mark.asyncio
async def test_concurrent_sweeps_send_one_reminder(
    test_settings: Settings, clock: FixedClock, sample_contact: ContactInfo
) -> None:
    gateway = SlowGateway()
    service = build_order_service(
        test_settings, repository=InterleavingRepository(), clock=clock, gateway=gateway
    )
    order = await _ready_order(service, sample_contact)
    clock.advance(minutes=20)
    sent_before = len(gateway.sent)

    first, second = await asyncio.gather(
        ReminderSweeper(service, threshold=timedelta(minutes=15)).run_once(),
        ReminderSweeper(service, threshold=timedelta(minutes=15)).run_once(),
    )

    reminders = [e for e in gateway.sent[sent_before:] if e.kind == EffectKind.REMINDER]
    assert len(reminders) == 1
    assert len(first) + len(second) == 1
    assert (await service.get_order(order.id)).reminder_sent


@pytest.mark.asyncio
async def test_sweep_skips_orders_picked_up_mid_sweep(
    test_settings: Settings, clock: FixedClock, sample_contact: ContactInfo
) -> None:
    gateway = PickupDuringSendGateway()
    service = build_order_service(test_settings, clock=clock, gateway=gateway)
    first = await _ready_order(service, sample_contact)
    second = await _ready_order(service, sample_contact)
    clock.advance(minutes=20)
    gateway.service = service

    receipts = await ReminderSweeper(service, threshold=timedelta(minutes=15)).run_once()

    reminders = [e for e in gateway.sent if e.kind == EffectKind.REMINDER]
    assert len(receipts) == 1
    assert len(reminders) == 1

    reminded = reminders[0].order_id
    skipped = second.id if reminded == first.id else first.id
    stored = await service.get_order(skipped)
    assert stored.status == OrderStatus.PICKED_UP
    assert not stored.reminder_sent


@pytest.mark.asyncio
async def test_stale_ready_snapshot_is_not_reminded_after_pickup(
    order_service: OrderService,
    clock: FixedClock,
    gateway: RecordingGateway,
    sample_contact: ContactInfo,
) -> None:
    order = await _ready_order(order_service, sample_contact)
    clock.advance(minutes=20)
    await order_service.transition(order.id, OrderStatus.PICKED_UP, actor="staff-1")
    calls_before = gateway.calls

    assert await order_service.send_reminder(order, timedelta(minutes=15)) is None

    stored = await order_service.get_order(order.id)
    assert stored.status == OrderStatus.PICKED_UP
    assert not stored.reminder_sent
    assert gateway.calls == calls_before
