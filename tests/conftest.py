"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import RedisError

from pickup_engine.api.routes import get_order_service
from pickup_engine.clock import FixedClock
from pickup_engine.config import Settings
from pickup_engine.errors import DeliveryError
from pickup_engine.main import app
from pickup_engine.models.effects import DeliveryReceipt, OutboundEffect
from pickup_engine.models.order import ContactInfo, NotificationChannel, Order, OrderStatus
from pickup_engine.models.schedule import ScheduleConfig
from pickup_engine.services import NotificationGateway, OrderService, build_order_service
from pickup_engine.state.machine import OrderStateMachine
from pickup_engine.state.manager import StateManager
from pickup_engine.state.repository import InMemoryOrderRepository, RedisOrderRepository

# Monday noon, business timezone UTC
NOON = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

HAPPY_PATH = [
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.PICKED_UP,
]


class RecordingGateway(NotificationGateway):
    """Gateway that remembers what it was asked to send."""

    def __init__(self, failures: int = 0, retryable: bool = True):
        self.sent: list[OutboundEffect] = []
        self.calls = 0
        self.failures = failures
        self.retryable = retryable

    async def send(self, effect: OutboundEffect) -> DeliveryReceipt:
        self.calls += 1
        if self.calls <= self.failures:
            raise DeliveryError("transport unavailable", retryable=self.retryable)
        self.sent.append(effect)
        return DeliveryReceipt(effect_id=effect.id, delivered=True)


def advance(machine: OrderStateMachine, order: Order, target: OrderStatus) -> Order:
    """Walk an order along the happy path (or cancel it) until it reaches ``target``."""
    if target == OrderStatus.CANCELLED:
        return machine.apply_transition(
            order, target, actor="staff-1", cancellation_reason="Customer request"
        ).order

    for status in HAPPY_PATH:
        if order.status == target:
            break
        order = machine.apply_transition(order, status, actor="staff-1").order
    return order


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at noon."""
    return FixedClock(NOON)


@pytest.fixture
def schedule_config() -> ScheduleConfig:
    """Default business schedule, 06:00-23:00."""
    return ScheduleConfig()


@pytest.fixture
def machine(clock: FixedClock) -> OrderStateMachine:
    """State machine on the frozen clock."""
    return OrderStateMachine(clock)


@pytest.fixture
def sample_contact() -> ContactInfo:
    """Contact details for a guest checkout."""
    return ContactInfo(
        name="Test Customer",
        email="test@example.com",
        phone="+1234567890",
        notification_method=NotificationChannel.EMAIL,
    )


@pytest.fixture
def sample_order(sample_contact: ContactInfo) -> Order:
    """A freshly placed order picked up at 13:00."""
    return Order(
        order_number="260302-TEST01",
        pickup_time=NOON + timedelta(hours=1),
        estimated_prep_minutes=30,
        contact=sample_contact,
        created_at=NOON,
        updated_at=NOON,
    )


@pytest.fixture
def order_in(machine: OrderStateMachine, sample_order: Order):
    """Factory for the sample order moved to a given status."""

    def _make(status: OrderStatus) -> Order:
        return advance(machine, sample_order, status)

    return _make


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    """Empty in-memory repository."""
    return InMemoryOrderRepository()


@pytest.fixture
def gateway() -> RecordingGateway:
    """Gateway that records every delivered effect."""
    return RecordingGateway()


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None, reminder_sweep_enabled=False, notification_retry_delay=0)


@pytest.fixture
def order_service(
    test_settings: Settings,
    repository: InMemoryOrderRepository,
    clock: FixedClock,
    gateway: RecordingGateway,
) -> OrderService:
    """Order service wired to in-memory collaborators."""
    return build_order_service(
        test_settings,
        repository=repository,
        clock=clock,
        gateway=gateway,
    )


@pytest_asyncio.fixture
async def test_client(order_service: OrderService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_order_service] = lambda: order_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def redis_repository() -> AsyncGenerator[RedisOrderRepository, None]:
    """Redis-backed repository on a scratch database; skipped without Redis."""
    manager = StateManager(os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15"))
    try:
        await manager.ping()
    except (RedisError, OSError):
        await manager.disconnect()
        pytest.skip("Redis server not available")

    await manager.flush()
    yield RedisOrderRepository(manager)
    await manager.flush()
    await manager.disconnect()
