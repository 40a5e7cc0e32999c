"""Application services and their wiring."""

from pickup_engine.clock import Clock, SystemClock
from pickup_engine.config import Settings, get_settings
from pickup_engine.services.notifications import (
    LoggingNotificationGateway,
    NotificationGateway,
    RetryingNotificationGateway,
)
from pickup_engine.services.orders import CreateOrderResult, OrderService, TransitionResult
from pickup_engine.services.reminders import ReminderSweeper
from pickup_engine.services.scheduler import SlotScheduler
from pickup_engine.state.machine import OrderStateMachine
from pickup_engine.state.manager import get_state_manager
from pickup_engine.state.repository import (
    InMemoryOrderRepository,
    OrderRepository,
    RedisOrderRepository,
)


async def build_repository(settings: Settings) -> OrderRepository:
    """Repository for the configured storage backend."""
    if settings.storage_backend == "redis":
        return RedisOrderRepository(await get_state_manager())
    return InMemoryOrderRepository()


def build_order_service(
    settings: Settings | None = None,
    repository: OrderRepository | None = None,
    clock: Clock | None = None,
    gateway: NotificationGateway | None = None,
) -> OrderService:
    """Assemble an OrderService from settings, overriding any collaborator."""
    settings = settings or get_settings()
    clock = clock or SystemClock(settings.timezone)

    if gateway is None:
        gateway = RetryingNotificationGateway(
            LoggingNotificationGateway(),
            max_retries=settings.notification_max_retries,
            retry_delay=settings.notification_retry_delay,
        )

    return OrderService(
        repository=repository or InMemoryOrderRepository(),
        machine=OrderStateMachine(clock, notify_on=settings.notify_on_statuses),
        scheduler=SlotScheduler(settings.schedule_config(), clock),
        gateway=gateway,
        max_retries=settings.max_transition_retries,
    )


__all__ = [
    "CreateOrderResult",
    "LoggingNotificationGateway",
    "NotificationGateway",
    "OrderService",
    "ReminderSweeper",
    "RetryingNotificationGateway",
    "SlotScheduler",
    "TransitionResult",
    "build_order_service",
    "build_repository",
]
