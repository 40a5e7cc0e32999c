"""API routes for the pickup engine."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from pickup_engine.config import get_settings
from pickup_engine.errors import OrderNotFound, SchedulingError
from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import ContactInfo, Order, OrderItem, OrderStatus
from pickup_engine.models.schedule import TimeSlot
from pickup_engine.services import (
    OrderService,
    ReminderSweeper,
    TransitionResult,
    build_order_service,
    build_repository,
)
from pickup_engine.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# HTTP status for each engine error code
ERROR_STATUS = {
    "InvalidTransition": status.HTTP_409_CONFLICT,
    "StaleVersion": status.HTTP_409_CONFLICT,
    "MissingCancellationReason": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "BeforeMinimumLeadTime": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "OutsideBusinessHours": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "SlotFull": status.HTTP_409_CONFLICT,
    "OrderNotFound": status.HTTP_404_NOT_FOUND,
}


# Request/Response Models


class CreateOrderRequest(BaseModel):
    """Request to place an order."""

    pickup_time: datetime
    contact: ContactInfo | None = None
    items: list[OrderItem] = Field(default_factory=list)
    customer_notes: str | None = None
    actor: str | None = None


class TransitionRequest(BaseModel):
    """Request to change an order's status."""

    target_status: OrderStatus
    actor: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    expected_version: int | None = None
    notify: bool = True


class BulkTransitionRequest(BaseModel):
    """Request to move several orders to the same status."""

    order_ids: list[UUID]
    target_status: OrderStatus
    actor: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    notify: bool = True


class AllowedTransitionsResponse(BaseModel):
    """Statuses an order may move to next."""

    order_id: UUID
    status: OrderStatus
    version: int
    allowed: list[OrderStatus]
    can_cancel: bool


class SlotsResponse(BaseModel):
    """Pickup slots still available today."""

    slots: list[TimeSlot]
    earliest: TimeSlot | None
    prep_minutes: int
    message: str


class ValidateTimeRequest(BaseModel):
    """A free-form pickup time to check."""

    requested_time: datetime


class ValidateTimeResponse(BaseModel):
    """Whether a requested pickup time is acceptable."""

    valid: bool
    error: str | None = None
    error_code: str | None = None


# Dependency to get the order service

_order_service: OrderService | None = None


async def get_order_service() -> OrderService:
    """Get the order service instance."""
    global _order_service
    if _order_service is None:
        settings = get_settings()
        repository = await build_repository(settings)
        _order_service = build_order_service(settings, repository=repository)
    return _order_service


def set_order_service(service: OrderService | None) -> None:
    """Replace the shared order service (used at startup)."""
    global _order_service
    _order_service = service


def _error(code: str | None, message: str | None) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST),
        detail={"error": message, "error_code": code},
    )


async def _load_order(service: OrderService, order_id: UUID) -> Order:
    try:
        return await service.get_order(order_id)
    except OrderNotFound as e:
        raise _error(e.code, e.message)


# Scheduling routes


@router.get("/slots", response_model=SlotsResponse)
async def list_slots(service: OrderService = Depends(get_order_service)) -> SlotsResponse:
    """
    List today's pickup slots.

    Returns an empty list, not an error, once no slot is left for the day.
    """
    slots = list(await service.available_slots())
    config = service.scheduler.config

    if slots:
        message = f"Your order will be ready in about {config.prep_minutes} minutes"
    else:
        message = f"No pickup times left today. We close at {config.closing_time:%H:%M}."

    return SlotsResponse(
        slots=slots,
        earliest=slots[0] if slots else None,
        prep_minutes=config.prep_minutes,
        message=message,
    )


@router.post("/slots/validate", response_model=ValidateTimeResponse)
async def validate_slot(
    request: ValidateTimeRequest,
    service: OrderService = Depends(get_order_service),
) -> ValidateTimeResponse:
    """Check a manually entered pickup time."""
    try:
        service.scheduler.validate(request.requested_time)
    except SchedulingError as e:
        return ValidateTimeResponse(valid=False, error=e.message, error_code=e.code)
    return ValidateTimeResponse(valid=True)


# Order routes


@router.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    service: OrderService = Depends(get_order_service),
) -> Order:
    """Place a new order for pickup."""
    result = await service.create_order(
        pickup_time=request.pickup_time,
        contact=request.contact,
        items=request.items,
        customer_notes=request.customer_notes,
        actor=request.actor,
    )

    if not result.success:
        raise _error(result.error_code, result.error)

    logger.info(
        "order_created_via_api",
        order_id=str(result.order.id),
        pickup_time=result.order.pickup_time.isoformat(),
    )
    return result.order


@router.get("/orders", response_model=list[Order])
async def list_orders(
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    service: OrderService = Depends(get_order_service),
) -> list[Order]:
    """List orders by pickup time, optionally filtered by status."""
    return await service.list_orders(status_filter)


@router.post("/orders/transitions/bulk", response_model=list[TransitionResult])
async def bulk_transition(
    request: BulkTransitionRequest,
    service: OrderService = Depends(get_order_service),
) -> list[TransitionResult]:
    """Move several orders to the same status; each result is reported separately."""
    return await service.bulk_transition(
        request.order_ids,
        request.target_status,
        actor=request.actor,
        notes=request.notes,
        cancellation_reason=request.cancellation_reason,
        notify=request.notify,
    )


@router.get("/orders/{order_id}", response_model=Order)
async def get_order(
    order_id: UUID,
    service: OrderService = Depends(get_order_service),
) -> Order:
    """Get order details."""
    return await _load_order(service, order_id)


@router.get("/orders/{order_id}/transitions", response_model=AllowedTransitionsResponse)
async def get_allowed_transitions(
    order_id: UUID,
    service: OrderService = Depends(get_order_service),
) -> AllowedTransitionsResponse:
    """Statuses the order can move to next."""
    order = await _load_order(service, order_id)
    allowed = service.machine.get_allowed_transitions(order)

    return AllowedTransitionsResponse(
        order_id=order.id,
        status=order.status,
        version=order.version,
        allowed=[candidate for candidate in OrderStatus if candidate in allowed],
        can_cancel=service.machine.can_cancel(order),
    )


@router.post("/orders/{order_id}/transitions", response_model=TransitionResult)
async def apply_transition(
    order_id: UUID,
    request: TransitionRequest,
    service: OrderService = Depends(get_order_service),
) -> TransitionResult:
    """
    Change an order's status.

    Send ``expected_version`` with the version you loaded; a 409 with
    ``StaleVersion`` means someone else changed the order first.
    """
    result = await service.transition(
        order_id,
        request.target_status,
        actor=request.actor,
        notes=request.notes,
        cancellation_reason=request.cancellation_reason,
        expected_version=request.expected_version,
        notify=request.notify,
    )

    if not result.success:
        raise _error(result.error_code, result.error)

    return result


@router.get("/orders/{order_id}/history", response_model=list[HistoryEntry])
async def get_order_history(
    order_id: UUID,
    service: OrderService = Depends(get_order_service),
) -> list[HistoryEntry]:
    """Status timeline for an order, oldest first."""
    try:
        return await service.get_history(order_id)
    except OrderNotFound as e:
        raise _error(e.code, e.message)


# Admin endpoints


@router.get("/admin/orders/stats")
async def get_order_stats(
    service: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Order counts per status."""
    counts = await service.status_counts()
    return {
        "total_orders": sum(counts.values()),
        "by_status": {candidate.value: counts.get(candidate, 0) for candidate in OrderStatus},
    }


@router.get("/admin/orders/overdue", response_model=list[Order])
async def get_overdue_orders(
    service: OrderService = Depends(get_order_service),
) -> list[Order]:
    """Ready orders whose pickup time has passed."""
    return await service.list_overdue()


@router.post("/admin/reminders/sweep")
async def run_reminder_sweep(
    service: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Run one reminder sweep immediately."""
    settings = get_settings()
    sweeper = ReminderSweeper(
        service,
        threshold=timedelta(minutes=settings.reminder_threshold_minutes),
    )
    receipts = await sweeper.run_once()

    return {
        "reminders": len(receipts),
        "delivered": sum(1 for receipt in receipts if receipt.delivered),
    }
