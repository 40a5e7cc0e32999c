"""Order service: runs the state machine against storage and notifications."""

from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pickup_engine.errors import DeliveryError, OrderEngineError, StaleVersion
from pickup_engine.models.effects import DeliveryReceipt, OutboundEffect
from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import ContactInfo, Order, OrderItem, OrderStatus
from pickup_engine.services.notifications import NotificationGateway
from pickup_engine.services.scheduler import SlotScheduler, SlotSequence
from pickup_engine.state.machine import OrderStateMachine
from pickup_engine.state.repository import OrderRepository
from pickup_engine.utils.logging import OrderLogger


class TransitionResult(BaseModel):
    """Outcome of a transition request, returned instead of raised."""

    success: bool
    order: Order | None = None
    history_entry: HistoryEntry | None = None
    effects: list[OutboundEffect] = Field(default_factory=list)
    receipts: list[DeliveryReceipt] = Field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    attempts: int = 1


class CreateOrderResult(BaseModel):
    """Outcome of placing an order."""

    success: bool
    order: Order | None = None
    history_entry: HistoryEntry | None = None
    error: str | None = None
    error_code: str | None = None


class OrderService:
    """
    Application layer for online orders.

    Responsibilities:
    - Validate pickup times and place orders
    - Apply transitions with optimistic concurrency
    - Hand effects to the notification gateway and record delivery
    """

    def __init__(
        self,
        repository: OrderRepository,
        machine: OrderStateMachine,
        scheduler: SlotScheduler,
        gateway: NotificationGateway,
        max_retries: int = 3,
    ):
        self.repository = repository
        self.machine = machine
        self.scheduler = scheduler
        self.gateway = gateway
        self.max_retries = max_retries
        self.logger = OrderLogger("order_service")

    @property
    def clock(self):
        return self.machine.clock

    async def create_order(
        self,
        pickup_time: datetime,
        contact: ContactInfo | None = None,
        items: Iterable[OrderItem] = (),
        customer_notes: str | None = None,
        actor: str | None = None,
        order_number: str | None = None,
    ) -> CreateOrderResult:
        """
        Place a new order in ``pending``.

        Args:
            pickup_time: Requested pickup, slot-aligned or free-form
            contact: Guest or customer contact details
            items: Ordered items
            customer_notes: Notes from the customer
            actor: Who placed the order
            order_number: Human-facing number, generated when omitted

        Returns:
            CreateOrderResult with the stored order or the scheduling error
        """
        now = self.clock.now()
        config = self.scheduler.config
        if pickup_time.tzinfo is None:
            pickup_time = pickup_time.replace(tzinfo=now.tzinfo)

        order_id = uuid4()
        order = Order(
            id=order_id,
            order_number=order_number or f"{now:%y%m%d}-{order_id.hex[:6].upper()}",
            pickup_time=pickup_time,
            estimated_prep_minutes=config.prep_minutes,
            contact=contact,
            items=list(items),
            customer_notes=customer_notes,
            created_at=now,
            updated_at=now,
        )

        try:
            self.scheduler.validate(pickup_time)
            entry = self.machine.start(order, actor=actor)
            # Capacity is checked inside the repository's atomic create
            await self.repository.create(
                order, entry, slot_capacity=config.capacity_per_slot
            )
        except OrderEngineError as e:
            self.logger.log_rejection(
                order_id="new",
                error_code=e.code,
                error=e.message,
                pickup_time=pickup_time.isoformat(),
            )
            return CreateOrderResult(success=False, error=e.message, error_code=e.code)

        self.logger.log_transition(
            order_id=str(order.id),
            old_status=None,
            new_status=order.status.value,
            version=order.version,
            actor=actor,
            order_number=order.order_number,
        )
        return CreateOrderResult(success=True, order=order, history_entry=entry)

    async def get_order(self, order_id: UUID) -> Order:
        return await self.repository.get(order_id)

    async def get_history(self, order_id: UUID) -> list[HistoryEntry]:
        return await self.repository.get_history(order_id)

    async def list_orders(self, status: OrderStatus | None = None) -> list[Order]:
        orders = await self.repository.list_by_status(status)
        return sorted(orders, key=lambda order: order.pickup_time)

    async def allowed_transitions(self, order_id: UUID) -> frozenset[OrderStatus]:
        order = await self.repository.get(order_id)
        return self.machine.get_allowed_transitions(order)

    async def transition(
        self,
        order_id: UUID,
        target_status: OrderStatus,
        actor: str | None = None,
        notes: str | None = None,
        cancellation_reason: str | None = None,
        expected_version: int | None = None,
        notify: bool = True,
    ) -> TransitionResult:
        """
        Move a stored order to ``target_status``.

        With ``expected_version`` the caller's view must still be current,
        otherwise the result is a ``StaleVersion`` failure. Without it,
        version conflicts are retried up to ``max_retries`` times, re-reading
        the order and re-checking the transition on every attempt.

        ``notify=False`` commits the transition without contacting the
        customer, e.g. when staff already told them in person.
        """
        attempts = 0
        for attempt in range(self.max_retries):
            attempts = attempt + 1
            try:
                order = await self.repository.get(order_id)
                if expected_version is not None and order.version != expected_version:
                    raise StaleVersion(order_id, expected_version, order.version)

                outcome = self.machine.apply_transition(
                    order,
                    target_status,
                    actor=actor,
                    notes=notes,
                    cancellation_reason=cancellation_reason,
                    notify=notify,
                )
                await self.repository.compare_and_swap(
                    order_id,
                    order.version,
                    outcome.order,
                    outcome.history_entry,
                )

            except StaleVersion as e:
                if expected_version is None and attempts < self.max_retries:
                    continue
                return self._failure(order_id, e, attempts)

            except OrderEngineError as e:
                return self._failure(order_id, e, attempts)

            self.logger.log_transition(
                order_id=str(order_id),
                old_status=outcome.history_entry.old_status.value,
                new_status=outcome.order.status.value,
                version=outcome.order.version,
                actor=actor,
                attempts=attempts,
            )

            latest, receipts = await self._dispatch(outcome.order, outcome.effects)
            return TransitionResult(
                success=True,
                order=latest,
                history_entry=outcome.history_entry,
                effects=outcome.effects,
                receipts=receipts,
                attempts=attempts,
            )

        # Only reachable with max_retries < 1
        return TransitionResult(success=False, error="No attempts made", attempts=attempts)

    async def bulk_transition(
        self,
        order_ids: Iterable[UUID],
        target_status: OrderStatus,
        actor: str | None = None,
        notes: str | None = None,
        cancellation_reason: str | None = None,
        notify: bool = True,
    ) -> list[TransitionResult]:
        """Apply the same transition to several orders, one at a time."""
        results = []
        for order_id in order_ids:
            results.append(
                await self.transition(
                    order_id,
                    target_status,
                    actor=actor,
                    notes=notes,
                    cancellation_reason=cancellation_reason,
                    notify=notify,
                )
            )
        return results

    async def deliver(self, order: Order, effect: OutboundEffect) -> tuple[Order, DeliveryReceipt]:
        """
        Hand one effect to the gateway and record a successful delivery.

        Delivery failures are reported in the receipt and never undo the
        committed transition.
        """
        receipt = await self._send(order, effect)
        if receipt.delivered:
            order = await self.acknowledge(order.id, effect)
        return order, receipt

    async def send_reminder(
        self,
        order: Order,
        threshold: timedelta,
    ) -> tuple[OutboundEffect, DeliveryReceipt] | None:
        """
        Remind the customer of a ready order at most once.

        The reminder is claimed by flipping ``reminder_sent`` against the
        snapshot's version before anything is sent. A version conflict means
        someone else changed the order, so it is re-read and the decision
        made again. A failed delivery releases the claim for the next sweep.

        Returns None when no reminder is due or the claim could not be won.
        """
        for _ in range(self.max_retries):
            effect = self.machine.request_reminder(order, threshold)
            if effect is None:
                return None
            claimed = self.machine.acknowledge_effect(order, effect)
            if claimed is None:
                return None
            try:
                await self.repository.compare_and_swap(order.id, order.version, claimed)
                break
            except StaleVersion:
                order = await self.repository.get(order.id)
        else:
            self.logger.logger.warning(
                "reminder_claim_abandoned",
                order_id=str(order.id),
                attempts=self.max_retries,
            )
            return None

        self.logger.log_reminder(
            order_id=str(order.id),
            ready_at=order.status_timestamps.ready_at.isoformat(),
            waiting_minutes=effect.payload.get("waiting_minutes"),
        )
        receipt = await self._send(claimed, effect)
        if not receipt.delivered:
            await self._release_reminder(order.id)
        return effect, receipt

    async def _release_reminder(self, order_id: UUID) -> None:
        for _ in range(self.max_retries):
            order = await self.repository.get(order_id)
            released = self.machine.release_reminder(order)
            if released is None:
                return
            try:
                await self.repository.compare_and_swap(order_id, order.version, released)
                return
            except StaleVersion:
                continue

        self.logger.logger.warning(
            "reminder_release_abandoned",
            order_id=str(order_id),
            attempts=self.max_retries,
        )

    async def _send(self, order: Order, effect: OutboundEffect) -> DeliveryReceipt:
        try:
            return await self.gateway.send(effect)
        except DeliveryError as e:
            self.logger.log_effect(
                order_id=str(order.id),
                kind=effect.kind.value,
                delivered=False,
                attempts=1,
                error=e.message,
            )
            return DeliveryReceipt(effect_id=effect.id, delivered=False, error=e.message)

    async def acknowledge(self, order_id: UUID, effect: OutboundEffect) -> Order:
        """Flip the effect's delivery flag through compare-and-swap."""
        order = await self.repository.get(order_id)
        for _ in range(self.max_retries):
            updated = self.machine.acknowledge_effect(order, effect)
            if updated is None:
                return order
            try:
                await self.repository.compare_and_swap(order_id, order.version, updated)
                return updated
            except StaleVersion:
                order = await self.repository.get(order_id)

        self.logger.logger.warning(
            "effect_acknowledgment_abandoned",
            order_id=str(order_id),
            kind=effect.kind.value,
            attempts=self.max_retries,
        )
        return order

    async def available_slots(self) -> SlotSequence:
        """Today's slots, with capacity taken into account when configured."""
        config = self.scheduler.config
        if config.capacity_per_slot is None:
            return self.scheduler.slots()

        now = self.clock.now()
        bookings = await self.repository.bookings_between(now, now + timedelta(days=1))
        return self.scheduler.slots(bookings)

    async def status_counts(self) -> dict[OrderStatus, int]:
        return await self.repository.status_counts()

    async def list_overdue(self) -> list[Order]:
        return await self.repository.list_overdue(self.clock.now())

    async def _dispatch(
        self,
        order: Order,
        effects: list[OutboundEffect],
    ) -> tuple[Order, list[DeliveryReceipt]]:
        receipts = []
        for effect in effects:
            order, receipt = await self.deliver(order, effect)
            receipts.append(receipt)
        return order, receipts

    def _failure(self, order_id: UUID, error: OrderEngineError, attempts: int) -> TransitionResult:
        self.logger.log_rejection(
            order_id=str(order_id),
            error_code=error.code,
            error=error.message,
            attempts=attempts,
        )
        return TransitionResult(
            success=False,
            error=error.message,
            error_code=error.code,
            attempts=attempts,
        )
