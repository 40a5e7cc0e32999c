"""Order state machine: validates and applies status transitions."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from pickup_engine.clock import Clock
from pickup_engine.errors import (
    InternalConsistencyError,
    InvalidTransition,
    MissingCancellationReason,
)
from pickup_engine.models.effects import EffectKind, OutboundEffect, Recipient
from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import Order, OrderStatus
from pickup_engine.state.workflow import OrderTransitions

# Kinds whose delivery acknowledgment flips ``notification_sent``
STATUS_EFFECT_KINDS = {
    OrderStatus.READY: EffectKind.READY,
    OrderStatus.CANCELLED: EffectKind.CANCELLED,
    OrderStatus.CONFIRMED: EffectKind.CONFIRMED,
    OrderStatus.PREPARING: EffectKind.PREPARING,
}


class TransitionOutcome(BaseModel):
    """Everything a successful transition produces."""

    order: Order
    history_entry: HistoryEntry
    effects: list[OutboundEffect] = Field(default_factory=list)


class OrderStateMachine:
    """
    Pure transition logic for online orders.

    The machine never touches storage or delivery. It takes an order
    snapshot and returns a new snapshot, the audit entry describing the
    change, and the notifications the change requires. Persisting the result
    with a version check is the caller's job.
    """

    def __init__(
        self,
        clock: Clock,
        notify_on: Iterable[OrderStatus] = (),
    ):
        self.clock = clock
        # Optional extra notifications for intermediate statuses
        self.notify_on = frozenset(notify_on)

    def get_allowed_transitions(self, order: Order) -> frozenset[OrderStatus]:
        """Statuses the order may move to next."""
        if order.is_terminal:
            return frozenset()
        return OrderTransitions.allowed_from(order.status)

    def can_cancel(self, order: Order) -> bool:
        return OrderStatus.CANCELLED in self.get_allowed_transitions(order)

    def start(
        self,
        order: Order,
        actor: str | None = None,
        notes: str | None = None,
    ) -> HistoryEntry:
        """
        Build the creation entry for a freshly placed order.

        Args:
            order: Newly built order, still in its initial status
            actor: Who placed the order (None for guest checkout)
            notes: Optional note for the audit trail

        Returns:
            HistoryEntry with no previous status
        """
        if not OrderTransitions.can_transition(None, order.status):
            raise InvalidTransition("none", order.status.value)

        return HistoryEntry(
            order_id=order.id,
            old_status=None,
            new_status=order.status,
            actor=actor,
            notes=notes,
            occurred_at=order.created_at,
        )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        actor: str | None = None,
        notes: str | None = None,
        cancellation_reason: str | None = None,
        notify: bool = True,
    ) -> TransitionOutcome:
        """
        Move an order to ``target_status``.

        Args:
            order: Current snapshot (left untouched)
            target_status: Requested status
            actor: Staff or customer id, None for system transitions
            notes: Free-form note stored on the history entry
            cancellation_reason: Required when cancelling; falls back to
                ``notes`` when omitted
            notify: False suppresses the customer notifications this
                transition would normally emit

        Returns:
            TransitionOutcome with the new snapshot, its history entry and
            the notifications to hand off

        Raises:
            InvalidTransition: edge not in the graph
            MissingCancellationReason: cancelling without a reason
            InternalConsistencyError: target timestamp already stamped
        """
        target_status = OrderStatus(target_status)

        if target_status not in self.get_allowed_transitions(order):
            raise InvalidTransition(order.status.value, target_status.value)

        reason = None
        if target_status == OrderStatus.CANCELLED:
            raw_reason = cancellation_reason if cancellation_reason is not None else notes
            reason = (raw_reason or "").strip()
            if not reason:
                raise MissingCancellationReason()

        # Captured once so every field of this transition agrees
        now = self.clock.now()

        updated = order.model_copy(deep=True)

        field_name = OrderTransitions.timestamp_field(target_status)
        if field_name is None:
            raise InternalConsistencyError(f"No timestamp field for status {target_status.value}")
        if getattr(updated.status_timestamps, field_name) is not None:
            raise InternalConsistencyError(
                f"Order {order.id} already has {field_name} set; refusing to overwrite"
            )
        setattr(updated.status_timestamps, field_name, now)

        updated.status = target_status
        updated.version = order.version + 1
        updated.updated_at = now
        if reason is not None:
            updated.cancellation_reason = reason

        entry = HistoryEntry(
            order_id=order.id,
            old_status=order.status,
            new_status=target_status,
            actor=actor,
            notes=notes,
            occurred_at=now,
        )

        return TransitionOutcome(
            order=updated,
            history_entry=entry,
            effects=self._effects_for(updated, target_status, now) if notify else [],
        )

    def request_reminder(
        self,
        order: Order,
        threshold: timedelta,
    ) -> OutboundEffect | None:
        """
        Decide whether a ready order needs a pickup reminder.

        Returns None unless the order is ready, has waited at least
        ``threshold`` since ``ready_at``, and has not been reminded yet.
        """
        ready_at = order.status_timestamps.ready_at
        if order.status != OrderStatus.READY or order.reminder_sent or ready_at is None:
            return None

        now = self.clock.now()
        if now - ready_at < threshold:
            return None

        payload = self._payload(order)
        payload["waiting_minutes"] = int((now - ready_at).total_seconds() // 60)

        return OutboundEffect(
            kind=EffectKind.REMINDER,
            order_id=order.id,
            recipient=self._recipient(order),
            payload=payload,
            created_at=now,
        )

    def acknowledge_effect(self, order: Order, effect: OutboundEffect) -> Order | None:
        """
        Record that an effect was delivered.

        Returns the new snapshot with the matching flag flipped and the
        version bumped, or None when the flag was already set. Reminders are
        only recorded while the order is still ready.
        """
        if effect.order_id != order.id:
            raise InternalConsistencyError(
                f"Effect {effect.id} belongs to order {effect.order_id}, not {order.id}"
            )

        if effect.kind == EffectKind.REMINDER and order.status != OrderStatus.READY:
            return None

        flag = "reminder_sent" if effect.kind == EffectKind.REMINDER else "notification_sent"
        if getattr(order, flag):
            return None

        updated = order.model_copy(deep=True)
        setattr(updated, flag, True)
        updated.version = order.version + 1
        updated.updated_at = self.clock.now()
        return updated

    def release_reminder(self, order: Order) -> Order | None:
        """Undo a reminder claim whose delivery failed, so a later sweep retries it.

        Returns None when there is nothing to release or the order has left
        ``ready``.
        """
        if order.status != OrderStatus.READY or not order.reminder_sent:
            return None

        updated = order.model_copy(deep=True)
        updated.reminder_sent = False
        updated.version = order.version + 1
        updated.updated_at = self.clock.now()
        return updated

    def _effects_for(
        self,
        order: Order,
        target_status: OrderStatus,
        now: datetime,
    ) -> list[OutboundEffect]:
        """Notifications required by entering ``target_status``."""
        if target_status == OrderStatus.READY:
            pass
        elif target_status == OrderStatus.CANCELLED:
            if not order.has_contact:
                return []
        elif target_status not in self.notify_on:
            return []

        payload = self._payload(order)
        if target_status == OrderStatus.CANCELLED:
            payload["cancellation_reason"] = order.cancellation_reason

        return [
            OutboundEffect(
                kind=STATUS_EFFECT_KINDS[target_status],
                order_id=order.id,
                recipient=self._recipient(order),
                payload=payload,
                created_at=now,
            )
        ]

    def _recipient(self, order: Order) -> Recipient | None:
        """Pick the preferred channel, falling back to any reachable one."""
        contact = order.contact
        if contact is None:
            return None

        preferred = contact.notification_method
        address = contact.address_for(preferred)
        if address:
            return Recipient(channel=preferred, address=address, name=contact.name)

        for channel in type(preferred):
            address = contact.address_for(channel)
            if address:
                return Recipient(channel=channel, address=address, name=contact.name)

        return None

    def _payload(self, order: Order) -> dict:
        return {
            "order_number": order.order_number,
            "status": order.status.value,
            "pickup_time": order.pickup_time.isoformat(),
        }
