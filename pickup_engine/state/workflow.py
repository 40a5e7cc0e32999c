"""Transition graph for online order statuses."""

from collections.abc import Iterable

from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import OrderStatus


class OrderTransitions:
    """Valid order status transitions.

    pending -> confirmed -> preparing -> ready -> picked_up, and any
    non-terminal status -> cancelled. No status may be skipped.
    """

    TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
        OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
        OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
        OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
        OrderStatus.READY: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
        OrderStatus.PICKED_UP: frozenset(),
        OrderStatus.CANCELLED: frozenset(),
    }

    # StatusTimestamps field stamped on entering each status
    TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
        OrderStatus.CONFIRMED: "confirmed_at",
        OrderStatus.PREPARING: "started_preparing_at",
        OrderStatus.READY: "ready_at",
        OrderStatus.PICKED_UP: "picked_up_at",
        OrderStatus.CANCELLED: "cancelled_at",
    }

    NORMAL_FLOW: dict[OrderStatus, OrderStatus | None] = {
        OrderStatus.PENDING: OrderStatus.CONFIRMED,
        OrderStatus.CONFIRMED: OrderStatus.PREPARING,
        OrderStatus.PREPARING: OrderStatus.READY,
        OrderStatus.READY: OrderStatus.PICKED_UP,
        OrderStatus.PICKED_UP: None,
        OrderStatus.CANCELLED: None,
    }

    INITIAL_STATUS = OrderStatus.PENDING

    @classmethod
    def allowed_from(cls, from_state: OrderStatus) -> frozenset[OrderStatus]:
        """Statuses directly reachable from ``from_state``."""
        return cls.TRANSITIONS.get(from_state, frozenset())

    @classmethod
    def can_transition(cls, from_state: OrderStatus | None, to_state: OrderStatus) -> bool:
        """Check if a state transition is valid.

        ``None`` stands for "no order yet"; only the creation edge into
        ``pending`` leaves it.
        """
        if from_state is None:
            return to_state == cls.INITIAL_STATUS
        return to_state in cls.allowed_from(from_state)

    @classmethod
    def is_terminal(cls, status: OrderStatus) -> bool:
        return not cls.allowed_from(status)

    @classmethod
    def timestamp_field(cls, status: OrderStatus) -> str | None:
        return cls.TIMESTAMP_FIELDS.get(status)

    @classmethod
    def next_normal_status(cls, status: OrderStatus) -> OrderStatus | None:
        """Next status on the happy path, ignoring cancellation."""
        return cls.NORMAL_FLOW[status]

    @classmethod
    def is_valid_walk(cls, entries: Iterable[HistoryEntry]) -> bool:
        """Check that history entries form an unbroken walk through the graph."""
        previous: OrderStatus | None = None
        last_at = None
        for index, entry in enumerate(entries):
            if index == 0 and entry.old_status is not None:
                return False
            if entry.old_status != previous:
                return False
            if not cls.can_transition(entry.old_status, entry.new_status):
                return False
            if last_at is not None and entry.occurred_at < last_at:
                return False
            previous = entry.new_status
            last_at = entry.occurred_at
        return True
