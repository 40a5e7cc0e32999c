"""Error taxonomy for the order engine.

Every error carries a stable ``code`` so callers (HTTP layer, CLI, tests) can
branch on the kind of failure without matching on messages.
"""

from datetime import datetime
from uuid import UUID


class OrderEngineError(Exception):
    """Base class for all engine failures."""

    code = "OrderEngineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransition(OrderEngineError):
    """Attempted edge is not in the transition graph."""

    code = "InvalidTransition"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class MissingCancellationReason(OrderEngineError):
    """Cancellation requested without a non-blank reason."""

    code = "MissingCancellationReason"

    def __init__(self) -> None:
        super().__init__("A cancellation reason is required to cancel an order")


class StaleVersion(OrderEngineError):
    """The caller's view of the order is out of date."""

    code = "StaleVersion"

    def __init__(self, order_id: UUID, expected_version: int, actual_version: int | None):
        super().__init__(
            f"Order {order_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class OrderNotFound(OrderEngineError):
    """No order is stored under the requested id."""

    code = "OrderNotFound"

    def __init__(self, order_id: UUID):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InternalConsistencyError(OrderEngineError):
    """The engine reached a state the transition graph should make impossible."""

    code = "InternalConsistencyError"


class SchedulingError(OrderEngineError):
    """Base class for rejected pickup times."""

    code = "SchedulingError"


class BeforeMinimumLeadTime(SchedulingError):
    """Requested pickup is earlier than now plus preparation time."""

    code = "BeforeMinimumLeadTime"

    def __init__(self, requested: datetime, earliest: datetime):
        super().__init__(
            f"Pickup time {requested:%H:%M} is too soon; "
            f"the earliest possible pickup is {earliest:%H:%M}"
        )
        self.requested = requested
        self.earliest = earliest


class OutsideBusinessHours(SchedulingError):
    """Requested pickup falls outside opening hours for its day."""

    code = "OutsideBusinessHours"

    def __init__(self, requested: datetime, opening: datetime, closing: datetime):
        super().__init__(
            f"Pickup time {requested:%H:%M} is outside business hours "
            f"({opening:%H:%M}-{closing:%H:%M})"
        )
        self.requested = requested
        self.opening = opening
        self.closing = closing


class SlotFull(SchedulingError):
    """Every place in the requested pickup slot is already booked."""

    code = "SlotFull"

    def __init__(self, requested: datetime, capacity: int):
        super().__init__(f"Pickup slot {requested:%H:%M} is full ({capacity} orders)")
        self.requested = requested
        self.capacity = capacity


class DeliveryError(OrderEngineError):
    """A notification transport failed to deliver an effect."""

    code = "DeliveryError"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
