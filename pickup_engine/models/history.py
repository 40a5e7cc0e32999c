"""Audit trail models."""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from pickup_engine.models.order import OrderStatus


class HistoryEntry(BaseModel):
    """Append-only record of one status change.

    ``old_status`` is ``None`` for the entry written when the order is created.
    ``actor`` is ``None`` for system-triggered transitions.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    order_id: UUID
    old_status: OrderStatus | None
    new_status: OrderStatus
    actor: str | None = None
    notes: str | None = None
    occurred_at: datetime
