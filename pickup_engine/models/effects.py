"""Outbound notification requests emitted by the engine."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from pickup_engine.models.order import NotificationChannel


class EffectKind(str, Enum):
    """Why a notification is requested."""

    READY = "ready"
    CANCELLED = "cancelled"
    REMINDER = "reminder"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"


class Recipient(BaseModel):
    """Where a notification should go."""

    model_config = ConfigDict(frozen=True)

    channel: NotificationChannel
    address: str
    name: str | None = None


class OutboundEffect(BaseModel):
    """A notification the engine decided must fire.

    Delivery is someone else's job; the engine only hands this off.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    kind: EffectKind
    order_id: UUID
    recipient: Recipient | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class DeliveryReceipt(BaseModel):
    """Outcome of handing an effect to a notification gateway."""

    effect_id: UUID
    delivered: bool
    attempts: int = 1
    error: str | None = None
