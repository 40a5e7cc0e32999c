"""Order-related data models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, EmailStr, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Order status progression."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"


class NotificationChannel(str, Enum):
    """Channels a customer can be reached on."""

    EMAIL = "email"
    SMS = "sms"
    TELEGRAM = "telegram"


class ContactInfo(BaseModel):
    """Guest or customer contact details recorded at checkout."""

    name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    telegram_chat_id: str | None = None
    notification_method: NotificationChannel = NotificationChannel.EMAIL

    def address_for(self, channel: NotificationChannel) -> str | None:
        """Return the address for a channel, if one was recorded."""
        if channel == NotificationChannel.EMAIL:
            return self.email
        if channel == NotificationChannel.SMS:
            return self.phone
        return self.telegram_chat_id

    def is_reachable(self) -> bool:
        """Whether at least one channel has an address."""
        return any(self.address_for(channel) for channel in NotificationChannel)


class OrderItem(BaseModel):
    """Individual item in an order."""

    product_id: str
    name: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    notes: str | None = None


class StatusTimestamps(BaseModel):
    """Instant each status was first entered. Every field is write-once."""

    confirmed_at: datetime | None = None
    started_preparing_at: datetime | None = None
    ready_at: datetime | None = None
    picked_up_at: datetime | None = None
    cancelled_at: datetime | None = None


class Order(BaseModel):
    """Online order awaiting pickup."""

    id: UUID = Field(default_factory=uuid4)
    order_number: str | None = None
    status: OrderStatus = OrderStatus.PENDING

    # Scheduling
    pickup_time: datetime
    estimated_prep_minutes: int = Field(ge=0)

    # Cancellation
    cancellation_reason: str | None = None

    # Timing
    status_timestamps: StatusTimestamps = Field(default_factory=StatusTimestamps)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Notifications
    contact: ContactInfo | None = None
    notification_sent: bool = False
    reminder_sent: bool = False

    # Details
    items: list[OrderItem] = Field(default_factory=list)
    customer_notes: str | None = None

    # Optimistic concurrency
    version: int = Field(default=1, ge=1)

    @property
    def is_terminal(self) -> bool:
        """Picked up and cancelled orders accept no further transitions."""
        return self.status in (OrderStatus.PICKED_UP, OrderStatus.CANCELLED)

    @property
    def has_contact(self) -> bool:
        return self.contact is not None and self.contact.is_reachable()
