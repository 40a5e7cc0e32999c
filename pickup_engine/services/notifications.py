"""Notification gateways that deliver outbound effects."""

import asyncio
from abc import ABC, abstractmethod

from pickup_engine.errors import DeliveryError
from pickup_engine.models.effects import DeliveryReceipt, EffectKind, OutboundEffect
from pickup_engine.utils.logging import OrderLogger, get_logger

logger = get_logger(__name__)

SUBJECTS = {
    EffectKind.READY: "Your order is ready for pickup",
    EffectKind.CANCELLED: "Your order was cancelled",
    EffectKind.REMINDER: "Your order is waiting for you",
    EffectKind.CONFIRMED: "Your order is confirmed",
    EffectKind.PREPARING: "We started preparing your order",
}


def render_message(effect: OutboundEffect) -> str:
    """Plain-text body for an effect."""
    number = effect.payload.get("order_number") or str(effect.order_id)[:8]
    subject = SUBJECTS[effect.kind]

    if effect.kind == EffectKind.CANCELLED:
        reason = effect.payload.get("cancellation_reason")
        return f"{subject} (#{number}). Reason: {reason}"
    if effect.kind == EffectKind.REMINDER:
        waiting = effect.payload.get("waiting_minutes")
        return f"{subject} (#{number}). It has been ready for {waiting} minutes."
    return f"{subject} (#{number}). Pickup time: {effect.payload.get('pickup_time')}"


class NotificationGateway(ABC):
    """Delivers outbound effects to customers."""

    @abstractmethod
    async def send(self, effect: OutboundEffect) -> DeliveryReceipt:
        """Deliver one effect.

        Transports raise ``DeliveryError`` on failure; wrappers such as
        ``RetryingNotificationGateway`` turn that into a failed receipt.
        """


class LoggingNotificationGateway(NotificationGateway):
    """Transport that writes notifications to the structured log."""

    async def send(self, effect: OutboundEffect) -> DeliveryReceipt:
        if effect.recipient is None:
            raise DeliveryError(
                f"Order {effect.order_id} has no contact details", retryable=False
            )

        logger.info(
            "notification_sent",
            effect_id=str(effect.id),
            order_id=str(effect.order_id),
            kind=effect.kind.value,
            channel=effect.recipient.channel.value,
            recipient=effect.recipient.address,
            message=render_message(effect),
        )
        return DeliveryReceipt(effect_id=effect.id, delivered=True)


class RetryingNotificationGateway(NotificationGateway):
    """Retries a transport with exponential backoff; never raises."""

    def __init__(
        self,
        transport: NotificationGateway,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.transport = transport
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = OrderLogger("notifications")

    async def send(self, effect: OutboundEffect) -> DeliveryReceipt:
        last_error: DeliveryError | None = None
        attempts = 0

        for attempt in range(self.max_retries):
            attempts = attempt + 1
            try:
                receipt = await self.transport.send(effect)
                receipt.attempts = attempts
                self.logger.log_effect(
                    order_id=str(effect.order_id),
                    kind=effect.kind.value,
                    delivered=True,
                    attempts=receipt.attempts,
                )
                return receipt

            except DeliveryError as e:
                last_error = e
                if not e.retryable or attempt == self.max_retries - 1:
                    break

                # Exponential backoff
                wait_time = self.retry_delay * (2**attempt)
                self.logger.logger.warning(
                    f"Notification delivery failed, retrying in {wait_time}s",
                    order_id=str(effect.order_id),
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=e.message,
                )
                await asyncio.sleep(wait_time)

        error = last_error.message if last_error else "Max retries exceeded"
        self.logger.log_effect(
            order_id=str(effect.order_id),
            kind=effect.kind.value,
            delivered=False,
            attempts=attempts,
            error=error,
        )
        return DeliveryReceipt(
            effect_id=effect.id,
            delivered=False,
            attempts=attempts,
            error=error,
        )
