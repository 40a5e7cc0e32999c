"""Data models for the pickup engine."""

from pickup_engine.models.effects import DeliveryReceipt, EffectKind, OutboundEffect, Recipient
from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import (
    ContactInfo,
    NotificationChannel,
    Order,
    OrderItem,
    OrderStatus,
    StatusTimestamps,
)
from pickup_engine.models.schedule import ScheduleConfig, TimeSlot

__all__ = [
    # Order
    "ContactInfo",
    "NotificationChannel",
    "Order",
    "OrderItem",
    "OrderStatus",
    "StatusTimestamps",
    # History
    "HistoryEntry",
    # Effects
    "DeliveryReceipt",
    "EffectKind",
    "OutboundEffect",
    "Recipient",
    # Schedule
    "ScheduleConfig",
    "TimeSlot",
]
