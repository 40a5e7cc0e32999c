"""Pickup slot generation and requested-time validation."""

from collections.abc import Iterator, Mapping
from datetime import datetime, time, timedelta

from pickup_engine.clock import Clock
from pickup_engine.errors import BeforeMinimumLeadTime, OutsideBusinessHours
from pickup_engine.models.schedule import ScheduleConfig, TimeSlot

# Policy: no slot is offered in the last 15 minutes before closing.
LAST_PICKUP_BUFFER = timedelta(minutes=15)


def format_slot_label(moment: datetime) -> str:
    """Short 24-hour label, e.g. ``9:05`` or ``12:30``."""
    return f"{moment.hour}:{moment.minute:02d}"


def format_time_display(moment: datetime) -> str:
    """12-hour label with period, e.g. ``12:30 PM``."""
    period = "PM" if moment.hour >= 12 else "AM"
    hours = moment.hour % 12 or 12
    return f"{hours}:{moment.minute:02d} {period}"


def _on_day(day: datetime, time_of_day: time) -> datetime:
    """``time_of_day`` on the calendar day of ``day``, keeping its tzinfo."""
    return day.replace(
        hour=time_of_day.hour,
        minute=time_of_day.minute,
        second=time_of_day.second,
        microsecond=0,
    )


def _round_up(moment: datetime, interval_minutes: int) -> datetime:
    """Round up to the next multiple of ``interval_minutes`` past midnight."""
    aligned = moment.replace(second=0, microsecond=0)
    if aligned < moment:
        aligned += timedelta(minutes=1)

    remainder = (aligned.hour * 60 + aligned.minute) % interval_minutes
    if remainder:
        aligned += timedelta(minutes=interval_minutes - remainder)
    return aligned


class SlotSequence:
    """
    Pickup slots for one day, computed lazily.

    The bounds are fixed at construction, so iterating more than once
    yields the same slots.
    """

    def __init__(
        self,
        config: ScheduleConfig,
        now: datetime,
        bookings: Mapping[datetime, int] | None = None,
    ):
        self.config = config
        self.now = now
        self.bookings = dict(bookings or {})
        self.interval = timedelta(minutes=config.interval_minutes)

        self.min_time = now + timedelta(minutes=config.prep_minutes)
        opening = _on_day(now, config.opening_time)
        closing = _on_day(now, config.closing_time)

        self.start = _round_up(max(opening, self.min_time), config.interval_minutes)
        self.last_pickup = closing - LAST_PICKUP_BUFFER

    def __iter__(self) -> Iterator[TimeSlot]:
        current = self.start
        while current <= self.last_pickup:
            yield self._make_slot(current)
            current += self.interval

    def __len__(self) -> int:
        if self.start > self.last_pickup:
            return 0
        return (self.last_pickup - self.start) // self.interval + 1

    def __bool__(self) -> bool:
        return len(self) > 0

    def first(self) -> TimeSlot | None:
        return next(iter(self), None)

    def _make_slot(self, moment: datetime) -> TimeSlot:
        capacity = self.config.capacity_per_slot
        if capacity is None:
            return TimeSlot(time=moment, display_label=format_slot_label(moment))

        remaining = max(0, capacity - self.bookings.get(moment, 0))
        return TimeSlot(
            time=moment,
            display_label=format_slot_label(moment),
            available=remaining > 0,
            capacity_remaining=remaining,
        )


def generate_slots(
    config: ScheduleConfig,
    now: datetime,
    bookings: Mapping[datetime, int] | None = None,
) -> SlotSequence:
    """
    Pickup slots still offerable today.

    Args:
        config: Business hours and slot policy
        now: Current time, sampled once by the caller
        bookings: Orders already booked per slot, used only when the
            config sets ``capacity_per_slot``

    Returns:
        SlotSequence, empty when the earliest pickup falls after the last
        pickup slot of the day
    """
    return SlotSequence(config, now, bookings)


def validate_requested_time(
    config: ScheduleConfig,
    now: datetime,
    requested_time: datetime,
) -> None:
    """
    Check a free-form pickup time. Alignment to the slot interval is not
    required.

    Raises:
        BeforeMinimumLeadTime: earlier than now plus preparation time
        OutsideBusinessHours: outside opening..closing on its calendar day
    """
    if requested_time.tzinfo is None and now.tzinfo is not None:
        requested_time = requested_time.replace(tzinfo=now.tzinfo)
    elif requested_time.tzinfo is not None and now.tzinfo is not None:
        requested_time = requested_time.astimezone(now.tzinfo)

    earliest = now + timedelta(minutes=config.prep_minutes)
    if requested_time < earliest:
        raise BeforeMinimumLeadTime(requested_time, earliest)

    opening = _on_day(requested_time, config.opening_time)
    closing = _on_day(requested_time, config.closing_time)
    if not opening <= requested_time <= closing:
        raise OutsideBusinessHours(requested_time, opening, closing)


class SlotScheduler:
    """Scheduler bound to a business schedule and a clock."""

    def __init__(self, config: ScheduleConfig, clock: Clock):
        self.config = config
        self.clock = clock

    def slots(self, bookings: Mapping[datetime, int] | None = None) -> SlotSequence:
        return generate_slots(self.config, self.clock.now(), bookings)

    def earliest_pickup(self) -> TimeSlot | None:
        return self.slots().first()

    def validate(self, requested_time: datetime) -> None:
        validate_requested_time(self.config, self.clock.now(), requested_time)
