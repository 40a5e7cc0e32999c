"""Tests for pickup slot generation and validation."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import NOON
from pickup_engine.clock import FixedClock
from pickup_engine.errors import BeforeMinimumLeadTime, OutsideBusinessHours
from pickup_engine.models.schedule import ScheduleConfig
from pickup_engine.services.scheduler import (
    LAST_PICKUP_BUFFER,
    SlotScheduler,
    format_slot_label,
    format_time_display,
    generate_slots,
    validate_requested_time,
)


def _at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return NOON.replace(hour=hour, minute=minute, second=second)


def test_first_slot_is_now_plus_prep(schedule_config: ScheduleConfig) -> None:
    slots = generate_slots(schedule_config, NOON)

    first = slots.first()
    assert first.time == _at(12, 30)
    assert first.display_label == "12:30"


def test_slots_stop_before_closing_buffer(schedule_config: ScheduleConfig) -> None:
    times = [slot.time for slot in generate_slots(schedule_config, NOON)]

    assert times[-1] == _at(23) - LAST_PICKUP_BUFFER
    assert len(times) == 42


def test_slots_are_interval_aligned(schedule_config: ScheduleConfig) -> None:
    slots = list(generate_slots(schedule_config, _at(9, 7, 30)))

    assert slots[0].time == _at(9, 45)
    for earlier, later in zip(slots, slots[1:]):
        assert later.time - earlier.time == timedelta(minutes=15)
    assert all((slot.time.hour * 60 + slot.time.minute) % 15 == 0 for slot in slots)


def test_coarse_interval_stops_before_last_pickup() -> None:
    config = ScheduleConfig(interval_minutes=45, opening_time=time(6, 0), closing_time=time(23, 0))

    slots = generate_slots(config, _at(5, 0))
    times = [slot.time for slot in slots]
    last_pickup = _at(23) - LAST_PICKUP_BUFFER

    assert times[0] == _at(6, 0)
    assert times[-1] == _at(22, 30)
    assert times[-1] <= last_pickup
    assert last_pickup - times[-1] < timedelta(minutes=45)
    assert len(times) == len(slots) == 23
    assert all((moment.hour * 60 + moment.minute) % 45 == 0 for moment in times)
    assert generate_slots(config, NOON).first().time == _at(12, 45)


def test_seconds_round_up_to_next_minute() -> None:
    config = ScheduleConfig(prep_minutes=0, interval_minutes=1)

    assert generate_slots(config, _at(10, 0, 1)).first().time == _at(10, 1)
    assert generate_slots(config, _at(10, 0, 0)).first().time == _at(10, 0)


def test_before_opening_starts_at_opening() -> None:
    config = ScheduleConfig(opening_time=time(8, 0))

    assert generate_slots(config, _at(5, 0)).first().time == _at(8, 0)


def test_no_slots_when_prep_runs_past_closing() -> None:
    config = ScheduleConfig(
        opening_time=time(6, 0), closing_time=time(7, 0), prep_minutes=120
    )

    slots = generate_slots(config, _at(6, 0))

    assert list(slots) == []
    assert len(slots) == 0
    assert not slots
    assert slots.first() is None


def test_late_evening_has_no_slots(schedule_config: ScheduleConfig) -> None:
    assert len(generate_slots(schedule_config, _at(22, 30))) == 0


def test_sequence_can_be_iterated_twice(schedule_config: ScheduleConfig) -> None:
    slots = generate_slots(schedule_config, NOON)

    assert list(slots) == list(slots)
    assert len(list(slots)) == len(slots)


def test_capacity_marks_full_slots() -> None:
    config = ScheduleConfig(capacity_per_slot=2)
    bookings = {_at(12, 30): 2, _at(12, 45): 1}

    slots = list(generate_slots(config, NOON, bookings))

    assert (slots[0].available, slots[0].capacity_remaining) == (False, 0)
    assert (slots[1].available, slots[1].capacity_remaining) == (True, 1)
    assert (slots[2].available, slots[2].capacity_remaining) == (True, 2)


def test_no_capacity_means_unbounded(schedule_config: ScheduleConfig) -> None:
    slot = generate_slots(schedule_config, NOON, {_at(12, 30): 100}).first()

    assert slot.available
    assert slot.capacity_remaining is None


def test_slots_follow_business_timezone() -> None:
    tz = ZoneInfo("Europe/Berlin")
    now = datetime(2026, 3, 2, 12, 0, tzinfo=tz)

    first = generate_slots(ScheduleConfig(), now).first()

    assert first.time.utcoffset() == timedelta(hours=1)
    assert first.display_label == "12:30"


@pytest.mark.parametrize(
    ("moment", "label", "display"),
    [
        (_at(9, 5), "9:05", "9:05 AM"),
        (_at(12, 30), "12:30", "12:30 PM"),
        (_at(0, 15), "0:15", "12:15 AM"),
        (_at(18, 0), "18:00", "6:00 PM"),
    ],
)
def test_labels(moment: datetime, label: str, display: str) -> None:
    assert format_slot_label(moment) == label
    assert format_time_display(moment) == display


def test_config_rejects_inverted_hours() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(opening_time=time(22, 0), closing_time=time(6, 0))


def test_validate_accepts_free_form_time(schedule_config: ScheduleConfig) -> None:
    validate_requested_time(schedule_config, NOON, _at(12, 37))
    validate_requested_time(schedule_config, NOON, _at(12, 30))


def test_validate_closing_time_is_inclusive(schedule_config: ScheduleConfig) -> None:
    validate_requested_time(schedule_config, NOON, _at(23, 0))

    with pytest.raises(OutsideBusinessHours):
        validate_requested_time(schedule_config, NOON, _at(23, 1))


def test_validate_rejects_too_soon(schedule_config: ScheduleConfig) -> None:
    with pytest.raises(BeforeMinimumLeadTime) as exc_info:
        validate_requested_time(schedule_config, NOON, _at(12, 29))

    assert exc_info.value.earliest == _at(12, 30)
    assert exc_info.value.code == "BeforeMinimumLeadTime"


def test_validate_checks_lead_time_before_hours(schedule_config: ScheduleConfig) -> None:
    with pytest.raises(BeforeMinimumLeadTime):
        validate_requested_time(schedule_config, NOON, _at(5, 0))


def test_validate_rejects_next_day_before_opening(schedule_config: ScheduleConfig) -> None:
    with pytest.raises(OutsideBusinessHours):
        validate_requested_time(schedule_config, NOON, _at(5, 0) + timedelta(days=1))


def test_validate_treats_naive_time_as_business_time(schedule_config: ScheduleConfig) -> None:
    validate_requested_time(schedule_config, NOON, datetime(2026, 3, 2, 13, 0))

    with pytest.raises(BeforeMinimumLeadTime):
        validate_requested_time(schedule_config, NOON, datetime(2026, 3, 2, 12, 10))


def test_validate_converts_other_timezones(schedule_config: ScheduleConfig) -> None:
    # 14:30 in UTC+2 is 12:30 UTC
    plus_two = timezone(timedelta(hours=2))
    validate_requested_time(
        schedule_config, NOON, datetime(2026, 3, 2, 14, 30, tzinfo=plus_two)
    )


def test_scheduler_reads_the_clock(schedule_config: ScheduleConfig) -> None:
    clock = FixedClock(NOON)
    scheduler = SlotScheduler(schedule_config, clock)

    assert scheduler.earliest_pickup().time == _at(12, 30)

    clock.advance(minutes=20)
    assert scheduler.earliest_pickup().time == _at(13, 0)
    with pytest.raises(BeforeMinimumLeadTime):
        scheduler.validate(_at(12, 45))
