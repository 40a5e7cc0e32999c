"""Pickup scheduling models."""

from datetime import datetime, time

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScheduleConfig(BaseModel):
    """Per-business opening hours and pickup slot policy."""

    model_config = ConfigDict(frozen=True)

    opening_time: time = time(6, 0)
    closing_time: time = time(23, 0)
    prep_minutes: int = Field(default=30, ge=0)
    interval_minutes: int = Field(default=15, ge=1)
    capacity_per_slot: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_hours(self) -> "ScheduleConfig":
        """Closing must come after opening on the same day."""
        if self.closing_time <= self.opening_time:
            raise ValueError("closing_time must be later than opening_time")
        return self


class TimeSlot(BaseModel):
    """A candidate pickup instant offered to a customer."""

    model_config = ConfigDict(frozen=True)

    time: datetime
    display_label: str
    available: bool = True
    capacity_remaining: int | None = None
