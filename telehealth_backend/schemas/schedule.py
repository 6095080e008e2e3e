"""Value types shared by the scheduling services."""

from datetime import date, time

from pydantic import BaseModel, ConfigDict, Field, field_validator

from telehealth_backend.core import config

DAY_NAMES = ('sunday', 'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday')


def day_of_week(value: date) -> int:
    """Day index with Sunday as 0."""
    return (value.weekday() + 1) % 7


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def format_time(value: time) -> str:
    return value.strftime('%H:%M')


class TimeRange(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    start: time
    end: time

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def to_json(self) -> dict:
        return {'start': format_time(self.start), 'end': format_time(self.end)}


class DaySchedule(BaseModel):
    model_config = ConfigDict(extra='forbid')

    enabled: bool = False
    time_ranges: list[TimeRange] = Field(default_factory=list)
    session_duration_minutes: int = config.DEFAULT_SESSION_DURATION_MINUTES
    max_sessions_per_day: int = config.DEFAULT_MAX_SESSIONS_PER_DAY


class WeeklyTemplate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    therapist_id: int | None = None
    days: dict[int, DaySchedule] = Field(default_factory=dict)

    @field_validator('days', mode='before')
    @classmethod
    def accept_day_names(cls, value):
        if not isinstance(value, dict):
            return value

        normalized = {}
        for key, day in value.items():
            if isinstance(key, str) and key.strip().lower() in DAY_NAMES:
                normalized[DAY_NAMES.index(key.strip().lower())] = day
            else:
                normalized[key] = day
        return normalized

    def for_day(self, day_index: int) -> DaySchedule:
        return self.days.get(day_index) or DaySchedule()


class DateOverride(BaseModel):
    model_config = ConfigDict(extra='forbid')

    therapist_id: int | None = None
    date: date
    available: bool = False
    time_ranges: list[TimeRange] = Field(default_factory=list)
    extra_slots: list[TimeRange] = Field(default_factory=list)
    session_duration_minutes: int | None = None
    max_sessions_per_day: int | None = None
    reason: str | None = None
    notes: str | None = None


class CandidateSlot(BaseModel):
    """A bookable interval computed on demand.

    Two slots are the same slot when therapist, date and start time match.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    therapist_id: int
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    is_override: bool = False

    @property
    def key(self) -> tuple[int, date, time]:
        return self.therapist_id, self.date, self.start_time

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CandidateSlot):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)
