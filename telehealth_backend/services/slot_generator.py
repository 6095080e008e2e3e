from datetime import date

from telehealth_backend.schemas.schedule import (
    CandidateSlot,
    DateOverride,
    TimeRange,
    WeeklyTemplate,
    day_of_week,
    from_minutes,
)


def merge_ranges(ranges: list[TimeRange]) -> list[TimeRange]:
    """Union of the given ranges, sorted by start. Touching ranges are joined."""
    merged: list[list[int]] = []
    for time_range in sorted(ranges, key=lambda item: (item.start_minutes, item.end_minutes)):
        if time_range.end_minutes <= time_range.start_minutes:
            continue
        if merged and time_range.start_minutes <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], time_range.end_minutes)
        else:
            merged.append([time_range.start_minutes, time_range.end_minutes])

    return [TimeRange(start=from_minutes(start), end=from_minutes(end)) for start, end in merged]


def step_range(
    therapist_id: int,
    slot_date: date,
    time_range: TimeRange,
    duration_minutes: int,
    is_override: bool = False,
) -> list[CandidateSlot]:
    slots: list[CandidateSlot] = []
    current = time_range.start_minutes

    while current + duration_minutes <= time_range.end_minutes:
        slots.append(
            CandidateSlot(
                therapist_id=therapist_id,
                date=slot_date,
                start_time=from_minutes(current),
                end_time=from_minutes(current + duration_minutes),
                duration_minutes=duration_minutes,
                is_override=is_override,
            )
        )
        current += duration_minutes

    return slots


def generate_slots(
    therapist_id: int,
    slot_date: date,
    template: WeeklyTemplate,
    override: DateOverride | None = None,
) -> list[CandidateSlot]:
    """Expand the schedule for one date into ordered, de-duplicated candidate slots.

    An override replaces the template's ranges for that date entirely; an
    override marked unavailable yields no slots at all. The day's
    ``max_sessions_per_day`` is a hard ceiling applied after ordering.
    """
    day = template.for_day(day_of_week(slot_date))

    if override is not None:
        if not override.available:
            return []
        ranges = override.time_ranges
        extra_slots = override.extra_slots
        duration = override.session_duration_minutes or day.session_duration_minutes
        cap = override.max_sessions_per_day or day.max_sessions_per_day
    else:
        if not day.enabled:
            return []
        ranges = day.time_ranges
        extra_slots = []
        duration = day.session_duration_minutes
        cap = day.max_sessions_per_day

    if duration <= 0 or cap <= 0:
        return []

    is_override = override is not None
    candidates: list[CandidateSlot] = []
    for time_range in merge_ranges(ranges):
        candidates.extend(step_range(therapist_id, slot_date, time_range, duration, is_override))

    for extra in extra_slots:
        if extra.end_minutes <= extra.start_minutes:
            continue
        candidates.append(
            CandidateSlot(
                therapist_id=therapist_id,
                date=slot_date,
                start_time=extra.start,
                end_time=extra.end,
                duration_minutes=extra.end_minutes - extra.start_minutes,
                is_override=True,
            )
        )

    # sorted() is stable, so the first slot produced for a start time wins.
    slots: list[CandidateSlot] = []
    seen_starts: set[int] = set()
    for slot in sorted(candidates, key=lambda item: item.start_minutes):
        if slot.start_minutes in seen_starts:
            continue
        seen_starts.add(slot.start_minutes)
        slots.append(slot)

    return slots[:cap]
