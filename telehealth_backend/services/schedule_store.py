"""Persistence for therapists' weekly templates and date overrides.

This is the only place schedule input is validated. Anything read back out of
the store is already well-formed, so slot generation never has to guess.
"""

import logging
from datetime import date
from typing import Any

import pydantic
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth_backend.core import errors
from telehealth_backend.models.availability import AvailabilityOverride, WeeklySchedule
from telehealth_backend.schemas.schedule import DateOverride, DaySchedule, TimeRange, WeeklyTemplate

logger = logging.getLogger(__name__)

DAYS_IN_WEEK = 7


def _field_from_location(location: tuple) -> str:
    return '.'.join(str(part) for part in location) or 'template'


def _parse(model: type[pydantic.BaseModel], raw: Any, label: str):
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as exc:
        first_error = exc.errors()[0]
        raise errors.ValidationError(
            field=_field_from_location(first_error['loc']) if first_error['loc'] else label,
            message=first_error['msg'],
        ) from exc


def validate_ranges(ranges: list[TimeRange], field: str, allow_overlap: bool = False) -> None:
    for index, time_range in enumerate(ranges):
        if time_range.start_minutes >= time_range.end_minutes:
            raise errors.ValidationError(
                field=f'{field}.{index}',
                message='Time range must start before it ends.',
            )

    if allow_overlap:
        return

    ordered = sorted(ranges, key=lambda item: item.start_minutes)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start_minutes < previous.end_minutes:
            raise errors.ValidationError(
                field=field,
                message=(
                    f'Time ranges {previous.start:%H:%M}-{previous.end:%H:%M} and '
                    f'{current.start:%H:%M}-{current.end:%H:%M} overlap.'
                ),
            )


def validate_weekly_template(template: WeeklyTemplate) -> None:
    for day_index, day in template.days.items():
        prefix = f'days.{day_index}'
        if not 0 <= day_index < DAYS_IN_WEEK:
            raise errors.ValidationError(field=prefix, message='Day of week must be between 0 and 6.')
        if day.session_duration_minutes <= 0:
            raise errors.ValidationError(
                field=f'{prefix}.session_duration_minutes',
                message='Session duration must be a positive number of minutes.',
            )
        if day.max_sessions_per_day <= 0:
            raise errors.ValidationError(
                field=f'{prefix}.max_sessions_per_day',
                message='Maximum sessions per day must be positive.',
            )
        validate_ranges(day.time_ranges, f'{prefix}.time_ranges')


def validate_override(override: DateOverride) -> None:
    if override.session_duration_minutes is not None and override.session_duration_minutes <= 0:
        raise errors.ValidationError(
            field='session_duration_minutes',
            message='Session duration must be a positive number of minutes.',
        )
    if override.max_sessions_per_day is not None and override.max_sessions_per_day <= 0:
        raise errors.ValidationError(
            field='max_sessions_per_day',
            message='Maximum sessions per day must be positive.',
        )

    validate_ranges(override.time_ranges, 'time_ranges', allow_overlap=True)
    validate_ranges(override.extra_slots, 'extra_slots', allow_overlap=True)

    if override.available and not override.time_ranges and not override.extra_slots:
        raise errors.ValidationError(
            field='time_ranges',
            message='An available override needs at least one time range or extra slot.',
        )


def _ranges_to_json(ranges: list[TimeRange]) -> list[dict]:
    return [time_range.to_json() for time_range in ranges]


def _override_from_row(row: AvailabilityOverride) -> DateOverride:
    return DateOverride(
        therapist_id=row.therapist_id,
        date=row.override_date,
        available=row.available,
        time_ranges=row.time_ranges or [],
        extra_slots=row.extra_slots or [],
        session_duration_minutes=row.session_duration_minutes,
        max_sessions_per_day=row.max_sessions_per_day,
        reason=row.reason,
        notes=row.notes,
    )


class ScheduleStore:
    def __init__(self, db: Session):
        self.db = db

    def get_weekly_template(self, therapist_id: int) -> WeeklyTemplate:
        rows = self.db.query(WeeklySchedule).filter(WeeklySchedule.therapist_id == therapist_id).all()
        saved = {
            row.day_of_week: DaySchedule(
                enabled=row.enabled,
                time_ranges=row.time_ranges or [],
                session_duration_minutes=row.session_duration_minutes,
                max_sessions_per_day=row.max_sessions_per_day,
            )
            for row in rows
        }

        return WeeklyTemplate(
            therapist_id=therapist_id,
            days={day_index: saved.get(day_index, DaySchedule()) for day_index in range(DAYS_IN_WEEK)},
        )

    def save_weekly_template(self, therapist_id: int, template: WeeklyTemplate | dict) -> WeeklyTemplate:
        """Replace the therapist's whole template. Days left out are saved disabled."""
        parsed = _parse(WeeklyTemplate, template, 'template')
        validate_weekly_template(parsed)

        try:
            self.db.query(WeeklySchedule).filter(WeeklySchedule.therapist_id == therapist_id).delete(
                synchronize_session=False
            )
            for day_index in range(DAYS_IN_WEEK):
                day = parsed.for_day(day_index)
                self.db.add(
                    WeeklySchedule(
                        therapist_id=therapist_id,
                        day_of_week=day_index,
                        enabled=day.enabled,
                        time_ranges=_ranges_to_json(day.time_ranges),
                        session_duration_minutes=day.session_duration_minutes,
                        max_sessions_per_day=day.max_sessions_per_day,
                    )
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Saved weekly template for therapist %s', therapist_id)
        return self.get_weekly_template(therapist_id)

    def get_override(self, therapist_id: int, override_date: date) -> DateOverride | None:
        row = self._override_row(therapist_id, override_date)
        return _override_from_row(row) if row else None

    def list_overrides(self, therapist_id: int, start_date: date, end_date: date) -> list[DateOverride]:
        rows = self.db.query(AvailabilityOverride).filter(
            AvailabilityOverride.therapist_id == therapist_id,
            AvailabilityOverride.override_date >= start_date,
            AvailabilityOverride.override_date <= end_date,
        ).order_by(AvailabilityOverride.override_date.asc()).all()

        return [_override_from_row(row) for row in rows]

    def save_override(self, therapist_id: int, override_date: date, override: DateOverride | dict) -> DateOverride:
        if isinstance(override, dict):
            override = {**override, 'date': override_date}
        parsed = _parse(DateOverride, override, 'override')
        if parsed.date != override_date:
            parsed = parsed.model_copy(update={'date': override_date})
        validate_override(parsed)

        try:
            row = self._override_row(therapist_id, override_date)
            if row is None:
                row = AvailabilityOverride(therapist_id=therapist_id, override_date=override_date)
                self.db.add(row)

            row.available = parsed.available
            row.time_ranges = _ranges_to_json(parsed.time_ranges)
            row.extra_slots = _ranges_to_json(parsed.extra_slots)
            row.session_duration_minutes = parsed.session_duration_minutes
            row.max_sessions_per_day = parsed.max_sessions_per_day
            row.reason = parsed.reason
            row.notes = parsed.notes

            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Saved availability override for therapist %s on %s', therapist_id, override_date)
        return _override_from_row(row)

    def delete_override(self, therapist_id: int, override_date: date) -> None:
        row = self._override_row(therapist_id, override_date)
        if row is None:
            raise errors.NotFoundError('No override exists for that date.')

        try:
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _override_row(self, therapist_id: int, override_date: date) -> AvailabilityOverride | None:
        return self.db.query(AvailabilityOverride).filter(
            AvailabilityOverride.therapist_id == therapist_id,
            AvailabilityOverride.override_date == override_date,
        ).first()
