import calendar
from datetime import date, datetime, time, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from telehealth_backend.core import config, errors
from telehealth_backend.database import ACTIVE_SESSION_STATUSES
from telehealth_backend.models.session import TherapySession
from telehealth_backend.schemas.schedule import CandidateSlot, DateOverride, WeeklyTemplate
from telehealth_backend.services.conflict_filter import filter_available, find_conflicts, group_active_sessions
from telehealth_backend.services.schedule_store import ScheduleStore
from telehealth_backend.services.slot_generator import generate_slots


class AvailabilityQueryFacade:
    """Read side of scheduling: what can a patient book right now.

    Nothing here is cached. Every call re-reads the template, overrides and
    sessions so a therapist's edits show up on the very next request.
    """

    def __init__(self, db: Session, now: Callable[[], datetime] = datetime.now):
        self.db = db
        self.now = now
        self.schedule_store = ScheduleStore(db)

    def get_available_days(self, therapist_id: int, month: int, year: int) -> list[str]:
        if not 1 <= month <= 12:
            raise errors.ValidationError('month', 'Month must be between 1 and 12.')
        if not 1 <= year <= 9999:
            raise errors.ValidationError('year', 'Year is out of range.')

        first_day = date(year, month, 1)
        last_day = date(year, month, calendar.monthrange(year, month)[1])

        template = self.schedule_store.get_weekly_template(therapist_id)
        overrides = {
            override.date: override
            for override in self.schedule_store.list_overrides(therapist_id, first_day, last_day)
        }
        sessions_by_day = group_active_sessions(self._active_sessions(therapist_id, first_day, last_day))

        available_days: list[str] = []
        current_day = max(first_day, self.now().date())
        while current_day <= last_day:
            day_sessions = sessions_by_day.get((therapist_id, current_day), [])
            if self._has_free_slot(therapist_id, current_day, template, overrides.get(current_day), day_sessions):
                available_days.append(current_day.isoformat())
            current_day += timedelta(days=1)

        return available_days

    def get_slots_for_date(self, therapist_id: int, slot_date: date) -> list[CandidateSlot]:
        template = self.schedule_store.get_weekly_template(therapist_id)
        override = self.schedule_store.get_override(therapist_id, slot_date)
        sessions = self._active_sessions(therapist_id, slot_date, slot_date)

        return filter_available(self._future_slots(therapist_id, slot_date, template, override), sessions)

    def get_next_available_slot(
        self,
        therapist_id: int,
        from_date: date | None = None,
        horizon_days: int = config.NEXT_SLOT_HORIZON_DAYS,
    ) -> CandidateSlot | None:
        if not 1 <= horizon_days <= config.MAX_NEXT_SLOT_HORIZON_DAYS:
            raise errors.ValidationError(
                'horizon_days',
                f'Horizon must be between 1 and {config.MAX_NEXT_SLOT_HORIZON_DAYS} days.',
            )

        current_day = from_date or self.now().date()
        for _ in range(horizon_days):
            slots = self.get_slots_for_date(therapist_id, current_day)
            if slots:
                return slots[0]
            current_day += timedelta(days=1)

        return None

    def check_availability(
        self,
        therapist_id: int,
        session_date: date,
        start_time: time,
        duration_minutes: int,
        exclude_session_id: int | None = None,
    ) -> list[TherapySession]:
        """Active sessions that would collide with the requested interval.

        Works on the raw interval, so it also answers for times the weekly
        template does not offer. An empty list means the time is free.
        """
        if duration_minutes <= 0:
            raise errors.ValidationError('duration_minutes', 'Duration must be a positive number of minutes.')

        starts_at = datetime.combine(session_date, start_time.replace(second=0, microsecond=0))
        ends_at = starts_at + timedelta(minutes=duration_minutes)
        if ends_at.date() != session_date:
            raise errors.ValidationError('duration_minutes', 'Sessions must end on the day they start.')

        requested = CandidateSlot(
            therapist_id=therapist_id,
            date=session_date,
            start_time=starts_at.time(),
            end_time=ends_at.time(),
            duration_minutes=duration_minutes,
        )
        sessions = self._active_sessions(therapist_id, session_date, session_date)
        return find_conflicts(requested, sessions, exclude_session_id)

    def _future_slots(
        self,
        therapist_id: int,
        slot_date: date,
        template: WeeklyTemplate,
        override: DateOverride | None,
    ) -> list[CandidateSlot]:
        now = self.now()
        return [
            slot
            for slot in generate_slots(therapist_id, slot_date, template, override)
            if datetime.combine(slot.date, slot.start_time) > now
        ]

    def _has_free_slot(
        self,
        therapist_id: int,
        slot_date: date,
        template: WeeklyTemplate,
        override: DateOverride | None,
        sessions: list[TherapySession],
    ) -> bool:
        for slot in self._future_slots(therapist_id, slot_date, template, override):
            if filter_available([slot], sessions):
                return True
        return False

    def _active_sessions(self, therapist_id: int, start_date: date, end_date: date) -> list[TherapySession]:
        return self.db.query(TherapySession).filter(
            TherapySession.therapist_id == therapist_id,
            TherapySession.session_date >= start_date,
            TherapySession.session_date <= end_date,
            TherapySession.status.in_(ACTIVE_SESSION_STATUSES),
        ).all()
