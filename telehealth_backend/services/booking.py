"""Booking commits and the session status lifecycle.

A booking is only ever written after the therapist's current schedule and
current sessions have been re-read inside the same transaction that inserts
it. Any availability the caller saw earlier is treated as a hint.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth_backend.auth.context import ADMIN_ROLE, PATIENT_ROLE, THERAPIST_ROLE, AuthContext
from telehealth_backend.core import config, errors
from telehealth_backend.core.errors import RoomProvisioningError
from telehealth_backend.database import ACTIVE_SESSION_STATUSES, SESSION_STATUSES
from telehealth_backend.models.session import TherapySession
from telehealth_backend.models.user import User
from telehealth_backend.schemas.schedule import CandidateSlot, format_time
from telehealth_backend.schemas.session import SessionTiming
from telehealth_backend.services.conflict_filter import is_slot_free
from telehealth_backend.services.notifications import NotificationDispatcher
from telehealth_backend.services.schedule_store import ScheduleStore
from telehealth_backend.services.slot_generator import generate_slots
from telehealth_backend.services.video import DailyRoomProvisioner

logger = logging.getLogger(__name__)

# action -> (allowed source statuses, target status)
TRANSITIONS = {
    'start': (('scheduled', 'confirmed'), 'in_progress'),
    'end': (('in_progress',), 'completed'),
    'cancel': (('scheduled', 'confirmed', 'in_progress'), 'cancelled'),
    'no_show': (ACTIVE_SESSION_STATUSES, 'no_show'),
}

THERAPIST_ACTIONS = {'start', 'end', 'no_show', 'update_notes', 'provision_room'}
PARTICIPANT_ACTIONS = {'cancel', 'view'}


def session_start(session: TherapySession) -> datetime:
    return datetime.combine(session.session_date, session.start_time)


def session_end(session: TherapySession) -> datetime:
    return datetime.combine(session.session_date, session.end_time)


class BookingService:
    def __init__(
        self,
        db: Session,
        provisioner: DailyRoomProvisioner | None = None,
        notifier: NotificationDispatcher | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.provisioner = provisioner or DailyRoomProvisioner()
        self.notifier = notifier or NotificationDispatcher()
        self.now = now
        self.schedule_store = ScheduleStore(db)

    def commit_booking(self, therapist_id: int, patient_id: int, slot: CandidateSlot) -> TherapySession:
        """Book ``slot`` for the patient or raise ``ConflictError``.

        Raises ``StoreUnavailableError`` when the store failed before the insert
        was committed (nothing was booked) and ``BookingOutcomeUnknownError``
        when the commit itself failed (the caller has to re-check).
        """
        if slot.therapist_id != therapist_id:
            raise errors.ValidationError('therapist_id', 'Slot belongs to a different therapist.')
        if datetime.combine(slot.date, slot.start_time) <= self.now():
            raise errors.ValidationError('start_time', 'Sessions must be booked for a future time.')

        try:
            therapist = self.db.query(User).filter(User.id == therapist_id).with_for_update().first()
            if therapist is None or therapist.role != THERAPIST_ROLE or not therapist.is_active:
                raise errors.NotFoundError('Therapist not found or not available for bookings.')

            patient = self.db.query(User).filter(User.id == patient_id).first()
            if patient is None:
                raise errors.NotFoundError('Patient not found.')

            if not self._is_offered(slot):
                raise errors.ConflictError('slot_unavailable')

            if not is_slot_free(slot, self._active_sessions(therapist_id, slot.date)):
                raise errors.ConflictError('slot_taken')

            session = TherapySession(
                therapist_id=therapist_id,
                patient_id=patient_id,
                session_date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
                status='scheduled',
                room_pending=True,
            )
            self.db.add(session)
            self.db.flush()
        except errors.SchedulingError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            raise errors.ConflictError('slot_taken') from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Store failure while preparing booking for therapist %s', therapist_id)
            raise errors.StoreUnavailableError() from exc

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise errors.ConflictError('slot_taken') from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Commit failed for booking with therapist %s on %s', therapist_id, slot.date)
            raise errors.BookingOutcomeUnknownError() from exc

        self.db.refresh(session)
        logger.info(
            'Booked session %s with therapist %s on %s at %s',
            session.id,
            therapist_id,
            slot.date,
            format_time(slot.start_time),
        )

        self._provision_room(session, therapist, patient)
        self.notifier.notify(
            [patient_id, therapist_id],
            'session_booked',
            'Session booked',
            f'Session on {slot.date:%Y-%m-%d} at {format_time(slot.start_time)} is scheduled.',
            related_session_id=session.id,
        )
        return session

    def start(self, session_id: int, actor: AuthContext) -> TherapySession:
        return self._transition(session_id, actor, 'start')

    def end(
        self,
        session_id: int,
        actor: AuthContext,
        notes: str | None = None,
        recording_url: str | None = None,
    ) -> TherapySession:
        changes = {}
        if notes:
            changes['notes'] = notes
        if recording_url:
            changes['recording_url'] = recording_url
        return self._transition(session_id, actor, 'end', changes)

    def cancel(self, session_id: int, actor: AuthContext, reason: str | None = None) -> TherapySession:
        session = self._transition(session_id, actor, 'cancel', {'cancellation_reason': reason} if reason else None)
        self.notifier.notify(
            [session.patient_id, session.therapist_id],
            'session_cancelled',
            'Session cancelled',
            f'Session on {session.session_date:%Y-%m-%d} at {format_time(session.start_time)} was cancelled.',
            related_session_id=session.id,
        )
        return session

    def mark_no_show(self, session_id: int, actor: AuthContext) -> TherapySession:
        return self._transition(session_id, actor, 'no_show')

    def update_notes(self, session_id: int, actor: AuthContext, notes: str) -> TherapySession:
        session = self._load_for_update(session_id)
        self._authorize(session, actor, 'update_notes')
        session.notes = notes
        return self._save(session)

    def retry_room_provisioning(self, session_id: int, actor: AuthContext) -> TherapySession:
        session = self._load_for_update(session_id)
        self._authorize(session, actor, 'provision_room')
        if session.status not in ACTIVE_SESSION_STATUSES:
            self.db.rollback()
            raise errors.InvalidStateError('provision a room for', session.status)
        if not session.room_pending:
            self.db.rollback()
            return session

        therapist = self.db.query(User).filter(User.id == session.therapist_id).first()
        patient = self.db.query(User).filter(User.id == session.patient_id).first()
        self.db.rollback()
        return self._provision_room(session, therapist, patient)

    def get_session(self, session_id: int, actor: AuthContext) -> tuple[TherapySession, SessionTiming]:
        session = self.db.query(TherapySession).filter(TherapySession.id == session_id).first()
        if session is None:
            raise errors.NotFoundError('Session not found.')
        self._authorize(session, actor, 'view')
        return session, self.timing(session)

    def list_sessions(self, actor: AuthContext, status: str | None = None, limit: int = 10) -> list[TherapySession]:
        query = self.db.query(TherapySession)
        if actor.role == THERAPIST_ROLE:
            query = query.filter(TherapySession.therapist_id == actor.user_id)
        elif actor.role != ADMIN_ROLE:
            query = query.filter(TherapySession.patient_id == actor.user_id)

        if status and status != 'all':
            if status not in SESSION_STATUSES:
                raise errors.ValidationError('status', f'Unknown session status "{status}".')
            query = query.filter(TherapySession.status == status)

        limit = max(1, min(limit, config.MAX_SESSION_LIST_LIMIT))
        return query.order_by(
            TherapySession.session_date.asc(),
            TherapySession.start_time.asc(),
        ).limit(limit).all()

    def timing(self, session: TherapySession) -> SessionTiming:
        now = self.now()
        starts_at = session_start(session)
        ends_at = session_end(session)
        is_open = session.status in ACTIVE_SESSION_STATUSES

        return SessionTiming(
            is_active=session.status == 'in_progress' and starts_at <= now <= ends_at,
            can_join=is_open and starts_at - timedelta(minutes=config.JOIN_WINDOW_MINUTES) <= now <= ends_at,
            is_past=now > ends_at,
            seconds_until_start=max(0, int((starts_at - now).total_seconds())),
            seconds_remaining=max(0, int((ends_at - now).total_seconds())),
        )

    def _is_offered(self, slot: CandidateSlot) -> bool:
        template = self.schedule_store.get_weekly_template(slot.therapist_id)
        override = self.schedule_store.get_override(slot.therapist_id, slot.date)
        return any(
            offered == slot and offered.end_time == slot.end_time
            for offered in generate_slots(slot.therapist_id, slot.date, template, override)
        )

    def _active_sessions(self, therapist_id: int, session_date: date) -> list[TherapySession]:
        return self.db.query(TherapySession).filter(
            TherapySession.therapist_id == therapist_id,
            TherapySession.session_date == session_date,
            TherapySession.status.in_(ACTIVE_SESSION_STATUSES),
        ).all()

    def _load_for_update(self, session_id: int) -> TherapySession:
        session = self.db.query(TherapySession).filter(TherapySession.id == session_id).with_for_update().first()
        if session is None:
            self.db.rollback()
            raise errors.NotFoundError('Session not found.')
        return session

    def _authorize(self, session: TherapySession, actor: AuthContext, action: str) -> None:
        if actor.is_admin:
            return

        is_therapist = actor.role == THERAPIST_ROLE and session.therapist_id == actor.user_id
        is_patient = actor.role == PATIENT_ROLE and session.patient_id == actor.user_id

        if action in THERAPIST_ACTIONS and is_therapist:
            return
        if action in PARTICIPANT_ACTIONS and (is_therapist or is_patient):
            return

        self.db.rollback()
        raise errors.PermissionDeniedError('You do not have access to this session.')

    def _transition(
        self,
        session_id: int,
        actor: AuthContext,
        action: str,
        changes: dict | None = None,
    ) -> TherapySession:
        allowed_from, target = TRANSITIONS[action]
        session = self._load_for_update(session_id)
        self._authorize(session, actor, action)

        if session.status not in allowed_from:
            self.db.rollback()
            raise errors.InvalidStateError(action, session.status)

        now = self.now()
        session.status = target
        if target == 'in_progress':
            session.started_at = now
        elif target == 'completed':
            session.completed_at = now
        elif target == 'cancelled':
            session.cancelled_at = now
        for field, value in (changes or {}).items():
            setattr(session, field, value)

        session = self._save(session)
        logger.info('Session %s moved to %s by user %s', session.id, target, actor.user_id)
        return session

    def _save(self, session: TherapySession) -> TherapySession:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise errors.StoreUnavailableError() from exc
        self.db.refresh(session)
        return session

    def _provision_room(self, session: TherapySession, therapist: User, patient: User) -> TherapySession:
        """Attach a video room; on failure the session stays booked and flagged ``room_pending``."""
        try:
            room = self.provisioner.create_room(
                session_id=session.id,
                participant_names=[therapist.full_name or therapist.email, patient.full_name or patient.email],
                duration_minutes=session.duration_minutes,
                scheduled_time=session_start(session),
            )
        except RoomProvisioningError:
            logger.warning('Video room provisioning failed for session %s; left pending', session.id, exc_info=True)
            return session

        try:
            session.room_url = room.url
            session.room_name = room.name
            session.room_pending = False
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Could not record video room %s for session %s', room.name, session.id)
        self.db.refresh(session)
        return session
