from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth_backend.auth.context import PATIENT_ROLE, AuthContext
from telehealth_backend.auth.dependencies import get_current_user, require_role
from telehealth_backend.core import config
from telehealth_backend.core.errors import SchedulingError
from telehealth_backend.database import get_db
from telehealth_backend.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from telehealth_backend.schemas.schedule import CandidateSlot
from telehealth_backend.schemas.session import SessionTiming
from telehealth_backend.services.booking import BookingService

router = APIRouter(tags=['sessions'])


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class BookSessionRequest(BaseModel):
    therapist_id: int
    session_date: date
    start_time: time
    duration_minutes: int = Field(default=config.DEFAULT_SESSION_DURATION_MINUTES, gt=0)

    @field_validator('start_time')
    @classmethod
    def drop_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @model_validator(mode='after')
    def ends_same_day(self) -> 'BookSessionRequest':
        starts_at = datetime.combine(self.session_date, self.start_time)
        if (starts_at + timedelta(minutes=self.duration_minutes)).date() != self.session_date:
            raise ValueError('Sessions must end on the day they start.')
        return self

    def to_slot(self) -> CandidateSlot:
        starts_at = datetime.combine(self.session_date, self.start_time)
        return CandidateSlot(
            therapist_id=self.therapist_id,
            date=self.session_date,
            start_time=self.start_time,
            end_time=(starts_at + timedelta(minutes=self.duration_minutes)).time(),
            duration_minutes=self.duration_minutes,
        )


class EndSessionRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=config.MAX_SESSION_NOTES_LENGTH)
    recording_url: str | None = None

    @field_validator('notes', 'recording_url')
    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class CancelSessionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)

    @field_validator('reason')
    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class UpdateNotesRequest(BaseModel):
    notes: str = Field(..., max_length=config.MAX_SESSION_NOTES_LENGTH)


class SessionResponse(BaseModel):
    id: int
    therapist_id: int
    patient_id: int
    session_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    status: str
    room_url: str | None = None
    room_name: str | None = None
    room_pending: bool
    notes: str | None = None
    recording_url: str | None = None
    cancellation_reason: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


class SessionDetailResponse(BaseModel):
    session: SessionResponse
    timing: SessionTiming


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


@router.post('/book', response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def book_session(
    data: BookSessionRequest,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_role(current_user, (PATIENT_ROLE,))
    ensure_database_ready()

    try:
        return service.commit_booking(data.therapist_id, current_user.user_id, data.to_slot())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('', response_model=list[SessionResponse])
def list_sessions(
    session_status: str = Query(default='all', alias='status'),
    limit: int = Query(default=10, ge=1),
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return service.list_sessions(current_user, session_status, limit)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{session_id}', response_model=SessionDetailResponse)
def get_session(
    session_id: int,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        session, timing = service.get_session(session_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return SessionDetailResponse(session=SessionResponse.model_validate(session), timing=timing)


@router.post('/{session_id}/start', response_model=SessionResponse)
def start_session(
    session_id: int,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return service.start(session_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{session_id}/end', response_model=SessionResponse)
def end_session(
    session_id: int,
    data: EndSessionRequest | None = None,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    data = data or EndSessionRequest()
    try:
        return service.end(session_id, current_user, notes=data.notes, recording_url=data.recording_url)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{session_id}/cancel', response_model=SessionResponse)
def cancel_session(
    session_id: int,
    data: CancelSessionRequest | None = None,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    data = data or CancelSessionRequest()
    try:
        return service.cancel(session_id, current_user, reason=data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{session_id}/no-show', response_model=SessionResponse)
def mark_no_show(
    session_id: int,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return service.mark_no_show(session_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{session_id}/notes', response_model=SessionResponse)
def update_session_notes(
    session_id: int,
    data: UpdateNotesRequest,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return service.update_notes(session_id, current_user, data.notes)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{session_id}/room', response_model=SessionResponse)
def retry_room_provisioning(
    session_id: int,
    current_user: AuthContext = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return service.retry_room_provisioning(session_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
