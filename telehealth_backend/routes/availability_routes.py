from datetime import date, time, timedelta
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth_backend.auth.context import THERAPIST_ROLE, AuthContext
from telehealth_backend.auth.dependencies import get_current_user, require_role
from telehealth_backend.core import config
from telehealth_backend.core.errors import SchedulingError
from telehealth_backend.database import get_db
from telehealth_backend.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from telehealth_backend.schemas.schedule import CandidateSlot, DateOverride, WeeklyTemplate
from telehealth_backend.services.availability_query import AvailabilityQueryFacade
from telehealth_backend.services.schedule_store import ScheduleStore

router = APIRouter(tags=['availability'])

OVERRIDE_LIST_DEFAULT_DAYS = 60
CHECK_SUGGESTION_LIMIT = 3


class SlotResponse(BaseModel):
    therapist_id: int
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    is_override: bool

    class Config:
        from_attributes = True


class AvailableDaysResponse(BaseModel):
    therapist_id: int
    month: int
    year: int
    available_days: list[str]


class DaySlotsResponse(BaseModel):
    therapist_id: int
    date: date
    slots: list[SlotResponse]
    total_slots: int


class NextSlotResponse(BaseModel):
    therapist_id: int
    slot: SlotResponse | None = None


class AvailabilityCheckRequest(BaseModel):
    session_date: date
    start_time: time
    duration_minutes: int = Field(default=config.DEFAULT_SESSION_DURATION_MINUTES, gt=0)
    exclude_session_id: int | None = None


class ConflictingSessionResponse(BaseModel):
    id: int
    patient_id: int
    session_date: date
    start_time: time
    end_time: time
    status: str

    class Config:
        from_attributes = True


class AvailabilityCheckResponse(BaseModel):
    available: bool
    conflicting_sessions: list[ConflictingSessionResponse]
    suggested_slots: list[SlotResponse] = []


def get_schedule_store(db: Session = Depends(get_db)) -> ScheduleStore:
    return ScheduleStore(db)


def get_availability_facade(db: Session = Depends(get_db)) -> AvailabilityQueryFacade:
    return AvailabilityQueryFacade(db)


def to_slot_response(slot: CandidateSlot) -> SlotResponse:
    return SlotResponse.model_validate(slot, from_attributes=True)


@router.get('/therapists/{therapist_id}/template', response_model=WeeklyTemplate)
def get_weekly_template(
    therapist_id: int,
    current_user: AuthContext = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    try:
        return store.get_weekly_template(therapist_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/template', response_model=WeeklyTemplate)
def save_weekly_template(
    payload: dict[str, Any] = Body(...),
    current_user: AuthContext = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    require_role(current_user, (THERAPIST_ROLE,))

    try:
        return store.save_weekly_template(current_user.user_id, payload)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/overrides', response_model=list[DateOverride])
def list_overrides(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: AuthContext = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    require_role(current_user, (THERAPIST_ROLE,))

    range_start = start_date or date.today()
    range_end = end_date or range_start + timedelta(days=OVERRIDE_LIST_DEFAULT_DAYS)
    if range_end < range_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must not be before start_date.',
        )

    try:
        return store.list_overrides(current_user.user_id, range_start, range_end)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/overrides/{override_date}', response_model=DateOverride)
def save_override(
    override_date: date,
    payload: dict[str, Any] = Body(...),
    current_user: AuthContext = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    require_role(current_user, (THERAPIST_ROLE,))

    try:
        return store.save_override(current_user.user_id, override_date, payload)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/overrides/{override_date}', status_code=status.HTTP_204_NO_CONTENT)
def delete_override(
    override_date: date,
    current_user: AuthContext = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    require_role(current_user, (THERAPIST_ROLE,))

    try:
        store.delete_override(current_user.user_id, override_date)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/days', response_model=AvailableDaysResponse)
def list_available_days(
    therapist_id: int = Query(...),
    month: int = Query(...),
    year: int = Query(...),
    facade: AvailabilityQueryFacade = Depends(get_availability_facade),
):
    ensure_database_ready()

    try:
        available_days = facade.get_available_days(therapist_id, month, year)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AvailableDaysResponse(
        therapist_id=therapist_id,
        month=month,
        year=year,
        available_days=available_days,
    )


@router.get('/slots', response_model=DaySlotsResponse)
def list_slots_for_date(
    therapist_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    facade: AvailabilityQueryFacade = Depends(get_availability_facade),
):
    ensure_database_ready()

    try:
        slots = facade.get_slots_for_date(therapist_id, slot_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return DaySlotsResponse(
        therapist_id=therapist_id,
        date=slot_date,
        slots=[to_slot_response(slot) for slot in slots],
        total_slots=len(slots),
    )


@router.get('/next-slot', response_model=NextSlotResponse)
def get_next_available_slot(
    therapist_id: int = Query(...),
    from_date: date | None = Query(default=None),
    horizon_days: int = Query(default=config.NEXT_SLOT_HORIZON_DAYS),
    facade: AvailabilityQueryFacade = Depends(get_availability_facade),
):
    ensure_database_ready()

    try:
        slot = facade.get_next_available_slot(therapist_id, from_date, horizon_days)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return NextSlotResponse(
        therapist_id=therapist_id,
        slot=to_slot_response(slot) if slot else None,
    )


@router.post('/check', response_model=AvailabilityCheckResponse)
def check_availability(
    data: AvailabilityCheckRequest,
    current_user: AuthContext = Depends(get_current_user),
    facade: AvailabilityQueryFacade = Depends(get_availability_facade),
):
    require_role(current_user, (THERAPIST_ROLE,))
    ensure_database_ready()

    try:
        conflicts = facade.check_availability(
            current_user.user_id,
            data.session_date,
            data.start_time,
            data.duration_minutes,
            data.exclude_session_id,
        )
        suggestions = facade.get_slots_for_date(current_user.user_id, data.session_date) if conflicts else []
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AvailabilityCheckResponse(
        available=not conflicts,
        conflicting_sessions=[ConflictingSessionResponse.model_validate(session) for session in conflicts],
        suggested_slots=[to_slot_response(slot) for slot in suggestions[:CHECK_SUGGESTION_LIMIT]],
    )
