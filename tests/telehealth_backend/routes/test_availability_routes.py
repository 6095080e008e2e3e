from datetime import date, time

import pytest
from fastapi import HTTPException

from conftest import FIXED_NOW, MONDAY
from telehealth_backend.auth.context import AuthContext
from telehealth_backend.models.session import TherapySession
from telehealth_backend.routes import availability_routes
from telehealth_backend.routes.availability_routes import (
    AvailabilityCheckRequest,
    check_availability,
    delete_override,
    get_next_available_slot,
    get_weekly_template,
    list_available_days,
    list_overrides,
    list_slots_for_date,
    save_override,
    save_weekly_template,
)
from telehealth_backend.services.availability_query import AvailabilityQueryFacade
from telehealth_backend.services.schedule_store import ScheduleStore

MONDAY_PAYLOAD = {
    'days': {
        'monday': {
            'enabled': True,
            'time_ranges': [{'start': '09:00', 'end': '10:00'}],
            'session_duration_minutes': 30,
            'max_sessions_per_day': 10,
        }
    }
}


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(availability_routes, 'ensure_database_ready', lambda: None)


@pytest.fixture
def store(db) -> ScheduleStore:
    return ScheduleStore(db)


@pytest.fixture
def facade(db) -> AvailabilityQueryFacade:
    return AvailabilityQueryFacade(db, now=lambda: FIXED_NOW)


@pytest.fixture
def therapist_user(therapist) -> AuthContext:
    return AuthContext(user_id=therapist.id, role='therapist')


def test_save_weekly_template_uses_callers_id(store, therapist, therapist_user) -> None:
    saved = save_weekly_template(payload=MONDAY_PAYLOAD, current_user=therapist_user, store=store)

    assert saved.therapist_id == therapist.id
    assert saved.days[1].enabled
    assert get_weekly_template(therapist.id, current_user=therapist_user, store=store).days[1].time_ranges


def test_save_weekly_template_rejects_patients(store, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        save_weekly_template(
            payload=MONDAY_PAYLOAD,
            current_user=AuthContext(user_id=patient.id, role='individual'),
            store=store,
        )

    assert exception_info.value.status_code == 403


def test_save_weekly_template_reports_field_on_bad_input(store, therapist_user) -> None:
    payload = {'days': {'monday': {**MONDAY_PAYLOAD['days']['monday'], 'session_duration_minutes': 0}}}

    with pytest.raises(HTTPException) as exception_info:
        save_weekly_template(payload=payload, current_user=therapist_user, store=store)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['field'] == 'days.1.session_duration_minutes'


def test_override_crud(store, therapist_user) -> None:
    saved = save_override(
        MONDAY,
        payload={'available': False, 'reason': 'Training'},
        current_user=therapist_user,
        store=store,
    )
    assert saved.available is False

    listed = list_overrides(start_date=MONDAY, end_date=MONDAY, current_user=therapist_user, store=store)
    assert [override.reason for override in listed] == ['Training']

    delete_override(MONDAY, current_user=therapist_user, store=store)

    with pytest.raises(HTTPException) as exception_info:
        delete_override(MONDAY, current_user=therapist_user, store=store)
    assert exception_info.value.status_code == 404


def test_list_overrides_rejects_inverted_range(store, therapist_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_overrides(
            start_date=date(2030, 2, 1),
            end_date=date(2030, 1, 1),
            current_user=therapist_user,
            store=store,
        )

    assert exception_info.value.status_code == 400


def test_days_slots_and_next_slot(store, facade, therapist, therapist_user) -> None:
    save_weekly_template(payload=MONDAY_PAYLOAD, current_user=therapist_user, store=store)

    days = list_available_days(therapist_id=therapist.id, month=1, year=2030, facade=facade)
    assert days.available_days[0] == '2030-01-07'

    slots = list_slots_for_date(therapist_id=therapist.id, slot_date=MONDAY, facade=facade)
    assert slots.total_slots == 2
    assert [slot.start_time for slot in slots.slots] == [time(9, 0), time(9, 30)]

    next_slot = get_next_available_slot(
        therapist_id=therapist.id,
        from_date=date(2030, 1, 2),
        horizon_days=14,
        facade=facade,
    )
    assert next_slot.slot.date == MONDAY


def test_available_days_rejects_bad_month(facade, therapist) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_days(therapist_id=therapist.id, month=0, year=2030, facade=facade)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['field'] == 'month'


def test_next_slot_is_null_without_schedule(facade, therapist) -> None:
    response = get_next_available_slot(
        therapist_id=therapist.id,
        from_date=date(2030, 1, 2),
        horizon_days=7,
        facade=facade,
    )

    assert response.slot is None


def test_check_availability_lists_conflicts_and_suggestions(db, store, facade, therapist, patient, therapist_user) -> None:
    save_weekly_template(payload=MONDAY_PAYLOAD, current_user=therapist_user, store=store)
    db.add(
        TherapySession(
            therapist_id=therapist.id,
            patient_id=patient.id,
            session_date=MONDAY,
            start_time=time(9, 0),
            end_time=time(9, 30),
            duration_minutes=30,
            status='scheduled',
        )
    )
    db.commit()

    response = check_availability(
        AvailabilityCheckRequest(session_date=MONDAY, start_time=time(9, 15), duration_minutes=30),
        current_user=therapist_user,
        facade=facade,
    )

    assert response.available is False
    assert [session.start_time for session in response.conflicting_sessions] == [time(9, 0)]
    assert [slot.start_time for slot in response.suggested_slots] == [time(9, 30)]


def test_check_availability_is_therapist_only(facade, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        check_availability(
            AvailabilityCheckRequest(session_date=MONDAY, start_time=time(9, 0)),
            current_user=AuthContext(user_id=patient.id, role='individual'),
            facade=facade,
        )

    assert exception_info.value.status_code == 403
