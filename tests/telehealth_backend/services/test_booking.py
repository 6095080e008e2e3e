from datetime import date, datetime, time

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FIXED_NOW, MONDAY, FakeProvisioner, monday_template
from telehealth_backend.auth.context import AuthContext
from telehealth_backend.core.errors import (
    BookingOutcomeUnknownError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from telehealth_backend.models.session import TherapySession
from telehealth_backend.schemas.schedule import CandidateSlot
from telehealth_backend.services import booking as booking_module
from telehealth_backend.services.booking import BookingService
from telehealth_backend.services.schedule_store import ScheduleStore


@pytest.fixture
def schedule(db, therapist):
    ScheduleStore(db).save_weekly_template(therapist.id, monday_template())


@pytest.fixture
def service(db, provisioner, notifier, schedule):
    return BookingService(db, provisioner=provisioner, notifier=notifier, now=lambda: FIXED_NOW)


def _slot(therapist_id: int, start: time = time(9, 0), end: time = time(9, 30), slot_date: date = MONDAY) -> CandidateSlot:
    return CandidateSlot(
        therapist_id=therapist_id,
        date=slot_date,
        start_time=start,
        end_time=end,
        duration_minutes=30,
    )


def _actor(user, role: str | None = None) -> AuthContext:
    return AuthContext(user_id=user.id, role=role or user.role)


def test_commit_booking_creates_scheduled_session_with_room(service, therapist, patient, provisioner, notifier) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    assert session.status == 'scheduled'
    assert session.start_time == time(9, 0)
    assert session.end_time == time(9, 30)
    assert session.room_pending is False
    assert session.room_name == f'therapy-session-{session.id}'
    assert provisioner.calls[0]['participant_names'] == ['Dr. Ada Obi', 'Tunde Bello']
    assert provisioner.calls[0]['scheduled_time'] == datetime(2030, 1, 7, 9, 0)
    assert notifier.sent == [((patient.id, therapist.id), 'session_booked', session.id)]


def test_second_booking_for_same_slot_is_rejected(service, therapist, patient, other_patient) -> None:
    service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    with pytest.raises(ConflictError) as exception_info:
        service.commit_booking(therapist.id, other_patient.id, _slot(therapist.id))

    assert exception_info.value.reason == 'slot_taken'


def test_race_past_the_recheck_is_caught_by_the_unique_index(
    db, service, therapist, patient, other_patient, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Both callers see an empty day, as two concurrent requests would.
    monkeypatch.setattr(service, '_active_sessions', lambda therapist_id, session_date: [])

    outcomes = []
    for booker in (patient, other_patient):
        try:
            outcomes.append(service.commit_booking(therapist.id, booker.id, _slot(therapist.id)))
        except ConflictError as exc:
            outcomes.append(exc)

    assert isinstance(outcomes[0], TherapySession)
    assert isinstance(outcomes[1], ConflictError)
    assert outcomes[1].reason == 'slot_taken'
    assert db.query(TherapySession).filter(TherapySession.status == 'scheduled').count() == 1


def test_cancelled_session_frees_the_slot(service, therapist, patient, other_patient) -> None:
    first = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.cancel(first.id, _actor(patient), reason='Feeling better')

    rebooked = service.commit_booking(therapist.id, other_patient.id, _slot(therapist.id))

    assert rebooked.id != first.id
    assert rebooked.status == 'scheduled'


def test_slot_outside_schedule_is_unavailable(service, therapist, patient) -> None:
    with pytest.raises(ConflictError) as exception_info:
        service.commit_booking(therapist.id, patient.id, _slot(therapist.id, time(11, 0), time(11, 30)))

    assert exception_info.value.reason == 'slot_unavailable'


def test_past_slot_is_rejected(db, provisioner, notifier, schedule, therapist, patient) -> None:
    late_service = BookingService(db, provisioner=provisioner, notifier=notifier, now=lambda: datetime(2030, 1, 7, 9, 5))

    with pytest.raises(ValidationError) as exception_info:
        late_service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    assert exception_info.value.field == 'start_time'


def test_unknown_therapist_is_not_found(service, patient) -> None:
    with pytest.raises(NotFoundError):
        service.commit_booking(999, patient.id, _slot(999))


def test_room_failure_keeps_booking_pending(db, notifier, schedule, therapist, patient) -> None:
    service = BookingService(db, provisioner=FakeProvisioner(fail=True), notifier=notifier, now=lambda: FIXED_NOW)

    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    assert session.status == 'scheduled'
    assert session.room_pending is True
    assert session.room_url is None

    service.provisioner = FakeProvisioner()
    retried = service.retry_room_provisioning(session.id, _actor(therapist))

    assert retried.room_pending is False
    assert retried.room_url.endswith(f'therapy-session-{session.id}')


def test_commit_failure_reports_unknown_outcome(db, service, therapist, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('connection reset'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(BookingOutcomeUnknownError):
        service.commit_booking(therapist.id, patient.id, _slot(therapist.id))


def test_session_lifecycle(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    started = service.start(session.id, _actor(therapist))
    assert started.status == 'in_progress'
    assert started.started_at == FIXED_NOW

    ended = service.end(session.id, _actor(therapist), notes='Reviewed sleep plan', recording_url='https://rec/1')
    assert ended.status == 'completed'
    assert ended.notes == 'Reviewed sleep plan'
    assert ended.recording_url == 'https://rec/1'


def test_end_requires_started_session(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    with pytest.raises(InvalidStateError):
        service.end(session.id, _actor(therapist))


def test_cancel_completed_session_is_rejected(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.start(session.id, _actor(therapist))
    service.end(session.id, _actor(therapist))

    with pytest.raises(InvalidStateError):
        service.cancel(session.id, _actor(patient))


def test_terminal_states_are_not_reentered(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.mark_no_show(session.id, _actor(therapist))

    for action in (service.start, service.mark_no_show):
        with pytest.raises(InvalidStateError):
            action(session.id, _actor(therapist))


def test_patient_cannot_start_session(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    with pytest.raises(PermissionDeniedError):
        service.start(session.id, _actor(patient))


def test_stranger_cannot_view_session(service, therapist, patient, other_patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    with pytest.raises(PermissionDeniedError):
        service.get_session(session.id, _actor(other_patient))

    viewed, timing = service.get_session(session.id, AuthContext(user_id=0, role='admin'))
    assert viewed.id == session.id
    assert timing.can_join is False
    assert timing.seconds_until_start > 0


def test_join_window_opens_thirty_minutes_before_start(db, service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.now = lambda: datetime(2030, 1, 7, 8, 35)

    _, timing = service.get_session(session.id, _actor(patient))

    assert timing.can_join is True
    assert timing.is_active is False
    assert timing.is_past is False


def test_list_sessions_scopes_by_role(service, therapist, patient, other_patient) -> None:
    service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.commit_booking(therapist.id, other_patient.id, _slot(therapist.id, time(9, 30), time(10, 0)))

    assert len(service.list_sessions(_actor(patient))) == 1
    assert len(service.list_sessions(_actor(therapist))) == 2
    assert service.list_sessions(_actor(therapist), status='cancelled') == []

    with pytest.raises(ValidationError):
        service.list_sessions(_actor(therapist), status='archived')


def test_list_sessions_clamps_limit(monkeypatch: pytest.MonkeyPatch, service, therapist, patient) -> None:
    service.commit_booking(therapist.id, patient.id, _slot(therapist.id))
    service.commit_booking(therapist.id, patient.id, _slot(therapist.id, time(9, 30), time(10, 0)))
    monkeypatch.setattr(booking_module.config, 'MAX_SESSION_LIST_LIMIT', 1)

    sessions = service.list_sessions(_actor(therapist), limit=500)

    assert [session.start_time for session in sessions] == [time(9, 0)]


def test_only_the_therapist_updates_notes(service, therapist, patient) -> None:
    session = service.commit_booking(therapist.id, patient.id, _slot(therapist.id))

    updated = service.update_notes(session.id, _actor(therapist), 'Discussed breathing exercises')
    assert updated.notes == 'Discussed breathing exercises'

    with pytest.raises(PermissionDeniedError):
        service.update_notes(session.id, _actor(patient), 'Overwritten')


def test_overlap_with_different_start_is_rejected(db, service, therapist, patient, other_patient) -> None:
    service.commit_booking(therapist.id, patient.id, _slot(therapist.id, time(9, 30), time(10, 0)))
    ScheduleStore(db).save_weekly_template(therapist.id, monday_template(duration=60))
    hour_slot = CandidateSlot(
        therapist_id=therapist.id,
        date=MONDAY,
        start_time=time(9, 0),
        end_time=time(10, 0),
        duration_minutes=60,
    )

    with pytest.raises(ConflictError) as exception_info:
        service.commit_booking(therapist.id, other_patient.id, hour_slot)

    assert exception_info.value.reason == 'slot_taken'
    assert db.query(TherapySession).count() == 1


def _confirmed_session(db, therapist, patient) -> TherapySession:
    session = TherapySession(
        therapist_id=therapist.id,
        patient_id=patient.id,
        session_date=MONDAY,
        start_time=time(9, 0),
        end_time=time(9, 30),
        duration_minutes=30,
        status='confirmed',
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def test_confirmed_session_can_start(db, service, therapist, patient) -> None:
    session = _confirmed_session(db, therapist, patient)

    assert service.start(session.id, _actor(therapist)).status == 'in_progress'


def test_confirmed_session_can_be_cancelled(db, service, therapist, patient) -> None:
    session = _confirmed_session(db, therapist, patient)

    cancelled = service.cancel(session.id, _actor(patient), reason='Schedule clash')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancellation_reason == 'Schedule clash'
