import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from telehealth_backend.core.errors import RoomProvisioningError  # noqa: E402
from telehealth_backend.database import Base  # noqa: E402
from telehealth_backend.models import availability, notification, session  # noqa: E402, F401
from telehealth_backend.models.user import User  # noqa: E402
from telehealth_backend.schemas.schedule import DaySchedule, TimeRange, WeeklyTemplate  # noqa: E402
from telehealth_backend.services.video import VideoRoom  # noqa: E402

MONDAY = date(2030, 1, 7)
FIXED_NOW = datetime(2030, 1, 1, 8, 0)


def monday_template(max_sessions_per_day: int = 10, duration: int = 30) -> WeeklyTemplate:
    return WeeklyTemplate(
        days={
            1: DaySchedule(
                enabled=True,
                time_ranges=[TimeRange(start=time(9, 0), end=time(10, 0))],
                session_duration_minutes=duration,
                max_sessions_per_day=max_sessions_per_day,
            )
        }
    )


class FakeProvisioner:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def create_room(self, session_id, participant_names, duration_minutes, scheduled_time):
        self.calls.append(
            {
                'session_id': session_id,
                'participant_names': participant_names,
                'duration_minutes': duration_minutes,
                'scheduled_time': scheduled_time,
            }
        )
        if self.fail:
            raise RoomProvisioningError('Daily API returned 500.')
        return VideoRoom(url=f'https://clinic.daily.co/therapy-session-{session_id}', name=f'therapy-session-{session_id}')


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_ids, notification_type, title, message, related_session_id=None):
        self.sent.append((tuple(user_ids), notification_type, related_session_id))
        return True


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def therapist(db) -> User:
    user = User(email='therapist@example.com', full_name='Dr. Ada Obi', role='therapist', is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def patient(db) -> User:
    user = User(email='patient@example.com', full_name='Tunde Bello', role='individual', is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_patient(db) -> User:
    user = User(email='second@example.com', full_name='Kemi Ade', role='individual', is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
