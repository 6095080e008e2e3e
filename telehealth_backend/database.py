import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./telehealth.db")

engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_SESSION_STATUSES = ('scheduled', 'confirmed', 'in_progress')
TERMINAL_SESSION_STATUSES = ('completed', 'cancelled', 'no_show')
SESSION_STATUSES = ACTIVE_SESSION_STATUSES + TERMINAL_SESSION_STATUSES

_schema_lock = Lock()
_session_schema_checked = False


def active_status_clause() -> str:
    quoted = ', '.join(f"'{status}'" for status in ACTIVE_SESSION_STATUSES)
    return f'status IN ({quoted})'


def ensure_session_schema() -> None:
    """Bring a pre-existing sessions table up to the columns and indexes booking relies on."""
    global _session_schema_checked

    if _session_schema_checked:
        return

    with _schema_lock:
        if _session_schema_checked:
            return

        inspector = inspect(engine)

        if 'sessions' not in inspector.get_table_names():
            _session_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('sessions')}
        migration_steps = [
            ('room_url', 'ALTER TABLE sessions ADD COLUMN room_url VARCHAR'),
            ('room_name', 'ALTER TABLE sessions ADD COLUMN room_name VARCHAR'),
            ('room_pending', 'ALTER TABLE sessions ADD COLUMN room_pending BOOLEAN DEFAULT FALSE'),
            ('recording_url', 'ALTER TABLE sessions ADD COLUMN recording_url VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE sessions ADD COLUMN cancellation_reason VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_active_slot '
                    'ON sessions(therapist_id, session_date, start_time) '
                    f'WHERE {active_status_clause()}'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_sessions_therapist_date ON sessions(therapist_id, session_date)')
            )

        _session_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
