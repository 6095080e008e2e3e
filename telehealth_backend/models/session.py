"""Therapy session model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time, func, text
from telehealth_backend.database import Base, active_status_clause


class TherapySession(Base):
    """A booked session between a patient and a therapist.

    Rows are never deleted; cancelling or completing a session only moves its
    status, which frees the slot for new bookings.
    """
    __tablename__ = "sessions"
    __table_args__ = (
        Index(
            'uq_sessions_active_slot',
            'therapist_id',
            'session_date',
            'start_time',
            unique=True,
            postgresql_where=text(active_status_clause()),
            sqlite_where=text(active_status_clause()),
        ),
        Index('idx_sessions_therapist_date', 'therapist_id', 'session_date'),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    session_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default='scheduled')
    room_url = Column(String)
    room_name = Column(String)
    room_pending = Column(Boolean, default=False, nullable=False)
    notes = Column(Text)
    recording_url = Column(String)
    cancellation_reason = Column(String)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
