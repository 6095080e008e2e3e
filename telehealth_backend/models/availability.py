"""Availability model definitions."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from telehealth_backend.database import Base


class WeeklySchedule(Base):
    """One day of a therapist's recurring weekly template."""
    __tablename__ = "weekly_schedules"
    __table_args__ = (
        UniqueConstraint('therapist_id', 'day_of_week', name='uq_weekly_schedules_therapist_day'),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    enabled = Column(Boolean, default=False, nullable=False)
    time_ranges = Column(JSON, nullable=False, default=list)
    session_duration_minutes = Column(Integer, nullable=False)
    max_sessions_per_day = Column(Integer, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AvailabilityOverride(Base):
    """A date-specific exception to the weekly template."""
    __tablename__ = "availability_overrides"
    __table_args__ = (
        UniqueConstraint('therapist_id', 'override_date', name='uq_availability_overrides_therapist_date'),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    override_date = Column(Date, nullable=False)
    available = Column(Boolean, default=False, nullable=False)
    time_ranges = Column(JSON, nullable=False, default=list)
    extra_slots = Column(JSON, nullable=False, default=list)
    session_duration_minutes = Column(Integer)
    max_sessions_per_day = Column(Integer)
    reason = Column(String)
    notes = Column(String)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
