"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from telehealth_backend.database import Base


class User(Base):
    """Represents a patient, therapist or admin account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # individual/therapist/admin
    is_active = Column(Boolean, default=True)
