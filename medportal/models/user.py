import enum

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from medportal.database.connection import Base
from medportal.models.base import new_id
from medportal.utils.clock import utcnow


class RoleEnum(str, enum.Enum):
    patient = "patient"
    hospital = "hospital"


class AuthUser(Base):
    """Identity-provider account. Role and display name travel in ``user_metadata``."""

    __tablename__ = "auth_users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    user_metadata = Column(JSON, nullable=False, default=dict)
    email_confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")


class AuthSession(Base):
    """One row per issued access token; the token's ``jti`` is the primary key."""

    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    auth_user_id = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("AuthUser", back_populates="sessions")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=new_id)
    auth_user_id = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), unique=True, nullable=False)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    address = Column(Text, nullable=True)
    emergency_contact_name = Column(String(255), nullable=True)
    emergency_contact_phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Hospital(Base):
    __tablename__ = "hospitals"

    id = Column(String(36), primary_key=True, default=new_id)
    auth_user_id = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), unique=True, nullable=False)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)  # contact person
    hospital_name = Column(String(255), nullable=False)
    license_number = Column(String(100), nullable=False)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    department = Column(String(255), nullable=True)
    specialty = Column(String(255), nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


PROFILE_MODELS = {
    RoleEnum.patient: Patient,
    RoleEnum.hospital: Hospital,
}
