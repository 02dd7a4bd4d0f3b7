import enum

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from medportal.database.connection import Base
from medportal.models.base import enum_column_type, new_id
from medportal.utils.clock import utcnow


class AccessType(str, enum.Enum):
    REQUEST = "REQUEST"
    GRANT = "GRANT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REVOKE = "REVOKE"
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    UPLOAD = "UPLOAD"
    DENIED = "DENIED"


class AccessLog(Base):
    __tablename__ = "access_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    hospital_id = Column(String(36), ForeignKey("hospitals.id", ondelete="CASCADE"), nullable=True, index=True)
    # records get deleted; the audit row keeps the id it referred to
    record_id = Column(String(36), nullable=True)

    action = Column(String(255), nullable=False)
    access_type = Column(enum_column_type(AccessType, length=16), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    patient = relationship("Patient", foreign_keys=[patient_id])
    hospital = relationship("Hospital", foreign_keys=[hospital_id])
