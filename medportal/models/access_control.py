import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import relationship

from medportal.database.connection import Base
from medportal.models.base import enum_column_type, new_id
from medportal.utils.clock import utcnow


class AccessStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"  # also the state a revoked permission ends in


class AccessPermission(Base):
    __tablename__ = "access_permissions"
    __table_args__ = (
        UniqueConstraint("patient_id", "hospital_id", name="uq_access_permission_pair"),
        Index("idx_access_permission_hospital_status", "hospital_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    hospital_id = Column(String(36), ForeignKey("hospitals.id", ondelete="CASCADE"), nullable=False)

    status = Column(enum_column_type(AccessStatus), nullable=False, default=AccessStatus.pending)
    requested_at = Column(DateTime, nullable=True)
    granted_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # null means no expiry
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    patient = relationship("Patient", lazy="joined")
    hospital = relationship("Hospital", lazy="joined")

    def __repr__(self) -> str:
        return f"<AccessPermission(patient_id={self.patient_id}, hospital_id={self.hospital_id}, status={self.status})>"

    # read-side join: display fields of both counterparts

    @property
    def patient_name(self) -> str:
        return self.patient.name if self.patient else "Unknown"

    @property
    def patient_email(self) -> str:
        return self.patient.email if self.patient else "Unknown"

    @property
    def hospital_name(self) -> str:
        return self.hospital.hospital_name if self.hospital else "Unknown"

    @property
    def hospital_contact_name(self) -> str:
        return self.hospital.name if self.hospital else "Unknown"

    @property
    def hospital_email(self) -> str:
        return self.hospital.email if self.hospital else "Unknown"
