import enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from medportal.database.connection import Base
from medportal.models.base import enum_column_type, new_id
from medportal.utils.clock import utcnow


class RecordType(str, enum.Enum):
    lab_report = "Lab Report"
    imaging = "Imaging"
    prescription = "Prescription"
    dicom = "DICOM"
    note = "Note"


class PatientRecord(Base):
    __tablename__ = "patient_records"
    __table_args__ = (
        CheckConstraint(
            "(uploaded_by_hospital_id IS NOT NULL AND uploaded_by_patient_id IS NULL) OR "
            "(uploaded_by_hospital_id IS NULL AND uploaded_by_patient_id IS NOT NULL)",
            name="check_single_uploader",
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by_patient_id = Column(String(36), ForeignKey("patients.id", ondelete="SET NULL"), nullable=True)
    uploaded_by_hospital_id = Column(String(36), ForeignKey("hospitals.id", ondelete="SET NULL"), nullable=True)

    record_type = Column(enum_column_type(RecordType, length=20), nullable=False)
    title = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    storage_path = Column(String(512), nullable=True)
    filename = Column(String(255), nullable=True)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    patient = relationship("Patient", foreign_keys=[patient_id])
    uploaded_by_patient = relationship("Patient", foreign_keys=[uploaded_by_patient_id])
    uploaded_by_hospital = relationship("Hospital", foreign_keys=[uploaded_by_hospital_id])

    @property
    def uploaded_by_role(self) -> str:
        if self.uploaded_by_hospital_id:
            return "hospital"
        if self.uploaded_by_patient_id:
            return "patient"
        return "unknown"

    @property
    def uploaded_by_name(self) -> str:
        if self.uploaded_by_hospital is not None:
            return self.uploaded_by_hospital.hospital_name
        if self.uploaded_by_patient is not None:
            return self.uploaded_by_patient.name
        return "Unknown"
