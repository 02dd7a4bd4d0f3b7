from sqlalchemy.orm import Session

from medportal.models.access_log import AccessLog, AccessType
from medportal.utils.clock import utcnow


def log_access(
    db: Session,
    patient_id: str,
    hospital_id: str,
    action: str,
    access_type: AccessType,
    record_id: str = None,
    commit: bool = True,
) -> AccessLog:
    """Add a new access log entry with context."""
    entry = AccessLog(
        patient_id=patient_id,
        hospital_id=hospital_id,
        record_id=record_id,
        action=action,
        access_type=access_type,
        timestamp=utcnow(),
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    return entry


def logs_for_patient(db: Session, patient_id: str, limit: int = 200) -> list[AccessLog]:
    return (
        db.query(AccessLog)
        .filter(AccessLog.patient_id == patient_id)
        .order_by(AccessLog.timestamp.desc())
        .limit(limit)
        .all()
    )


def logs_for_hospital(db: Session, hospital_id: str, limit: int = 200) -> list[AccessLog]:
    return (
        db.query(AccessLog)
        .filter(AccessLog.hospital_id == hospital_id)
        .order_by(AccessLog.timestamp.desc())
        .limit(limit)
        .all()
    )
