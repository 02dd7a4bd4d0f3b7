"""
Record store.

Record rows hold metadata; the file itself lives in the blob store under
``{patient_id}/{unique_name}``. Every read and write goes through
``access_service.require_record_access`` first; the record store adds no
policy of its own beyond ownership on delete.
"""

import logging
import re
import secrets
import time
from datetime import datetime
from pathlib import PurePosixPath
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medportal.config import settings
from medportal.exceptions import AccessDenied, InvalidRequest, NotFound, PortalError
from medportal.models.access_log import AccessType
from medportal.models.record import PatientRecord, RecordType
from medportal.services.access_log_service import log_access
from medportal.services.access_service import require_record_access
from medportal.services.blob_store import BlobStore
from medportal.services.profile_service import Principal, get_patient
from medportal.utils.clock import utcnow

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^[A-Za-z0-9]{1,10}$")


def generate_storage_path(patient_id: str, filename: str) -> str:
    """``{patient_id}/{epoch_ms}-{random}.{ext}``; the extension is dropped when it is not plain alphanumerics."""
    extension = PurePosixPath(filename or "").suffix.lstrip(".")
    name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    if _EXTENSION_RE.match(extension):
        name = f"{name}.{extension.lower()}"
    return f"{patient_id}/{name}"


def _parse_record_type(record_type) -> RecordType:
    if isinstance(record_type, RecordType):
        return record_type
    try:
        return RecordType(record_type)
    except ValueError:
        allowed = ", ".join(t.value for t in RecordType)
        raise InvalidRequest(f"record_type must be one of: {allowed}.")


def _target_patient_id(principal: Principal, patient_id: Optional[str]) -> str:
    """Patients act on their own records; hospitals must name the patient."""
    if principal.is_patient:
        return patient_id or principal.id
    if not patient_id:
        raise InvalidRequest("patient_id is required.")
    return patient_id


def _get_record(db: Session, record_id: str) -> PatientRecord:
    record = db.get(PatientRecord, record_id)
    if not record:
        raise NotFound("Record not found.")
    return record


def upload_record(
    db: Session,
    blob_store: BlobStore,
    principal: Principal,
    filename: str,
    content: bytes,
    record_type,
    title: str,
    notes: str = None,
    patient_id: str = None,
    content_type: str = None,
    now: datetime = None,
) -> PatientRecord:
    record_type = _parse_record_type(record_type)
    title = (title or "").strip()
    if not title:
        raise InvalidRequest("title is required.")
    if not content:
        raise InvalidRequest("Empty file.")

    patient_id = _target_patient_id(principal, patient_id)
    get_patient(db, patient_id)
    require_record_access(db, principal, patient_id, now)

    storage_path = generate_storage_path(patient_id, filename)
    blob_store.upload(storage_path, content, content_type)

    now = now or utcnow()
    record = PatientRecord(
        patient_id=patient_id,
        uploaded_by_patient_id=principal.id if principal.is_patient else None,
        uploaded_by_hospital_id=principal.id if principal.is_hospital else None,
        record_type=record_type,
        title=title,
        notes=notes,
        storage_path=storage_path,
        filename=filename,
        content_type=content_type,
        size_bytes=len(content),
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        try:
            blob_store.remove(storage_path)
        except PortalError as e:
            logger.warning("Could not remove blob after failed insert. path=%s error=%s", storage_path, e)
        raise
    db.refresh(record)

    if principal.is_hospital:
        log_access(db, patient_id, principal.id, f"Uploaded record '{title}'", AccessType.UPLOAD, record_id=record.id)
    logger.info(
        "Record uploaded. record_id=%s patient_id=%s uploader=%s:%s",
        record.id, patient_id, principal.role.value, principal.id,
    )
    return record


def list_records(db: Session, principal: Principal, patient_id: str = None, now: datetime = None) -> list[PatientRecord]:
    """A patient's records, newest first."""
    patient_id = _target_patient_id(principal, patient_id)
    require_record_access(db, principal, patient_id, now)
    records = (
        db.query(PatientRecord)
        .filter(PatientRecord.patient_id == patient_id)
        .order_by(PatientRecord.created_at.desc())
        .all()
    )
    if principal.is_hospital:
        log_access(db, patient_id, principal.id, f"Viewed record list ({len(records)} records)", AccessType.VIEW)
    return records


def get_record(db: Session, principal: Principal, record_id: str, now: datetime = None) -> PatientRecord:
    record = _get_record(db, record_id)
    require_record_access(db, principal, record.patient_id, now)
    if principal.is_hospital:
        log_access(db, record.patient_id, principal.id, f"Viewed record '{record.title}'", AccessType.VIEW, record_id=record.id)
    return record


def update_record_notes(db: Session, principal: Principal, record_id: str, notes: Optional[str], now: datetime = None) -> PatientRecord:
    record = _get_record(db, record_id)
    require_record_access(db, principal, record.patient_id, now)
    record.notes = notes
    record.updated_at = now or utcnow()
    db.commit()
    db.refresh(record)
    logger.info("Record notes updated. record_id=%s by=%s", record.id, principal.id)
    return record


def create_download_url(db: Session, blob_store: BlobStore, principal: Principal, record_id: str, now: datetime = None) -> tuple[str, int]:
    """
    Signed URL for the record's file, with its lifetime in seconds.
    The gate is checked here, at issue time only.
    """
    record = _get_record(db, record_id)
    require_record_access(db, principal, record.patient_id, now)
    if not record.storage_path:
        raise NotFound("This record has no stored file.")

    ttl = settings.signed_url_ttl_seconds
    url = blob_store.create_signed_url(record.storage_path, ttl)
    if principal.is_hospital:
        log_access(db, record.patient_id, principal.id, f"Downloaded record '{record.title}'", AccessType.DOWNLOAD, record_id=record.id)
    return url, ttl


def delete_record(db: Session, blob_store: BlobStore, principal: Principal, record_id: str, now: datetime = None) -> None:
    """
    Delete a record's file and row.
    Owning patients may delete any of their records; a hospital only the ones
    it uploaded, and only while its access is active. A failed blob removal
    is logged and the row is deleted anyway, which can leave an orphaned blob.
    """
    record = _get_record(db, record_id)
    if principal.is_hospital and record.uploaded_by_hospital_id != principal.id:
        raise AccessDenied("Hospitals can only delete records they uploaded.")
    require_record_access(db, principal, record.patient_id, now)

    if record.storage_path:
        try:
            blob_store.remove(record.storage_path)
        except PortalError as e:
            logger.warning("Storage deletion failed. record_id=%s path=%s error=%s", record.id, record.storage_path, e)

    db.delete(record)
    db.commit()
    logger.info("Record deleted. record_id=%s by=%s", record_id, principal.id)
