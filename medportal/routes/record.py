import mimetypes
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from medportal.database.connection import get_db
from medportal.exceptions import NotFound
from medportal.models.record import PatientRecord
from medportal.schemas import DownloadUrlOut, MessageOut, NotesUpdate, RecordOut
from medportal.services import record_service
from medportal.services.auth_helpers import get_current_principal
from medportal.services.blob_store import BlobStore, LocalBlobStore, get_blob_store
from medportal.services.profile_service import Principal

router = APIRouter(prefix="/record", tags=["Record"])


@router.post("/upload", response_model=RecordOut, status_code=status.HTTP_201_CREATED)
def upload_record(
    file: UploadFile = File(...),
    record_type: str = Form(...),
    title: str = Form(...),
    notes: Optional[str] = Form(None),
    patient_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    principal: Principal = Depends(get_current_principal),
):
    content = file.file.read()
    return record_service.upload_record(
        db, blob_store, principal,
        filename=file.filename,
        content=content,
        record_type=record_type,
        title=title,
        notes=notes,
        patient_id=patient_id,
        content_type=file.content_type,
    )


@router.get("/blob")
def download_blob(token: str = Query(...), db: Session = Depends(get_db), blob_store: BlobStore = Depends(get_blob_store)):
    """Serve a file for a signed URL issued by the local blob store. The token is the only check."""
    if not isinstance(blob_store, LocalBlobStore):
        raise NotFound("Downloads are served by the storage backend.")
    full_path = blob_store.resolve_signed_token(token)
    storage_path = full_path.relative_to(blob_store.root).as_posix()
    record = db.query(PatientRecord).filter(PatientRecord.storage_path == storage_path).first()
    filename = record.filename if record and record.filename else full_path.name
    media_type = (record.content_type if record else None) or mimetypes.guess_type(filename)[0]
    return FileResponse(full_path, media_type=media_type or "application/octet-stream", filename=filename)


@router.get("/my-records", response_model=List[RecordOut])
def get_my_records(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return record_service.list_records(db, principal)


@router.get("/patient/{patient_id}", response_model=List[RecordOut])
def get_patient_records(patient_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return record_service.list_records(db, principal, patient_id)


@router.get("/{record_id}", response_model=RecordOut)
def get_record(record_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return record_service.get_record(db, principal, record_id)


@router.patch("/{record_id}/notes", response_model=RecordOut)
def update_notes(record_id: str, data: NotesUpdate, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return record_service.update_record_notes(db, principal, record_id, data.notes)


@router.get("/{record_id}/download-url", response_model=DownloadUrlOut)
def get_download_url(
    record_id: str,
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    principal: Principal = Depends(get_current_principal),
):
    url, ttl = record_service.create_download_url(db, blob_store, principal, record_id)
    return DownloadUrlOut(url=url, expires_in=ttl)


@router.delete("/{record_id}", response_model=MessageOut)
def delete_record(
    record_id: str,
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    principal: Principal = Depends(get_current_principal),
):
    record_service.delete_record(db, blob_store, principal, record_id)
    return {"message": "Record deleted successfully"}
