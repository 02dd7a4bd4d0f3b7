"""
Unit tests for the record store: uploads, gated reads, downloads, deletion.
"""

import re
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.exc import OperationalError

from medportal.exceptions import AccessDenied, InvalidRequest, NotFound, UpstreamFailure
from medportal.models.access_log import AccessLog, AccessType
from medportal.models.record import PatientRecord, RecordType
from medportal.services import access_service, record_service
from medportal.utils.clock import utcnow


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FailingRemoveStore:
    """Wraps a real store but fails every removal."""
    def __init__(self, inner):
        self.inner = inner
        self.remove_calls = []

    def upload(self, path, data, content_type=None):
        self.inner.upload(path, data, content_type)

    def create_signed_url(self, path, ttl_seconds):
        return self.inner.create_signed_url(path, ttl_seconds)

    def remove(self, path):
        self.remove_calls.append(path)
        raise UpstreamFailure("storage is down")


class FailingUploadStore(FailingRemoveStore):
    def upload(self, path, data, content_type=None):
        raise UpstreamFailure("storage is down")


def _upload(db, store, principal, patient_id=None, title="Blood panel", content=b"%PDF-1.4 data"):
    return record_service.upload_record(
        db, store, principal,
        filename="panel.pdf",
        content=content,
        record_type="Lab Report",
        title=title,
        notes="fasting",
        patient_id=patient_id,
        content_type="application/pdf",
    )


# ── Tests: storage paths ─────────────────────────────────────────────

def test_storage_path_format():
    path = record_service.generate_storage_path("p-1", "scan.DCM")
    assert re.fullmatch(r"p-1/\d{13}-[0-9a-f]{8}\.dcm", path)


def test_storage_path_drops_odd_extensions():
    assert "." not in record_service.generate_storage_path("p-1", "notes").split("/")[1]
    assert "." not in record_service.generate_storage_path("p-1", "x.t$x").split("/")[1]


# ── Tests: upload ────────────────────────────────────────────────────

def test_patient_uploads_own_record(db, blob_store, patient):
    record = _upload(db, blob_store, patient)

    assert record.patient_id == patient.id
    assert record.uploaded_by_patient_id == patient.id
    assert record.uploaded_by_hospital_id is None
    assert record.uploaded_by_role == "patient"
    assert record.record_type == RecordType.lab_report
    assert record.size_bytes == len(b"%PDF-1.4 data")
    assert record.storage_path.startswith(f"{patient.id}/")
    assert (blob_store.root / record.storage_path).read_bytes() == b"%PDF-1.4 data"


def test_patient_cannot_upload_for_someone_else(db, blob_store, patient, make_patient):
    other = make_patient()
    with pytest.raises(AccessDenied):
        _upload(db, blob_store, patient, patient_id=other.id)


def test_hospital_upload_requires_access(db, blob_store, patient, hospital):
    with pytest.raises(AccessDenied):
        _upload(db, blob_store, hospital, patient_id=patient.id)
    assert db.query(PatientRecord).count() == 0

    access_service.grant_access(db, patient, hospital.id)
    record = _upload(db, blob_store, hospital, patient_id=patient.id)

    assert record.uploaded_by_hospital_id == hospital.id
    assert record.uploaded_by_role == "hospital"
    assert record.uploaded_by_name == "St. Mary's"


def test_hospital_upload_needs_patient_id(db, blob_store, hospital):
    with pytest.raises(InvalidRequest, match="patient_id"):
        _upload(db, blob_store, hospital)


def test_upload_validation(db, blob_store, patient):
    with pytest.raises(InvalidRequest, match="Empty file"):
        _upload(db, blob_store, patient, content=b"")
    with pytest.raises(InvalidRequest, match="title"):
        _upload(db, blob_store, patient, title="  ")
    with pytest.raises(InvalidRequest, match="record_type"):
        record_service.upload_record(db, blob_store, patient, "a.pdf", b"x", "X-Ray", "t")


def test_upload_blob_failure_writes_no_row(db, blob_store, patient):
    with pytest.raises(UpstreamFailure):
        _upload(db, FailingUploadStore(blob_store), patient)
    assert db.query(PatientRecord).count() == 0


def _fail_next_commit(db, monkeypatch):
    real_commit = db.commit
    calls = {"n": 0}

    def commit():
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("INSERT INTO patient_records ...", {}, Exception("database is locked"))
        return real_commit()

    monkeypatch.setattr(db, "commit", commit)


def _stored_files(store):
    return [p for p in store.root.rglob("*") if p.is_file()]


def test_failed_insert_removes_uploaded_blob(db, blob_store, patient, monkeypatch):
    _fail_next_commit(db, monkeypatch)

    with pytest.raises(OperationalError):
        _upload(db, blob_store, patient)

    assert db.query(PatientRecord).count() == 0
    assert _stored_files(blob_store) == []


def test_failed_insert_keeps_original_error_when_cleanup_fails(db, blob_store, patient, monkeypatch):
    store = FailingRemoveStore(blob_store)
    _fail_next_commit(db, monkeypatch)

    with pytest.raises(OperationalError, match="database is locked"):
        _upload(db, store, patient)

    assert len(store.remove_calls) == 1
    assert db.query(PatientRecord).count() == 0
    # the orphan stays behind
    assert len(_stored_files(blob_store)) == 1


# ── Tests: reads ─────────────────────────────────────────────────────

def test_list_records_newest_first(db, blob_store, patient):
    first = _upload(db, blob_store, patient, title="first")
    first.created_at = utcnow() - timedelta(days=1)
    db.commit()
    second = _upload(db, blob_store, patient, title="second")

    records = record_service.list_records(db, patient)
    assert [r.id for r in records] == [second.id, first.id]


def test_hospital_list_is_gated_and_audited(db, blob_store, patient, hospital):
    _upload(db, blob_store, patient)
    with pytest.raises(AccessDenied):
        record_service.list_records(db, hospital, patient.id)

    access_service.grant_access(db, patient, hospital.id)
    records = record_service.list_records(db, hospital, patient.id)

    assert len(records) == 1
    assert db.query(AccessLog).filter_by(access_type=AccessType.VIEW, hospital_id=hospital.id).count() == 1


def test_get_record_missing(db, patient):
    with pytest.raises(NotFound):
        record_service.get_record(db, patient, "missing")


def test_get_record_denied_for_other_patient(db, blob_store, patient, make_patient):
    record = _upload(db, blob_store, patient)
    with pytest.raises(AccessDenied):
        record_service.get_record(db, make_patient(), record.id)


def test_expired_access_hides_records(db, blob_store, patient, hospital):
    record = _upload(db, blob_store, patient)
    access_service.grant_access(db, patient, hospital.id, expiry_days=1, now=utcnow() - timedelta(days=2))

    with pytest.raises(AccessDenied, match="expired"):
        record_service.get_record(db, hospital, record.id)


# ── Tests: notes ─────────────────────────────────────────────────────

def test_notes_by_owner_and_approved_hospital(db, blob_store, patient, hospital):
    record = _upload(db, blob_store, patient)

    updated = record_service.update_record_notes(db, patient, record.id, "reviewed")
    assert updated.notes == "reviewed"

    with pytest.raises(AccessDenied):
        record_service.update_record_notes(db, hospital, record.id, "hospital note")

    access_service.grant_access(db, patient, hospital.id)
    updated = record_service.update_record_notes(db, hospital, record.id, "hospital note")
    assert updated.notes == "hospital note"


# ── Tests: download URLs ─────────────────────────────────────────────

def test_download_url_is_gated(db, blob_store, patient, hospital):
    record = _upload(db, blob_store, patient)
    with pytest.raises(AccessDenied):
        record_service.create_download_url(db, blob_store, hospital, record.id)

    access_service.grant_access(db, patient, hospital.id)
    url, ttl = record_service.create_download_url(db, blob_store, hospital, record.id)

    assert url.startswith("http://testserver/record/blob?token=")
    assert ttl == 3600
    assert db.query(AccessLog).filter_by(access_type=AccessType.DOWNLOAD).count() == 1


def test_issued_url_survives_revocation(db, blob_store, patient, hospital):
    record = _upload(db, blob_store, patient)
    access_service.grant_access(db, patient, hospital.id)
    url, _ = record_service.create_download_url(db, blob_store, hospital, record.id)

    access_service.revoke_access(db, patient, hospital.id)

    token = parse_qs(urlparse(url).query)["token"][0]
    assert blob_store.resolve_signed_token(token).read_bytes() == b"%PDF-1.4 data"
    with pytest.raises(AccessDenied):
        record_service.create_download_url(db, blob_store, hospital, record.id)


# ── Tests: delete ────────────────────────────────────────────────────

def test_owner_deletes_record_and_blob(db, blob_store, patient):
    record = _upload(db, blob_store, patient)
    blob = blob_store.root / record.storage_path

    record_service.delete_record(db, blob_store, patient, record.id)

    assert db.query(PatientRecord).count() == 0
    assert not blob.exists()


def test_delete_missing_record(db, blob_store, patient):
    with pytest.raises(NotFound):
        record_service.delete_record(db, blob_store, patient, "missing")


def test_blob_failure_does_not_block_delete(db, blob_store, patient):
    record = _upload(db, blob_store, patient)
    store = FailingRemoveStore(blob_store)

    record_service.delete_record(db, store, patient, record.id)

    assert store.remove_calls == [record.storage_path]
    assert db.query(PatientRecord).count() == 0
    # the orphaned blob is left behind
    assert (blob_store.root / record.storage_path).exists()


def test_hospital_deletes_only_own_uploads(db, blob_store, patient, hospital):
    access_service.grant_access(db, patient, hospital.id)
    patient_record = _upload(db, blob_store, patient)
    hospital_record = _upload(db, blob_store, hospital, patient_id=patient.id)

    with pytest.raises(AccessDenied):
        record_service.delete_record(db, blob_store, hospital, patient_record.id)

    record_service.delete_record(db, blob_store, hospital, hospital_record.id)
    assert [r.id for r in db.query(PatientRecord).all()] == [patient_record.id]


def test_hospital_delete_needs_active_access(db, blob_store, patient, hospital):
    access_service.grant_access(db, patient, hospital.id)
    record = _upload(db, blob_store, hospital, patient_id=patient.id)
    access_service.revoke_access(db, patient, hospital.id)

    with pytest.raises(AccessDenied):
        record_service.delete_record(db, blob_store, hospital, record.id)
