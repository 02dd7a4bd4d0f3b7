"""
Access-permission state machine.

One ``access_permissions`` row per (patient, hospital) pair, status in
{pending, approved, rejected}:

    request  (hospital) -> pending      upsert, any prior state
    grant    (patient)  -> approved     upsert, any prior state
    respond  (patient)  pending -> approved | rejected   conditional write
    revoke   (patient)  any -> rejected

Concurrent writes to the same pair are last-write-wins; ``respond`` is the
only conditional write and raises Conflict when the row is no longer
pending (someone else answered first).

``is_access_active`` is the single expiry predicate. Every read path that
decides visibility (the approved listings and the record gate) goes
through it, so an approved row past ``expires_at`` is treated as no access
everywhere; the row itself is left untouched.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medportal.exceptions import AccessDenied, Conflict, InvalidRequest
from medportal.models.access_control import AccessPermission, AccessStatus
from medportal.models.access_log import AccessType
from medportal.models.user import Patient, RoleEnum
from medportal.services.access_log_service import log_access
from medportal.services.profile_service import Principal, get_hospital, get_patient
from medportal.utils.clock import utcnow

logger = logging.getLogger(__name__)


# ===========================================================================
# INTERNAL HELPERS
# ===========================================================================

def _require_role(principal: Principal, role: RoleEnum, action: str) -> None:
    if principal is None or principal.role != role:
        raise AccessDenied(f"Only a {role.value} can {action}.")


def _expiry_from_days(expiry_days: Optional[int], now: datetime) -> Optional[datetime]:
    if expiry_days is None:
        return None
    if isinstance(expiry_days, bool) or not isinstance(expiry_days, int) or expiry_days <= 0:
        raise InvalidRequest("expiry_days must be a positive whole number of days.")
    return now + timedelta(days=expiry_days)


def _active_filter(now: datetime):
    return (
        AccessPermission.status == AccessStatus.approved,
        or_(AccessPermission.expires_at.is_(None), AccessPermission.expires_at > now),
    )


def _upsert_permission(db: Session, patient_id: str, hospital_id: str, values: dict, now: datetime) -> AccessPermission:
    """Create or overwrite the row for the pair. Last write wins."""
    permission = status_for(db, patient_id, hospital_id)
    if permission is None:
        permission = AccessPermission(patient_id=patient_id, hospital_id=hospital_id, created_at=now, **values)
        db.add(permission)
        try:
            db.commit()
        except IntegrityError:
            # lost the insert race for the pair; overwrite the winner's row
            db.rollback()
            permission = status_for(db, patient_id, hospital_id)
            if permission is None:
                raise
            for field, value in values.items():
                setattr(permission, field, value)
            db.commit()
    else:
        for field, value in values.items():
            setattr(permission, field, value)
        db.commit()
    db.refresh(permission)
    return permission


# ===========================================================================
# EXPIRY PREDICATE
# ===========================================================================

def is_access_active(permission: Optional[AccessPermission], now: datetime = None) -> bool:
    """approved and (no expiry or expiry in the future)."""
    if permission is None or permission.status != AccessStatus.approved:
        return False
    if permission.expires_at is None:
        return True
    return permission.expires_at > (now or utcnow())


# ===========================================================================
# TRANSITIONS
# ===========================================================================

def request_access(db: Session, hospital: Principal, patient_id: str, expiry_days: int = None, now: datetime = None) -> AccessPermission:
    """
    Hospital asks a patient for access.
    Overwrites any existing row for the pair (including a rejected one) with
    status=pending; the requested expiry starts counting from now.
    """
    _require_role(hospital, RoleEnum.hospital, "request access to patient records")
    now = now or utcnow()
    expires_at = _expiry_from_days(expiry_days, now)
    get_patient(db, patient_id)

    permission = _upsert_permission(db, patient_id, hospital.id, {
        "status": AccessStatus.pending,
        "requested_at": now,
        "granted_at": None,
        "expires_at": expires_at,
        "updated_at": now,
    }, now)

    log_access(db, patient_id, hospital.id, f"{hospital.name} requested access", AccessType.REQUEST)
    logger.info(
        "Access requested. patient_id=%s hospital_id=%s expires_at=%s",
        patient_id, hospital.id, expires_at,
    )
    return permission


def grant_access(db: Session, patient: Principal, hospital_id: str, expiry_days: int = None, now: datetime = None) -> AccessPermission:
    """Patient grants a hospital access directly, skipping the pending state."""
    _require_role(patient, RoleEnum.patient, "grant access")
    now = now or utcnow()
    expires_at = _expiry_from_days(expiry_days, now)
    hospital = get_hospital(db, hospital_id)

    permission = _upsert_permission(db, patient.id, hospital_id, {
        "status": AccessStatus.approved,
        "granted_at": now,
        "expires_at": expires_at,
        "updated_at": now,
    }, now)

    log_access(db, patient.id, hospital_id, f"Granted access to {hospital.hospital_name}", AccessType.GRANT)
    logger.info(
        "Access granted. patient_id=%s hospital_id=%s expires_at=%s",
        patient.id, hospital_id, expires_at,
    )
    return permission


def respond_to_request(db: Session, patient: Principal, hospital_id: str, approve: bool, now: datetime = None) -> AccessPermission:
    """
    Patient answers a pending request.
    The update only matches a row still in status=pending; matching nothing
    raises Conflict, which is also what a second answer to the same request
    gets.
    """
    _require_role(patient, RoleEnum.patient, "respond to access requests")
    now = now or utcnow()
    values = {
        AccessPermission.status: AccessStatus.approved if approve else AccessStatus.rejected,
        AccessPermission.updated_at: now,
    }
    if approve:
        values[AccessPermission.granted_at] = now

    matched = (
        db.query(AccessPermission)
        .filter(
            AccessPermission.patient_id == patient.id,
            AccessPermission.hospital_id == hospital_id,
            AccessPermission.status == AccessStatus.pending,
        )
        .update(values, synchronize_session=False)
    )
    db.commit()
    if matched == 0:
        raise Conflict("There is no pending access request from this hospital.")

    permission = status_for(db, patient.id, hospital_id)
    db.refresh(permission)
    log_access(
        db, patient.id, hospital_id,
        "Approved access request" if approve else "Rejected access request",
        AccessType.APPROVE if approve else AccessType.REJECT,
    )
    logger.info(
        "Access request answered. patient_id=%s hospital_id=%s status=%s",
        patient.id, hospital_id, permission.status.value,
    )
    return permission


def revoke_access(db: Session, patient: Principal, hospital_id: str, now: datetime = None) -> Optional[AccessPermission]:
    """
    Patient withdraws access from any state. Revoked and rejected are the
    same state afterwards. With no row for the pair there is nothing to
    withdraw: nothing is written and None is returned.
    """
    _require_role(patient, RoleEnum.patient, "revoke access")
    now = now or utcnow()
    permission = status_for(db, patient.id, hospital_id)
    if permission is None:
        logger.info("Revoke with no permission row. patient_id=%s hospital_id=%s", patient.id, hospital_id)
        return None

    permission.status = AccessStatus.rejected
    permission.updated_at = now
    db.commit()
    db.refresh(permission)

    log_access(db, patient.id, hospital_id, "Revoked access", AccessType.REVOKE)
    logger.info("Access revoked. patient_id=%s hospital_id=%s", patient.id, hospital_id)
    return permission


# ===========================================================================
# QUERIES
# ===========================================================================

def status_for(db: Session, patient_id: str, hospital_id: str) -> Optional[AccessPermission]:
    """The pair's row, or None when the two have no relationship yet."""
    return (
        db.query(AccessPermission)
        .filter(
            AccessPermission.patient_id == patient_id,
            AccessPermission.hospital_id == hospital_id,
        )
        .first()
    )


def pending_for_patient(db: Session, patient: Principal) -> list[AccessPermission]:
    _require_role(patient, RoleEnum.patient, "view pending access requests")
    return (
        db.query(AccessPermission)
        .filter(
            AccessPermission.patient_id == patient.id,
            AccessPermission.status == AccessStatus.pending,
        )
        .order_by(AccessPermission.requested_at.desc())
        .all()
    )


def approved_for_patient(db: Session, patient: Principal, now: datetime = None) -> list[AccessPermission]:
    """Hospitals that can currently see this patient's records."""
    _require_role(patient, RoleEnum.patient, "view granted access")
    return (
        db.query(AccessPermission)
        .filter(AccessPermission.patient_id == patient.id, *_active_filter(now or utcnow()))
        .order_by(AccessPermission.granted_at.desc())
        .all()
    )


def approved_for_hospital(db: Session, hospital: Principal, now: datetime = None) -> list[AccessPermission]:
    """The hospital's patient roster."""
    _require_role(hospital, RoleEnum.hospital, "view its patient roster")
    return (
        db.query(AccessPermission)
        .filter(AccessPermission.hospital_id == hospital.id, *_active_filter(now or utcnow()))
        .order_by(AccessPermission.granted_at.desc())
        .all()
    )


def requests_for_hospital(db: Session, hospital: Principal) -> list[AccessPermission]:
    """Every permission row the hospital holds, whatever its status. Newest request first; direct grants (never requested) last."""
    _require_role(hospital, RoleEnum.hospital, "view its access requests")
    return (
        db.query(AccessPermission)
        .filter(AccessPermission.hospital_id == hospital.id)
        .order_by(AccessPermission.requested_at.is_(None), AccessPermission.requested_at.desc(), AccessPermission.granted_at.desc())
        .all()
    )


# ===========================================================================
# RECORD VISIBILITY GATE
# ===========================================================================

def require_record_access(db: Session, principal: Principal, patient_id: str, now: datetime = None) -> Optional[AccessPermission]:
    """
    Gate for every read of a patient's records.

    Patients pass for their own records only. Hospitals pass only with an
    active permission for the pair; a failed hospital check is written to the
    audit trail before AccessDenied is raised.
    Returns the permission that allowed a hospital through.
    """
    if principal is None:
        raise AccessDenied("Authentication required to view records.")
    if principal.is_patient:
        if principal.id != patient_id:
            raise AccessDenied("Patients can only access their own records.")
        return None

    permission = status_for(db, patient_id, principal.id)
    if not is_access_active(permission, now):
        expired = permission is not None and permission.status == AccessStatus.approved
        reason = "Access has expired." if expired else "Access to this patient's records has not been granted."
        if permission is not None or db.get(Patient, patient_id) is not None:
            log_access(db, patient_id, principal.id, f"Denied record access: {reason}", AccessType.DENIED)
        logger.warning(
            "Record access denied. patient_id=%s hospital_id=%s expired=%s",
            patient_id, principal.id, expired,
        )
        raise AccessDenied(reason)
    return permission

