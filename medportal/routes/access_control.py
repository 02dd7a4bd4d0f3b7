from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from medportal.database.connection import get_db
from medportal.models.user import RoleEnum
from medportal.schemas import (
    AccessLogOut, AccessPermissionOut, AccessRequestIn, AccessStatusOut,
    GrantAccessIn, RespondIn, RevokeIn,
)
from medportal.services import access_log_service, access_service
from medportal.services.auth_helpers import get_current_principal, require_role
from medportal.services.profile_service import Principal

router = APIRouter(prefix="/access", tags=["Access Control"])

patient_only = require_role(RoleEnum.patient)
hospital_only = require_role(RoleEnum.hospital)


# ── Hospital side ────────────────────────────────────────────────────

@router.post("/request", response_model=AccessPermissionOut)
def request_access(data: AccessRequestIn, db: Session = Depends(get_db), hospital: Principal = Depends(hospital_only)):
    return access_service.request_access(db, hospital, data.patient_id, data.expiry_days)


@router.get("/my-requests", response_model=List[AccessPermissionOut])
def get_my_requests(db: Session = Depends(get_db), hospital: Principal = Depends(hospital_only)):
    return access_service.requests_for_hospital(db, hospital)


@router.get("/authorized-patients", response_model=List[AccessPermissionOut])
def get_authorized_patients(db: Session = Depends(get_db), hospital: Principal = Depends(hospital_only)):
    return access_service.approved_for_hospital(db, hospital)


# ── Patient side ─────────────────────────────────────────────────────

@router.get("/requests", response_model=List[AccessPermissionOut])
def get_requests(db: Session = Depends(get_db), patient: Principal = Depends(patient_only)):
    return access_service.pending_for_patient(db, patient)


@router.post("/respond", response_model=AccessPermissionOut)
def respond_access(data: RespondIn, db: Session = Depends(get_db), patient: Principal = Depends(patient_only)):
    return access_service.respond_to_request(db, patient, data.hospital_id, data.approve)


@router.post("/grant", response_model=AccessPermissionOut)
def grant_access(data: GrantAccessIn, db: Session = Depends(get_db), patient: Principal = Depends(patient_only)):
    return access_service.grant_access(db, patient, data.hospital_id, data.expiry_days)


@router.post("/revoke", response_model=Optional[AccessPermissionOut])
def revoke_access(data: RevokeIn, db: Session = Depends(get_db), patient: Principal = Depends(patient_only)):
    return access_service.revoke_access(db, patient, data.hospital_id)


@router.get("/authorized", response_model=List[AccessPermissionOut])
def get_authorized_hospitals(db: Session = Depends(get_db), patient: Principal = Depends(patient_only)):
    return access_service.approved_for_patient(db, patient)


# ── Either side ──────────────────────────────────────────────────────

@router.get("/status/{counterpart_id}", response_model=AccessStatusOut)
def get_status(counterpart_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    """Permission between the caller and a patient (hospital caller) or a hospital (patient caller)."""
    if principal.is_hospital:
        permission = access_service.status_for(db, counterpart_id, principal.id)
    else:
        permission = access_service.status_for(db, principal.id, counterpart_id)
    if permission is None:
        return AccessStatusOut(permission=None)
    return AccessStatusOut(permission=AccessPermissionOut.model_validate(permission))


@router.get("/logs", response_model=List[AccessLogOut])
def get_access_logs(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    if principal.is_patient:
        return access_log_service.logs_for_patient(db, principal.id)
    return access_log_service.logs_for_hospital(db, principal.id)
