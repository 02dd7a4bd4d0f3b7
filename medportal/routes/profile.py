from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medportal.database.connection import get_db
from medportal.exceptions import InvalidRequest
from medportal.models.user import RoleEnum
from medportal.schemas import (
    HospitalDirectoryOut, HospitalOut, HospitalUpdate,
    PatientDirectoryOut, PatientOut, PatientUpdate,
)
from medportal.services import profile_service
from medportal.services.auth_helpers import get_current_principal, require_role
from medportal.services.profile_service import Principal

router = APIRouter(prefix="/profile", tags=["Profile"])


def _serialize(principal: Principal, profile) -> dict:
    # schema picked by role; the two shapes overlap
    schema = PatientOut if principal.is_patient else HospitalOut
    return schema.model_validate(profile).model_dump(mode="json")


@router.get("/me", response_model=None)
def get_my_profile(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return _serialize(principal, profile_service.get_profile(db, principal))


@router.patch("/me", response_model=None)
def update_my_profile(
    updates: dict,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    schema = PatientUpdate if principal.is_patient else HospitalUpdate
    try:
        payload = schema.model_validate(updates).model_dump(exclude_unset=True)
    except ValueError as e:
        raise InvalidRequest(str(e))
    profile = profile_service.update_profile(db, principal, payload)
    return _serialize(principal, profile)


@router.get("/hospitals", response_model=List[HospitalDirectoryOut])
def list_hospitals(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return profile_service.list_hospitals(db)


@router.get("/patients", response_model=List[PatientDirectoryOut])
def search_patients(
    search: Optional[str] = Query(default=None, max_length=100),
    db: Session = Depends(get_db),
    hospital: Principal = Depends(require_role(RoleEnum.hospital)),
):
    return profile_service.search_patients(db, hospital, search)
