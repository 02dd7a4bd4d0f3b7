"""
Principal resolution and profile management.

``get_principal`` is the self-healing read: an authenticated account whose
patient/hospital profile row is missing gets one provisioned from its
sign-up metadata on first access.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medportal.config import settings
from medportal.exceptions import AccessDenied, InvalidRequest, NotFound
from medportal.models.user import PROFILE_MODELS, AuthUser, Hospital, Patient, RoleEnum
from medportal.services import identity

logger = logging.getLogger(__name__)

PATIENT_PROFILE_FIELDS = {
    "name", "email", "phone", "date_of_birth", "address",
    "emergency_contact_name", "emergency_contact_phone",
}
HOSPITAL_PROFILE_FIELDS = {
    "name", "email", "hospital_name", "license_number", "phone",
    "address", "department", "specialty",
}
EDITABLE_FIELDS = {
    RoleEnum.patient: PATIENT_PROFILE_FIELDS,
    RoleEnum.hospital: HOSPITAL_PROFILE_FIELDS,
}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, passed explicitly into every access-control operation."""
    id: str            # patients.id or hospitals.id
    role: RoleEnum
    name: str
    email: str
    auth_user_id: Optional[str] = None

    @property
    def is_patient(self) -> bool:
        return self.role == RoleEnum.patient

    @property
    def is_hospital(self) -> bool:
        return self.role == RoleEnum.hospital


def principal_from_profile(profile: Union[Patient, Hospital]) -> Principal:
    role = RoleEnum.patient if isinstance(profile, Patient) else RoleEnum.hospital
    return Principal(
        id=profile.id,
        role=role,
        name=profile.name,
        email=profile.email,
        auth_user_id=profile.auth_user_id,
    )


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidRequest(f"Invalid date '{value}', expected YYYY-MM-DD.")


def _provision_profile(db: Session, user: AuthUser, role: RoleEnum) -> Union[Patient, Hospital]:
    metadata = user.user_metadata or {}
    if role == RoleEnum.patient:
        profile = Patient(
            auth_user_id=user.id,
            email=user.email,
            name=metadata.get("name") or user.email,
            phone=metadata.get("phone"),
            date_of_birth=_parse_date(metadata.get("date_of_birth")),
            address=metadata.get("address"),
            emergency_contact_name=metadata.get("emergency_contact_name"),
            emergency_contact_phone=metadata.get("emergency_contact_phone"),
        )
    else:
        profile = Hospital(
            auth_user_id=user.id,
            email=user.email,
            name=metadata.get("name") or user.email,
            hospital_name=metadata.get("hospital_name") or "Unknown Hospital",
            license_number=metadata.get("license_number") or f"TEMP_{user.id[:8]}",
            phone=metadata.get("phone"),
            address=metadata.get("address"),
            department=metadata.get("department"),
            specialty=metadata.get("specialty"),
            verified=settings.auto_verify_hospitals,
        )
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent first read provisioned it already
        db.rollback()
        return db.query(PROFILE_MODELS[role]).filter_by(auth_user_id=user.id).one()
    db.refresh(profile)
    logger.info("Profile provisioned. auth_user_id=%s role=%s profile_id=%s", user.id, role.value, profile.id)
    return profile


def get_principal(db: Session, auth_user_id: str) -> Principal:
    """Resolve an account to its typed profile, provisioning the profile row if absent."""
    user = db.get(AuthUser, auth_user_id)
    if not user:
        raise NotFound("Account not found.")

    for model in (Patient, Hospital):
        profile = db.query(model).filter(model.auth_user_id == auth_user_id).first()
        if profile:
            return principal_from_profile(profile)

    try:
        role = RoleEnum((user.user_metadata or {}).get("role"))
    except ValueError:
        raise NotFound("No profile exists for this account.")
    return principal_from_profile(_provision_profile(db, user, role))


def sign_in_as(db: Session, email: str, password: str, expected_role: RoleEnum = None):
    """Sign in and resolve the principal.

    With ``expected_role`` set, a principal of the other role is signed out
    again and refused.
    """
    result = identity.sign_in(db, email, password)
    principal = get_principal(db, result.principal_id)
    if expected_role is not None and principal.role != expected_role:
        identity.sign_out(db, result.access_token)
        other = "Hospital" if expected_role == RoleEnum.patient else "Patient"
        raise AccessDenied(
            f"This account is not registered as a {expected_role.value}. "
            f"Please use the {other} login."
        )
    return result, principal


def get_patient(db: Session, patient_id: str) -> Patient:
    patient = db.get(Patient, patient_id)
    if not patient:
        raise NotFound("Patient not found.")
    return patient


def get_hospital(db: Session, hospital_id: str) -> Hospital:
    hospital = db.get(Hospital, hospital_id)
    if not hospital:
        raise NotFound("Hospital not found.")
    return hospital


def get_profile(db: Session, principal: Principal) -> Union[Patient, Hospital]:
    if principal.is_patient:
        return get_patient(db, principal.id)
    return get_hospital(db, principal.id)


def update_profile(db: Session, principal: Principal, updates: dict) -> Union[Patient, Hospital]:
    """Apply a partial update. Identity fields (ids, auth user, verification) are never writable."""
    allowed = EDITABLE_FIELDS[principal.role]
    unknown = set(updates) - allowed
    if unknown:
        raise InvalidRequest(f"Fields not editable: {', '.join(sorted(unknown))}.")
    if not updates:
        raise InvalidRequest("No fields provided to update.")

    profile = get_profile(db, principal)
    for field, value in updates.items():
        if field == "date_of_birth":
            value = _parse_date(value)
        if field in {"name", "email", "hospital_name", "license_number"} and not value:
            raise InvalidRequest(f"{field} cannot be empty.")
        setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    logger.info("Profile updated. profile_id=%s fields=%s", profile.id, sorted(updates))
    return profile


def list_hospitals(db: Session, verified_only: bool = True) -> list[Hospital]:
    query = db.query(Hospital)
    if verified_only:
        query = query.filter(Hospital.verified.is_(True))
    return query.order_by(Hospital.hospital_name).all()


def search_patients(db: Session, principal: Principal, term: str = None, limit: int = 50) -> list[Patient]:
    """Patient directory for hospitals choosing whom to request access from."""
    if not principal.is_hospital:
        raise AccessDenied("Only hospitals can search the patient directory.")
    query = db.query(Patient)
    if term:
        like = f"%{term.strip()}%"
        query = query.filter(or_(Patient.name.ilike(like), Patient.email.ilike(like)))
    return query.order_by(Patient.name).limit(limit).all()
