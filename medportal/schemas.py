"""
Pydantic request/response models for the HTTP layer.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from medportal.models.access_control import AccessStatus
from medportal.models.access_log import AccessType
from medportal.models.record import RecordType
from medportal.models.user import RoleEnum
from medportal.services.access_service import is_access_active


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    message: str


# =============================================================================
# Auth
# =============================================================================

class PatientSignUp(BaseModel):
    email: str
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


class HospitalSignUp(BaseModel):
    email: str
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    hospital_name: str = Field(min_length=1)
    license_number: str = Field(min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None
    specialty: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str
    role: Optional[RoleEnum] = None


class ConfirmEmailRequest(BaseModel):
    token: str


class PrincipalOut(ORMModel):
    id: str
    role: RoleEnum
    name: str
    email: str


class SignUpResponse(BaseModel):
    principal_id: str
    needs_confirmation: bool
    access_token: Optional[str] = None
    confirmation_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    principal: PrincipalOut


# =============================================================================
# Profiles
# =============================================================================

class PatientOut(ORMModel):
    id: str
    email: str
    name: str
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class HospitalOut(ORMModel):
    id: str
    email: str
    name: str
    hospital_name: str
    license_number: str
    phone: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None
    specialty: Optional[str] = None
    verified: bool
    created_at: datetime
    updated_at: datetime


class PatientUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


class HospitalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[str] = None
    hospital_name: Optional[str] = None
    license_number: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None
    specialty: Optional[str] = None


class PatientDirectoryOut(ORMModel):
    id: str
    name: str
    email: str


class HospitalDirectoryOut(ORMModel):
    id: str
    name: str
    hospital_name: str
    email: str
    department: Optional[str] = None
    specialty: Optional[str] = None


# =============================================================================
# Access permissions
# =============================================================================

class AccessRequestIn(BaseModel):
    patient_id: str
    expiry_days: Optional[int] = Field(default=None, gt=0)


class GrantAccessIn(BaseModel):
    hospital_id: str
    expiry_days: Optional[int] = Field(default=None, gt=0)


class RespondIn(BaseModel):
    hospital_id: str
    approve: bool


class RevokeIn(BaseModel):
    hospital_id: str


class AccessPermissionOut(ORMModel):
    id: str
    patient_id: str
    hospital_id: str
    status: AccessStatus
    requested_at: Optional[datetime] = None
    granted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    patient_name: str
    patient_email: str
    hospital_name: str
    hospital_contact_name: str
    hospital_email: str

    @computed_field
    @property
    def active(self) -> bool:
        return is_access_active(self)


class AccessStatusOut(BaseModel):
    permission: Optional[AccessPermissionOut] = None


class AccessLogOut(ORMModel):
    id: str
    patient_id: str
    hospital_id: Optional[str] = None
    record_id: Optional[str] = None
    action: str
    access_type: AccessType
    timestamp: datetime


# =============================================================================
# Records
# =============================================================================

class RecordOut(ORMModel):
    id: str
    patient_id: str
    record_type: RecordType
    title: str
    notes: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    uploaded_by_patient_id: Optional[str] = None
    uploaded_by_hospital_id: Optional[str] = None
    uploaded_by_role: str
    uploaded_by_name: str
    created_at: datetime
    updated_at: datetime


class NotesUpdate(BaseModel):
    notes: Optional[str] = None


class DownloadUrlOut(BaseModel):
    url: str
    expires_in: int
