from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from medportal.config import settings
from medportal.database.connection import get_db
from medportal.models.user import RoleEnum
from medportal.schemas import (
    ConfirmEmailRequest, HospitalSignUp, LoginRequest, MessageOut,
    PatientSignUp, PrincipalOut, SignUpResponse, TokenResponse,
)
from medportal.services import identity
from medportal.services.auth_helpers import get_current_principal, get_token
from medportal.services.profile_service import Principal, get_principal, sign_in_as

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _sign_up(db: Session, email: str, password: str, metadata: dict) -> SignUpResponse:
    result = identity.sign_up(db, email, password, metadata)
    if result.access_token:
        # materialize the profile right away instead of on first request
        get_principal(db, result.principal_id)
    return SignUpResponse(
        principal_id=result.principal_id,
        needs_confirmation=result.needs_confirmation,
        access_token=result.access_token,
        # no mailer here; outside production the token is handed back directly
        confirmation_token=None if settings.is_production else result.confirmation_token,
    )


@router.post("/signup/patient", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
def signup_patient(data: PatientSignUp, db: Session = Depends(get_db)):
    metadata = data.model_dump(mode="json", exclude={"email", "password"})
    metadata["role"] = RoleEnum.patient.value
    return _sign_up(db, data.email, data.password, metadata)


@router.post("/signup/hospital", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
def signup_hospital(data: HospitalSignUp, db: Session = Depends(get_db)):
    metadata = data.model_dump(mode="json", exclude={"email", "password"})
    metadata["role"] = RoleEnum.hospital.value
    return _sign_up(db, data.email, data.password, metadata)


@router.post("/confirm", response_model=MessageOut)
def confirm(data: ConfirmEmailRequest, db: Session = Depends(get_db)):
    identity.confirm_email(db, data.token)
    return {"message": "Email confirmed. You can now sign in."}


@router.post("/login", response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    result, principal = sign_in_as(db, data.email, data.password, expected_role=data.role)
    return TokenResponse(
        access_token=result.access_token,
        expires_at=result.expires_at,
        principal=PrincipalOut.model_validate(principal),
    )


@router.post("/logout", response_model=MessageOut)
def logout(token: str = Depends(get_token), db: Session = Depends(get_db)):
    identity.sign_out(db, token)
    return {"message": "Signed out."}


@router.get("/me", response_model=PrincipalOut)
def me(principal: Principal = Depends(get_current_principal)):
    return principal
