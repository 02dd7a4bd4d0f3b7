"""
Identity provider.

Email/password accounts with role metadata, HS256 access tokens (PyJWT)
bound to ``auth_sessions`` rows so that sign-out takes effect, and optional
email confirmation. Nothing here knows about patient or hospital profiles;
``profile_service`` materializes those from the sign-up metadata.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from medportal.config import settings
from medportal.exceptions import Conflict, InvalidRequest, NotFound, Unauthenticated
from medportal.models.user import AuthSession, AuthUser, RoleEnum
from medportal.utils.clock import utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
ACCESS_TOKEN_TYPE = "access"
CONFIRM_TOKEN_TYPE = "confirm"


@dataclass
class SignUpResult:
    principal_id: str
    needs_confirmation: bool
    access_token: Optional[str] = None
    confirmation_token: Optional[str] = None


@dataclass
class SignInResult:
    principal_id: str
    access_token: str
    expires_at: datetime


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise InvalidRequest("A valid email address is required.")
    return email


def _clean_metadata(role_metadata: dict) -> dict:
    metadata = {k: v for k, v in (role_metadata or {}).items() if v is not None}
    try:
        role = RoleEnum(metadata.get("role"))
    except ValueError:
        raise InvalidRequest("role must be 'patient' or 'hospital'.")
    name = str(metadata.get("name") or "").strip()
    if not name:
        raise InvalidRequest("name is required.")
    metadata["role"] = role.value
    metadata["name"] = name
    if role == RoleEnum.hospital:
        # legacy sign-ups arrive without hospital details
        metadata.setdefault("hospital_name", "Unknown Hospital")
        metadata.setdefault("license_number", f"TEMP_{int(time.time() * 1000)}")
    return metadata


def _encode(payload: dict) -> str:
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def _decode(token: str, expected_type: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError:
        return None
    if payload.get("typ") != expected_type:
        return None
    return payload


def _open_session(db: Session, user: AuthUser, now: datetime) -> SignInResult:
    expires_at = now + timedelta(minutes=settings.access_token_expire_minutes)
    session = AuthSession(auth_user_id=user.id, created_at=now, expires_at=expires_at)
    db.add(session)
    db.commit()
    token = _encode({
        "sub": user.id,
        "jti": session.id,
        "role": user.user_metadata.get("role"),
        "typ": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": expires_at,
    })
    return SignInResult(principal_id=user.id, access_token=token, expires_at=expires_at)


def create_confirmation_token(user: AuthUser, now: datetime = None) -> str:
    now = now or utcnow()
    return _encode({
        "sub": user.id,
        "email": user.email,
        "typ": CONFIRM_TOKEN_TYPE,
        "exp": now + timedelta(hours=settings.confirmation_token_expire_hours),
    })


def sign_up(db: Session, email: str, password: str, role_metadata: dict, now: datetime = None) -> SignUpResult:
    """Create an account.

    When email confirmation is required no session is opened and the caller
    gets a confirmation token to deliver instead of an access token.
    """
    now = now or utcnow()
    email = _normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    metadata = _clean_metadata(role_metadata)

    if db.query(AuthUser).filter(AuthUser.email == email).first():
        raise Conflict("An account with this email already exists.")

    needs_confirmation = settings.require_email_confirmation
    user = AuthUser(
        email=email,
        password_hash=generate_password_hash(password),
        user_metadata=metadata,
        email_confirmed_at=None if needs_confirmation else now,
        created_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("An account with this email already exists.")

    logger.info("Account created. auth_user_id=%s role=%s", user.id, metadata["role"])

    if needs_confirmation:
        return SignUpResult(
            principal_id=user.id,
            needs_confirmation=True,
            confirmation_token=create_confirmation_token(user, now),
        )
    session = _open_session(db, user, now)
    return SignUpResult(principal_id=user.id, needs_confirmation=False, access_token=session.access_token)


def confirm_email(db: Session, confirmation_token: str, now: datetime = None) -> AuthUser:
    payload = _decode(confirmation_token, CONFIRM_TOKEN_TYPE)
    if not payload:
        raise InvalidRequest("Invalid or expired confirmation token.")
    user = db.get(AuthUser, payload.get("sub"))
    if not user or user.email != payload.get("email"):
        raise NotFound("Account not found.")
    if user.email_confirmed_at is None:
        user.email_confirmed_at = now or utcnow()
        db.commit()
        logger.info("Email confirmed. auth_user_id=%s", user.id)
    return user


def sign_in(db: Session, email: str, password: str, now: datetime = None) -> SignInResult:
    now = now or utcnow()
    user = db.query(AuthUser).filter(AuthUser.email == (email or "").strip().lower()).first()
    if not user or not check_password_hash(user.password_hash, password or ""):
        raise Unauthenticated("Invalid email or password.")
    if user.email_confirmed_at is None:
        raise Unauthenticated("Email address has not been confirmed.")
    result = _open_session(db, user, now)
    logger.info("Signed in. auth_user_id=%s", user.id)
    return result


def sign_out(db: Session, token: str, now: datetime = None) -> None:
    payload = _decode(token, ACCESS_TOKEN_TYPE)
    if not payload:
        raise Unauthenticated("Invalid or expired token.")
    session = db.get(AuthSession, payload.get("jti"))
    if session and session.revoked_at is None:
        session.revoked_at = now or utcnow()
        db.commit()
        logger.info("Signed out. auth_user_id=%s", session.auth_user_id)


def current_principal_id(db: Session, token: Optional[str], now: datetime = None) -> Optional[str]:
    """Return the account id behind an access token, or None when there is no live session."""
    if not token:
        return None
    payload = _decode(token, ACCESS_TOKEN_TYPE)
    if not payload:
        return None
    session = db.get(AuthSession, payload.get("jti"))
    now = now or utcnow()
    if (
        session is None
        or session.revoked_at is not None
        or session.expires_at <= now
        or session.auth_user_id != payload.get("sub")
    ):
        return None
    return session.auth_user_id
