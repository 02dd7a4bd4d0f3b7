from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from medportal.database.connection import get_db
from medportal.exceptions import AccessDenied, Unauthenticated
from medportal.models.user import RoleEnum
from medportal.services import identity
from medportal.services.profile_service import Principal, get_principal

bearer_scheme = HTTPBearer(auto_error=False)


def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Authentication token is missing.")
    return credentials.credentials


def get_current_principal(token: str = Depends(get_token), db: Session = Depends(get_db)) -> Principal:
    """Resolve the bearer token to the caller's Principal, provisioning the profile on first use."""
    auth_user_id = identity.current_principal_id(db, token)
    if not auth_user_id:
        raise Unauthenticated("Invalid or expired token.")
    return get_principal(db, auth_user_id)


def require_role(role: RoleEnum):
    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != role:
            raise AccessDenied(f"This endpoint is only available to {role.value} accounts.")
        return principal
    return checker
