from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from dataclasses import dataclass
import uuid

from app.core.config import settings
from app.core.errors import AuthenticationError, AuthorizationError, ValidationError
from app.core.security import decode_access_token

security = HTTPBearer(auto_error=False)


@dataclass
class AdminIdentity:
    email: str

    @property
    def id(self) -> str:
        return self.email


def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AdminIdentity:
    """
    Authenticate the caller from the bearer token and require an admin email.
    """
    if credentials is None:
        raise AuthenticationError("Missing authentication credentials")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid authentication credentials")

    email: Optional[str] = payload.get("sub")
    if not email:
        raise AuthenticationError("Invalid authentication credentials")

    if email.lower() not in settings.get_admin_emails():
        raise AuthorizationError("Admin access required")

    return AdminIdentity(email=email.lower())


def parse_uuid(value: str, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field_name} format: {value}")
