"""
Token issuance, password hashing and the role-gated request dependencies.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Header, Request

from khareedo.core.config import settings
from khareedo.core.errors import AuthError, ForbiddenError

logger = logging.getLogger(__name__)


# =============================================================================
# Roles
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "Super Admin"
ROLE_PROJECT_MANAGER = "Project Manager"
ROLE_CRM_MANAGER = "CRM Manager"
ROLE_AGENT = "Agent"
ROLE_USER = "User"

ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)
STAFF_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_PROJECT_MANAGER, ROLE_CRM_MANAGER, ROLE_AGENT)


def role_matches(role_name: Optional[str], *allowed: str) -> bool:
    """Case-insensitive role-name check against an allow-list."""
    if not role_name:
        return False
    normalized = role_name.strip().lower()
    return any(normalized == a.lower() for a in allowed)


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash stored for the account
        logger.warning("Stored password hash could not be parsed")
        return False


# =============================================================================
# Tokens
# =============================================================================

@dataclass
class CurrentUser:
    """Decoded bearer-token claims attached to the request."""
    user_id: str
    email: Optional[str]
    role_id: Optional[str]
    role_name: Optional[str]

    def has_role(self, *allowed: str) -> bool:
        return role_matches(self.role_name, *allowed)

    @property
    def is_admin(self) -> bool:
        return self.has_role(*ADMIN_ROLES)


def create_access_token(user_id: str, email: Optional[str], role_id: Optional[str],
                        role_name: Optional[str]) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRES_MINUTES)
    payload = {
        "userId": user_id,
        "email": email,
        "roleId": role_id,
        "roleName": role_name,
        "exp": expires,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")

    if not payload.get("userId"):
        raise AuthError("Invalid token")

    return CurrentUser(
        user_id=payload["userId"],
        email=payload.get("email"),
        role_id=payload.get("roleId"),
        role_name=payload.get("roleName"),
    )


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_user(request: Request,
                           authorization: Optional[str] = Header(None)) -> CurrentUser:
    """Require a valid bearer token."""
    token = _bearer(authorization)
    if token is None:
        raise AuthError("No token provided")
    user = decode_access_token(token)
    request.state.user = user
    return user


async def get_optional_user(request: Request,
                            authorization: Optional[str] = Header(None)) -> Optional[CurrentUser]:
    """Decode a bearer token when present; anonymous requests pass through."""
    token = _bearer(authorization)
    if token is None:
        return None
    try:
        user = decode_access_token(token)
    except AuthError:
        return None
    request.state.user = user
    return user


def require_roles(*allowed: str):
    """Build a dependency that rejects callers whose role is not in ``allowed``."""
    async def _checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.has_role(*allowed):
            raise ForbiddenError(f"Access denied for role '{user.role_name}'")
        return user
    return _checker

