"""
Shared helpers for route modules: the response envelope, pagination,
id validation and entity loaders.
"""

import math
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Request
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from khareedo.core.database import get_db, is_valid_id
from khareedo.core.errors import AuthError, NotFoundError, ValidationError
from khareedo.core.security import (
    ADMIN_ROLES,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    STAFF_ROLES,
    CurrentUser,
    get_current_user,
    require_roles,
)
from khareedo.models.user import User


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (snake_case also works)."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def ok(data=None, message: Optional[str] = None, pagination: Optional[dict] = None, **extra) -> dict:
    """Success envelope shared by every endpoint."""
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body


def paginate(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def ensure_id(value: Optional[str], label: str = "ID") -> str:
    """Reject malformed identifiers before they reach a query."""
    if not is_valid_id(value):
        raise ValidationError(f"Invalid {label}")
    return value


def load(db: Session, model, entity_id: Optional[str], label: str):
    """Fetch by primary key or raise NotFoundError("<label> not found")."""
    ensure_id(entity_id, f"{label.lower()} ID")
    row = db.get(model, entity_id)
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row


def parse_datetime(value: Optional[str], field: str, required: bool = True) -> Optional[datetime]:
    """ISO date or datetime from a request field; 400 when unreadable."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _account(db: Session, current: CurrentUser) -> User:
    user = db.get(User, current.user_id) if is_valid_id(current.user_id) else None
    if user is None:
        raise AuthError("User not found")
    return user


def get_current_account(current: CurrentUser = Depends(get_current_user),
                        db: Session = Depends(get_db)) -> User:
    """The authenticated User row; a token for a deleted account is rejected."""
    return _account(db, current)


def account_with_roles(*allowed: str):
    """Role-gated variant of get_current_account."""
    def _dependency(current: CurrentUser = Depends(require_roles(*allowed)),
                    db: Session = Depends(get_db)) -> User:
        return _account(db, current)
    return _dependency


admin_account = account_with_roles(*ADMIN_ROLES)
super_admin_account = account_with_roles(ROLE_SUPER_ADMIN)
staff_account = account_with_roles(*STAFF_ROLES)
buyer_account = account_with_roles(ROLE_USER, *ADMIN_ROLES)
