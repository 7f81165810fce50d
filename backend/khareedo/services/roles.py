"""
Role bootstrap and lookups.

Default roles are created by one idempotent seed run at startup (and by
scripts/seed_roles.py). Request handlers only look roles up.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from khareedo.core.errors import ValidationError
from khareedo.core.security import (
    ROLE_AGENT,
    ROLE_CRM_MANAGER,
    ROLE_PROJECT_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
)
from khareedo.models.user import Role, PERMISSION_ACTIONS, PERMISSION_RESOURCES

logger = logging.getLogger(__name__)


def _grant(resources: dict) -> dict:
    """Permission matrix from {resource: [actions]}; everything else False."""
    return {
        resource: {action: action in resources.get(resource, ()) for action in PERMISSION_ACTIONS}
        for resource in PERMISSION_RESOURCES
    }


ALL_ACTIONS = PERMISSION_ACTIONS

DEFAULT_ROLES = {
    ROLE_SUPER_ADMIN: _grant({r: ALL_ACTIONS for r in PERMISSION_RESOURCES}),
    ROLE_PROJECT_MANAGER: _grant({
        "property": ("add", "edit", "view", "export"),
        "developer": ("view",),
        "crm": ("add", "edit", "view", "export"),
    }),
    ROLE_CRM_MANAGER: _grant({
        "property": ("view",),
        "crm": ("add", "edit", "view", "delete", "export"),
        "team": ("view",),
    }),
    ROLE_AGENT: _grant({
        "property": ("view",),
        "crm": ("add", "edit", "view"),
    }),
    ROLE_USER: _grant({}),
}


def seed_roles(db: Session) -> dict:
    """Create any missing default role. Existing roles are left untouched."""
    existing = {name.lower() for (name,) in db.query(Role.name).all()}
    created = []
    for name, permissions in DEFAULT_ROLES.items():
        if name.lower() in existing:
            continue
        db.add(Role(name=name, permissions=permissions))
        created.append(name)

    if created:
        db.commit()
        logger.info(f"Seeded roles: {', '.join(created)}")
    return {"created": created, "existing": len(existing)}


def find_role(db: Session, name: str) -> Optional[Role]:
    return db.query(Role).filter(func.lower(Role.name) == name.strip().lower()).first()


def get_role_or_error(db: Session, name: str) -> Role:
    role = find_role(db, name)
    if role is None:
        raise ValidationError(f"Role '{name}' not found")
    return role
