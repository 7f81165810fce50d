"""
User and Role models.

Buyers and staff share the users table; the role decides which surfaces an
account may reach. Roles carry a permission matrix over the admin resources.
"""

from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship

from khareedo.core.database import Base, new_id, utcnow

PERMISSION_RESOURCES = ("property", "developer", "crm", "team", "blog")
PERMISSION_ACTIONS = ("add", "edit", "view", "delete", "export")


def empty_permissions() -> dict:
    return {r: {a: False for a in PERMISSION_ACTIONS} for r in PERMISSION_RESOURCES}


def normalize_permissions(raw) -> dict:
    """Fill missing resource/action cells with False and drop unknown keys."""
    permissions = empty_permissions()
    if not isinstance(raw, dict):
        return permissions
    for resource in PERMISSION_RESOURCES:
        actions = raw.get(resource)
        if not isinstance(actions, dict):
            continue
        for action in PERMISSION_ACTIONS:
            permissions[resource][action] = bool(actions.get(action, False))
    return permissions


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True, index=True)
    permissions = Column(JSON, nullable=False, default=empty_permissions)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="role")

    def __repr__(self):
        return f"<Role {self.id}: {self.name}>"


class User(Base):
    """A buyer or a staff member (admin, RM, agent, CRM manager)."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)

    first_name = Column(String(100))
    last_name = Column(String(100))
    name = Column(String(200), index=True)  # derived from first + last
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone_number = Column(String(15), index=True)
    country_code = Column(String(6), default="+91")
    pincode = Column(String(10))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100), default="India")

    password_hash = Column(String(255))
    role_id = Column(String(32), ForeignKey("roles.id"), nullable=False, index=True)
    profile_image = Column(String(500))

    is_phone_verified = Column(Boolean, default=False)
    phone_verified_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    role = relationship("Role", back_populates="users")

    def set_name(self, first_name, last_name):
        self.first_name = (first_name or "").strip() or None
        self.last_name = (last_name or "").strip() or None
        self.name = " ".join(p for p in (self.first_name, self.last_name) if p) or None

    @property
    def role_name(self):
        return self.role.name if self.role else None

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
