"""
Staff API: admin sign-in and profile, roles and team accounts.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from khareedo.api.deps import (
    CamelModel,
    admin_account,
    get_current_account,
    load,
    ok,
    paginate,
    staff_account,
    super_admin_account,
)
from khareedo.core.database import get_db
from khareedo.core.errors import AuthError, ConflictError, ForbiddenError, ValidationError
from khareedo.core.security import (
    ROLE_AGENT,
    ROLE_PROJECT_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    create_access_token,
    hash_password,
    role_matches,
    verify_password,
)
from khareedo.models.property import Property
from khareedo.models.user import Role, User, normalize_permissions
from khareedo.services import accounts
from khareedo.services.roles import find_role, get_role_or_error
from khareedo.services.sms import TwilioSmsClient, get_sms_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Request/Response Models
# =============================================================================

class SuperAdminRegisterRequest(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone_number: Optional[str] = None
    country_code: str = "+91"


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    old_password: str
    new_password: str = Field(..., min_length=6)


class RoleRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    permissions: Optional[dict] = None


class RoleUpdateRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[dict] = None


class TeamUserRequest(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone_number: str
    country_code: str = "+91"
    role: str = Field(..., description="Role id")
    password: Optional[str] = Field(None, min_length=6)


class TeamUserUpdateRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    role: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)


def _role_to_dict(role: Role, user_count: Optional[int] = None) -> dict:
    data = {
        "_id": role.id,
        "name": role.name,
        "permissions": normalize_permissions(role.permissions),
        "createdAt": role.created_at.isoformat() if role.created_at else None,
    }
    if user_count is not None:
        data["userCount"] = user_count
    return data


# =============================================================================
# Authentication and profile
# =============================================================================

@router.post("/superadmin/register")
def register_super_admin(body: SuperAdminRegisterRequest, db: Session = Depends(get_db)):
    """Bootstrap the first Super Admin. Closed once one exists."""
    role = get_role_or_error(db, ROLE_SUPER_ADMIN)
    if db.query(User.id).filter(User.role_id == role.id).first() is not None:
        raise ConflictError("A Super Admin already exists")

    email = accounts.normalize_email(body.email)
    if accounts.email_taken(db, email):
        raise ConflictError("Email already registered")
    if body.phone_number:
        accounts.ensure_phone(body.phone_number, body.country_code)

    first, last = accounts.split_name(body.name)
    user = User(
        email=email,
        phone_number=body.phone_number,
        country_code=body.country_code,
        password_hash=hash_password(body.password),
        role_id=role.id,
    )
    user.set_name(first, last)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Super Admin registered: {user.email}")

    token = create_access_token(user.id, user.email, role.id, role.name)
    return ok({"token": token, "user": accounts.user_to_dict(user)}, message="Super Admin registered successfully")


@router.post("/admin_login")
def admin_login(body: LoginRequest, db: Session = Depends(get_db)):
    email = accounts.normalize_email(body.email)
    user = db.query(User).options(joinedload(User.role)).filter(User.email == email).first()
    if user is None or not verify_password(body.password, user.password_hash):
        raise AuthError("Invalid email or password")
    if not user.role or role_matches(user.role_name, ROLE_USER):
        raise ForbiddenError("This account does not have admin access")

    token = create_access_token(user.id, user.email, user.role_id, user.role_name)
    logger.info(f"Staff login: {user.email} ({user.role_name})")
    return ok(
        {
            "token": token,
            "user": accounts.user_to_dict(user),
            "permissions": normalize_permissions(user.role.permissions),
        },
        message="Login successful",
    )


@router.get("/profile")
def get_profile(account: User = Depends(staff_account)):
    data = accounts.user_to_dict(account)
    data["permissions"] = normalize_permissions(account.role.permissions if account.role else None)
    return ok(data, message="Profile fetched")


@router.put("/profile")
def update_profile(body: ProfileUpdateRequest, account: User = Depends(staff_account),
                   db: Session = Depends(get_db)):
    updates = body.model_dump(exclude_unset=True)
    if "phone_number" in updates:
        accounts.ensure_phone(updates["phone_number"])
        account.phone_number = updates.pop("phone_number")
    if "first_name" in updates or "last_name" in updates:
        account.set_name(
            updates.pop("first_name", account.first_name),
            updates.pop("last_name", account.last_name),
        )
    for key, value in updates.items():
        setattr(account, key, value)
    db.commit()
    db.refresh(account)
    return ok(accounts.user_to_dict(account), message="Profile updated successfully")


@router.put("/change_password")
def change_password(body: ChangePasswordRequest, account: User = Depends(get_current_account),
                    db: Session = Depends(get_db)):
    if not verify_password(body.old_password, account.password_hash):
        raise ValidationError("Old password is incorrect")
    if body.old_password == body.new_password:
        raise ValidationError("New password must be different from the old password")
    account.password_hash = hash_password(body.new_password)
    db.commit()
    return ok(message="Password changed successfully")


# =============================================================================
# Roles
# =============================================================================

@router.post("/add_role")
def add_role(body: RoleRequest, account: User = Depends(super_admin_account), db: Session = Depends(get_db)):
    if find_role(db, body.name) is not None:
        raise ConflictError("Role already exists")
    role = Role(name=body.name.strip(), permissions=normalize_permissions(body.permissions))
    db.add(role)
    db.commit()
    db.refresh(role)
    logger.info(f"Role '{role.name}' created by {account.email}")
    return ok(_role_to_dict(role), message="Role created successfully")


@router.get("/get_role")
def get_roles(account: User = Depends(admin_account), db: Session = Depends(get_db)):
    counts = dict(db.query(User.role_id, func.count(User.id)).group_by(User.role_id).all())
    roles = db.query(Role).order_by(Role.created_at.asc()).all()
    return ok([_role_to_dict(r, counts.get(r.id, 0)) for r in roles], message="Roles fetched")


@router.get("/get_role_by_id/{role_id}")
def get_role_by_id(role_id: str, account: User = Depends(admin_account), db: Session = Depends(get_db)):
    role = load(db, Role, role_id, "Role")
    return ok(_role_to_dict(role), message="Role fetched")


@router.put("/update_role/{role_id}")
def update_role(role_id: str, body: RoleUpdateRequest, account: User = Depends(super_admin_account),
                db: Session = Depends(get_db)):
    role = load(db, Role, role_id, "Role")
    if body.name is not None:
        existing = find_role(db, body.name)
        if existing is not None and existing.id != role.id:
            raise ConflictError("Role already exists")
        role.name = body.name.strip()
    if body.permissions is not None:
        role.permissions = normalize_permissions(body.permissions)
    db.commit()
    db.refresh(role)
    return ok(_role_to_dict(role), message="Role updated successfully")


@router.delete("/delete_role/{role_id}")
def delete_role(role_id: str, account: User = Depends(super_admin_account), db: Session = Depends(get_db)):
    role = load(db, Role, role_id, "Role")
    in_use = db.query(func.count(User.id)).filter(User.role_id == role.id).scalar()
    if in_use:
        raise ValidationError(f"Role is assigned to {in_use} user(s) and cannot be deleted")
    db.delete(role)
    db.commit()
    return ok(message="Role deleted successfully")


# =============================================================================
# Team accounts
# =============================================================================

def _staff_role(db: Session, role_id: str) -> Role:
    role = load(db, Role, role_id, "Role")
    if role_matches(role.name, ROLE_USER):
        raise ValidationError("Team members cannot be given the User role")
    return role


def _team_query(db: Session):
    return (
        db.query(User)
        .join(Role, User.role_id == Role.id)
        .options(joinedload(User.role))
        .filter(func.lower(Role.name) != ROLE_USER.lower())
    )


@router.post("/create_user")
async def create_team_user(body: TeamUserRequest, account: User = Depends(admin_account),
                           db: Session = Depends(get_db), sms: TwilioSmsClient = Depends(get_sms_client)):
    """Create a staff account and text its credentials (delivery is best effort)."""
    email = accounts.normalize_email(body.email)
    accounts.ensure_company_email(email)
    accounts.ensure_phone(body.phone_number, body.country_code)
    if accounts.email_taken(db, email):
        raise ConflictError("Email already registered")
    role = _staff_role(db, body.role)

    password = body.password or secrets.token_urlsafe(9)
    first, last = accounts.split_name(body.name)
    user = User(
        email=email,
        phone_number=body.phone_number,
        country_code=body.country_code,
        password_hash=hash_password(password),
        role_id=role.id,
    )
    user.set_name(first, last)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Team member {user.email} ({role.name}) created by {account.email}")

    result = await sms.send_credentials(user.phone_number, user.country_code, user.name, role.name, email, password)
    if not result.success:
        logger.warning(f"Credentials SMS failed for {user.email}: {result.error}")

    return ok(
        {**accounts.user_to_dict(user), "credentialsSent": result.success},
        message="User created successfully",
    )


@router.get("/team_users")
def list_team_users(
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None, description="Role id"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(admin_account),
    db: Session = Depends(get_db),
):
    query = _team_query(db)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern),
                                 User.phone_number.ilike(pattern)))
    if role:
        query = query.filter(User.role_id == role)
    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return ok(
        [accounts.user_to_dict(u) for u in users],
        message="Team users fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/team_users/{user_id}")
def get_team_user(user_id: str, account: User = Depends(admin_account), db: Session = Depends(get_db)):
    user = load(db, User, user_id, "User")
    return ok(accounts.user_to_dict(user), message="User fetched")


@router.put("/update_user/{user_id}")
def update_team_user(user_id: str, body: TeamUserUpdateRequest, account: User = Depends(admin_account),
                     db: Session = Depends(get_db)):
    user = load(db, User, user_id, "User")
    if body.email is not None:
        email = accounts.normalize_email(body.email)
        accounts.ensure_company_email(email)
        if accounts.email_taken(db, email, exclude_id=user.id):
            raise ConflictError("Email already registered")
        user.email = email
    if body.name is not None:
        user.set_name(*accounts.split_name(body.name))
    if body.phone_number is not None:
        accounts.ensure_phone(body.phone_number)
        user.phone_number = body.phone_number
    if body.role is not None:
        user.role_id = _staff_role(db, body.role).id
    if body.password:
        user.password_hash = hash_password(body.password)
    db.commit()
    db.refresh(user)
    return ok(accounts.user_to_dict(user), message="User updated successfully")


@router.delete("/delete_user/{user_id}")
def delete_team_user(user_id: str, account: User = Depends(admin_account), db: Session = Depends(get_db)):
    user = load(db, User, user_id, "User")
    if user.id == account.id:
        raise ValidationError("You cannot delete your own account")

    managed = db.query(func.count(Property.id)).filter(Property.relationship_manager_id == user.id).scalar()
    if managed:
        raise ValidationError(f"User is relationship manager for {managed} property(ies). Reassign them first")
    accounts.delete_account(db, user)
    return ok(message="User deleted successfully")


def _users_with_role(db: Session, role_name: str) -> list[dict]:
    role = get_role_or_error(db, role_name)
    users = db.query(User).filter(User.role_id == role.id).order_by(User.name).all()
    return [
        {"_id": u.id, "name": u.name, "email": u.email, "phoneNumber": u.phone_number}
        for u in users
    ]


@router.get("/agents")
def list_agents(account: User = Depends(staff_account), db: Session = Depends(get_db)):
    return ok(_users_with_role(db, ROLE_AGENT), message="Agents fetched")


@router.get("/relationship_managers")
def list_relationship_managers(account: User = Depends(staff_account), db: Session = Depends(get_db)):
    return ok(_users_with_role(db, ROLE_PROJECT_MANAGER), message="Relationship managers fetched")
