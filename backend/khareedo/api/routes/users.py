"""
Buyer account API: phone OTP login/registration and profile management.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import Field
from sqlalchemy.orm import Session

from khareedo.api.deps import CamelModel, get_current_account, load, ok
from khareedo.core.config import settings
from khareedo.core.database import get_db, utcnow
from khareedo.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from khareedo.core.security import ADMIN_ROLES, ROLE_USER, create_access_token, role_matches
from khareedo.models.otp import OTP, OTPType
from khareedo.models.user import User
from khareedo.services import accounts
from khareedo.services.roles import get_role_or_error
from khareedo.services.sms import TwilioSmsClient, generate_otp, get_sms_client
from khareedo.services.storage import PROFILE_IMAGES_FOLDER, S3Storage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


# =============================================================================
# Request/Response Models
# =============================================================================

class PhoneRequest(CamelModel):
    phone_number: str = Field(..., description="10-digit mobile number")
    country_code: str = "+91"


class VerifyOtpRequest(PhoneRequest):
    otp: str = Field(..., min_length=4, max_length=6)


def _find_by_phone(db: Session, phone_number: str, country_code: str) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.phone_number == phone_number, User.country_code == country_code)
        .first()
    )


async def _issue_otp(db: Session, sms: TwilioSmsClient, user: User, otp_type: OTPType) -> bool:
    """Invalidate earlier codes, store a fresh one and text it. Returns whether SMS went out."""
    (
        db.query(OTP)
        .filter(
            OTP.phone_number == user.phone_number,
            OTP.country_code == user.country_code,
            OTP.type == otp_type.value,
            OTP.is_verified.is_(False),
        )
        .delete(synchronize_session=False)
    )
    code = generate_otp()
    db.add(OTP(
        user_id=user.id,
        phone_number=user.phone_number,
        country_code=user.country_code,
        otp=code,
        type=otp_type.value,
        expires_at=utcnow() + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
    ))
    db.commit()

    result = await sms.send_otp(user.phone_number, user.country_code, code, otp_type.value)
    if not result.success:
        logger.warning(f"OTP SMS not delivered to {user.country_code}{user.phone_number}: {result.error}")
    return result.success


# =============================================================================
# OTP authentication
# =============================================================================

@router.post("/login-or-register")
async def login_or_register(body: PhoneRequest, db: Session = Depends(get_db),
                            sms: TwilioSmsClient = Depends(get_sms_client)):
    """
    Start phone sign-in.

    Known numbers get a login code. Unknown numbers get a placeholder account
    with the User role and a registration code.
    """
    accounts.ensure_phone(body.phone_number, body.country_code)

    user = _find_by_phone(db, body.phone_number, body.country_code)
    is_new = user is None
    if is_new:
        role = get_role_or_error(db, ROLE_USER)
        email = accounts.placeholder_email(body.phone_number)
        if accounts.email_taken(db, email):
            raise ConflictError("An account already uses this phone number")
        user = User(
            email=email,
            phone_number=body.phone_number,
            country_code=body.country_code,
            role_id=role.id,
        )
        user.set_name("User", None)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Created placeholder account {user.id} for {body.country_code}{body.phone_number}")

    otp_type = OTPType.REGISTRATION if is_new else OTPType.LOGIN
    sent = await _issue_otp(db, sms, user, otp_type)

    return ok(
        {
            "userId": user.id,
            "phoneNumber": user.phone_number,
            "countryCode": user.country_code,
            "isNewUser": is_new,
            "otpSent": sent,
        },
        message="OTP sent successfully" if sent else "Could not send OTP. Please try resending.",
    )


@router.post("/verify-otp")
def verify_otp(body: VerifyOtpRequest, db: Session = Depends(get_db)):
    accounts.ensure_phone(body.phone_number, body.country_code)

    record = (
        db.query(OTP)
        .filter(
            OTP.phone_number == body.phone_number,
            OTP.country_code == body.country_code,
            OTP.is_verified.is_(False),
            OTP.expires_at > utcnow(),
        )
        .order_by(OTP.created_at.desc())
        .first()
    )
    if record is None:
        raise ValidationError("OTP expired or not found. Please request a new one")
    if (record.attempts or 0) >= settings.OTP_MAX_ATTEMPTS:
        raise ValidationError("Too many attempts. Please request a new OTP")

    if record.otp != body.otp.strip():
        record.attempts = (record.attempts or 0) + 1
        db.commit()
        remaining = max(settings.OTP_MAX_ATTEMPTS - record.attempts, 0)
        raise ValidationError(f"Invalid OTP. {remaining} attempt(s) left")

    user = _find_by_phone(db, body.phone_number, body.country_code)
    if user is None:
        raise NotFoundError("User not found")

    now = utcnow()
    record.is_verified = True
    user.is_phone_verified = True
    user.phone_verified_at = now
    db.commit()
    db.refresh(user)

    token = create_access_token(user.id, user.email, user.role_id, user.role_name)
    return ok({"token": token, "user": accounts.user_to_dict(user)}, message="OTP verified successfully")


@router.post("/resend-otp")
async def resend_otp(body: PhoneRequest, db: Session = Depends(get_db),
                     sms: TwilioSmsClient = Depends(get_sms_client)):
    accounts.ensure_phone(body.phone_number, body.country_code)
    user = _find_by_phone(db, body.phone_number, body.country_code)
    if user is None:
        raise NotFoundError("User not found")

    otp_type = OTPType.LOGIN if user.is_phone_verified else OTPType.REGISTRATION
    sent = await _issue_otp(db, sms, user, otp_type)
    return ok(
        {"otpSent": sent},
        message="OTP resent successfully" if sent else "Could not send OTP. Please try again later.",
    )


# =============================================================================
# Profile
# =============================================================================

def _ensure_self_or_admin(account: User, user_id: str) -> None:
    if account.id != user_id and not role_matches(account.role_name, *ADMIN_ROLES):
        raise ForbiddenError("You can only manage your own account")


@router.get("/profile")
def get_profile(account: User = Depends(get_current_account)):
    return ok(accounts.user_to_dict(account), message="Profile fetched")


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    first_name: Optional[str] = Form(None, alias="firstName"),
    last_name: Optional[str] = Form(None, alias="lastName"),
    email: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    state: Optional[str] = Form(None),
    pincode: Optional[str] = Form(None),
    profile_image: Optional[UploadFile] = File(None, alias="profileImage"),
    account: User = Depends(get_current_account),
    db: Session = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
):
    _ensure_self_or_admin(account, user_id)
    user = load(db, User, user_id, "User")

    if email is not None:
        email = accounts.normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("Invalid email")
        if accounts.email_taken(db, email, exclude_id=user.id):
            raise ConflictError("Email already in use")
        user.email = email
    if first_name is not None or last_name is not None:
        user.set_name(
            first_name if first_name is not None else user.first_name,
            last_name if last_name is not None else user.last_name,
        )
    for field, value in (("city", city), ("state", state), ("pincode", pincode)):
        if value is not None:
            setattr(user, field, value.strip() or None)

    if profile_image is not None and profile_image.filename:
        data = await profile_image.read()
        user.profile_image = await run_in_threadpool(
            storage.upload, data, profile_image.content_type, PROFILE_IMAGES_FOLDER, profile_image.filename,
        )

    db.commit()
    db.refresh(user)
    return ok(accounts.user_to_dict(user), message="User updated successfully")


@router.delete("/{user_id}")
def delete_user(user_id: str, account: User = Depends(get_current_account), db: Session = Depends(get_db)):
    _ensure_self_or_admin(account, user_id)
    user = load(db, User, user_id, "User")
    accounts.delete_account(db, user)
    return ok(message="User deleted successfully")
