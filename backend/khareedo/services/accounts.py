"""
Account helpers shared by buyer and staff endpoints.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from khareedo.core.errors import ValidationError
from khareedo.models.activity import ContactPreferences, UserPropertyActivity, UserSearchHistory
from khareedo.models.lead import Lead, LeadActivity, Notification
from khareedo.models.otp import OTP
from khareedo.models.user import User

logger = logging.getLogger(__name__)

# Team accounts must use a company address
BLOCKED_EMAIL_DOMAINS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "msn.com", "aol.com", "icloud.com", "mail.com", "protonmail.com",
    "yandex.com", "zoho.com", "rediffmail.com", "inbox.com", "gmx.com",
})

PLACEHOLDER_EMAIL_DOMAIN = "milke-khareedo.com"


def placeholder_email(phone_number: str) -> str:
    return f"temp_{phone_number}@{PLACEHOLDER_EMAIL_DOMAIN}"


def split_name(full_name: Optional[str]) -> tuple[str, str]:
    """'Asha Rani Verma' -> ('Asha', 'Rani Verma')."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


def ensure_company_email(email: str) -> None:
    domain = email.rsplit("@", 1)[-1].lower()
    if domain in BLOCKED_EMAIL_DOMAINS:
        raise ValidationError("Personal email addresses are not allowed. Please use a company email")


def ensure_phone(phone_number: Optional[str], country_code: Optional[str] = None) -> None:
    if not phone_number or len(phone_number) != 10 or not phone_number.isdigit():
        raise ValidationError("Phone number must be exactly 10 digits")
    if country_code is not None and not country_code.startswith("+"):
        raise ValidationError("Country code must start with +")


def email_taken(db: Session, email: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(User.id).filter(User.email == email)
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def user_to_dict(user: User) -> dict:
    return {
        "_id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "name": user.name,
        "email": user.email,
        "phoneNumber": user.phone_number,
        "countryCode": user.country_code,
        "pincode": user.pincode,
        "city": user.city,
        "state": user.state,
        "country": user.country,
        "profileImage": user.profile_image,
        "role": {"_id": user.role.id, "name": user.role.name} if user.role else None,
        "isPhoneVerified": bool(user.is_phone_verified),
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def delete_account(db: Session, user: User) -> None:
    """Remove a user and the rows that only make sense with them."""
    user_id = user.id
    db.query(UserPropertyActivity).filter(UserPropertyActivity.user_id == user_id).delete(synchronize_session=False)
    db.query(UserSearchHistory).filter(UserSearchHistory.user_id == user_id).delete(synchronize_session=False)
    db.query(ContactPreferences).filter(ContactPreferences.user_id == user_id).delete(synchronize_session=False)
    db.query(OTP).filter(OTP.user_id == user_id).delete(synchronize_session=False)
    db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    # Staff references on other people's leads are kept, detached from the account
    db.query(Lead).filter(Lead.relationship_manager_id == user_id).update(
        {Lead.relationship_manager_id: None}, synchronize_session=False,
    )
    db.query(Lead).filter(Lead.updated_by == user_id).update({Lead.updated_by: None}, synchronize_session=False)
    db.query(LeadActivity).filter(LeadActivity.performed_by == user_id).update(
        {LeadActivity.performed_by: None}, synchronize_session=False,
    )
    own_leads = db.query(Lead).filter(Lead.user_id == user_id).all()
    if own_leads:
        db.query(Notification).filter(Notification.lead_id.in_([l.id for l in own_leads])).delete(
            synchronize_session=False,
        )
    for lead in own_leads:
        db.delete(lead)
    db.delete(user)
    db.commit()
    logger.info(f"Deleted account {user_id}")
