from khareedo.models.user import User, Role
from khareedo.models.developer import Developer
from khareedo.models.property import Property
from khareedo.models.lead import Lead, LeadActivity, Notification, LeadStatus, VisitStatus, ActivityType
from khareedo.models.activity import UserPropertyActivity, UserSearchHistory, ContactPreferences, PropertyActivityType
from khareedo.models.otp import OTP, OTPType

__all__ = [
    "User",
    "Role",
    "Developer",
    "Property",
    "Lead",
    "LeadActivity",
    "Notification",
    "LeadStatus",
    "VisitStatus",
    "ActivityType",
    "UserPropertyActivity",
    "UserSearchHistory",
    "ContactPreferences",
    "PropertyActivityType",
    "OTP",
    "OTPType",
]
