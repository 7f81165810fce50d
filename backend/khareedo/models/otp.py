from enum import Enum

from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey

from khareedo.core.database import Base, new_id, utcnow


class OTPType(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    FORGOT_PASSWORD = "forgot_password"


class OTP(Base):
    """One-time password sent by SMS for phone login/registration."""
    __tablename__ = "otps"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), index=True)
    phone_number = Column(String(15), nullable=False, index=True)
    country_code = Column(String(6), nullable=False, default="+91")
    otp = Column(String(6), nullable=False)
    type = Column(String(20), nullable=False)
    is_verified = Column(Boolean, default=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<OTP {self.country_code}{self.phone_number} {self.type}>"
