"""
Buyer-side activity: viewed/favorite/visited markers, search history and
contact preferences.
"""

from enum import Enum

from sqlalchemy import Column, String, BigInteger, Integer, Text, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from khareedo.core.database import Base, new_id, utcnow


class PropertyActivityType(str, Enum):
    VIEWED = "viewed"
    FAVORITE = "favorite"
    VISITED = "visited"


class UserPropertyActivity(Base):
    """One row per (user, property, activity type)."""
    __tablename__ = "user_property_activities"
    __table_args__ = (
        UniqueConstraint("user_id", "property_id", "activity_type", name="uq_user_property_activity"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(String(32), ForeignKey("properties.id"), nullable=False, index=True)
    activity_type = Column(String(20), nullable=False, index=True)

    last_viewed_at = Column(DateTime)
    favorited_at = Column(DateTime)
    visited_at = Column(DateTime)
    visit_date = Column(DateTime)
    visit_time = Column(String(20))

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    property = relationship("Property")

    def __repr__(self):
        return f"<UserPropertyActivity {self.activity_type}: {self.user_id} -> {self.property_id}>"


class UserSearchHistory(Base):
    """Deduplicated per-user search tuple; repeats only touch updated_at."""
    __tablename__ = "user_search_history"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    search_query = Column(String(255), default="")
    location = Column(String(255))
    developer = Column(String(32))
    project_name = Column(String(255))
    budget_min = Column(BigInteger)
    budget_max = Column(BigInteger)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<UserSearchHistory {self.user_id}: {self.search_query!r}>"


class ContactPreferences(Base):
    __tablename__ = "contact_preferences"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, unique=True)

    preferred_locations = Column(JSON, default=list)  # [{name, latitude, longitude}]
    budget_min = Column(BigInteger)
    budget_max = Column(BigInteger)
    floor_min = Column(Integer)
    floor_max = Column(Integer)

    # Legacy fields
    full_address = Column(Text)
    email = Column(String(255))
    mobile = Column(String(20))
    pin_code = Column(String(10))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    preferred_house_type = Column(JSON, default=list)
    preferred_direction = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ContactPreferences {self.user_id}>"
