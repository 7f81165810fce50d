"""
Property model - a residential project listed by a developer.

Configurations, images, layouts and connectivity are embedded value objects
stored as JSON. Configurations may still hold the legacy flat shape or string
prices; services.inventory.normalize_configurations is the single adapter
that turns them into the canonical nested shape on read.
"""

import random
import re

from sqlalchemy import Column, String, Integer, BigInteger, Float, Text, DateTime, Boolean, JSON, ForeignKey, event
from sqlalchemy.orm import relationship

from khareedo.core.database import Base, new_id, utcnow

POSSESSION_STATUSES = ("Ready To Move", "Under Construction")


def generate_project_id(project_name: str) -> str:
    """Readable project code: name prefix plus a random 5-digit suffix."""
    prefix = re.sub(r"[^A-Za-z0-9]", "", project_name or "").upper()[:4] or "PROJ"
    return f"{prefix}-{random.randint(10000, 99999)}"


class Property(Base):
    __tablename__ = "properties"

    id = Column(String(32), primary_key=True, default=new_id)
    project_id = Column(String(20), unique=True, index=True)
    project_name = Column(String(255), nullable=False, index=True)
    developer_id = Column(String(32), ForeignKey("developers.id"), nullable=False, index=True)

    # Free text, loosely "area, city, state"
    location = Column(String(255), nullable=False, index=True)
    latitude = Column(Float)
    longitude = Column(Float)

    project_size = Column(String(100))
    land_parcel = Column(String(100))
    possession_date = Column(DateTime)
    possession_status = Column(String(50), nullable=False)  # Ready To Move, Under Construction

    # Canonical rupee integers
    developer_price = Column(BigInteger, default=0)
    offer_price = Column(BigInteger, default=0)
    group_price = Column(BigInteger)
    discount_percentage = Column(String(10), default="00.00%")  # cached on every write
    min_group_members = Column(Integer, default=0)

    rera_id = Column(String(100))
    rera_qr_image = Column(String(500))
    description = Column(Text)

    configurations = Column(JSON, default=list)  # [{unitType, subConfigurations: [...]}]
    images = Column(JSON, default=list)  # [{url, isCover, order}]
    highlights = Column(JSON, default=list)
    amenities = Column(JSON, default=list)
    layouts = Column(JSON, default=list)
    connectivity = Column(JSON, default=dict)  # {schools, hospitals, transportation, restaurants}

    relationship_manager_id = Column(String(32), ForeignKey("users.id"), index=True)
    lead_distribution_agents = Column(JSON, default=list)  # user ids

    is_status = Column(Boolean, default=True, index=True)  # live listing flag

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    developer = relationship("Developer")
    relationship_manager = relationship("User")

    def __repr__(self):
        return f"<Property {self.id}: {self.project_name} ({self.project_id})>"


@event.listens_for(Property, "before_insert")
def _assign_project_id(mapper, connection, target):
    if not target.project_id:
        target.project_id = generate_project_id(target.project_name)
