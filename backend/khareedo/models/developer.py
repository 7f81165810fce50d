from sqlalchemy import Column, String, Integer, Text, DateTime, JSON

from khareedo.core.database import Base, new_id, utcnow


class Developer(Base):
    """A builder whose projects are listed as properties."""
    __tablename__ = "developers"

    id = Column(String(32), primary_key=True, default=new_id)
    developer_name = Column(String(200), nullable=False, index=True)
    description = Column(Text)
    city = Column(String(100), nullable=False)
    established_year = Column(Integer)
    total_projects = Column(Integer)
    website = Column(String(500))
    logo = Column(String(500), nullable=False)

    # {"name": ..., "mobile": ..., "email": ...}
    sourcing_manager = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Developer {self.id}: {self.developer_name}>"
