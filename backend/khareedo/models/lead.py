"""
Lead, LeadActivity and Notification models.

A Lead is the CRM record for one buyer's interest in a property. Its
timeline is an append-only list of LeadActivity rows; Notification rows are
the best-effort fan-out of those activities to the property's RM and agents.
"""

from enum import Enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship

from khareedo.core.database import Base, new_id, utcnow


class LeadStatus(str, Enum):
    """Union of the CRM pipeline values and the legacy terminal values.

    No transition graph is enforced: any value may follow any other.
    """
    LEAD_RECEIVED = "lead_received"
    INTERESTED = "interested"
    NO_RESPONSE_DNP = "no_response_dnp"
    UNABLE_TO_CONTACT = "unable_to_contact"
    CALL_BACK_SCHEDULED = "call_back_scheduled"
    DEMO_DISCUSSION_ONGOING = "demo_discussion_ongoing"
    SITE_VISIT_COORDINATION = "site_visit_coordination"
    SITE_VISIT_CONFIRMED = "site_visit_confirmed"
    COMMERCIAL_NEGOTIATION = "commercial_negotiation"
    DEAL_CLOSED = "deal_closed"
    DECLINED_INTEREST = "declined_interest"
    DOES_NOT_MEET_REQUIREMENTS = "does_not_meet_requirements"
    # Legacy
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

STATUS_LABELS = {
    LeadStatus.LEAD_RECEIVED: "Lead Received",
    LeadStatus.INTERESTED: "Interested",
    LeadStatus.NO_RESPONSE_DNP: "No Response - Do Not Pick (DNP)",
    LeadStatus.UNABLE_TO_CONTACT: "Unable to Contact",
    LeadStatus.CALL_BACK_SCHEDULED: "Call Back Scheduled",
    LeadStatus.DEMO_DISCUSSION_ONGOING: "Demo Discussion Ongoing",
    LeadStatus.SITE_VISIT_COORDINATION: "Site Visit Coordination in Progress",
    LeadStatus.SITE_VISIT_CONFIRMED: "Site Visit Confirmed",
    LeadStatus.COMMERCIAL_NEGOTIATION: "Commercial Negotiation",
    LeadStatus.DEAL_CLOSED: "Deal Closed",
    LeadStatus.DECLINED_INTEREST: "Declined Interest",
    LeadStatus.DOES_NOT_MEET_REQUIREMENTS: "Does Not Meet Requirements",
    LeadStatus.PENDING: "Pending",
    LeadStatus.APPROVED: "Approved",
    LeadStatus.REJECTED: "Rejected",
}


class VisitStatus(str, Enum):
    NOT_VISITED = "not_visited"
    VISITED = "visited"
    FOLLOW_UP = "follow_up"


class ActivityType(str, Enum):
    PHONE_CALL = "phone_call"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    VISIT = "visit"
    FOLLOW_UP = "follow_up"
    JOIN_GROUP = "join_group"
    STATUS_UPDATE = "status_update"
    REMARK_UPDATE = "remark_update"


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(String(32), ForeignKey("properties.id"), index=True)
    relationship_manager_id = Column(String(32), ForeignKey("users.id"), index=True)

    # Cached at creation/touch so later RM edits don't lose the contact used
    rm_email = Column(String(255))
    rm_phone = Column(String(20))

    message = Column(Text)
    remark = Column(Text)
    date = Column(DateTime, default=utcnow)
    schedule_date = Column(DateTime)
    visit_date = Column(DateTime)
    visit_time = Column(String(20))

    is_status = Column(Boolean, default=True, index=True)  # liveness flag, soft delete
    source = Column(String(50), default="origin")
    visit_status = Column(String(20), default=VisitStatus.NOT_VISITED.value)
    status = Column(String(40), default=LeadStatus.LEAD_RECEIVED.value, index=True)
    ip_address = Column(String(64))  # first creation only
    updated_by = Column(String(32), ForeignKey("users.id"))

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    property = relationship("Property")
    relationship_manager = relationship("User", foreign_keys=[relationship_manager_id])
    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        order_by="LeadActivity.activity_date.desc()",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Lead {self.id}: user={self.user_id} property={self.property_id} {self.status}>"


class LeadActivity(Base):
    """Immutable timeline entry for a lead."""
    __tablename__ = "lead_activities"

    id = Column(String(32), primary_key=True, default=new_id)
    lead_id = Column(String(32), ForeignKey("leads.id"), nullable=False, index=True)
    activity_type = Column(String(30), nullable=False, index=True)
    activity_date = Column(DateTime, default=utcnow, index=True)
    performed_by = Column(String(32), ForeignKey("users.id"))
    performed_by_name = Column(String(200))
    description = Column(Text)

    next_follow_up_date = Column(DateTime, index=True)
    old_status = Column(String(40))
    new_status = Column(String(40))
    visit_date = Column(DateTime)
    visit_time = Column(String(20))
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=utcnow)

    lead = relationship("Lead", back_populates="activities")

    def __repr__(self):
        return f"<LeadActivity {self.id}: {self.activity_type} on {self.lead_id}>"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)  # recipient
    lead_id = Column(String(32), ForeignKey("leads.id"), index=True)
    property_id = Column(String(32), ForeignKey("properties.id"))
    notification_type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    source = Column(String(50))
    source_id = Column(String(32))
    is_read = Column(Boolean, default=False, index=True)
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Notification {self.id}: {self.notification_type} -> {self.user_id}>"
