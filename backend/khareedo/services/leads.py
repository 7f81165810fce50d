"""
Lead pipeline: one active lead per (buyer, property), an append-only
activity timeline and best-effort notifications.

Multi-step flows (find-or-create lead, append activity, notify) are not
wrapped in one transaction. Each step commits on its own and re-running a
flow is safe because it re-checks for an existing active lead first.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session, Query

from khareedo.core.database import utcnow
from khareedo.core.errors import ValidationError
from khareedo.core.security import (
    ADMIN_ROLES,
    ROLE_AGENT,
    ROLE_PROJECT_MANAGER,
    role_matches,
)
from khareedo.models.lead import (
    Lead,
    LeadActivity,
    LeadStatus,
    VisitStatus,
    ActivityType,
    STATUS_LABELS,
)
from khareedo.models.property import Property
from khareedo.models.user import User
from khareedo.services.notifications import notify_lead_event, NotifyResult

logger = logging.getLogger(__name__)

# Activity types a staff member may log by hand
MANUAL_ACTIVITY_TYPES = (
    ActivityType.PHONE_CALL,
    ActivityType.WHATSAPP,
    ActivityType.EMAIL,
    ActivityType.VISIT,
    ActivityType.FOLLOW_UP,
)

# First-contact activities used for response-time KPIs
CONTACT_ACTIVITY_TYPES = (
    ActivityType.PHONE_CALL.value,
    ActivityType.WHATSAPP.value,
    ActivityType.EMAIL.value,
    ActivityType.VISIT.value,
)


def parse_status(value: Optional[str]) -> LeadStatus:
    try:
        return LeadStatus((value or "").strip())
    except ValueError:
        allowed = ", ".join(s.value for s in LeadStatus)
        raise ValidationError(f"Invalid status '{value}'. Allowed: {allowed}")


def status_label(value: Optional[str]) -> str:
    try:
        return STATUS_LABELS[LeadStatus(value)]
    except ValueError:
        return value or ""


# =============================================================================
# Lead upsert
# =============================================================================

def find_active_lead(db: Session, user_id: str, property_id: str) -> Optional[Lead]:
    return (
        db.query(Lead)
        .filter(Lead.user_id == user_id, Lead.property_id == property_id, Lead.is_status.is_(True))
        .order_by(Lead.created_at.desc())
        .first()
    )


def _cache_rm_contact(lead: Lead, prop: Property) -> None:
    rm = prop.relationship_manager
    if rm is None:
        return
    lead.relationship_manager_id = rm.id
    lead.rm_email = rm.email
    lead.rm_phone = rm.phone_number


def upsert_active_lead(db: Session, buyer: User, prop: Property, ip_address: Optional[str] = None,
                       source: str = "origin", **fields) -> tuple[Lead, bool]:
    """
    Return the buyer's active lead on ``prop``, creating it if none exists.

    The IP address is stored only when the lead is created. RM contact is
    cached at creation and filled in later only if it was missing.
    """
    lead = find_active_lead(db, buyer.id, prop.id)
    created = lead is None
    if created:
        lead = Lead(
            user_id=buyer.id,
            property_id=prop.id,
            source=source,
            ip_address=ip_address,
            date=utcnow(),
            status=LeadStatus.LEAD_RECEIVED.value,
        )
        _cache_rm_contact(lead, prop)
        db.add(lead)
    elif not lead.rm_email and not lead.rm_phone:
        _cache_rm_contact(lead, prop)

    for key, value in fields.items():
        setattr(lead, key, value)
    lead.updated_by = buyer.id

    db.commit()
    db.refresh(lead)
    if created:
        logger.info(f"Lead {lead.id} created for user={buyer.id} property={prop.id} source={source}")
    return lead, created


# =============================================================================
# Activities
# =============================================================================

def record_activity(db: Session, lead: Lead, activity_type: ActivityType, actor: Optional[User],
                    description: str, **fields) -> LeadActivity:
    """Append one timeline entry. Activities are never updated afterwards."""
    metadata = fields.pop("metadata", None) or {}
    activity = LeadActivity(
        lead_id=lead.id,
        activity_type=activity_type.value,
        activity_date=utcnow(),
        performed_by=actor.id if actor else None,
        performed_by_name=actor.name if actor else None,
        description=description,
        metadata_=metadata,
        **fields,
    )
    db.add(activity)
    return activity


def _notification_text(activity_type: ActivityType, actor_name: str, lead: Lead,
                       description: str) -> tuple[str, str]:
    lead_name = lead.user.name if lead.user and lead.user.name else "lead"
    if activity_type == ActivityType.PHONE_CALL:
        return "Call Activity", f"Call By {actor_name}"
    if activity_type == ActivityType.WHATSAPP:
        return "WhatsApp Message", f"WhatsApp Message on {lead_name}"
    if activity_type == ActivityType.EMAIL:
        return "Email Activity", f"Email sent by {actor_name}"
    if activity_type == ActivityType.VISIT:
        return "Visit Activity", f"Visit scheduled by {actor_name}"
    if activity_type == ActivityType.FOLLOW_UP:
        return "Follow-up Reminder", description or f"Follow-up scheduled for {lead_name}"
    if activity_type == ActivityType.JOIN_GROUP:
        return "Group Joined", f"{lead_name} joined the group buy"
    return "Lead Update", description


def add_activity(db: Session, lead: Lead, actor: User, activity_type: ActivityType,
                 description: Optional[str] = None, next_follow_up_date: Optional[datetime] = None,
                 visit_date: Optional[datetime] = None, visit_time: Optional[str] = None) -> LeadActivity:
    """
    Log a staff activity against a lead.

    follow_up requires a next follow-up date and sets the lead's schedule date;
    visit marks the lead as visited.
    """
    if activity_type not in MANUAL_ACTIVITY_TYPES:
        allowed = ", ".join(t.value for t in MANUAL_ACTIVITY_TYPES)
        raise ValidationError(f"Invalid activity type '{activity_type.value}'. Allowed: {allowed}")
    if activity_type == ActivityType.FOLLOW_UP and next_follow_up_date is None:
        raise ValidationError("nextFollowUpDate is required for follow_up activity")

    actor_name = actor.name or actor.email
    description = description or _notification_text(activity_type, actor_name, lead, "")[1]

    activity = record_activity(
        db, lead, activity_type, actor, description,
        next_follow_up_date=next_follow_up_date,
        visit_date=visit_date,
        visit_time=visit_time,
    )
    if activity_type == ActivityType.FOLLOW_UP:
        lead.schedule_date = next_follow_up_date
        lead.visit_status = VisitStatus.FOLLOW_UP.value
    elif activity_type == ActivityType.VISIT:
        lead.visit_status = VisitStatus.VISITED.value
        if visit_date:
            lead.visit_date = visit_date
            lead.visit_time = visit_time
    lead.updated_by = actor.id
    db.commit()
    db.refresh(activity)

    title, message = _notification_text(activity_type, actor_name, lead, description)
    metadata = {"activityDescription": description}
    if next_follow_up_date:
        metadata["nextFollowUpDate"] = next_follow_up_date.isoformat()
    notify_lead_event(db, lead, activity_type.value, title, message,
                      source="lead_activity", source_id=activity.id, metadata=metadata)
    return activity


def change_status(db: Session, lead: Lead, new_status: str, actor: User,
                  remark: Optional[str] = None) -> tuple[LeadActivity, NotifyResult]:
    """Set any status from any other; log it and notify best effort."""
    status = parse_status(new_status)
    old_status = lead.status

    description = f"Status updated from {status_label(old_status)} to {status_label(status.value)}"
    if remark:
        description += f". Remark: {remark}"

    activity = record_activity(
        db, lead, ActivityType.STATUS_UPDATE, actor, description,
        old_status=old_status,
        new_status=status.value,
    )
    lead.status = status.value
    if remark:
        lead.remark = remark
    lead.updated_by = actor.id
    db.commit()
    db.refresh(activity)

    lead_name = lead.user.name if lead.user and lead.user.name else "lead"
    result = notify_lead_event(
        db, lead, ActivityType.STATUS_UPDATE.value, "Status Update",
        f"Status updated from {status_label(old_status)} to {status_label(status.value)} for {lead_name}",
        source="lead_status", source_id=activity.id,
        metadata={"oldStatus": old_status, "newStatus": status.value},
    )
    if not result.ok:
        logger.warning(f"Status change on lead {lead.id} saved without notifications")
    return activity, result


def update_remark(db: Session, lead: Lead, remark: str, actor: User) -> LeadActivity:
    old_remark = lead.remark
    activity = record_activity(
        db, lead, ActivityType.REMARK_UPDATE, actor, f"Remark updated: {remark}",
        metadata={"oldRemark": old_remark, "newRemark": remark},
    )
    lead.remark = remark
    lead.updated_by = actor.id
    db.commit()
    db.refresh(activity)

    notify_lead_event(
        db, lead, ActivityType.REMARK_UPDATE.value, "Remark Updated",
        f"Remark updated by {actor.name or actor.email}",
        source="lead_remark", source_id=activity.id,
    )
    return activity


def timeline(db: Session, lead_id: str) -> list[LeadActivity]:
    return (
        db.query(LeadActivity)
        .filter(LeadActivity.lead_id == lead_id)
        .order_by(LeadActivity.activity_date.desc())
        .all()
    )


def next_follow_up(db: Session, lead: Lead) -> Optional[dict]:
    """Latest scheduled follow-up with an overdue flag."""
    activity = (
        db.query(LeadActivity)
        .filter(
            LeadActivity.lead_id == lead.id,
            LeadActivity.activity_type == ActivityType.FOLLOW_UP.value,
            LeadActivity.next_follow_up_date.isnot(None),
        )
        .order_by(LeadActivity.activity_date.desc())
        .first()
    )
    if activity is None:
        return None
    overdue = activity.next_follow_up_date < utcnow()
    return {
        "date": activity.next_follow_up_date.isoformat(),
        "description": activity.description,
        "isOverdue": overdue,
        "warning": "Follow-up is overdue" if overdue else None,
    }


# =============================================================================
# Buyer flows
# =============================================================================

def join_group(db: Session, buyer: User, prop: Property,
               ip_address: Optional[str] = None) -> tuple[Lead, bool]:
    """
    Add the buyer to the property's group buy.

    Returns (lead, newly_joined). Joining twice keeps one lead and one
    join_group activity.
    """
    lead, _ = upsert_active_lead(db, buyer, prop, ip_address=ip_address, source="join_group")
    already = (
        db.query(LeadActivity.id)
        .filter(LeadActivity.lead_id == lead.id, LeadActivity.activity_type == ActivityType.JOIN_GROUP.value)
        .first()
    )
    if already:
        return lead, False

    buyer_name = buyer.name or buyer.email
    activity = record_activity(
        db, lead, ActivityType.JOIN_GROUP, buyer, f"{buyer_name} joined the group for {prop.project_name}",
    )
    db.commit()
    db.refresh(activity)

    title, message = _notification_text(ActivityType.JOIN_GROUP, buyer_name, lead, "")
    notify_lead_event(db, lead, ActivityType.JOIN_GROUP.value, title, message,
                      source="join_group", source_id=activity.id)
    return lead, True


def register_visit(db: Session, buyer: User, prop: Property, visit_date: datetime,
                   visit_time: Optional[str], ip_address: Optional[str] = None) -> tuple[Lead, bool]:
    """Create or refresh the buyer's lead for a scheduled site visit."""
    lead, created = upsert_active_lead(
        db, buyer, prop,
        ip_address=ip_address,
        source="visit",
        visit_status=VisitStatus.VISITED.value,
        visit_date=visit_date,
        visit_time=visit_time,
    )
    buyer_name = buyer.name or buyer.email
    activity = record_activity(
        db, lead, ActivityType.VISIT, buyer,
        f"Site visit scheduled for {visit_date.date().isoformat()}" + (f" at {visit_time}" if visit_time else ""),
        visit_date=visit_date,
        visit_time=visit_time,
    )
    db.commit()
    db.refresh(activity)

    title, message = _notification_text(ActivityType.VISIT, buyer_name, lead, "")
    notify_lead_event(db, lead, ActivityType.VISIT.value, title, message,
                      source="property_visit", source_id=activity.id,
                      metadata={"visitDate": visit_date.isoformat(), "visitTime": visit_time})
    return lead, created


# =============================================================================
# Visibility
# =============================================================================

def managed_property_ids(db: Session, staff: User) -> list[str]:
    """
    Properties where the staff member is RM or a distribution agent.

    The agent list is a JSON column, so SQL narrows rows by a substring match
    on its text form and membership is confirmed on the fetched list.
    """
    rows = db.query(
        Property.id, Property.relationship_manager_id, Property.lead_distribution_agents
    ).filter(or_(
        Property.relationship_manager_id == staff.id,
        cast(Property.lead_distribution_agents, String).contains(staff.id),
    )).all()
    return [
        prop_id for prop_id, rm_id, agents in rows
        if rm_id == staff.id or staff.id in (agents or [])
    ]


def scope_leads_for(db: Session, query: Query, staff: User) -> Query:
    """
    Restrict a Lead query to what the staff member may see.

    Admins see everything; project managers see leads on their properties or
    where they are the RM; agents see leads on properties they are assigned to.
    Any other staff role is unrestricted.
    """
    role_name = staff.role_name
    if role_matches(role_name, *ADMIN_ROLES):
        return query

    if role_matches(role_name, ROLE_PROJECT_MANAGER):
        property_ids = managed_property_ids(db, staff)
        conditions = [Lead.relationship_manager_id == staff.id]
        if property_ids:
            conditions.append(Lead.property_id.in_(property_ids))
        return query.filter(or_(*conditions))

    if role_matches(role_name, ROLE_AGENT):
        property_ids = managed_property_ids(db, staff)
        if not property_ids:
            return query.filter(Lead.id.is_(None))
        return query.filter(Lead.property_id.in_(property_ids))

    return query


# =============================================================================
# Serialization
# =============================================================================

def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def format_phone(phone: Optional[str], country_code: Optional[str] = "+91") -> str:
    """'+91 987 654 3210' for 10-digit numbers."""
    if not phone:
        return "N/A"
    digits = "".join(phone.split())
    code = country_code or "+91"
    if len(digits) == 10:
        return f"{code} {digits[:3]} {digits[3:6]} {digits[6:]}"
    return f"{code} {phone}"


def lead_to_dict(lead: Lead) -> dict:
    buyer = lead.user
    prop = lead.property
    return {
        "_id": lead.id,
        "user": {
            "_id": buyer.id,
            "name": buyer.name,
            "email": buyer.email,
            "phoneNumber": buyer.phone_number,
            "countryCode": buyer.country_code,
            "profileImage": buyer.profile_image,
        } if buyer else None,
        "property": {
            "_id": prop.id,
            "projectName": prop.project_name,
            "projectId": prop.project_id,
            "location": prop.location,
        } if prop else None,
        "relationshipManagerId": lead.relationship_manager_id,
        "rmEmail": lead.rm_email,
        "rmPhone": lead.rm_phone,
        "message": lead.message,
        "remark": lead.remark,
        "date": _iso(lead.date),
        "scheduleDate": _iso(lead.schedule_date),
        "visitDate": _iso(lead.visit_date),
        "visitTime": lead.visit_time,
        "isStatus": bool(lead.is_status),
        "source": lead.source,
        "visitStatus": lead.visit_status,
        "status": lead.status,
        "statusLabel": status_label(lead.status),
        "ipAddress": lead.ip_address,
        "createdAt": _iso(lead.created_at),
        "updatedAt": _iso(lead.updated_at),
    }


def activity_to_dict(activity: LeadActivity) -> dict:
    return {
        "_id": activity.id,
        "leadId": activity.lead_id,
        "activityType": activity.activity_type,
        "activityDate": _iso(activity.activity_date),
        "performedBy": activity.performed_by,
        "performedByName": activity.performed_by_name,
        "description": activity.description,
        "nextFollowUpDate": _iso(activity.next_follow_up_date),
        "oldStatus": activity.old_status,
        "newStatus": activity.new_status,
        "visitDate": _iso(activity.visit_date),
        "visitTime": activity.visit_time,
        "metadata": activity.metadata_ or {},
    }
