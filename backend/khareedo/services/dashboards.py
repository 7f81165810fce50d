"""
Aggregates behind the admin and CRM dashboards.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from khareedo.core.database import utcnow
from khareedo.core.security import ROLE_AGENT, ROLE_PROJECT_MANAGER
from khareedo.models.developer import Developer
from khareedo.models.lead import Lead, LeadActivity, LeadStatus, VisitStatus, ActivityType
from khareedo.models.property import Property
from khareedo.models.user import Role, User
from khareedo.services.group_buy import progress_for_count
from khareedo.services.inventory import cover_image
from khareedo.services.leads import CONTACT_ACTIVITY_TYPES, format_phone, managed_property_ids
from khareedo.services.listings import joined_group_counts
from khareedo.services.pricing import format_price_short, normalize_price

logger = logging.getLogger(__name__)

BOOKED_STATUSES = (LeadStatus.APPROVED.value, LeadStatus.DEAL_CLOSED.value)
CONTACTED_VISIT_STATUSES = (VisitStatus.VISITED.value, VisitStatus.FOLLOW_UP.value)

DATE_RANGES = {
    "past_24_hours": timedelta(hours=24),
    "past_7_days": timedelta(days=7),
    "past_30_days": timedelta(days=30),
}
CRM_SORTS = ("newest_first", "oldest_first", "name_asc", "name_desc")

TOP_PROJECTS = 4
RECENT_LEADS = 10
SALES_TEAM_SIZE = 10


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _long_date(moment: Optional[datetime]) -> Optional[str]:
    """'5 March, 2025, 02:30 PM'."""
    if moment is None:
        return None
    return f"{moment.day} {moment.strftime('%B')}, {moment.year}, {moment.strftime('%I:%M %p')}"


def _source_label(lead: Lead) -> str:
    source = lead.source or "origin"
    if lead.property and lead.property.location:
        return f"{lead.property.location} - {source[:1].upper()}{source[1:]}."
    return source


def average_response_hours(db: Session, leads: list[Lead]) -> int:
    """Mean hours from lead creation to the first contact activity, rounded."""
    created = {lead.id: lead.created_at for lead in leads if lead.created_at}
    if not created:
        return 0
    rows = (
        db.query(LeadActivity.lead_id, func.min(LeadActivity.activity_date))
        .filter(LeadActivity.lead_id.in_(list(created)), LeadActivity.activity_type.in_(CONTACT_ACTIVITY_TYPES))
        .group_by(LeadActivity.lead_id)
        .all()
    )
    hours = []
    for lead_id, first_contact in rows:
        delta = (first_contact - created[lead_id]).total_seconds() / 3600
        if delta > 0:
            hours.append(delta)
    return int(round(sum(hours) / len(hours))) if hours else 0


# =============================================================================
# Admin dashboard
# =============================================================================

def _recent_lead_row(lead: Lead) -> dict:
    buyer = lead.user
    prop = lead.property
    amount = 0
    if prop is not None:
        amount = normalize_price(prop.developer_price) or normalize_price(prop.offer_price)
    return {
        "id": lead.id,
        "name": buyer.name if buyer and buyer.name else "N/A",
        "email": buyer.email if buyer else "N/A",
        "phone": format_phone(buyer.phone_number, buyer.country_code) if buyer else "N/A",
        "profileImage": buyer.profile_image if buyer else None,
        "projectName": prop.project_name if prop else "N/A",
        "amount": format_price_short(amount),
        "amountValue": amount,
        "createdAt": lead.created_at.isoformat() if lead.created_at else None,
    }


def top_projects(db: Session, now: datetime, limit: int = TOP_PROJECTS) -> list[dict]:
    since = now - timedelta(days=30)
    rows = (
        db.query(Lead.property_id, func.count(Lead.id).label("lead_count"))
        .filter(Lead.is_status.is_(True), Lead.property_id.isnot(None))
        .group_by(Lead.property_id)
        .order_by(func.count(Lead.id).desc())
        .limit(limit)
        .all()
    )
    if not rows:
        return []

    ids = [prop_id for prop_id, _ in rows]
    properties = {p.id: p for p in db.query(Property).filter(Property.id.in_(ids)).all()}
    recent = dict(
        db.query(Lead.property_id, func.count(Lead.id))
        .filter(Lead.is_status.is_(True), Lead.property_id.in_(ids), Lead.created_at >= since)
        .group_by(Lead.property_id)
        .all()
    )
    joined = joined_group_counts(db, ids)

    result = []
    for prop_id, lead_count in rows:
        prop = properties.get(prop_id)
        if prop is None:
            continue
        fresh = recent.get(prop_id, 0)
        progress = progress_for_count(prop.min_group_members, joined.get(prop_id, 0))
        result.append({
            "id": prop.id,
            "projectName": prop.project_name or "N/A",
            "image": cover_image(prop.images),
            "leadCount": lead_count,
            "newLeads": fresh,
            "newLeadsFormatted": f"{fresh} New Leads",
            "groupBuy": progress.to_dict(),
        })
    return result


def sales_team_performance(db: Session, limit: int = SALES_TEAM_SIZE) -> list[dict]:
    members = (
        db.query(User)
        .join(Role, User.role_id == Role.id)
        .filter(func.lower(Role.name).in_([ROLE_AGENT.lower(), ROLE_PROJECT_MANAGER.lower()]))
        .order_by(User.name)
        .limit(limit)
        .all()
    )
    result = []
    for member in members:
        owned = (
            db.query(Lead)
            .filter(Lead.is_status.is_(True),
                    or_(Lead.relationship_manager_id == member.id, Lead.updated_by == member.id))
            .all()
        )
        contacted = sum(1 for lead in owned if lead.visit_status in CONTACTED_VISIT_STATUSES)
        pct = int(round(contacted / len(owned) * 100)) if owned else 0
        result.append({
            "userId": member.id,
            "userName": member.name or "N/A",
            "role": member.role_name,
            "profileImage": member.profile_image,
            "totalLead": len(owned),
            "leadContacted": f"{pct}%",
            "leadContactedPercentage": pct,
            "responseTime": f"{average_response_hours(db, owned)}H",
        })
    return result


def admin_dashboard(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    month_start, month_end = _month_bounds(now)

    overview = {
        "totalDevelopers": db.query(func.count(Developer.id)).scalar(),
        "liveProjects": db.query(func.count(Property.id)).filter(Property.is_status.is_(True)).scalar(),
        "totalLeads": db.query(func.count(Lead.id)).filter(Lead.is_status.is_(True)).scalar(),
        "totalBookingsThisMonth": (
            db.query(func.count(Lead.id))
            .filter(
                Lead.is_status.is_(True),
                Lead.status.in_(BOOKED_STATUSES),
                Lead.updated_at >= month_start,
                Lead.updated_at < month_end,
            )
            .scalar()
        ),
    }

    recent = (
        db.query(Lead)
        .options(joinedload(Lead.user), joinedload(Lead.property))
        .filter(Lead.is_status.is_(True))
        .order_by(Lead.created_at.desc())
        .limit(RECENT_LEADS)
        .all()
    )

    logger.info(f"Admin dashboard: {overview}")
    return {
        "overview": overview,
        "recentLeads": [_recent_lead_row(lead) for lead in recent],
        "topPerformingProjects": top_projects(db, now),
        "salesTeamPerformance": sales_team_performance(db),
    }


# =============================================================================
# CRM dashboard
# =============================================================================

def _crm_lead_row(lead: Lead, moment: Optional[datetime] = None) -> dict:
    buyer = lead.user
    prop = lead.property
    moment = moment or lead.created_at or lead.date
    return {
        "_id": lead.id,
        "clientName": buyer.name if buyer and buyer.name else "N/A",
        "phoneNumber": format_phone(buyer.phone_number, buyer.country_code) if buyer else "N/A",
        "profileImage": buyer.profile_image if buyer else None,
        "projectName": prop.project_name if prop else "N/A",
        "location": prop.location if prop else "N/A",
        "date": _long_date(moment),
        "source": _source_label(lead),
        "visitStatus": lead.visit_status or VisitStatus.NOT_VISITED.value,
        "status": lead.status,
        "createdAt": lead.created_at.isoformat() if lead.created_at else None,
        "updatedAt": lead.updated_at.isoformat() if lead.updated_at else None,
    }


def crm_dashboard(db: Session, staff: User, date_range: str, sort_by: str, page: int, limit: int,
                  now: Optional[datetime] = None) -> tuple[dict, int]:
    """KPIs, today's follow-ups and a page of leads for the caller's properties."""
    now = now or utcnow()
    property_ids = managed_property_ids(db, staff)
    if not property_ids:
        empty = {
            "kpis": {"leadsReceived": 0, "leadsContacted": 0, "leadsContactedPercentage": 0, "responseTime": "0H"},
            "todaysFollowUps": [],
            "leads": [],
        }
        return empty, 0

    base = db.query(Lead).filter(Lead.is_status.is_(True), Lead.property_id.in_(property_ids))
    window = DATE_RANGES.get(date_range)
    if window is not None:
        base = base.filter(Lead.created_at >= now - window)

    in_range = base.all()
    contacted = [lead for lead in in_range if lead.visit_status in CONTACTED_VISIT_STATUSES]
    received = len(in_range)
    kpis = {
        "leadsReceived": received,
        "leadsContacted": len(contacted),
        "leadsContactedPercentage": int(round(len(contacted) / received * 100)) if received else 0,
        "responseTime": f"{average_response_hours(db, contacted)}H",
    }

    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    follow_ups = (
        db.query(LeadActivity)
        .join(Lead, LeadActivity.lead_id == Lead.id)
        .options(joinedload(LeadActivity.lead).joinedload(Lead.user),
                 joinedload(LeadActivity.lead).joinedload(Lead.property))
        .filter(
            LeadActivity.activity_type == ActivityType.FOLLOW_UP.value,
            LeadActivity.next_follow_up_date >= day_start,
            LeadActivity.next_follow_up_date < day_start + timedelta(days=1),
            Lead.is_status.is_(True),
            Lead.property_id.in_(property_ids),
        )
        .order_by(LeadActivity.next_follow_up_date.asc())
        .all()
    )
    todays = []
    for activity in follow_ups:
        row = _crm_lead_row(activity.lead, activity.next_follow_up_date)
        row["dueTime"] = activity.next_follow_up_date.strftime("%I:%M %p")
        todays.append(row)

    query = base.options(joinedload(Lead.user), joinedload(Lead.property))
    if sort_by in ("name_asc", "name_desc"):
        name = func.coalesce(User.name, "")
        query = query.outerjoin(User, Lead.user_id == User.id).order_by(
            name.asc() if sort_by == "name_asc" else name.desc()
        )
    elif sort_by == "oldest_first":
        query = query.order_by(Lead.created_at.asc())
    else:
        query = query.order_by(Lead.created_at.desc())
    page_rows = query.offset((page - 1) * limit).limit(limit).all()

    logger.info(f"CRM dashboard for {staff.id}: range={date_range} received={received} "
                f"contacted={len(contacted)} follow_ups={len(todays)}")
    return {
        "kpis": kpis,
        "todaysFollowUps": todays,
        "leads": [_crm_lead_row(lead) for lead in page_rows],
    }, received
