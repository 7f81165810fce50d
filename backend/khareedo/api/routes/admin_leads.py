"""
CRM lead workbench and staff notifications.

Every lead endpoint is scoped to what the caller may see: admins see all
leads, project managers and agents only those on properties they handle.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import Field
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from khareedo.api.deps import CamelModel, ensure_id, ok, paginate, parse_datetime, staff_account
from khareedo.core.database import get_db, utcnow
from khareedo.core.errors import NotFoundError, ValidationError
from khareedo.models.lead import ActivityType, Lead
from khareedo.models.user import User
from khareedo.services import exports, leads
from khareedo.services.notifications import grouped_notifications, mark_all_read

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-crm"])


# =============================================================================
# Request/Response Models
# =============================================================================

class ActivityRequest(CamelModel):
    activity_type: str
    description: Optional[str] = None
    next_follow_up_date: Optional[str] = None
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None


class StatusRequest(CamelModel):
    status: str
    remark: Optional[str] = None


class RemarkRequest(CamelModel):
    remark: str = Field(..., min_length=1, max_length=2000)


class FollowUpRequest(CamelModel):
    next_follow_up_date: str
    description: Optional[str] = None


class ContactActionRequest(CamelModel):
    description: Optional[str] = None
    message: Optional[str] = None


def _lead_query(db: Session):
    return db.query(Lead).options(
        joinedload(Lead.user),
        joinedload(Lead.property),
        joinedload(Lead.relationship_manager),
    )


def _scoped_lead(db: Session, lead_id: str, staff: User) -> Lead:
    """Load a lead the caller is allowed to see; otherwise 404."""
    ensure_id(lead_id, "lead ID")
    query = leads.scope_leads_for(db, _lead_query(db), staff)
    lead = query.filter(Lead.id == lead_id).first()
    if lead is None:
        raise NotFoundError("Lead not found")
    return lead


def _filtered_leads(db: Session, staff: User, search: Optional[str], status: Optional[str]):
    query = leads.scope_leads_for(db, _lead_query(db), staff).filter(Lead.is_status.is_(True))
    if status:
        query = query.filter(Lead.status == leads.parse_status(status).value)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.join(User, Lead.user_id == User.id).filter(or_(
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            User.phone_number.ilike(pattern),
        ))
    return query


# =============================================================================
# Lead list and detail
# =============================================================================

@router.get("/lead_list")
def lead_list(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    query = _filtered_leads(db, account, search, status)
    total = query.count()
    rows = query.order_by(Lead.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return ok(
        [leads.lead_to_dict(lead) for lead in rows],
        message="Leads fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/view_lead_list/{lead_id}")
def view_lead(lead_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    rm = lead.relationship_manager
    data = leads.lead_to_dict(lead)
    data.update({
        "relationshipManager": {
            "_id": rm.id,
            "name": rm.name,
            "email": rm.email,
            "phoneNumber": leads.format_phone(rm.phone_number, rm.country_code),
        } if rm else None,
        "buyerPhone": leads.format_phone(lead.user.phone_number, lead.user.country_code) if lead.user else "N/A",
        "nextFollowUp": leads.next_follow_up(db, lead),
        "activities": [leads.activity_to_dict(a) for a in leads.timeline(db, lead.id)],
    })
    return ok(data, message="Lead fetched")


@router.get("/lead_timeline/{lead_id}")
def lead_timeline(lead_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    return ok([leads.activity_to_dict(a) for a in leads.timeline(db, lead.id)], message="Timeline fetched")


@router.delete("/delete_lead_list/{lead_id}")
def delete_lead(lead_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    lead.is_status = False
    lead.updated_by = account.id
    db.commit()
    logger.info(f"Lead {lead.id} closed by {account.email}")
    return ok(message="Lead deleted successfully")


# =============================================================================
# Lead actions
# =============================================================================

@router.post("/lead_activity/{lead_id}")
def add_lead_activity(lead_id: str, body: ActivityRequest, account: User = Depends(staff_account),
                      db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    try:
        activity_type = ActivityType(body.activity_type)
    except ValueError:
        allowed = ", ".join(t.value for t in leads.MANUAL_ACTIVITY_TYPES)
        raise ValidationError(f"Invalid activity type '{body.activity_type}'. Allowed: {allowed}")

    activity = leads.add_activity(
        db, lead, account, activity_type,
        description=body.description,
        next_follow_up_date=parse_datetime(body.next_follow_up_date, "nextFollowUpDate", required=False),
        visit_date=parse_datetime(body.visit_date, "visitDate", required=False),
        visit_time=body.visit_time,
    )
    return ok(leads.activity_to_dict(activity), message="Activity added successfully")


@router.put("/update_lead_status/{lead_id}")
def update_lead_status(lead_id: str, body: StatusRequest, account: User = Depends(staff_account),
                       db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    activity, notified = leads.change_status(db, lead, body.status, account, remark=body.remark)
    return ok(
        {
            "lead": leads.lead_to_dict(lead),
            "activity": leads.activity_to_dict(activity),
            "notificationsSent": notified.delivered,
        },
        message="Lead status updated successfully",
    )


@router.put("/update_lead_remark/{lead_id}")
def update_lead_remark(lead_id: str, body: RemarkRequest, account: User = Depends(staff_account),
                       db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    activity = leads.update_remark(db, lead, body.remark.strip(), account)
    return ok(
        {"lead": leads.lead_to_dict(lead), "activity": leads.activity_to_dict(activity)},
        message="Remark updated successfully",
    )


@router.post("/schedule_follow_up/{lead_id}")
def schedule_follow_up(lead_id: str, body: FollowUpRequest, account: User = Depends(staff_account),
                       db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    follow_up_at = parse_datetime(body.next_follow_up_date, "nextFollowUpDate")
    if follow_up_at < utcnow():
        raise ValidationError("nextFollowUpDate must be in the future")
    activity = leads.add_activity(
        db, lead, account, ActivityType.FOLLOW_UP,
        description=body.description,
        next_follow_up_date=follow_up_at,
    )
    return ok(leads.activity_to_dict(activity), message="Follow-up scheduled successfully")


@router.post("/call_now/{lead_id}")
def call_now(lead_id: str, body: Optional[ContactActionRequest] = None, account: User = Depends(staff_account),
             db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    if not lead.user or not lead.user.phone_number:
        raise ValidationError("Lead has no phone number")
    activity = leads.add_activity(db, lead, account, ActivityType.PHONE_CALL,
                                  description=body.description if body else None)
    phone = f"{lead.user.country_code or '+91'}{lead.user.phone_number}"
    return ok(
        {"activity": leads.activity_to_dict(activity), "callLink": f"tel:{phone}"},
        message="Call logged successfully",
    )


@router.post("/send_whatsapp/{lead_id}")
def send_whatsapp(lead_id: str, body: Optional[ContactActionRequest] = None, account: User = Depends(staff_account),
                  db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    if not lead.user or not lead.user.phone_number:
        raise ValidationError("Lead has no phone number")

    project = lead.property.project_name if lead.property else "your enquiry"
    text = (body.message if body and body.message else
            f"Hi {lead.user.name or ''}, this is {account.name or 'the team'} from Milke Khareedo about {project}.")
    digits = f"{lead.user.country_code or '+91'}{lead.user.phone_number}".lstrip("+")
    activity = leads.add_activity(db, lead, account, ActivityType.WHATSAPP,
                                  description=body.description if body else None)
    return ok(
        {"activity": leads.activity_to_dict(activity), "whatsappLink": f"https://wa.me/{digits}?text={quote(text)}"},
        message="WhatsApp message logged successfully",
    )


# =============================================================================
# Export
# =============================================================================

def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export_leads_csv")
def export_leads_csv(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    rows = _filtered_leads(db, account, search, status).order_by(Lead.created_at.desc()).all()
    logger.info(f"{account.email} exported {len(rows)} lead(s)")
    return _csv_response(exports.leads_csv(rows), f"leads_{utcnow():%Y%m%d}.csv")


@router.get("/export_lead_csv/{lead_id}")
def export_lead_csv(lead_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    lead = _scoped_lead(db, lead_id, account)
    return _csv_response(exports.lead_detail_csv(lead, leads.timeline(db, lead.id)), f"lead_{lead.id}.csv")


# =============================================================================
# Notifications
# =============================================================================

@router.get("/notifications")
def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    data = grouped_notifications(db, account.id, page, limit)
    return ok(data, message="Notifications fetched", pagination=paginate(data["total"], page, limit))


@router.put("/notifications/mark_all_read")
def mark_notifications_read(account: User = Depends(staff_account), db: Session = Depends(get_db)):
    updated = mark_all_read(db, account.id)
    return ok({"updated": updated}, message="All notifications marked as read")
