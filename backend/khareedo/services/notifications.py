"""
Notification fan-out to a property's relationship manager and agents.

Fan-out is best effort: a failure is logged and reported in the returned
NotifyResult but never raised, so it cannot fail the lead operation that
triggered it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from khareedo.core.database import utcnow, is_valid_id
from khareedo.models.lead import Lead, Notification

logger = logging.getLogger(__name__)


@dataclass
class NotifyResult:
    delivered: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def lead_recipients(lead: Lead) -> list[str]:
    """RM first, then distribution agents, without duplicates."""
    prop = lead.property
    if prop is None:
        return []
    candidates = [prop.relationship_manager_id, *(prop.lead_distribution_agents or [])]
    recipients = []
    for user_id in candidates:
        if is_valid_id(user_id) and user_id not in recipients:
            recipients.append(user_id)
    return recipients


def notify_lead_event(db: Session, lead: Lead, notification_type: str, title: str, message: str,
                      source: Optional[str] = None, source_id: Optional[str] = None,
                      metadata: Optional[dict] = None) -> NotifyResult:
    """Write one Notification per recipient of ``lead``. Never raises."""
    try:
        recipients = lead_recipients(lead)
        if not recipients:
            return NotifyResult(delivered=0)

        prop = lead.property
        payload = {
            "projectName": prop.project_name,
            "projectId": prop.project_id,
            "leadContactName": lead.user.name if lead.user else None,
            **(metadata or {}),
        }
        for recipient in recipients:
            db.add(Notification(
                user_id=recipient,
                lead_id=lead.id,
                property_id=prop.id,
                notification_type=notification_type,
                title=title,
                message=message,
                source=source,
                source_id=source_id,
                metadata_=payload,
            ))
        db.commit()
        return NotifyResult(delivered=len(recipients))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Notification fan-out failed for lead {lead.id} ({notification_type}): {e}")
        return NotifyResult(error=str(e))


# =============================================================================
# Listing helpers
# =============================================================================

def date_label(moment: datetime, now: Optional[datetime] = None) -> str:
    """'Today', 'Yesterday' or '05 Mar 2025'."""
    now = now or utcnow()
    day = moment.date()
    if day == now.date():
        return "Today"
    if day == (now - timedelta(days=1)).date():
        return "Yesterday"
    return moment.strftime("%d %b %Y")


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    seconds = max(int((now - moment).total_seconds()), 0)
    if seconds < 60:
        return "just now"
    for size, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


def notification_to_dict(n: Notification, now: Optional[datetime] = None) -> dict:
    return {
        "_id": n.id,
        "leadId": n.lead_id,
        "propertyId": n.property_id,
        "notificationType": n.notification_type,
        "title": n.title,
        "message": n.message,
        "source": n.source,
        "sourceId": n.source_id,
        "isRead": bool(n.is_read),
        "metadata": n.metadata_ or {},
        "createdAt": n.created_at.isoformat() if n.created_at else None,
        "timeAgo": time_ago(n.created_at, now) if n.created_at else None,
    }


def grouped_notifications(db: Session, user_id: str, page: int = 1, limit: int = 50) -> dict:
    """The user's notifications, newest first, grouped by day label."""
    query = db.query(Notification).filter(Notification.user_id == user_id)
    total = query.count()
    unread = query.filter(Notification.is_read.is_(False)).count()
    rows = (
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    now = utcnow()
    groups: dict[str, list] = {}
    for row in rows:
        label = date_label(row.created_at, now) if row.created_at else "Earlier"
        groups.setdefault(label, []).append(notification_to_dict(row, now))

    return {
        "groups": [{"label": label, "notifications": items} for label, items in groups.items()],
        "unreadCount": unread,
        "total": total,
    }


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.updated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated
