"""
Buyer dashboard API: activity counts, my properties, visit updates, search
history and contact preferences.
"""

import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from khareedo.api.deps import (
    CamelModel,
    buyer_account,
    get_current_account,
    load,
    ok,
    paginate,
    parse_datetime,
)
from khareedo.api.routes import home
from khareedo.core.database import get_db, utcnow
from khareedo.core.errors import ForbiddenError, ValidationError
from khareedo.models.activity import (
    ContactPreferences,
    PropertyActivityType,
    UserPropertyActivity,
    UserSearchHistory,
)
from khareedo.models.lead import Lead
from khareedo.models.user import User
from khareedo.services import engagement, leads, listings
from khareedo.services.notifications import date_label
from khareedo.services.pricing import normalize_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user-dashboard", tags=["user-dashboard"])

# Same engagement operations as the home page
router.add_api_route("/property/view", home.add_viewed_property, methods=["POST"])
router.add_api_route("/property/favorite", home.toggle_favorite_property, methods=["POST"])
router.add_api_route("/property/visit", home.register_visit, methods=["POST"])


# =============================================================================
# Request/Response Models
# =============================================================================

class UpdateVisitRequest(CamelModel):
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None
    source: Optional[str] = None


class PreferredLocation(CamelModel):
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ContactPreferencesRequest(CamelModel):
    preferred_locations: Optional[List[PreferredLocation]] = None
    budget_min: Optional[Union[str, int]] = None
    budget_max: Optional[Union[str, int]] = None
    floor_min: Optional[int] = None
    floor_max: Optional[int] = None
    full_address: Optional[str] = None
    mobile: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    country: Optional[str] = None
    preferred_house_type: Optional[List[str]] = None
    preferred_direction: Optional[List[str]] = None

    class Config:
        extra = "forbid"


def _preferences_to_dict(prefs: ContactPreferences) -> dict:
    return {
        "_id": prefs.id,
        "userId": prefs.user_id,
        "preferredLocations": prefs.preferred_locations or [],
        "budgetMin": prefs.budget_min,
        "budgetMax": prefs.budget_max,
        "floorMin": prefs.floor_min,
        "floorMax": prefs.floor_max,
        "fullAddress": prefs.full_address,
        "email": prefs.email,
        "mobile": prefs.mobile,
        "city": prefs.city,
        "state": prefs.state,
        "pinCode": prefs.pin_code,
        "country": prefs.country,
        "preferredHouseType": prefs.preferred_house_type or [],
        "preferredDirection": prefs.preferred_direction or [],
        "updatedAt": prefs.updated_at.isoformat() if prefs.updated_at else None,
    }


def _activity_entry(db: Session, record: UserPropertyActivity) -> dict:
    card = listings.cards_for(db, [record.property])[0] if record.property else None
    return {
        "_id": record.id,
        "activityType": record.activity_type,
        "lastViewedAt": record.last_viewed_at.isoformat() if record.last_viewed_at else None,
        "favoritedAt": record.favorited_at.isoformat() if record.favorited_at else None,
        "visitedAt": record.visited_at.isoformat() if record.visited_at else None,
        "visitDate": record.visit_date.isoformat() if record.visit_date else None,
        "visitTime": record.visit_time,
        "property": card,
    }


def _my_activity(db: Session, user_id: str, activity_type: PropertyActivityType):
    return (
        db.query(UserPropertyActivity)
        .options(joinedload(UserPropertyActivity.property))
        .filter(
            UserPropertyActivity.user_id == user_id,
            UserPropertyActivity.activity_type == activity_type.value,
        )
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/dashboard")
def get_dashboard(account: User = Depends(buyer_account), db: Session = Depends(get_db)):
    return ok(engagement.activity_counts(db, account.id), message="Dashboard data fetched")


@router.put("/property/update_visit/{lead_id}")
def update_visit(lead_id: str, body: UpdateVisitRequest, account: User = Depends(get_current_account),
                 db: Session = Depends(get_db)):
    """Reschedule a visit on one of the caller's own leads."""
    lead = load(db, Lead, lead_id, "Lead")
    if lead.user_id != account.id:
        raise ForbiddenError("You can only update your own visits")

    visit_date = parse_datetime(body.visit_date, "visitDate", required=False)
    if visit_date:
        lead.visit_date = visit_date
    if body.visit_time is not None:
        lead.visit_time = body.visit_time
    if body.source:
        lead.source = body.source
    lead.updated_by = account.id
    db.commit()
    db.refresh(lead)

    if lead.property_id and visit_date:
        engagement.mark_visited(db, account.id, lead.property_id, visit_date, lead.visit_time)

    return ok(leads.lead_to_dict(lead), message="Lead updated successfully")


@router.get("/get_search")
def get_search_history(account: User = Depends(buyer_account), db: Session = Depends(get_db)):
    """Search history grouped by day, most recent first."""
    rows = (
        db.query(UserSearchHistory)
        .filter(UserSearchHistory.user_id == account.id)
        .order_by(UserSearchHistory.updated_at.desc())
        .all()
    )
    now = utcnow()
    grouped: dict[str, list] = {}
    for row in rows:
        stamp = row.updated_at or row.created_at
        grouped.setdefault(date_label(stamp, now), []).append({
            "_id": row.id,
            "searchQuery": row.search_query,
            "location": row.location,
            "developer": row.developer,
            "projectName": row.project_name,
            "budgetMin": row.budget_min,
            "budgetMax": row.budget_max,
            "searchedAt": stamp.isoformat(),
        })
    return ok(grouped, message="Search history fetched")


@router.post("/contact_preferences")
def save_contact_preferences(body: ContactPreferencesRequest, account: User = Depends(buyer_account),
                             db: Session = Depends(get_db)):
    """Create the caller's preferences on first save, update them afterwards."""
    budget_min = normalize_price(body.budget_min) if body.budget_min is not None else None
    budget_max = normalize_price(body.budget_max) if body.budget_max is not None else None
    if budget_min and budget_max and budget_min > budget_max:
        raise ValidationError("budgetMin cannot be greater than budgetMax")
    if body.floor_min is not None and body.floor_max is not None and body.floor_min > body.floor_max:
        raise ValidationError("floorMin cannot be greater than floorMax")

    prefs = db.query(ContactPreferences).filter(ContactPreferences.user_id == account.id).first()
    existing = prefs is not None
    if prefs is None:
        prefs = ContactPreferences(user_id=account.id)
        db.add(prefs)

    updates = body.model_dump(exclude_unset=True)
    if "preferred_locations" in updates:
        updates["preferred_locations"] = [loc.model_dump() for loc in body.preferred_locations or []]
    if "budget_min" in updates:
        updates["budget_min"] = budget_min
    if "budget_max" in updates:
        updates["budget_max"] = budget_max
    for key, value in updates.items():
        setattr(prefs, key, value)
    prefs.email = account.email

    db.commit()
    db.refresh(prefs)
    return ok(_preferences_to_dict(prefs), message="Preferences Updated" if existing else "Preferences Saved")


@router.get("/get_contact_preferences")
def get_contact_preferences(account: User = Depends(buyer_account), db: Session = Depends(get_db)):
    prefs = db.query(ContactPreferences).filter(ContactPreferences.user_id == account.id).first()
    return ok(_preferences_to_dict(prefs) if prefs else None, message="Preferences fetched")


@router.get("/my-properties/viewed")
def get_viewed_properties(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(buyer_account),
    db: Session = Depends(get_db),
):
    query = _my_activity(db, account.id, PropertyActivityType.VIEWED)
    total = query.count()
    rows = query.order_by(UserPropertyActivity.last_viewed_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return ok(
        [_activity_entry(db, r) for r in rows],
        message="Viewed properties fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/my-properties/favorited")
def get_favorited_properties(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(buyer_account),
    db: Session = Depends(get_db),
):
    query = _my_activity(db, account.id, PropertyActivityType.FAVORITE)
    total = query.count()
    rows = query.order_by(UserPropertyActivity.favorited_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return ok(
        [_activity_entry(db, r) for r in rows],
        message="Favorited properties fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/my-properties/visited")
def get_visited_properties(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(buyer_account),
    db: Session = Depends(get_db),
):
    """Visits split into upcoming (today onwards) and completed."""
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    offset = (page - 1) * limit

    upcoming_query = _my_activity(db, account.id, PropertyActivityType.VISITED).filter(
        UserPropertyActivity.visit_date >= today
    )
    completed_query = _my_activity(db, account.id, PropertyActivityType.VISITED).filter(
        UserPropertyActivity.visit_date < today
    )
    upcoming_total = upcoming_query.count()
    completed_total = completed_query.count()
    upcoming = upcoming_query.order_by(UserPropertyActivity.visit_date.asc()).offset(offset).limit(limit).all()
    completed = completed_query.order_by(UserPropertyActivity.visit_date.desc()).offset(offset).limit(limit).all()

    return ok(
        {
            "upcoming": [_activity_entry(db, r) for r in upcoming],
            "completed": [_activity_entry(db, r) for r in completed],
        },
        message="Visited properties fetched",
        pagination={
            "upcoming": paginate(upcoming_total, page, limit),
            "completed": paginate(completed_total, page, limit),
        },
    )
