"""
Public home-page API.

Browsing (top visited, search, detail, compare, EMI) is open to anonymous
callers; an optional bearer token personalizes results. Engagement actions
(view, favorite, visit, join group) require a signed-in account.
"""

import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field, EmailStr
from sqlalchemy.orm import Session

from khareedo.api.deps import (
    CamelModel,
    client_ip,
    ensure_id,
    get_current_account,
    load,
    ok,
    paginate,
    parse_datetime,
)
from khareedo.core.database import get_db
from khareedo.core.errors import NotFoundError, ValidationError
from khareedo.core.security import CurrentUser, get_optional_user
from khareedo.models.lead import Lead
from khareedo.models.property import Property
from khareedo.models.user import User
from khareedo.services import engagement, leads, listings
from khareedo.services.group_buy import group_buy_progress
from khareedo.services.pricing import calculate_emi, normalize_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/home", tags=["home"])


# =============================================================================
# Request/Response Models
# =============================================================================

class PropertyActionRequest(CamelModel):
    property_id: str


class VisitRequest(CamelModel):
    property_id: str
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None


class CompareRequest(CamelModel):
    property_ids: List[str] = Field(..., description="2 to 4 property ids")


class EmiRequest(CamelModel):
    loan_amount: Union[str, float] = Field(..., description="Rupees, or a price string like '45 Lakh'")
    interest_rate: float = Field(..., ge=0, le=50, description="Annual rate in percent")
    tenure_years: Optional[float] = Field(None, gt=0, le=40)
    tenure_months: Optional[int] = Field(None, gt=0, le=480)


class ContactRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=2000)
    property_id: Optional[str] = None


def _active_property(db: Session, property_id: Optional[str]) -> Property:
    prop = load(db, Property, property_id, "Property")
    if not prop.is_status:
        raise NotFoundError("Property not found")
    return prop


# =============================================================================
# Browsing
# =============================================================================

@router.get("/getTopProperty")
def get_top_properties(
    developer: Optional[str] = Query(None, description="Developer id"),
    project_name: Optional[str] = Query(None, alias="projectName"),
    possession_status: Optional[str] = Query(None, alias="possessionStatus"),
    location: Optional[str] = Query(None),
    unit_type: Optional[str] = Query(None, alias="unitType"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Most-visited live properties, most visits first."""
    if developer:
        ensure_id(developer, "developer ID")
    filters = listings.ListingFilters(
        developer=developer,
        project_name=project_name,
        possession_status=possession_status,
        location=location,
        unit_type=unit_type,
    )
    items, total = listings.top_visited(db, filters, page, limit)
    return ok(
        items,
        message="Top visited properties fetched",
        pagination=paginate(total, page, limit),
        type="TOP_VISITED",
    )


@router.get("/properties")
def get_all_properties(
    search: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Live listing cards, newest first."""
    filters = listings.ListingFilters(search_query=search, location=location)
    items, total = listings.search_properties(db, filters, "newest", page, limit)
    return ok(items, message="Properties fetched", pagination=paginate(total, page, limit))


@router.get("/locations")
def get_locations(db: Session = Depends(get_db)):
    return ok(listings.locations(db), message="Locations fetched")


@router.get("/search-properties")
def search_properties(
    query: Optional[str] = Query(None, alias="searchQuery"),
    location: Optional[str] = Query(None),
    developer: Optional[str] = Query(None),
    project_name: Optional[str] = Query(None, alias="projectName"),
    possession_status: Optional[str] = Query(None, alias="possessionStatus"),
    unit_type: Optional[str] = Query(None, alias="unitType"),
    budget_min: Optional[str] = Query(None, alias="budgetMin"),
    budget_max: Optional[str] = Query(None, alias="budgetMax"),
    sort_by: str = Query("newest", alias="sortBy"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Filtered listing search.

    Budgets accept rupees or price strings ("50 Lakh", "1.2 Cr"). Signed-in
    searches are remembered in the user's search history.
    """
    if developer:
        ensure_id(developer, "developer ID")
    if sort_by not in listings.SORT_OPTIONS:
        raise ValidationError(f"sortBy must be one of: {', '.join(listings.SORT_OPTIONS)}")

    filters = listings.ListingFilters(
        search_query=query,
        location=location,
        developer=developer,
        project_name=project_name,
        possession_status=possession_status,
        unit_type=unit_type,
        budget_min=normalize_price(budget_min),
        budget_max=normalize_price(budget_max),
    )
    items, total = listings.search_properties(db, filters, sort_by, page, limit)

    if user is not None:
        engagement.record_search(
            db, user.user_id,
            search_query=query,
            location=location,
            developer=developer,
            project_name=project_name,
            budget_min=filters.budget_min or None,
            budget_max=filters.budget_max or None,
        )

    return ok(items, message="Search results fetched", pagination=paginate(total, page, limit))


@router.get("/getPropertyById/{property_id}")
def get_property_by_id(
    property_id: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Property detail with live discount, group-buy progress and similar projects."""
    prop = _active_property(db, property_id)
    detail = listings.property_detail(db, prop)
    detail.update(engagement.property_flags(db, user.user_id if user else None, prop.id))
    return ok(detail, message="Property fetched")


@router.post("/compare")
def compare_properties(body: CompareRequest, db: Session = Depends(get_db)):
    ids = list(dict.fromkeys(body.property_ids))
    if not 2 <= len(ids) <= 4:
        raise ValidationError("Select between 2 and 4 properties to compare")
    properties = [_active_property(db, pid) for pid in ids]
    return ok(listings.compare(db, properties), message="Comparison fetched")


@router.post("/emi-calculator")
def emi_calculator(body: EmiRequest):
    if body.tenure_months:
        months = body.tenure_months
    elif body.tenure_years:
        months = int(round(body.tenure_years * 12))
    else:
        raise ValidationError("tenureYears or tenureMonths is required")

    if normalize_price(body.loan_amount) <= 0:
        raise ValidationError("loanAmount must be greater than 0")
    return ok(calculate_emi(body.loan_amount, body.interest_rate, months), message="EMI calculated")


@router.post("/contact-us")
def contact_us(
    body: ContactRequest,
    request: Request,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Contact form.

    Signed-in callers get a contact_us lead (on the property when one is
    given). Anonymous submissions are logged and acknowledged.
    """
    if not body.email and not body.phone_number:
        raise ValidationError("Email or phone number is required")

    account = db.get(User, user.user_id) if user else None
    if account is None:
        logger.info(f"Anonymous contact request from {body.name} <{body.email or body.phone_number}>")
        return ok({"leadCreated": False}, message="Thank you for contacting us. Our team will reach out soon.")

    message = f"{body.name}: {body.message}"
    if body.property_id:
        prop = _active_property(db, body.property_id)
        lead, _ = leads.upsert_active_lead(
            db, account, prop, ip_address=client_ip(request), source="contact_us", message=message,
        )
    else:
        lead = Lead(user_id=account.id, source="contact_us", message=message, ip_address=client_ip(request))
        db.add(lead)
        db.commit()
        db.refresh(lead)

    return ok(
        {"leadCreated": True, "leadId": lead.id},
        message="Thank you for contacting us. Our team will reach out soon.",
    )


# =============================================================================
# Engagement (signed in)
# =============================================================================

@router.post("/property/view")
def add_viewed_property(body: PropertyActionRequest, account: User = Depends(get_current_account),
                        db: Session = Depends(get_db)):
    prop = _active_property(db, body.property_id)
    record = engagement.mark_viewed(db, account.id, prop.id)
    return ok(
        {"propertyId": prop.id, "lastViewedAt": record.last_viewed_at.isoformat()},
        message="Property marked as viewed",
    )


@router.post("/property/favorite")
def toggle_favorite_property(body: PropertyActionRequest, account: User = Depends(get_current_account),
                             db: Session = Depends(get_db)):
    prop = _active_property(db, body.property_id)
    favorited = engagement.toggle_favorite(db, account.id, prop.id)
    return ok(
        {"propertyId": prop.id, "isFavorite": favorited},
        message="Added to favorites" if favorited else "Removed from favorites",
    )


@router.post("/property/visit")
def register_visit(body: VisitRequest, request: Request, account: User = Depends(get_current_account),
                   db: Session = Depends(get_db)):
    """Schedule a site visit; creates or refreshes the buyer's lead on the property."""
    visit_date = parse_datetime(body.visit_date, "visitDate")
    prop = _active_property(db, body.property_id)

    engagement.mark_visited(db, account.id, prop.id, visit_date, body.visit_time)
    lead, created = leads.register_visit(
        db, account, prop, visit_date, body.visit_time, ip_address=client_ip(request),
    )
    return ok(
        {"lead": leads.lead_to_dict(lead), "leadCreated": created},
        message="Visit registered successfully",
    )


@router.post("/join-group")
def join_group(body: PropertyActionRequest, request: Request, account: User = Depends(get_current_account),
               db: Session = Depends(get_db)):
    prop = _active_property(db, body.property_id)
    lead, newly_joined = leads.join_group(db, account, prop, ip_address=client_ip(request))
    progress = group_buy_progress(prop.min_group_members, listings.group_members(db, prop.id))
    return ok(
        {"leadId": lead.id, "joined": newly_joined, "groupBuy": progress.to_dict()},
        message="Joined the group successfully" if newly_joined else "You have already joined this group",
    )
