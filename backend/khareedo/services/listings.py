"""
Read-side listing logic: property cards and detail payloads, top-visited
aggregation, search and comparison.

Rows always pass through the configuration adapter and price normalizer
before anything is computed from them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, distinct, or_
from sqlalchemy.orm import Session, joinedload

from khareedo.models.activity import UserPropertyActivity, PropertyActivityType
from khareedo.models.developer import Developer
from khareedo.models.lead import Lead, LeadActivity, ActivityType
from khareedo.models.property import Property
from khareedo.services.group_buy import group_buy_progress, progress_for_count
from khareedo.services.inventory import (
    count_available,
    cover_image,
    has_unit_type,
    normalize_configurations,
    normalize_connectivity,
    ordered_images,
    price_range,
    unit_types,
)
from khareedo.services.pricing import format_amount, live_discount, normalize_price
from khareedo.services.similarity import rank_similar

logger = logging.getLogger(__name__)

SIMILAR_CANDIDATE_POOL = 200
SORT_OPTIONS = ("price_low_to_high", "price_high_to_low", "newest")


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def active_properties(db: Session):
    return (
        db.query(Property)
        .options(joinedload(Property.developer), joinedload(Property.relationship_manager))
        .filter(Property.is_status.is_(True))
    )


# =============================================================================
# Group-buy participation
# =============================================================================

def _group_member_query(db: Session):
    """(property_id, user_id) of active leads that joined the group."""
    return (
        db.query(Lead.property_id, Lead.user_id)
        .join(LeadActivity, LeadActivity.lead_id == Lead.id)
        .filter(Lead.is_status.is_(True), LeadActivity.activity_type == ActivityType.JOIN_GROUP.value)
    )


def joined_group_counts(db: Session, property_ids: list[str]) -> dict[str, int]:
    if not property_ids:
        return {}
    rows = (
        db.query(Lead.property_id, func.count(distinct(Lead.user_id)))
        .join(LeadActivity, LeadActivity.lead_id == Lead.id)
        .filter(
            Lead.is_status.is_(True),
            LeadActivity.activity_type == ActivityType.JOIN_GROUP.value,
            Lead.property_id.in_(property_ids),
        )
        .group_by(Lead.property_id)
        .all()
    )
    return {prop_id: count for prop_id, count in rows}


def group_members(db: Session, property_id: str) -> list[str]:
    rows = _group_member_query(db).filter(Lead.property_id == property_id).all()
    return [user_id for _, user_id in rows]


# =============================================================================
# Serialization
# =============================================================================

def developer_summary(dev: Optional[Developer]) -> Optional[dict]:
    if dev is None:
        return None
    return {
        "_id": dev.id,
        "developerName": dev.developer_name,
        "logo": dev.logo,
        "city": dev.city,
        "establishedYear": dev.established_year,
        "totalProjects": dev.total_projects,
        "website": dev.website,
    }


def effective_price(prop: Property) -> int:
    """Price used for budget filters and sorting."""
    low, _ = price_range(prop.configurations)
    return normalize_price(prop.offer_price) or low or normalize_price(prop.developer_price)


def property_card(prop: Property, joined_count: int = 0) -> dict:
    configurations = normalize_configurations(prop.configurations)
    low, high = price_range(configurations)
    discount = live_discount(prop)
    progress = progress_for_count(prop.min_group_members, joined_count)

    return {
        "_id": prop.id,
        "projectId": prop.project_id,
        "projectName": prop.project_name,
        "location": prop.location,
        "latitude": prop.latitude,
        "longitude": prop.longitude,
        "developer": developer_summary(prop.developer),
        "possessionStatus": prop.possession_status,
        "possessionDate": _iso(prop.possession_date),
        "developerPrice": normalize_price(prop.developer_price),
        "offerPrice": normalize_price(prop.offer_price),
        "groupPrice": normalize_price(prop.group_price),
        "discountPercentage": discount.percentage,
        "discount": discount.to_dict(),
        "priceRange": {
            "min": low,
            "max": high,
            "formatted": f"{format_amount(low)} - {format_amount(high)}" if high else None,
        },
        "coverImage": cover_image(prop.images),
        "images": ordered_images(prop.images),
        "unitTypes": unit_types(configurations),
        "availableUnits": count_available(configurations),
        "minGroupMembers": prop.min_group_members or 0,
        "joinedGroupCount": joined_count,
        "groupProgressPercentage": progress.progress_percentage,
        "reraId": prop.rera_id,
        "isStatus": bool(prop.is_status),
        "createdAt": _iso(prop.created_at),
    }


def property_detail(db: Session, prop: Property, similar_limit: int = 3) -> dict:
    """Full detail payload including group-buy progress and similar projects."""
    members = group_members(db, prop.id)
    progress = group_buy_progress(prop.min_group_members, members)
    configurations = normalize_configurations(prop.configurations)

    detail = property_card(prop, joined_count=progress.joined)
    rm = prop.relationship_manager
    detail.update({
        "description": prop.description,
        "projectSize": prop.project_size,
        "landParcel": prop.land_parcel,
        "reraQrImage": prop.rera_qr_image,
        "configurations": configurations,
        "highlights": prop.highlights or [],
        "amenities": prop.amenities or [],
        "layouts": prop.layouts or [],
        "connectivity": normalize_connectivity(prop.connectivity),
        "relationshipManager": {
            "_id": rm.id,
            "name": rm.name,
            "email": rm.email,
            "phoneNumber": rm.phone_number,
        } if rm else None,
        "groupBuy": progress.to_dict(),
    })

    candidates = (
        active_properties(db)
        .filter(Property.id != prop.id)
        .order_by(Property.created_at.desc())
        .limit(SIMILAR_CANDIDATE_POOL)
        .all()
    )
    similar = rank_similar(prop, candidates, limit=similar_limit)
    counts = joined_group_counts(db, [m.property.id for m in similar])
    detail["similarProjects"] = [
        {
            **property_card(m.property, counts.get(m.property.id, 0)),
            "similarityScore": m.score,
            "budgetMatch": m.budget_match,
            "locationMatch": m.location_match,
            "matchReasons": m.signals,
        }
        for m in similar
    ]
    return detail


def cards_for(db: Session, properties: list[Property]) -> list[dict]:
    counts = joined_group_counts(db, [p.id for p in properties])
    return [property_card(p, counts.get(p.id, 0)) for p in properties]


# =============================================================================
# Queries
# =============================================================================

@dataclass
class ListingFilters:
    search_query: Optional[str] = None
    location: Optional[str] = None
    developer: Optional[str] = None
    project_name: Optional[str] = None
    possession_status: Optional[str] = None
    unit_type: Optional[str] = None
    budget_min: int = 0
    budget_max: int = 0

    def apply(self, query):
        if self.search_query:
            pattern = f"%{self.search_query.strip()}%"
            query = query.outerjoin(Developer, Property.developer_id == Developer.id).filter(or_(
                Property.project_name.ilike(pattern),
                Property.location.ilike(pattern),
                Developer.developer_name.ilike(pattern),
            ))
        if self.location:
            query = query.filter(Property.location.ilike(f"%{self.location.strip()}%"))
        if self.developer:
            query = query.filter(Property.developer_id == self.developer)
        if self.project_name:
            query = query.filter(Property.project_name.ilike(f"%{self.project_name.strip()}%"))
        if self.possession_status:
            query = query.filter(func.lower(Property.possession_status) == self.possession_status.strip().lower())
        return query

    def accepts(self, prop: Property) -> bool:
        """Filters that need the normalized configurations."""
        if self.unit_type and not has_unit_type(prop.configurations, self.unit_type):
            return False
        if self.budget_min or self.budget_max:
            price = effective_price(prop)
            if self.budget_min and price < self.budget_min:
                return False
            if self.budget_max and price > self.budget_max:
                return False
        return True


def search_properties(db: Session, filters: ListingFilters, sort_by: Optional[str],
                      page: int, limit: int) -> tuple[list[dict], int]:
    rows = filters.apply(active_properties(db)).order_by(Property.created_at.desc()).all()
    matched = [p for p in rows if filters.accepts(p)]

    if sort_by == "price_low_to_high":
        matched.sort(key=effective_price)
    elif sort_by == "price_high_to_low":
        matched.sort(key=effective_price, reverse=True)

    total = len(matched)
    start = (page - 1) * limit
    return cards_for(db, matched[start:start + limit]), total


def top_visited(db: Session, filters: ListingFilters, page: int, limit: int) -> tuple[list[dict], int]:
    """Properties ranked by visit count, then by most recent visit."""
    visits = (
        db.query(
            UserPropertyActivity.property_id.label("property_id"),
            func.count(UserPropertyActivity.id).label("visit_count"),
            func.max(UserPropertyActivity.visited_at).label("last_visited_at"),
        )
        .filter(UserPropertyActivity.activity_type == PropertyActivityType.VISITED.value)
        .group_by(UserPropertyActivity.property_id)
        .subquery()
    )
    query = (
        db.query(Property, visits.c.visit_count, visits.c.last_visited_at)
        .options(joinedload(Property.developer))
        .join(visits, Property.id == visits.c.property_id)
        .filter(Property.is_status.is_(True))
    )
    query = filters.apply(query).order_by(visits.c.visit_count.desc(), visits.c.last_visited_at.desc())

    rows = [(p, count, last) for p, count, last in query.all() if filters.accepts(p)]
    total = len(rows)
    start = (page - 1) * limit
    page_rows = rows[start:start + limit]

    counts = joined_group_counts(db, [p.id for p, _, _ in page_rows])
    items = []
    for prop, visit_count, last_visited in page_rows:
        card = property_card(prop, counts.get(prop.id, 0))
        card["visitCount"] = visit_count
        card["lastVisitedAt"] = _iso(last_visited)
        items.append(card)
    return items, total


def locations(db: Session) -> list[dict]:
    """Distinct listing locations with their city part."""
    rows = (
        db.query(Property.location, func.count(Property.id))
        .filter(Property.is_status.is_(True))
        .group_by(Property.location)
        .order_by(Property.location)
        .all()
    )
    result = []
    for location, count in rows:
        parts = [p.strip() for p in (location or "").split(",") if p.strip()]
        result.append({
            "location": location,
            "area": parts[0] if parts else None,
            "city": parts[1] if len(parts) > 1 else None,
            "state": parts[2] if len(parts) > 2 else None,
            "propertyCount": count,
        })
    return result


def compare(db: Session, properties: list[Property]) -> list[dict]:
    """Side-by-side rows for the comparison table."""
    counts = joined_group_counts(db, [p.id for p in properties])
    rows = []
    for prop in properties:
        card = property_card(prop, counts.get(prop.id, 0))
        configurations = normalize_configurations(prop.configurations)
        rows.append({
            **card,
            "configurations": configurations,
            "amenities": prop.amenities or [],
            "highlights": prop.highlights or [],
            "projectSize": prop.project_size,
            "landParcel": prop.land_parcel,
            "carpetAreas": sorted({
                sub["carpetArea"] for config in configurations
                for sub in config["subConfigurations"] if sub["carpetArea"]
            }),
        })
    return rows
