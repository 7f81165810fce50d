"""
Buyer engagement markers: viewed, favorite, visited, plus search history.

viewed is an upsert that refreshes last_viewed_at, favorite is a toggle and
visited carries the caller's visit date/time. Search history recording is
best effort and never fails the search that triggered it.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from khareedo.core.database import utcnow
from khareedo.models.activity import UserPropertyActivity, UserSearchHistory, PropertyActivityType

logger = logging.getLogger(__name__)


def _find(db: Session, user_id: str, property_id: str, activity_type: PropertyActivityType):
    return (
        db.query(UserPropertyActivity)
        .filter(
            UserPropertyActivity.user_id == user_id,
            UserPropertyActivity.property_id == property_id,
            UserPropertyActivity.activity_type == activity_type.value,
        )
        .first()
    )


def mark_viewed(db: Session, user_id: str, property_id: str) -> UserPropertyActivity:
    now = utcnow()
    record = _find(db, user_id, property_id, PropertyActivityType.VIEWED)
    if record is None:
        record = UserPropertyActivity(
            user_id=user_id,
            property_id=property_id,
            activity_type=PropertyActivityType.VIEWED.value,
        )
        db.add(record)
    record.last_viewed_at = now
    db.commit()
    db.refresh(record)
    return record


def toggle_favorite(db: Session, user_id: str, property_id: str) -> bool:
    """Flip the favorite marker; returns True when the property is now favorited."""
    record = _find(db, user_id, property_id, PropertyActivityType.FAVORITE)
    if record is not None:
        db.delete(record)
        db.commit()
        return False

    db.add(UserPropertyActivity(
        user_id=user_id,
        property_id=property_id,
        activity_type=PropertyActivityType.FAVORITE.value,
        favorited_at=utcnow(),
    ))
    db.commit()
    return True


def mark_visited(db: Session, user_id: str, property_id: str, visit_date: datetime,
                 visit_time: Optional[str]) -> UserPropertyActivity:
    record = _find(db, user_id, property_id, PropertyActivityType.VISITED)
    if record is None:
        record = UserPropertyActivity(
            user_id=user_id,
            property_id=property_id,
            activity_type=PropertyActivityType.VISITED.value,
        )
        db.add(record)
    record.visited_at = utcnow()
    record.visit_date = visit_date
    record.visit_time = visit_time
    db.commit()
    db.refresh(record)
    return record


def property_flags(db: Session, user_id: Optional[str], property_id: str) -> dict:
    """isFavorite / isViewed / isVisited for one buyer on one property."""
    flags = {"isFavorite": False, "isViewed": False, "isVisited": False}
    if not user_id:
        return flags
    rows = (
        db.query(UserPropertyActivity.activity_type)
        .filter(UserPropertyActivity.user_id == user_id, UserPropertyActivity.property_id == property_id)
        .all()
    )
    types = {t for (t,) in rows}
    flags["isFavorite"] = PropertyActivityType.FAVORITE.value in types
    flags["isViewed"] = PropertyActivityType.VIEWED.value in types
    flags["isVisited"] = PropertyActivityType.VISITED.value in types
    return flags


def activity_counts(db: Session, user_id: str) -> dict:
    counts = {t.value: 0 for t in PropertyActivityType}
    for (activity_type,) in db.query(UserPropertyActivity.activity_type).filter(
        UserPropertyActivity.user_id == user_id
    ):
        if activity_type in counts:
            counts[activity_type] += 1
    return {
        "totalViewed": counts[PropertyActivityType.VIEWED.value],
        "totalFavorited": counts[PropertyActivityType.FAVORITE.value],
        "totalVisited": counts[PropertyActivityType.VISITED.value],
    }


def record_search(db: Session, user_id: str, search_query: Optional[str] = None,
                  location: Optional[str] = None, developer: Optional[str] = None,
                  project_name: Optional[str] = None, budget_min: Optional[int] = None,
                  budget_max: Optional[int] = None) -> Optional[UserSearchHistory]:
    """Store the search tuple once per user; repeats only bump updated_at. Never raises."""
    search_query = (search_query or "").strip()
    if not any([search_query, location, developer, project_name]):
        return None
    try:
        existing = (
            db.query(UserSearchHistory)
            .filter(
                UserSearchHistory.user_id == user_id,
                UserSearchHistory.search_query == search_query,
                UserSearchHistory.location.is_(None) if location is None else UserSearchHistory.location == location,
                UserSearchHistory.developer.is_(None) if developer is None else UserSearchHistory.developer == developer,
                UserSearchHistory.project_name.is_(None) if project_name is None else UserSearchHistory.project_name == project_name,
            )
            .first()
        )
        if existing is not None:
            existing.updated_at = utcnow()
            existing.budget_min = budget_min
            existing.budget_max = budget_max
            db.commit()
            return existing

        entry = UserSearchHistory(
            user_id=user_id,
            search_query=search_query,
            location=location,
            developer=developer,
            project_name=project_name,
            budget_min=budget_min,
            budget_max=budget_max,
        )
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Search history not recorded for user {user_id}: {e}")
        return None
