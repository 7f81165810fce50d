"""
Admin listing management: properties and developers.

Writes arrive as multipart forms. Nested fields (configurations, amenities,
connectivity, ...) are JSON strings inside the form and decode leniently;
files are uploaded to object storage and only their URLs are stored.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload
from starlette.datastructures import FormData, UploadFile

from khareedo.api.deps import admin_account, ensure_id, load, ok, paginate, parse_datetime, staff_account
from khareedo.core.database import get_db
from khareedo.core.errors import ValidationError
from khareedo.core.security import ROLE_AGENT, ROLE_PROJECT_MANAGER, role_matches
from khareedo.models.developer import Developer
from khareedo.models.lead import Lead
from khareedo.models.property import POSSESSION_STATUSES, Property
from khareedo.models.user import User
from khareedo.services import listings
from khareedo.services.inventory import (
    attach_layout_images,
    build_image_entries,
    count_available,
    normalize_configurations,
    normalize_connectivity,
)
from khareedo.services.pricing import discount_percentage, normalize_price
from khareedo.services.storage import (
    DEVELOPER_LOGOS_FOLDER,
    PROPERTY_IMAGES_FOLDER,
    PROPERTY_LAYOUTS_FOLDER,
    PROPERTY_RERA_FOLDER,
    S3Storage,
    get_storage,
)
from khareedo.utils.json_fields import safe_json, string_list

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-listings"])

LAYOUT_FIELD_PREFIX = "layout_"
REQUIRED_PROPERTY_FIELDS = (
    ("projectName", "Project name"),
    ("developer", "Developer"),
    ("location", "Location"),
    ("developerPrice", "Developer price"),
    ("possessionStatus", "Possession status"),
    ("relationshipManager", "Relationship manager"),
)


# =============================================================================
# Form helpers
# =============================================================================

def _text(form: FormData, key: str) -> Optional[str]:
    value = form.get(key)
    if value is None or isinstance(value, UploadFile):
        return None
    value = value.strip()
    return value or None


def _files(form: FormData, key: str) -> list[UploadFile]:
    return [f for f in form.getlist(key) if isinstance(f, UploadFile) and f.filename]


def _int(form: FormData, key: str) -> Optional[int]:
    value = _text(form, key)
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        raise ValidationError(f"{key} must be a number")


def _float(form: FormData, key: str) -> Optional[float]:
    value = _text(form, key)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")


async def _upload_all(storage: S3Storage, files: list[UploadFile], folder: str) -> list[str]:
    urls = []
    for upload in files:
        data = await upload.read()
        urls.append(await run_in_threadpool(storage.upload, data, upload.content_type, folder, upload.filename))
    return urls


def _staff_with_role(db: Session, user_id: str, role_name: str, label: str) -> User:
    user = load(db, User, user_id, label)
    if not role_matches(user.role_name, role_name):
        raise ValidationError(f"{label} must have the '{role_name}' role")
    return user


# =============================================================================
# Properties
# =============================================================================

async def _apply_property_form(db: Session, prop: Property, form: FormData, storage: S3Storage,
                               creating: bool) -> None:
    """Copy form fields onto ``prop``. On update only the fields present are touched."""
    if creating:
        missing = [label for key, label in REQUIRED_PROPERTY_FIELDS if _text(form, key) is None]
        if missing:
            raise ValidationError(f"{', '.join(missing)} required")

    for key, attr in (("projectName", "project_name"), ("location", "location"),
                      ("projectSize", "project_size"), ("landParcel", "land_parcel"),
                      ("reraId", "rera_id"), ("description", "description")):
        value = _text(form, key)
        if value is not None:
            setattr(prop, attr, value)

    status = _text(form, "possessionStatus")
    if status is not None:
        if status not in POSSESSION_STATUSES:
            raise ValidationError(f"possessionStatus must be one of: {', '.join(POSSESSION_STATUSES)}")
        prop.possession_status = status
    if _text(form, "possessionDate") is not None:
        prop.possession_date = parse_datetime(_text(form, "possessionDate"), "possessionDate")

    for key, attr in (("latitude", "latitude"), ("longitude", "longitude")):
        value = _float(form, key)
        if value is not None:
            setattr(prop, attr, value)
    min_members = _int(form, "minGroupMembers")
    if min_members is not None:
        if min_members < 0:
            raise ValidationError("minGroupMembers cannot be negative")
        prop.min_group_members = min_members

    developer_id = _text(form, "developer")
    if developer_id is not None:
        prop.developer_id = load(db, Developer, developer_id, "Developer").id
    rm_id = _text(form, "relationshipManager")
    if rm_id is not None:
        prop.relationship_manager_id = _staff_with_role(db, rm_id, ROLE_PROJECT_MANAGER, "Relationship manager").id
    if "leadDistributionAgents" in form:
        agent_ids = string_list(form.get("leadDistributionAgents"))
        for agent_id in agent_ids:
            _staff_with_role(db, agent_id, ROLE_AGENT, "Agent")
        prop.lead_distribution_agents = list(dict.fromkeys(agent_ids))

    # Prices are stored as rupee integers and the discount is re-cached on any price change
    price_touched = False
    for key, attr in (("developerPrice", "developer_price"), ("offerPrice", "offer_price"),
                      ("groupPrice", "group_price")):
        if _text(form, key) is not None:
            setattr(prop, attr, normalize_price(_text(form, key)))
            price_touched = True
    if creating or price_touched:
        prop.discount_percentage = discount_percentage(prop.developer_price, prop.offer_price)

    for key, attr in (("highlights", "highlights"), ("amenities", "amenities"), ("layouts", "layouts")):
        if key in form:
            setattr(prop, attr, string_list(form.get(key)))
    if "connectivity" in form:
        prop.connectivity = normalize_connectivity(safe_json(form.get("connectivity"), {}))

    # Configurations and layout plans
    layout_uploads = {}
    for key in {k for k in form.keys() if k.startswith(LAYOUT_FIELD_PREFIX)}:
        files = _files(form, key)
        if files:
            layout_uploads[key[len(LAYOUT_FIELD_PREFIX):]] = await _upload_all(storage, files, PROPERTY_LAYOUTS_FOLDER)
    mapping = safe_json(form.get("layoutImagesMapping"), {})
    if "configurations" in form or layout_uploads or mapping:
        raw = safe_json(form.get("configurations"), []) if "configurations" in form else prop.configurations
        prop.configurations = attach_layout_images(normalize_configurations(raw), layout_uploads, mapping)

    # Images: new uploads replace the gallery, first file is the cover
    images = _files(form, "images")
    if images:
        urls = await _upload_all(storage, images, PROPERTY_IMAGES_FOLDER)
        prop.images = build_image_entries(urls)
    elif creating:
        prop.images = []

    rera_qr = _files(form, "reraQrImage")
    if rera_qr:
        prop.rera_qr_image = (await _upload_all(storage, rera_qr[:1], PROPERTY_RERA_FOLDER))[0]

    if "isStatus" in form:
        prop.is_status = (_text(form, "isStatus") or "").lower() in ("true", "1", "yes")


def _admin_property_dict(prop: Property, joined: int) -> dict:
    data = listings.property_card(prop, joined)
    data.update({
        "configurations": normalize_configurations(prop.configurations),
        "highlights": prop.highlights or [],
        "amenities": prop.amenities or [],
        "layouts": prop.layouts or [],
        "connectivity": normalize_connectivity(prop.connectivity),
        "relationshipManager": prop.relationship_manager_id,
        "leadDistributionAgents": prop.lead_distribution_agents or [],
        "reraQrImage": prop.rera_qr_image,
        "description": prop.description,
        "projectSize": prop.project_size,
        "landParcel": prop.land_parcel,
        "cachedDiscountPercentage": prop.discount_percentage,
    })
    return data


@router.post("/create_property")
async def create_property(request: Request, account: User = Depends(admin_account),
                          db: Session = Depends(get_db), storage: S3Storage = Depends(get_storage)):
    form = await request.form()
    prop = Property()
    await _apply_property_form(db, prop, form, storage, creating=True)
    db.add(prop)
    db.commit()
    db.refresh(prop)
    logger.info(f"Property {prop.project_id} '{prop.project_name}' created by {account.email}")
    return ok(_admin_property_dict(prop, 0), message="Property created successfully")


@router.get("/get_all_property")
def get_all_properties(
    search: Optional[str] = Query(None),
    developer: Optional[str] = Query(None),
    possession_status: Optional[str] = Query(None, alias="possessionStatus"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    query = db.query(Property).options(joinedload(Property.developer))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Property.project_name.ilike(pattern), Property.location.ilike(pattern),
                                 Property.project_id.ilike(pattern)))
    if developer:
        query = query.filter(Property.developer_id == ensure_id(developer, "developer ID"))
    if possession_status:
        query = query.filter(Property.possession_status == possession_status)

    total = query.count()
    rows = query.order_by(Property.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    counts = listings.joined_group_counts(db, [p.id for p in rows])
    return ok(
        [listings.property_card(p, counts.get(p.id, 0)) for p in rows],
        message="Properties fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/get_all_property_by_id/{property_id}")
def get_property(property_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    prop = load(db, Property, property_id, "Property")
    counts = listings.joined_group_counts(db, [prop.id])
    return ok(_admin_property_dict(prop, counts.get(prop.id, 0)), message="Property fetched")


@router.put("/update_property/{property_id}")
async def update_property(property_id: str, request: Request, account: User = Depends(admin_account),
                          db: Session = Depends(get_db), storage: S3Storage = Depends(get_storage)):
    prop = load(db, Property, property_id, "Property")
    form = await request.form()
    await _apply_property_form(db, prop, form, storage, creating=False)
    db.commit()
    db.refresh(prop)
    counts = listings.joined_group_counts(db, [prop.id])
    return ok(_admin_property_dict(prop, counts.get(prop.id, 0)), message="Property updated successfully")


@router.delete("/delete_property/{property_id}")
def delete_property(property_id: str, account: User = Depends(admin_account), db: Session = Depends(get_db)):
    """Unlist the property and close its leads. History rows are kept."""
    prop = load(db, Property, property_id, "Property")
    prop.is_status = False
    closed = (
        db.query(Lead)
        .filter(Lead.property_id == prop.id, Lead.is_status.is_(True))
        .update({Lead.is_status: False}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Property {prop.project_id} unlisted by {account.email}; {closed} lead(s) closed")
    return ok({"_id": prop.id, "availableUnits": count_available(prop.configurations)},
              message="Property deleted successfully")


# =============================================================================
# Developers
# =============================================================================

def _developer_dict(dev: Developer, project_count: Optional[int] = None) -> dict:
    data = {
        "_id": dev.id,
        "developerName": dev.developer_name,
        "description": dev.description,
        "city": dev.city,
        "establishedYear": dev.established_year,
        "totalProjects": dev.total_projects,
        "website": dev.website,
        "logo": dev.logo,
        "sourcingManager": dev.sourcing_manager or {},
        "createdAt": dev.created_at.isoformat() if dev.created_at else None,
    }
    if project_count is not None:
        data["listedProjects"] = project_count
    return data


def _sourcing_manager(form: FormData) -> dict:
    manager = safe_json(form.get("sourcingManager"), {})
    if not manager.get("name") or not manager.get("mobile"):
        raise ValidationError("Sourcing manager name and mobile are required")
    return {
        "name": str(manager["name"]).strip(),
        "mobile": str(manager["mobile"]).strip(),
        "email": (str(manager["email"]).strip().lower() if manager.get("email") else None),
    }


async def _apply_developer_form(dev: Developer, form: FormData, storage: S3Storage, creating: bool) -> None:
    if creating:
        if not _text(form, "developerName") or not _text(form, "city"):
            raise ValidationError("Developer name and city are required")
        if not _files(form, "logo"):
            raise ValidationError("Developer logo is required")

    for key, attr in (("developerName", "developer_name"), ("city", "city"),
                      ("description", "description"), ("website", "website")):
        value = _text(form, key)
        if value is not None:
            setattr(dev, attr, value)
    for key, attr in (("establishedYear", "established_year"), ("totalProjects", "total_projects")):
        value = _int(form, key)
        if value is not None:
            setattr(dev, attr, value)
    if creating or "sourcingManager" in form:
        dev.sourcing_manager = _sourcing_manager(form)

    logo = _files(form, "logo")
    if logo:
        dev.logo = (await _upload_all(storage, logo[:1], DEVELOPER_LOGOS_FOLDER))[0]


@router.post("/create_developer")
async def create_developer(request: Request, account: User = Depends(admin_account),
                           db: Session = Depends(get_db), storage: S3Storage = Depends(get_storage)):
    form = await request.form()
    dev = Developer()
    await _apply_developer_form(dev, form, storage, creating=True)
    db.add(dev)
    db.commit()
    db.refresh(dev)
    logger.info(f"Developer '{dev.developer_name}' created by {account.email}")
    return ok(_developer_dict(dev, 0), message="Developer created successfully")


@router.get("/get_all_developers")
def get_all_developers(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    query = db.query(Developer)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Developer.developer_name.ilike(pattern), Developer.city.ilike(pattern)))
    total = query.count()
    rows = query.order_by(Developer.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    counts = dict(
        db.query(Property.developer_id, func.count(Property.id))
        .filter(Property.developer_id.in_([d.id for d in rows]))
        .group_by(Property.developer_id)
        .all()
    ) if rows else {}
    return ok(
        [_developer_dict(d, counts.get(d.id, 0)) for d in rows],
        message="Developers fetched",
        pagination=paginate(total, page, limit),
    )


@router.get("/get_developer_by_id/{developer_id}")
def get_developer(developer_id: str, account: User = Depends(staff_account), db: Session = Depends(get_db)):
    dev = load(db, Developer, developer_id, "Developer")
    count = db.query(func.count(Property.id)).filter(Property.developer_id == dev.id).scalar()
    return ok(_developer_dict(dev, count), message="Developer fetched")


@router.put("/update_developer/{developer_id}")
async def update_developer(developer_id: str, request: Request, account: User = Depends(admin_account),
                           db: Session = Depends(get_db), storage: S3Storage = Depends(get_storage)):
    dev = load(db, Developer, developer_id, "Developer")
    form = await request.form()
    await _apply_developer_form(dev, form, storage, creating=False)
    db.commit()
    db.refresh(dev)
    return ok(_developer_dict(dev), message="Developer updated successfully")


@router.delete("/delete_developer/{developer_id}")
def delete_developer(developer_id: str, account: User = Depends(admin_account), db: Session = Depends(get_db)):
    dev = load(db, Developer, developer_id, "Developer")
    in_use = db.query(func.count(Property.id)).filter(Property.developer_id == dev.id).scalar()
    if in_use:
        raise ValidationError(f"Developer has {in_use} property(ies) and cannot be deleted")
    db.delete(dev)
    db.commit()
    return ok(message="Developer deleted successfully")
