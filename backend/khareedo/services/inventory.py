"""
Configuration and image helpers for listings.

Stored configurations come in two shapes:

    canonical: {"unitType": "2BHK", "subConfigurations": [
                   {"carpetArea": "1200 sqft", "price": 5500000,
                    "availabilityStatus": "Available", "layoutPlanImages": []}]}
    legacy:    {"unitType": "2BHK", "carpetArea": "1200 sqft",
                "price": "55 Lakh", "availabilityStatus": "Available"}

normalize_configurations() is the one adapter from either shape to the
canonical one. Business logic downstream only ever sees canonical data.
"""

import logging
import re
from typing import Iterable, Optional

from khareedo.services.pricing import normalize_price

logger = logging.getLogger(__name__)

AVAILABLE_STATUSES = frozenset({"Available", "Ready"})
AVAILABILITY_STATUSES = ("Available", "Sold", "Reserved", "Ready")
# Entries stored without a status are open for sale
DEFAULT_STATUS = "Available"


# =============================================================================
# Configurations
# =============================================================================

def _clean_urls(urls) -> list[str]:
    if not isinstance(urls, list):
        return []
    return [u.strip() for u in urls if isinstance(u, str) and u.strip()]


def _canonical_sub(sub: dict) -> dict:
    return {
        "carpetArea": str(sub.get("carpetArea") or ""),
        "price": normalize_price(sub.get("price")),
        "availabilityStatus": sub.get("availabilityStatus") or DEFAULT_STATUS,
        "layoutPlanImages": _clean_urls(sub.get("layoutPlanImages")),
    }


def normalize_configurations(raw) -> list[dict]:
    """Map stored configurations (either shape) to the canonical nested shape."""
    if not isinstance(raw, list):
        return []

    configurations = []
    for config in raw:
        if not isinstance(config, dict):
            continue
        subs = config.get("subConfigurations")
        if isinstance(subs, list):
            canonical_subs = [_canonical_sub(s) for s in subs if isinstance(s, dict)]
        else:
            # Legacy flat configuration
            canonical_subs = [_canonical_sub(config)]
        configurations.append({
            "unitType": str(config.get("unitType") or ""),
            "subConfigurations": canonical_subs,
        })
    return configurations


def count_available(configurations) -> int:
    """
    Count open units: sub-configurations whose status is Available or Ready.

    Legacy flat configurations are judged on their own status. A missing
    status counts as Available. Malformed entries are skipped.
    """
    if not isinstance(configurations, list):
        return 0

    count = 0
    for config in configurations:
        if not isinstance(config, dict):
            continue
        subs = config.get("subConfigurations")
        if isinstance(subs, list):
            count += sum(
                1 for sub in subs
                if isinstance(sub, dict) and (sub.get("availabilityStatus") or DEFAULT_STATUS) in AVAILABLE_STATUSES
            )
        elif (config.get("availabilityStatus") or DEFAULT_STATUS) in AVAILABLE_STATUSES:
            count += 1
    return count


def configuration_prices(configurations) -> list[int]:
    """Every positive sub-configuration price, canonical or legacy input."""
    prices = []
    for config in normalize_configurations(configurations):
        for sub in config["subConfigurations"]:
            if sub["price"] > 0:
                prices.append(sub["price"])
    return prices


def price_range(configurations) -> tuple[int, int]:
    prices = configuration_prices(configurations)
    if not prices:
        return 0, 0
    return min(prices), max(prices)


def unit_types(configurations) -> list[str]:
    seen = []
    for config in normalize_configurations(configurations):
        if config["unitType"] and config["unitType"] not in seen:
            seen.append(config["unitType"])
    return seen


def has_unit_type(configurations, unit_type: str) -> bool:
    wanted = re.sub(r"\s+", "", unit_type or "").lower()
    return any(re.sub(r"\s+", "", u).lower() == wanted for u in unit_types(configurations))


def layout_key(unit_type: str, carpet_area: str) -> str:
    """Upload key for a layout plan: "2BHK_1200" for ("2 BHK", "1200.5 sqft")."""
    unit_key = re.sub(r"\s+", "", unit_type or "")
    digits = re.sub(r"[^0-9.]", "", str(carpet_area or ""))
    try:
        area_key = str(int(float(digits))) if digits else "0"
    except ValueError:
        area_key = "0"
    return f"{unit_key}_{area_key}"


def attach_layout_images(configurations: list[dict], uploaded: dict[str, list[str]],
                         mapping: Optional[dict] = None) -> list[dict]:
    """
    Attach uploaded layout plan URLs to canonical sub-configurations.

    ``uploaded`` is keyed by "{unitType}_{carpetArea}" or "{configIndex}_{subIndex}".
    ``mapping`` is the explicit {unitType: {carpetArea: url(s)}} form field;
    its URLs are appended to whatever the upload keys matched.
    """
    mapping = mapping or {}
    result = []
    for config_index, config in enumerate(configurations):
        subs = []
        for sub_index, sub in enumerate(config.get("subConfigurations", [])):
            sub = dict(sub)
            images = list(sub.get("layoutPlanImages") or [])
            key = layout_key(config.get("unitType", ""), sub.get("carpetArea", ""))
            if key in uploaded:
                images = list(uploaded[key])
            elif f"{config_index}_{sub_index}" in uploaded:
                images = list(uploaded[f"{config_index}_{sub_index}"])

            unit_mapping = mapping.get(config.get("unitType"))
            if isinstance(unit_mapping, dict) and unit_mapping.get(sub.get("carpetArea")):
                mapped = unit_mapping[sub["carpetArea"]]
                images.extend(mapped if isinstance(mapped, list) else [mapped])

            sub["layoutPlanImages"] = _clean_urls(images)
            subs.append(sub)
        result.append({**config, "subConfigurations": subs})
    return result


# =============================================================================
# Images
# =============================================================================

def ordered_images(images) -> list[dict]:
    """Cover first, then ascending order. Zero or several covers are tolerated."""
    if not isinstance(images, list):
        return []
    valid = [img for img in images if isinstance(img, dict) and img.get("url")]

    def _order(img):
        try:
            return float(img.get("order") or 0)
        except (TypeError, ValueError):
            return 0.0

    return sorted(valid, key=lambda img: (not img.get("isCover"), _order(img)))


def cover_image(images) -> Optional[str]:
    ordered = ordered_images(images)
    return ordered[0]["url"] if ordered else None


def build_image_entries(urls: Iterable[str], start_order: int = 1, with_cover: bool = True) -> list[dict]:
    """Image records for freshly uploaded files; the first becomes the cover."""
    entries = []
    for i, url in enumerate(urls):
        entries.append({
            "url": url,
            "isCover": with_cover and i == 0,
            "order": start_order + i,
        })
    return entries


# =============================================================================
# Connectivity
# =============================================================================

CONNECTIVITY_KEYS = ("schools", "hospitals", "transportation", "restaurants")


def normalize_connectivity(raw) -> dict:
    """Keep only {name, latitude, longitude} points under the known categories."""
    result = {key: [] for key in CONNECTIVITY_KEYS}
    if not isinstance(raw, dict):
        return result
    for key in CONNECTIVITY_KEYS:
        points = raw.get(key)
        if not isinstance(points, list):
            continue
        for point in points:
            if not isinstance(point, dict) or not point.get("name"):
                continue
            result[key].append({
                "name": str(point["name"]),
                "latitude": _to_float(point.get("latitude")),
                "longitude": _to_float(point.get("longitude")),
            })
    return result


def _to_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None
