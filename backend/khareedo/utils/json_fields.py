"""
Lenient decoding for JSON-encoded multipart fields.

Nested listing fields (configurations, amenities, connectivity, ...) arrive
as JSON strings inside multipart forms. A field that fails to decode falls
back to its default instead of rejecting the whole write.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def safe_json(value: Any, default: Any):
    """Decode ``value`` if it is a JSON string; return ``default`` on failure."""
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Ignoring malformed JSON field: {value[:80]!r}")
        return default
    if default is not None and not isinstance(decoded, type(default)):
        logger.warning(f"JSON field had type {type(decoded).__name__}, expected {type(default).__name__}")
        return default
    return decoded


def string_list(value: Any) -> list[str]:
    """Accept a JSON array, a comma-separated string or a list; return clean strings."""
    if isinstance(value, str) and value.strip() and not value.strip().startswith("["):
        return [part.strip() for part in value.split(",") if part.strip()]
    items = safe_json(value, [])
    return [str(item).strip() for item in items if item is not None and str(item).strip()]
