"""Utilities for transforming raw upstream records into BusinessListing objects."""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from bizdata.models import UNCATEGORIZED, BusinessListing
from bizdata.vendors.base import DecodeError

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _required_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DecodeError(f"record is missing required field '{field_name}'")
    return value.strip()


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _extract_category(categories: Iterable[Any]) -> str:
    for category in categories or []:
        if isinstance(category, dict):
            title = _text(category.get("title"))
            if title:
                return title
    return UNCATEGORIZED


def parse_coordinates(coordinates: Any) -> Tuple[Optional[float], Optional[float]]:
    """Return both coordinates or neither."""
    if not isinstance(coordinates, dict):
        return None, None
    latitude = _number(coordinates.get("latitude"))
    longitude = _number(coordinates.get("longitude"))
    if latitude is None or longitude is None:
        return None, None
    return latitude, longitude


def to_business_listing(raw: Dict[str, Any]) -> BusinessListing:
    if not isinstance(raw, dict):
        raise DecodeError(f"record must be an object, got {type(raw).__name__}")

    location = raw.get("location")
    if not isinstance(location, dict):
        location = {}

    name = _required_text(raw.get("name"), "name")
    city = _required_text(location.get("city"), "location.city")
    latitude, longitude = parse_coordinates(raw.get("coordinates"))
    categories = raw.get("categories")

    return BusinessListing(
        name=name,
        category=_extract_category(categories if isinstance(categories, list) else []),
        address=_text(location.get("address1")),
        city=city,
        province=_text(location.get("state")),
        postal_code=_text(location.get("zip_code")),
        phone=_text(raw.get("phone")),
        url=_text(raw.get("url")) or None,
        latitude=latitude,
        longitude=longitude,
    )


def dedupe_key(listing: BusinessListing) -> Tuple[str, str, str]:
    """Natural key used when a run asks for cross-page deduplication."""
    return tuple(" ".join(part.split()).casefold() for part in (listing.name, listing.address, listing.city))
