"""Utilities for transforming raw connector payloads and stored rows into places."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from agent_layer.core.models import (
    AgeRange,
    Availability,
    ClinicAttributes,
    Contact,
    Coordinates,
    GeneralAttributes,
    Location,
    PlaceDraft,
    PlaceRecord,
    PlaygroundAttributes,
    SourceRef,
    UnifiedPlace,
    WellnessAttributes,
)

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_AGE_RANGE = re.compile(r"(\d+)(?:\s*-\s*(\d+))?")
_DEFAULT_AGE_RANGE = (0, 12)

_CLINIC_WALK_IN_TAGS = {"walk-in", "walk-in-clinic", "walk in clinic"}
_PARTY_TAGS = {"birthday-parties", "party rooms", "private party rooms", "party-rooms"}


def create_slug(name: str) -> str:
    return _SLUG_STRIP.sub("-", (name or "").lower()).strip("-")


def normalize_city(value: Optional[str]) -> Optional[str]:
    """Canonical city key: lower-case, dots dropped, whitespace and hyphens collapsed to '-'."""
    if value is None:
        return None
    cleaned = value.strip().lower().replace(".", "")
    cleaned = re.sub(r"[\s\-]+", "-", cleaned).strip("-")
    return cleaned or None


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def clamp_rating(value: Any) -> Optional[float]:
    rating = safe_float(value)
    if rating is None or not 0 <= rating <= 5:
        return None
    return rating


def as_list(value: Any) -> List[Any]:
    """Raw list fields sometimes arrive as a single scalar; wrap those, map ``None`` to ``[]``."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def merge_tags(*groups: Any) -> List[str]:
    """Concatenate tag groups, dropping blanks and duplicates but keeping first-seen order."""
    seen = set()
    merged: List[str] = []
    for group in groups:
        for tag in as_list(group):
            text = strip_or_none(tag)
            if text and text not in seen:
                seen.add(text)
                merged.append(text)
    return merged


def parse_age_range(value: Any) -> AgeRange:
    if isinstance(value, dict):
        minimum = safe_int(value.get("min"))
        return AgeRange(min=minimum if minimum is not None else 0, max=safe_int(value.get("max")))
    if isinstance(value, str):
        match = _AGE_RANGE.search(value)
        if not match:
            # "All ages" and friends carry no upper bound.
            return AgeRange(min=0)
        return AgeRange(min=int(match.group(1)), max=int(match.group(2)) if match.group(2) else None)
    return AgeRange(min=_DEFAULT_AGE_RANGE[0], max=_DEFAULT_AGE_RANGE[1])


def coordinates_pair(lat: Any, lng: Any) -> tuple:
    """Return ``(lat, lng)`` only when both parse, otherwise ``(None, None)``."""
    lat_val, lng_val = safe_float(lat), safe_float(lng)
    if lat_val is None or lng_val is None:
        return None, None
    return lat_val, lng_val


def extract_images(raw: Dict[str, Any]) -> List[str]:
    images: List[str] = []
    image = raw.get("image")
    if isinstance(image, dict) and image.get("url"):
        images.append(image["url"])
    for item in as_list(raw.get("images")):
        if isinstance(item, dict) and item.get("url"):
            images.append(item["url"])
        elif isinstance(item, str) and item:
            images.append(item)
    return images


def to_place_draft(raw: Dict[str, Any], *, site_id: str, vertical: str, default_province: str = "AB") -> PlaceDraft:
    """Map a raw connector record onto the canonical place fields.

    Raises ``ValueError`` when the record lacks the fields every place needs.
    """
    external_id = strip_or_none(raw.get("id"))
    name = strip_or_none(raw.get("name"))
    city = normalize_city(strip_or_none(raw.get("city")))
    missing = [label for label, value in (("id", external_id), ("name", name), ("city", city)) if not value]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    lat, lng = coordinates_pair(raw.get("latitude", raw.get("lat")), raw.get("longitude", raw.get("lng")))
    website = strip_or_none(raw.get("website"))
    review_count = safe_int(raw.get("ratingCount", raw.get("review_count")))

    return PlaceDraft(
        name=name,
        slug=create_slug(name),
        vertical=vertical,
        province=(strip_or_none(raw.get("province")) or default_province).upper(),
        city=city,
        neighborhood=strip_or_none(raw.get("neighborhood")),
        address=strip_or_none(raw.get("address")),
        lat=lat,
        lng=lng,
        phone=strip_or_none(raw.get("phone")),
        website=website,
        booking_url=strip_or_none(raw.get("bookingUrl")),
        email=strip_or_none(raw.get("email")),
        description=strip_or_none(raw.get("description")),
        images=extract_images(raw),
        rating=clamp_rating(raw.get("rating")),
        review_count=max(review_count or 0, 0),
        tags=merge_tags(raw.get("tags") or [raw.get("category")]),
        sources=[
            SourceRef(
                kind="partner",
                external_id=external_id,
                url=website,
                fetched_at=datetime.now(timezone.utc).isoformat(),
            )
        ],
        site_refs={},
        raw_data=dict(raw),
        last_verified=datetime.now(timezone.utc),
    )


# ---------- Row -> UnifiedPlace ----------


def _location(record: PlaceRecord) -> Location:
    coordinates = None
    if record.lat is not None and record.lng is not None:
        coordinates = Coordinates(lat=record.lat, lng=record.lng)
    return Location(
        city=record.city,
        province=record.province,
        address=record.address,
        neighborhood=record.neighborhood,
        coordinates=coordinates,
    )


def _contact(record: PlaceRecord) -> Contact:
    return Contact(
        phone=record.phone,
        email=record.email or strip_or_none(record.raw_data.get("email")),
        website=record.website,
        booking_url=record.booking_url,
    )


def _availability(raw: Dict[str, Any]) -> Optional[Availability]:
    is_open = raw.get("isOpen")
    hours = raw.get("hours")
    if not isinstance(is_open, bool):
        is_open = None
    if not isinstance(hours, dict):
        hours = None
    if is_open is None and hours is None:
        return None
    return Availability(is_open=is_open, hours=hours)


def _lowered(values: Iterable[str]) -> set:
    return {value.lower() for value in values}


def _base_place(record: PlaceRecord, category: str, attributes) -> UnifiedPlace:
    return UnifiedPlace(
        id=record.id,
        name=record.name,
        slug=record.slug,
        vertical=record.vertical,
        category=category,
        location=_location(record),
        contact=_contact(record),
        attributes=attributes,
        created_at=record.created_at,
        updated_at=record.updated_at,
        description=record.description or strip_or_none(record.raw_data.get("description")),
        images=list(record.images),
        rating=record.rating,
        review_count=record.review_count or 0,
        tags=list(record.tags),
        availability=_availability(record.raw_data),
        sources=list(record.sources),
    )


def transform_clinic(record: PlaceRecord) -> UnifiedPlace:
    raw = record.raw_data
    tags = _lowered(record.tags)
    category = strip_or_none(raw.get("category")) or "clinic"
    features = [str(item) for item in as_list(raw.get("features"))]
    is_walk_in = raw.get("isWalkIn")
    if not isinstance(is_walk_in, bool):
        is_walk_in = bool(tags & _CLINIC_WALK_IN_TAGS) or "walk-in" in category.lower()
    accepting = raw.get("acceptingNewPatients")
    if not isinstance(accepting, bool):
        description = (record.description or raw.get("description") or "").lower()
        accepting = "accepting-new-patients" in tags or "accepting new patients" in description
    attributes = ClinicAttributes(
        is_walk_in=is_walk_in,
        accepting_new_patients=accepting,
        services=[str(item) for item in as_list(raw.get("services"))] or features,
        specialties=raw.get("specialties"),
    )
    return _base_place(record, category, attributes)


def transform_playground(record: PlaceRecord) -> UnifiedPlace:
    raw = record.raw_data
    tags = _lowered(record.tags)
    features = [str(item) for item in as_list(raw.get("features"))]
    party = raw.get("partyPackages")
    if not isinstance(party, bool):
        party = bool(tags & _PARTY_TAGS) or any("party" in feature.lower() for feature in features)
    attributes = PlaygroundAttributes(
        age_range=parse_age_range(raw.get("ageRange")),
        features=features,
        party_packages=party,
        admission_fee=strip_or_none(raw.get("admissionFee")),
        capacity=safe_int(raw.get("capacity")),
    )
    return _base_place(record, strip_or_none(raw.get("category")) or "indoor-playground", attributes)


def transform_wellness(record: PlaceRecord) -> UnifiedPlace:
    raw = record.raw_data
    services = as_list(raw.get("services")) or as_list(raw.get("features")) or [raw.get("category")]
    accepts_insurance = raw.get("acceptsInsurance")
    direct_billing = raw.get("directBilling")
    attributes = WellnessAttributes(
        services=[str(item) for item in services if item],
        accepts_insurance=accepts_insurance if isinstance(accepts_insurance, bool) else None,
        direct_billing=direct_billing if isinstance(direct_billing, bool) else None,
    )
    return _base_place(record, strip_or_none(raw.get("category")) or "wellness", attributes)


def transform_general(record: PlaceRecord) -> UnifiedPlace:
    raw = record.raw_data
    attributes = GeneralAttributes(features=[str(item) for item in as_list(raw.get("features"))])
    return _base_place(record, strip_or_none(raw.get("category")) or record.vertical, attributes)


_TRANSFORMS: Dict[str, Callable[[PlaceRecord], UnifiedPlace]] = {
    "clinic": transform_clinic,
    "playground": transform_playground,
    "wellness": transform_wellness,
}


def to_unified_place(record: PlaceRecord) -> UnifiedPlace:
    """Project a stored row onto the unified shape using its vertical's transform."""
    transform = _TRANSFORMS.get(record.vertical, transform_general)
    return transform(record)
