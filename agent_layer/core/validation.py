"""Argument validation for the REST and tool-calling surfaces."""

import re
from typing import Any, Dict, List, Mapping, Optional

from agent_layer.core.models import LEAD_PRIORITIES, LEAD_STATUSES, LEAD_TIMINGS, LEAD_TYPES, VERTICALS, LeadRequest

EMAIL_REGEX = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
MAX_QUERY_LENGTH = 200
MIN_COMPARE_IDS = 1
MAX_COMPARE_IDS = 5


class ValidationError(ValueError):
    """Raised when request arguments violate a declared constraint."""


def _optional_str(args: Mapping[str, Any], name: str, max_length: Optional[int] = None) -> Optional[str]:
    value = args.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters")
    return value or None


def _string_list(args: Mapping[str, Any], name: str) -> List[str]:
    value = args.get(name)
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"{name} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def _choice(value: Optional[str], name: str, choices) -> Optional[str]:
    if value is not None and value not in choices:
        raise ValidationError(f"{name} must be one of: {', '.join(choices)}")
    return value


def _number(args: Mapping[str, Any], name: str, *, minimum: float, maximum: float) -> Optional[float]:
    value = args.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be numeric") from exc
    if not minimum <= number <= maximum:
        raise ValidationError(f"{name} must be between {minimum:g} and {maximum:g}")
    return number


def _clamped_int(args: Mapping[str, Any], name: str, *, minimum: int, maximum: int) -> Optional[int]:
    value = args.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    return max(minimum, min(number, maximum))


def parse_search_args(args: Mapping[str, Any], *, max_limit: int = 50) -> Dict[str, Any]:
    """Validate search arguments; returns a normalized dict with only the known keys."""
    filters = args.get("filters") or {}
    if not isinstance(filters, dict):
        raise ValidationError("filters must be an object")

    return {
        "query": _optional_str(args, "query", MAX_QUERY_LENGTH),
        "vertical": _choice(_optional_str(args, "vertical"), "vertical", VERTICALS),
        "city": _optional_str(args, "city", 64),
        "province": _optional_str(args, "province", 8),
        "filters": dict(filters),
        "tags": _string_list(args, "tags"),
        "min_rating": _number(args, "min_rating", minimum=0, maximum=5),
        "limit": _clamped_int(args, "limit", minimum=1, maximum=max_limit),
        "cursor": _optional_str(args, "cursor"),
    }


def parse_compare_ids(args: Mapping[str, Any]) -> List[str]:
    place_ids = _string_list(args, "place_ids")
    if not MIN_COMPARE_IDS <= len(place_ids) <= MAX_COMPARE_IDS:
        raise ValidationError(f"place_ids must contain between {MIN_COMPARE_IDS} and {MAX_COMPARE_IDS} ids")
    return place_ids


def parse_lead_args(args: Mapping[str, Any], *, default_province: str = "AB") -> LeadRequest:
    lead_type = _optional_str(args, "type")
    if lead_type is None:
        raise ValidationError("type is required")
    _choice(lead_type, "type", LEAD_TYPES)

    vertical = _optional_str(args, "vertical")
    if vertical is None:
        raise ValidationError("vertical is required")
    _choice(vertical, "vertical", VERTICALS)

    email = _optional_str(args, "email", 255)
    if not email or not EMAIL_REGEX.match(email):
        raise ValidationError("email must be a valid email address")

    metadata = args.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    return LeadRequest(
        type=lead_type,
        vertical=vertical,
        email=email,
        province=(_optional_str(args, "province", 8) or default_province).upper(),
        place_ids=_string_list(args, "place_ids"),
        city=_optional_str(args, "city", 64),
        name=_optional_str(args, "name", 128),
        phone=_optional_str(args, "phone", 32),
        message=_optional_str(args, "message", 2000),
        requirements=_optional_str(args, "requirements", 2000),
        timing=_choice(_optional_str(args, "timing"), "timing", LEAD_TIMINGS),
        metadata=dict(metadata),
    )


def parse_status_update(args: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    status = _optional_str(args, "status")
    if status is None:
        raise ValidationError("status is required")
    _choice(status, "status", LEAD_STATUSES)
    return {"status": status, "assigned_to": _optional_str(args, "assigned_to", 64)}


def parse_lead_filters(args: Mapping[str, Any]) -> Dict[str, Any]:
    """Filters and paging for the admin lead listing; blank filters are ignored."""
    try:
        limit = int(args.get("limit") or 50)
        offset = int(args.get("offset") or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit and offset must be integers") from exc
    return {
        "status": _choice(_optional_str(args, "status"), "status", LEAD_STATUSES),
        "vertical": _choice(_optional_str(args, "vertical"), "vertical", VERTICALS),
        "priority": _choice(_optional_str(args, "priority"), "priority", LEAD_PRIORITIES),
        "limit": limit,
        "offset": offset,
    }
