"""Core data models shared by the search, sync and lead pipelines."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

VERTICALS = ("clinic", "playground", "wellness", "travel", "food", "industrial")
LEAD_TYPES = ("match", "shortlist", "contact", "book")
LEAD_STATUSES = ("new", "contacted", "qualified", "closed", "converted")
LEAD_PRIORITIES = ("low", "medium", "high")
LEAD_TIMINGS = ("asap", "this_week", "this_month", "flexible")


@dataclass(slots=True)
class SourceRef:
    kind: str
    external_id: Optional[str] = None
    url: Optional[str] = None
    fetched_at: Optional[str] = None


@dataclass(slots=True)
class PlaceRecord:
    """A stored place row. ``city`` is always the canonical lower-case form."""

    id: str
    name: str
    slug: str
    vertical: str
    province: str
    city: str
    created_at: datetime
    updated_at: datetime
    neighborhood: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    booking_url: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    review_count: int = 0
    tags: List[str] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    site_refs: Dict[str, str] = field(default_factory=dict)
    raw_data: Dict[str, Any] = field(default_factory=dict, repr=False)
    last_verified: Optional[datetime] = None


@dataclass(slots=True)
class PlaceDraft:
    """Canonical fields produced by a connector transform, before an id is assigned."""

    name: str
    slug: str
    vertical: str
    province: str
    city: str
    neighborhood: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    booking_url: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    review_count: int = 0
    tags: List[str] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    site_refs: Dict[str, str] = field(default_factory=dict)
    raw_data: Dict[str, Any] = field(default_factory=dict, repr=False)
    last_verified: Optional[datetime] = None


# ---------- Unified projection ----------


@dataclass(slots=True)
class AgeRange:
    min: int = 0
    max: Optional[int] = None


@dataclass(slots=True)
class ClinicAttributes:
    is_walk_in: bool = False
    accepting_new_patients: bool = False
    services: List[str] = field(default_factory=list)
    specialties: Optional[List[str]] = None


@dataclass(slots=True)
class PlaygroundAttributes:
    age_range: AgeRange = field(default_factory=AgeRange)
    features: List[str] = field(default_factory=list)
    party_packages: bool = False
    admission_fee: Optional[str] = None
    capacity: Optional[int] = None


@dataclass(slots=True)
class WellnessAttributes:
    services: List[str] = field(default_factory=list)
    accepts_insurance: Optional[bool] = None
    direct_billing: Optional[bool] = None


@dataclass(slots=True)
class GeneralAttributes:
    features: List[str] = field(default_factory=list)


PlaceAttributes = Union[ClinicAttributes, PlaygroundAttributes, WellnessAttributes, GeneralAttributes]


@dataclass(slots=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(slots=True)
class Location:
    city: str
    province: str
    address: Optional[str] = None
    neighborhood: Optional[str] = None
    country: str = "CA"
    coordinates: Optional[Coordinates] = None


@dataclass(slots=True)
class Contact:
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    booking_url: Optional[str] = None


@dataclass(slots=True)
class Availability:
    is_open: Optional[bool] = None
    hours: Optional[Dict[str, str]] = None


@dataclass(slots=True)
class UnifiedPlace:
    """Normalized, vertical-aware view of a :class:`PlaceRecord`. Built on every read."""

    id: str
    name: str
    slug: str
    vertical: str
    category: str
    location: Location
    contact: Contact
    attributes: PlaceAttributes
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    review_count: int = 0
    tags: List[str] = field(default_factory=list)
    availability: Optional[Availability] = None
    sources: List[SourceRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        payload["updated_at"] = self.updated_at.isoformat()
        return payload


# ---------- Search ----------


@dataclass(slots=True)
class LocationGuess:
    city: Optional[str] = None
    province: Optional[str] = None


@dataclass(slots=True)
class SearchIntent:
    intent: str = "search"
    vertical: Optional[str] = None
    location: Optional[LocationGuess] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    query: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    limit: Optional[int] = None
    cursor: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SearchResult:
    records: List[UnifiedPlace]
    total: int
    next_cursor: Optional[str] = None
    facets: Optional[Dict[str, Dict[str, int]]] = None


# ---------- Actions & comparison ----------


@dataclass(slots=True)
class ActionDescriptor:
    type: str
    label: str
    params: Dict[str, Any] = field(default_factory=dict)
    available: bool = True


# ---------- Leads ----------


@dataclass(slots=True)
class LeadRequest:
    type: str
    vertical: str
    email: str
    province: str
    place_ids: List[str] = field(default_factory=list)
    city: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    requirements: Optional[str] = None
    timing: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LeadRecord:
    id: str
    action_type: str
    vertical: str
    province: str
    email: str
    status: str
    priority: str
    created_at: datetime
    updated_at: datetime
    city: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    place_ids: List[str] = field(default_factory=list)
    message: Optional[str] = None
    requirements: Optional[str] = None
    timing: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)
    assigned_to: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        payload["updated_at"] = self.updated_at.isoformat()
        return payload


@dataclass(slots=True)
class LeadReceipt:
    id: str
    status: str
    priority: str
    created_at: datetime
    estimated_response: str
    message: str
    next_steps: List[str] = field(default_factory=list)


# ---------- Sync ----------


@dataclass(slots=True)
class SyncResult:
    site_id: str
    created: int = 0
    updated: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
