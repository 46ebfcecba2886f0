"""Unified search over every vertical of the record store.

Rows are normalized into :class:`UnifiedPlace` objects, filtered, ordered by
rating (descending, missing ratings last) then id, and paginated with an
opaque cursor that encodes the ``(rating, id)`` of the last returned item.
"""

import base64
import binascii
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from agent_layer.core.db import RecordStore
from agent_layer.core.models import VERTICALS, PlaygroundAttributes, SearchIntent, SearchResult, UnifiedPlace
from agent_layer.etl.transform import normalize_city, to_unified_place

logger = logging.getLogger(__name__)

_NO_RATING = "none"


def encode_cursor(rating: Optional[float], place_id: str) -> str:
    score = _NO_RATING if rating is None else repr(float(rating))
    return base64.urlsafe_b64encode(f"{score}:{place_id}".encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: Optional[str]) -> Optional[Tuple[Optional[float], str]]:
    """Decode a cursor; anything malformed yields ``None`` so the caller restarts from page one."""
    if not cursor:
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        logger.debug("Ignoring undecodable cursor %r", cursor)
        return None

    score, sep, place_id = decoded.partition(":")
    if not sep or not place_id:
        logger.debug("Ignoring cursor without id %r", cursor)
        return None
    if score == _NO_RATING:
        return None, place_id
    try:
        rating = float(score)
    except ValueError:
        logger.debug("Ignoring cursor with bad score %r", cursor)
        return None
    if rating != rating:  # NaN never orders
        return None
    return rating, place_id


def sort_key(rating: Optional[float], place_id: str) -> Tuple[float, str]:
    return (float("inf") if rating is None else -rating, place_id)


def place_sort_key(place: UnifiedPlace) -> Tuple[float, str]:
    return sort_key(place.rating, place.id)


def _attribute(place: UnifiedPlace, name: str, default: Any = None) -> Any:
    return getattr(place.attributes, name, default)


def matches_filters(place: UnifiedPlace, intent: SearchIntent) -> bool:
    """All constraints of the intent must hold for ``place``; unset constraints are ignored."""
    location = intent.location
    filters = intent.filters or {}

    province = location.province if location else None
    if province and place.location.province != province.upper():
        return False

    city = normalize_city(location.city) if location and location.city else None
    if city and normalize_city(place.location.city) != city:
        return False

    if intent.query:
        term = intent.query.lower()
        in_name = term in (place.name or "").lower()
        in_description = term in (place.description or "").lower()
        in_tags = any(term in tag.lower() for tag in place.tags)
        if not (in_name or in_description or in_tags):
            return False

    if intent.tags and not set(intent.tags).issubset(place.tags):
        return False

    min_rating = filters.get("min_rating")
    if min_rating is not None and (place.rating or 0) < float(min_rating):
        return False

    for flag, attribute in (
        ("is_walk_in", "is_walk_in"),
        ("accepting_new_patients", "accepting_new_patients"),
        ("has_party_packages", "party_packages"),
    ):
        if filters.get(flag) and not _attribute(place, attribute, False):
            return False

    category = filters.get("category")
    if category:
        wanted = str(category).lower()
        if wanted not in place.category.lower() and not any(wanted in tag.lower() for tag in place.tags):
            return False

    if filters.get("feature"):
        wanted = str(filters["feature"]).lower()
        features = _attribute(place, "features", []) or []
        if not any(wanted in feature.lower() for feature in list(features) + place.tags):
            return False

    max_age = filters.get("max_age")
    if max_age is not None and isinstance(place.attributes, PlaygroundAttributes):
        if place.attributes.age_range.min > int(max_age):
            return False

    if filters.get("is_open") and place.availability and place.availability.is_open is False:
        return False

    return True


def compute_facets(places: Iterable[UnifiedPlace]) -> Dict[str, Dict[str, int]]:
    cities: Counter = Counter()
    tags: Counter = Counter()
    for place in places:
        cities[place.location.city] += 1
        tags.update(place.tags)
    return {"cities": dict(cities), "tags": dict(tags)}


class SearchEngine:
    """Filtered, faceted and cursor-paginated search over the unified place view."""

    def __init__(
        self,
        store: RecordStore,
        *,
        verticals: Sequence[str] = VERTICALS,
        default_limit: int = 10,
        max_limit: int = 50,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.store = store
        self.verticals = tuple(verticals)
        self.default_limit = default_limit
        self.max_limit = max_limit
        self._executor = executor or ThreadPoolExecutor(max_workers=len(self.verticals), thread_name_prefix="search")

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def _search_vertical(self, vertical: str, intent: SearchIntent) -> List[UnifiedPlace]:
        places = [to_unified_place(record) for record in self.store.scan_places(vertical)]
        return [place for place in places if matches_filters(place, intent)]

    def _collect(self, intent: SearchIntent) -> List[UnifiedPlace]:
        verticals = (intent.vertical,) if intent.vertical else self.verticals
        futures = {
            vertical: self._executor.submit(self._search_vertical, vertical, intent) for vertical in verticals
        }
        merged: List[UnifiedPlace] = []
        for vertical, future in futures.items():
            try:
                merged.extend(future.result())
            except Exception as exc:  # noqa: BLE001
                logger.warning("Search over vertical %s failed; skipping it: %s", vertical, exc)
        return merged

    def search(self, intent: SearchIntent) -> SearchResult:
        limit = self.clamp_limit(intent.limit)
        matched = sorted(self._collect(intent), key=place_sort_key)
        total = len(matched)

        position = decode_cursor(intent.cursor)
        remaining = matched
        if position is not None:
            after = sort_key(*position)
            remaining = [place for place in matched if place_sort_key(place) > after]

        page = remaining[:limit]
        next_cursor = None
        if len(remaining) > limit:
            last = page[-1]
            next_cursor = encode_cursor(last.rating, last.id)

        # Facets describe the whole filtered set and are only sent with the first page.
        facets = compute_facets(matched) if not intent.cursor else None

        logger.info(
            "Search vertical=%s city=%s query=%r matched=%d returned=%d",
            intent.vertical or "*",
            intent.location.city if intent.location else None,
            intent.query,
            total,
            len(page),
        )
        return SearchResult(records=page, total=total, next_cursor=next_cursor, facets=facets)

    def get_record(self, place_id: str, vertical: Optional[str] = None) -> Optional[UnifiedPlace]:
        """Look up one place; without a vertical each one is probed in a fixed order."""
        for candidate in (vertical,) if vertical else self.verticals:
            try:
                record = self.store.get_place(place_id, candidate)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Lookup of %s in %s failed: %s", place_id, candidate, exc)
                continue
            if record is not None:
                return to_unified_place(record)
        return None

    def get_by_slug(self, slug: str, city: str, vertical: Optional[str] = None) -> Optional[UnifiedPlace]:
        canonical_city = normalize_city(city)
        if not canonical_city:
            return None
        for candidate in (vertical,) if vertical else self.verticals:
            record = self.store.get_place_by_slug(slug, canonical_city, candidate)
            if record is not None:
                return to_unified_place(record)
        return None

    def city_counts(self, vertical: str) -> Dict[str, int]:
        counts: Counter = Counter()
        for record in self.store.scan_places(vertical):
            counts[record.city.lower()] += 1
        return dict(counts)
