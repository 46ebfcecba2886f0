"""Side-by-side comparison of places and next-action generation."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from agent_layer.core.models import ActionDescriptor, UnifiedPlace

logger = logging.getLogger(__name__)

MIN_COMPARE = 2
RATING_SPREAD_THRESHOLD = 0.5
NOT_ENOUGH_PLACES = "Need at least 2 valid places to compare"

# (difference field, attribute name, description suffix) per vertical.
_PARTITION_RULES: Dict[str, List[tuple]] = {
    "clinic": [
        ("walk_in", "is_walk_in", "accept walk-ins"),
        ("accepting_new_patients", "accepting_new_patients", "accept new patients"),
    ],
    "playground": [
        ("party_packages", "party_packages", "offer party packages"),
    ],
}


def generate_actions(place: UnifiedPlace) -> List[ActionDescriptor]:
    """Actions an agent can take on ``place``; only capabilities the place supports are listed."""
    actions = [
        ActionDescriptor(
            type="get_detail",
            label="Get full details",
            params={"place_id": place.id, "vertical": place.vertical},
        )
    ]

    if place.contact.phone:
        actions.append(
            ActionDescriptor(type="call", label=f"Call {place.contact.phone}", params={"phone": place.contact.phone})
        )

    if place.contact.website:
        actions.append(ActionDescriptor(type="visit", label="Visit website", params={"url": place.contact.website}))

    is_clinic = place.vertical == "clinic"
    actions.append(
        ActionDescriptor(
            type="create_lead",
            label="Request appointment" if is_clinic else "Inquire availability",
            params={"place_id": place.id, "vertical": place.vertical, "type": "book" if is_clinic else "contact"},
        )
    )

    coordinates = place.location.coordinates
    if coordinates is not None:
        actions.append(
            ActionDescriptor(
                type="navigate",
                label="Get directions",
                params={"lat": coordinates.lat, "lng": coordinates.lng, "address": place.location.address},
            )
        )

    return actions


def search_actions(places: Sequence[UnifiedPlace], vertical: Optional[str]) -> List[ActionDescriptor]:
    """Result-set level actions attached to a search response."""
    place_ids = [place.id for place in places]
    actions: List[ActionDescriptor] = []
    if len(places) >= MIN_COMPARE:
        actions.append(
            ActionDescriptor(type="compare", label=f"Compare {len(places)} places", params={"place_ids": place_ids})
        )
    actions.append(
        ActionDescriptor(
            type="create_lead",
            label="Get matched with options",
            params={"place_ids": place_ids, "vertical": vertical, "type": "match"},
        )
    )
    return actions


def extract_differences(places: Sequence[UnifiedPlace]) -> List[Dict[str, Any]]:
    differences: List[Dict[str, Any]] = []

    rated = [place for place in places if place.rating is not None]
    if len(rated) > 1:
        highest = max(rated, key=lambda place: place.rating)
        lowest = min(rated, key=lambda place: place.rating)
        if highest.rating - lowest.rating >= RATING_SPREAD_THRESHOLD:
            differences.append(
                {
                    "field": "rating",
                    "description": f"Rating varies from {lowest.rating:.1f} to {highest.rating:.1f}",
                    "highest": highest.name,
                }
            )

    verticals = {place.vertical for place in places}
    if len(verticals) == 1:
        for field, attribute, suffix in _PARTITION_RULES.get(verticals.pop(), []):
            subset = [place for place in places if getattr(place.attributes, attribute, False)]
            # Only a strict partition says anything useful.
            if 0 < len(subset) < len(places):
                differences.append(
                    {
                        "field": field,
                        "description": f"{len(subset)} of {len(places)} {suffix}",
                        "places": [place.name for place in subset],
                    }
                )

    return differences


def comparison_recommendations(places: Sequence[UnifiedPlace]) -> List[str]:
    recommendations: List[str] = []

    rated = [place for place in places if place.rating is not None]
    if rated:
        best = max(rated, key=lambda place: place.rating)
        recommendations.append(f"Best rated: {best.name} ({best.rating}★)")

    if places:
        most_reviewed = max(places, key=lambda place: place.review_count)
        if most_reviewed.review_count > 0:
            recommendations.append(f"Most reviewed: {most_reviewed.name} ({most_reviewed.review_count} reviews)")

    return recommendations


def compare(places: Sequence[Optional[UnifiedPlace]]) -> Dict[str, Any]:
    """Compare the non-null places; fewer than two yields an empty comparison and a suggestion."""
    valid = [place for place in places if place is not None]
    if len(valid) < MIN_COMPARE:
        logger.info("Comparison skipped: %d valid place(s)", len(valid))
        return {"comparison": None, "suggestions": [NOT_ENOUGH_PLACES]}

    comparison = {
        "places": [
            {
                "id": place.id,
                "name": place.name,
                "vertical": place.vertical,
                "rating": place.rating,
                "review_count": place.review_count,
                "location": place.location,
                "contact": place.contact,
                "attributes": place.attributes,
            }
            for place in valid
        ],
        "differences": extract_differences(valid),
        "recommendations": comparison_recommendations(valid),
    }
    return {"comparison": comparison, "suggestions": []}
