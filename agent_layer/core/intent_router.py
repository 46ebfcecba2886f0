"""Keyword-based intent routing for free-text place queries.

Everything here is a pure function of the query text and the tables below:
unresolved parts of the intent are left empty rather than raising.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from agent_layer.core.models import LocationGuess, SearchIntent
from agent_layer.etl.transform import normalize_city

DEFAULT_PROVINCE = "AB"

VERTICAL_KEYWORDS: Dict[str, List[str]] = {
    "clinic": [
        "clinic", "doctor", "physician", "medical", "health", "hospital",
        "urgent care", "walk-in", "patient", "medicine", "pediatric", "family doctor",
        "dentist", "physio", "physiotherapy", "chiropractor", "specialist",
    ],
    "playground": [
        "playground", "play", "indoor play", "trampoline", "birthday party",
        "kids", "children", "family fun", "activity centre", "play centre",
        "soft play", "climbing", "slides", "toddler",
    ],
    "wellness": [
        "wellness", "spa", "massage", "facial", "meditation", "yoga",
        "wellness centre", "relaxation", "therapy", "acupuncture", "holistic",
    ],
    "travel": [
        "hotel", "motel", "stay", "accommodation", "travel", "tourism",
        "visit", "attraction", "tour", "vacation", "bnb",
    ],
    "food": [
        "restaurant", "food", "cafe", "dining", "eat", "cuisine",
        "bakery", "coffee", "bar", "pub", "takeout",
    ],
    "industrial": [
        "industrial", "automation", "controls", "manufacturing", "factory",
        "equipment", "machinery", "engineering", "b2b", "supplier",
    ],
}

KNOWN_CITIES = (
    "calgary", "edmonton", "red deer", "lethbridge", "medicine hat", "fort mcmurray",
    "sherwood park", r"st\.?\s*albert", "airdrie", "okotoks", "cochrane", "spruce grove",
)
_CITY_PATTERN = re.compile(r"\b(" + "|".join(KNOWN_CITIES) + r")\b", re.IGNORECASE)
# "in" as a preposition, not the tail of "walk-in" or "check-in".
_IN_PATTERN = re.compile(r"(?<![\w-])in\s+(.+)$", re.IGNORECASE)
_LOCATION_STOP_WORDS = {"area", "region", "nearby", "for", "with", "that", "open", "near", "and"}
_LOCATION_MAX_WORDS = 3

# Checked in this order; the first family with a hit decides the intent type.
INTENT_KEYWORDS: Dict[str, List[str]] = {
    "recommend": ["recommend", "suggest", "best", "top", "good", "great", "favorite"],
    "compare": ["compare", "difference", "versus", "vs", "better than"],
    "book": ["book", "appointment", "schedule", "reserve", "reservation"],
    "inquire": ["contact", "reach", "call", "email", "inquiry", "question"],
}

SUGGESTIONS: List[tuple] = [
    (("play",), ["playgrounds in Edmonton", "indoor playgrounds Calgary", "birthday party venues"]),
    (
        ("clinic", "doctor"),
        [
            "walk-in clinics Edmonton",
            "family doctors accepting new patients Calgary",
            "pediatric clinics near me",
        ],
    ),
    (("spa", "massage"), ["massage therapy Calgary", "wellness centres Edmonton", "spas with direct billing"]),
]


def _contains_any(query: str, phrases) -> bool:
    return any(phrase in query for phrase in phrases)


def _is_whole_word(query: str, keyword: str) -> bool:
    return re.search(r"(?:^|\s)" + re.escape(keyword) + r"(?:\s|$)", query) is not None


def score_verticals(query: str) -> Dict[str, float]:
    scores = {vertical: 0.0 for vertical in VERTICAL_KEYWORDS}
    for vertical, keywords in VERTICAL_KEYWORDS.items():
        for keyword in keywords:
            if keyword in query:
                scores[vertical] += 1
                if _is_whole_word(query, keyword):
                    scores[vertical] += 0.5
    return scores


def detect_vertical(query: str) -> Optional[str]:
    """Return the strictly best scoring vertical; ties and zero scores stay unresolved."""
    scores = score_verticals(query)
    best_score = max(scores.values())
    if best_score <= 0:
        return None
    leaders = [vertical for vertical, score in scores.items() if score == best_score]
    return leaders[0] if len(leaders) == 1 else None


def detect_location(query: str) -> Optional[LocationGuess]:
    city_match = _CITY_PATTERN.search(query)
    if city_match:
        return LocationGuess(city=normalize_city(city_match.group(1)), province=DEFAULT_PROVINCE)

    in_match = _IN_PATTERN.search(query)
    if in_match:
        words = []
        for word in re.split(r"\s+", in_match.group(1).strip()):
            word = word.strip("?!.,;:")
            if not word or word in _LOCATION_STOP_WORDS:
                break
            words.append(word)
            if len(words) == _LOCATION_MAX_WORDS:
                break
        city = normalize_city(" ".join(words))
        if city:
            return LocationGuess(city=city, province=DEFAULT_PROVINCE)
    return None


def detect_intent_type(query: str) -> str:
    for intent_type, keywords in INTENT_KEYWORDS.items():
        if _contains_any(query, keywords):
            return intent_type
    return "search"


def extract_filters(query: str, vertical: Optional[str] = None) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}

    if _contains_any(query, ("open now", "currently open")):
        filters["is_open"] = True
    if _contains_any(query, ("highly rated", "4+ stars")):
        filters["min_rating"] = 4

    if vertical == "clinic":
        if _contains_any(query, ("walk in", "walk-in", "no appointment")):
            filters["is_walk_in"] = True
        if _contains_any(query, ("accepting new patients", "taking new patients")):
            filters["accepting_new_patients"] = True
        if _contains_any(query, ("pediatric", "children", "kids doctor")):
            filters["category"] = "pediatrics"

    if vertical == "playground":
        if _contains_any(query, ("birthday", "party")):
            filters["has_party_packages"] = True
        if _contains_any(query, ("toddler", "baby")):
            filters["max_age"] = 3
        if "trampoline" in query:
            filters["feature"] = "trampoline"

    return filters


def parse_query(text: str, context: Optional[Mapping[str, Any]] = None) -> SearchIntent:
    """Parse a natural language query into a structured :class:`SearchIntent`."""
    query = (text or "").strip().lower()
    vertical = detect_vertical(query) if query else None
    return SearchIntent(
        intent=detect_intent_type(query),
        vertical=vertical,
        location=detect_location(query) if query else None,
        filters=extract_filters(query, vertical),
        query=query or None,
        context=dict(context or {}),
    )


def get_suggestions(partial_query: str) -> List[str]:
    normalized = (partial_query or "").lower()
    suggestions: List[str] = []
    for triggers, items in SUGGESTIONS:
        if _contains_any(normalized, triggers):
            suggestions.extend(items)
    return suggestions


def intent_confidence(intent: SearchIntent) -> float:
    if not intent.vertical:
        return 0.0
    confidence = 0.7
    if intent.location:
        confidence += 0.15
    if intent.filters:
        confidence += 0.15
    return round(min(confidence, 1.0), 2)
