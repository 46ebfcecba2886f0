from agent_layer.core import intent_router


def test_walk_in_clinic_query_is_fully_resolved():
    intent = intent_router.parse_query("Walk-in clinics in Edmonton")

    assert intent.vertical == "clinic"
    assert intent.location.city == "edmonton"
    assert intent.location.province == "AB"
    assert intent.filters == {"is_walk_in": True}
    assert intent.intent == "search"
    assert intent_router.intent_confidence(intent) == 1.0


def test_gazetteer_handles_st_albert():
    intent = intent_router.parse_query("indoor playground st. albert")

    assert intent.vertical == "playground"
    assert intent.location.city == "st-albert"


def test_location_fallback_stops_at_stop_words():
    intent = intent_router.parse_query("yoga studios in canmore area")

    assert intent.vertical == "wellness"
    assert intent.location.city == "canmore"


def test_location_fallback_caps_at_three_words():
    location = intent_router.detect_location("spa in grande prairie north side")

    assert location.city == "grande-prairie-north"


def test_walk_in_suffix_is_not_a_preposition():
    assert intent_router.detect_location("walk-in clinic") is None


def test_vertical_tie_stays_unresolved():
    # "spa" (wellness) and "hotel" (travel) score the same.
    assert intent_router.detect_vertical("spa hotel") is None
    assert intent_router.detect_vertical("nothing relevant here") is None


def test_whole_word_match_scores_extra():
    scores = intent_router.score_verticals("massage")
    assert scores["wellness"] == 1.5


def test_intent_type_precedence():
    assert intent_router.detect_intent_type("best clinic to book") == "recommend"
    assert intent_router.detect_intent_type("compare and book") == "compare"
    assert intent_router.detect_intent_type("book an appointment") == "book"
    assert intent_router.detect_intent_type("how to contact them") == "inquire"
    assert intent_router.detect_intent_type("clinics") == "search"


def test_playground_filters():
    intent = intent_router.parse_query("trampoline birthday party for toddler in calgary")

    assert intent.vertical == "playground"
    assert intent.filters == {"has_party_packages": True, "max_age": 3, "feature": "trampoline"}


def test_generic_filters_apply_without_vertical():
    filters = intent_router.extract_filters("highly rated and open now", None)

    assert filters == {"is_open": True, "min_rating": 4}


def test_confidence_without_vertical_is_zero():
    intent = intent_router.parse_query("something in calgary")

    assert intent.vertical is None
    assert intent.location.city == "calgary"
    assert intent_router.intent_confidence(intent) == 0.0


def test_confidence_vertical_only():
    intent = intent_router.parse_query("dentist")

    assert intent_router.intent_confidence(intent) == 0.7


def test_suggestions_by_family():
    assert "playgrounds in Edmonton" in intent_router.get_suggestions("Play")
    assert "walk-in clinics Edmonton" in intent_router.get_suggestions("doctor near me")
    assert intent_router.get_suggestions("hardware") == []


def test_empty_query():
    intent = intent_router.parse_query("   ")

    assert intent.vertical is None
    assert intent.location is None
    assert intent.query is None
