import pytest

from agent_layer.core.models import ClinicAttributes, GeneralAttributes, PlaygroundAttributes
from agent_layer.etl import transform


def test_normalize_city():
    assert transform.normalize_city("St. Albert") == "st-albert"
    assert transform.normalize_city("  Red   Deer ") == "red-deer"
    assert transform.normalize_city("Sherwood-Park") == "sherwood-park"
    assert transform.normalize_city("   ") is None
    assert transform.normalize_city(None) is None


def test_create_slug():
    assert transform.create_slug("Calgary Pump & Compressor") == "calgary-pump-compressor"
    assert transform.create_slug("  The Edmonton Treehouse!  ") == "the-edmonton-treehouse"


def test_merge_tags_keeps_first_seen_order():
    merged = transform.merge_tags(["walk-in", "family"], ["family", None, " "], ["lab", "walk-in"])
    assert merged == ["walk-in", "family", "lab"]


def test_merge_tags_wraps_scalars():
    assert transform.merge_tags("walk-in", ["lab"], None, 7) == ["walk-in", "lab", "7"]
    assert transform.as_list(None) == []
    assert transform.as_list(("a", "b")) == ["a", "b"]


def test_parse_age_range_variants():
    assert transform.parse_age_range("0-12 years") == transform.AgeRange(min=0, max=12)
    assert transform.parse_age_range("All ages") == transform.AgeRange(min=0, max=None)
    assert transform.parse_age_range("3+") == transform.AgeRange(min=3, max=None)
    assert transform.parse_age_range({"min": 2, "max": 8}) == transform.AgeRange(min=2, max=8)
    assert transform.parse_age_range(None) == transform.AgeRange(min=0, max=12)


def test_to_place_draft_maps_raw_fields():
    raw = {
        "id": "whyte-ave-clinic",
        "name": "Whyte Avenue Medical Clinic",
        "city": "Edmonton",
        "category": "walk-in-clinic",
        "phone": "(780) 433-2020",
        "rating": 4.2,
        "ratingCount": 178,
        "latitude": 53.5181,
        "longitude": -113.4914,
    }

    draft = transform.to_place_draft(raw, site_id="albertaclinics", vertical="clinic")

    assert draft.city == "edmonton"
    assert draft.province == "AB"
    assert draft.slug == "whyte-avenue-medical-clinic"
    assert draft.review_count == 178
    assert (draft.lat, draft.lng) == (53.5181, -113.4914)
    assert draft.tags == ["walk-in-clinic"]
    assert draft.sources[0].kind == "partner"
    assert draft.sources[0].external_id == "whyte-ave-clinic"
    assert draft.raw_data["category"] == "walk-in-clinic"


def test_to_place_draft_drops_invalid_values():
    raw = {"id": "x", "name": "X", "city": "calgary", "rating": 7, "latitude": 51.0, "ratingCount": -3}

    draft = transform.to_place_draft(raw, site_id="s", vertical="food")

    assert draft.rating is None
    assert draft.lat is None and draft.lng is None
    assert draft.review_count == 0


def test_to_place_draft_requires_identity_fields():
    with pytest.raises(ValueError) as excinfo:
        transform.to_place_draft({"id": "x", "city": ""}, site_id="s", vertical="food")
    assert "name" in str(excinfo.value)
    assert "city" in str(excinfo.value)


def test_clinic_projection_infers_flags(place_factory):
    place = place_factory(
        "clinic",
        category="family-clinic",
        tags=["walk-in", "primary-care"],
        description="Family clinic accepting new patients.",
        features=["Lab Services"],
        email="info@clinic.test",
    )

    assert isinstance(place.attributes, ClinicAttributes)
    assert place.attributes.is_walk_in is True
    assert place.attributes.accepting_new_patients is True
    assert place.attributes.services == ["Lab Services"]
    assert place.category == "family-clinic"
    assert place.contact.email == "info@clinic.test"


def test_playground_projection(place_factory):
    place = place_factory(
        "playground",
        tags=["indoor-playground", "birthday-parties"],
        features=["Slides"],
        ageRange="0-8 years",
        latitude=53.6,
        longitude=-113.6,
    )

    assert isinstance(place.attributes, PlaygroundAttributes)
    assert place.attributes.party_packages is True
    assert place.attributes.age_range.max == 8
    assert place.category == "indoor-playground"
    assert place.location.coordinates.lat == 53.6


def test_explicit_raw_flags_win(place_factory):
    place = place_factory("clinic", tags=["walk-in"], isWalkIn=False, isOpen=False)

    assert place.attributes.is_walk_in is False
    assert place.availability.is_open is False


def test_general_projection_for_other_verticals(place_factory):
    place = place_factory("industrial", category="automation", features=["PLC Programming"])

    assert isinstance(place.attributes, GeneralAttributes)
    assert place.attributes.features == ["PLC Programming"]
    assert place.category == "automation"
    assert place.availability is None


def test_scalar_list_fields_are_not_split_into_characters(place_factory):
    playground = place_factory("playground", features="Slides", tags="birthday")
    clinic = place_factory("clinic", services="Lab")
    wellness = place_factory("wellness", services="Massage")

    assert playground.attributes.features == ["Slides"]
    assert playground.tags == ["birthday"]
    assert clinic.attributes.services == ["Lab"]
    assert wellness.attributes.services == ["Massage"]
