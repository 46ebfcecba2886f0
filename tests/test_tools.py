import json

import pytest

from agent_layer.core import tools
from agent_layer.core.validation import ValidationError


@pytest.fixture
def handlers(seeded_layer):
    return tools.ToolHandlers(seeded_layer)


def _rpc(method, params=None, request_id=1):
    payload = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def test_search_routes_free_text(handlers):
    response = handlers.search({"query": "walk-in clinics in edmonton"})

    places = response["data"]["places"]
    assert [place["name"] for place in places] == ["Whyte Avenue Medical Clinic"]
    assert response["meta"]["total"] == 1
    assert response["meta"]["has_more"] is False
    assert "next_cursor" not in response["meta"]
    assert response["meta"]["query_id"].startswith("search_")
    assert response["data"]["facets"]["cities"] == {"edmonton": 1}
    assert [action["type"] for action in places[0]["actions"]][0] == "get_detail"
    assert [action["type"] for action in response["actions"]] == ["create_lead"]


def test_search_pages_with_cursor(handlers):
    first = handlers.search({"vertical": "clinic", "city": "Calgary", "limit": 2})

    assert first["meta"]["total"] == 3
    assert first["meta"]["has_more"] is True
    assert [action["type"] for action in first["actions"]] == ["compare", "create_lead"]

    second = handlers.search({"vertical": "clinic", "city": "Calgary", "limit": 2, "cursor": first["meta"]["next_cursor"]})

    assert len(second["data"]["places"]) == 1
    assert "facets" not in second["data"]
    names = {place["name"] for place in first["data"]["places"] + second["data"]["places"]}
    assert len(names) == 3


def test_search_keeps_unrouted_text_as_filter(handlers):
    response = handlers.search({"query": "Funderdome"})

    assert [place["name"] for place in response["data"]["places"]] == ["Edmonton Funderdome"]


def test_search_rejects_bad_arguments(handlers):
    with pytest.raises(ValidationError):
        handlers.search({"vertical": "casino"})
    with pytest.raises(ValidationError):
        handlers.search({"limit": "ten"})


def test_search_clamps_page_size(handlers):
    everything = handlers.search({"vertical": "clinic", "limit": 100})
    single = handlers.search({"vertical": "clinic", "limit": 0})

    assert len(everything["data"]["places"]) == 6
    assert everything["meta"]["has_more"] is False
    assert len(single["data"]["places"]) == 1
    assert single["meta"]["has_more"] is True


def test_get_place_found_and_missing(handlers, seeded_layer):
    place = seeded_layer.search.get_by_slug("edmonton-funderdome", "edmonton")

    found = handlers.get_place({"place_id": place.id})
    missing = handlers.get_place({"place_id": "place_nope"})

    assert found["data"]["name"] == "Edmonton Funderdome"
    assert found["meta"]["query_id"] == f"detail_{place.id}"
    assert found["suggestions"][0] == "See more playgrounds in edmonton"
    assert missing["data"] is None
    assert missing["suggestions"] == ["Try searching with different criteria"]


def test_compare_reports_missing_ids(handlers, seeded_layer):
    place = seeded_layer.search.get_by_slug("edmonton-funderdome", "edmonton")

    response = handlers.compare({"place_ids": [place.id, "place_nope"]})

    assert response["data"] == {"comparison": None}
    assert response["meta"]["missing"] == ["place_nope"]
    assert response["meta"]["total"] == 1
    assert response["actions"] == []


def test_compare_single_place_suggests_more(handlers, seeded_layer):
    place = seeded_layer.search.get_by_slug("edmonton-funderdome", "edmonton")

    response = handlers.compare({"place_ids": [place.id]})

    assert response["data"] == {"comparison": None}
    assert response["suggestions"] == ["Need at least 2 valid places to compare"]
    assert response["actions"] == []


@pytest.mark.parametrize("place_ids", [[], [f"place_{index}" for index in range(6)]])
def test_compare_rejects_empty_or_oversized_lists(handlers, place_ids):
    with pytest.raises(ValidationError):
        handlers.compare({"place_ids": place_ids})


def test_compare_offers_shortlist(handlers, seeded_layer):
    ids = [record.id for record in seeded_layer.store.scan_places("playground")][:3]

    response = handlers.compare({"place_ids": ids})

    assert len(response["data"]["comparison"]["places"]) == 3
    assert response["actions"][0]["params"] == {"place_ids": ids, "type": "shortlist"}


def test_create_and_fetch_lead(handlers):
    created = handlers.create_lead(
        {"type": "contact", "vertical": "clinic", "email": "sam@example.com", "place_ids": ["place_1"]}
    )
    lead_id = created["data"]["lead_id"]

    assert created["data"]["status"] == "accepted"
    assert created["data"]["priority"] == "high"
    assert created["actions"][0]["params"] == {"lead_id": lead_id}

    fetched = handlers.get_lead({"lead_id": lead_id})
    assert fetched["data"]["status"] == "new"
    assert fetched["data"]["province"] == "AB"


def test_create_lead_validates_email(handlers):
    with pytest.raises(ValidationError):
        handlers.create_lead({"type": "match", "vertical": "clinic", "email": "nope"})


def test_discover(handlers):
    response = handlers.discover({"query": "Walk-in clinics in Edmonton"})

    assert response["data"]["vertical"] == "clinic"
    assert response["data"]["confidence"] == 1.0
    assert response["data"]["intent"]["location"]["city"] == "edmonton"
    assert response["actions"][0]["params"]["vertical"] == "clinic"


def test_rpc_initialize_and_list(handlers):
    body, status = tools.handle_rpc(handlers, _rpc("initialize"))

    assert status == 200
    assert body["result"]["protocolVersion"] == tools.PROTOCOL_VERSION
    assert body["result"]["serverInfo"]["name"] == "agent-layer"

    body, status = tools.handle_rpc(handlers, _rpc("tools/list", request_id=2))
    names = [tool["name"] for tool in body["result"]["tools"]]
    assert body["id"] == 2
    assert set(names) == set(handlers.registry())
    assert len(names) == 6


def test_rpc_tools_call(handlers):
    body, status = tools.handle_rpc(
        handlers,
        _rpc("tools/call", {"name": "agentlayer_discover", "arguments": {"query": "indoor playground edmonton"}}),
    )

    assert status == 200
    result = body["result"]
    assert result["isError"] is False
    assert result["structuredContent"]["data"]["vertical"] == "playground"
    assert json.loads(result["content"][0]["text"]) == result["structuredContent"]


def test_rpc_compare_with_one_id(handlers, seeded_layer):
    place = seeded_layer.search.get_by_slug("edmonton-funderdome", "edmonton")

    body, status = tools.handle_rpc(
        handlers, _rpc("tools/call", {"name": "agentlayer_compare", "arguments": {"place_ids": [place.id]}})
    )

    assert status == 200
    assert body["result"]["isError"] is False
    assert body["result"]["structuredContent"]["data"]["comparison"] is None


@pytest.mark.parametrize(
    ("payload", "code", "status"),
    [
        (["not", "an", "object"], tools.INVALID_REQUEST, 400),
        ({"jsonrpc": "1.0", "id": 1, "method": "initialize"}, tools.INVALID_REQUEST, 400),
        (_rpc("tools/destroy"), tools.METHOD_NOT_FOUND, 400),
        (_rpc("tools/call", {"name": "agentlayer_unknown"}), tools.INVALID_PARAMS, 400),
        (_rpc("tools/call", {"name": "agentlayer_get_place", "arguments": {}}), tools.INVALID_PARAMS, 400),
        (_rpc("tools/call", {"name": "agentlayer_search", "arguments": ["x"]}), tools.INVALID_PARAMS, 400),
    ],
)
def test_rpc_errors(handlers, payload, code, status):
    body, http_status = tools.handle_rpc(handlers, payload)

    assert http_status == status
    assert body["error"]["code"] == code


def test_rpc_internal_error(handlers, monkeypatch):
    def explode(args):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(handlers, "discover", explode)

    body, status = tools.handle_rpc(handlers, _rpc("tools/call", {"name": "agentlayer_discover", "arguments": {"query": "x"}}))

    assert status == 500
    assert body["error"] == {"code": tools.INTERNAL_ERROR, "message": "Internal error"}


def test_to_jsonable_handles_nested_dataclasses(place_factory):
    place = place_factory("clinic", latitude=53.5, longitude=-113.5)

    payload = tools.to_jsonable({"items": [place]})

    assert payload["items"][0]["location"]["coordinates"] == {"lat": 53.5, "lng": -113.5}
    assert payload["items"][0]["created_at"] == "2024-01-01T00:00:00+00:00"
