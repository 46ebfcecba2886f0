"""Agent-facing tool handlers, their catalog, and the JSON-RPC 2.0 dispatcher.

Every handler takes a plain ``dict`` of arguments and returns the envelope::

    {"data": ..., "meta": {"query_id", "duration_ms", ...}, "actions": [...], "suggestions": [...]}
"""

import json
import logging
import time
import uuid
from dataclasses import fields, is_dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from agent_layer.core import compare as comparison
from agent_layer.core.intent_router import get_suggestions, intent_confidence, parse_query
from agent_layer.core.models import VERTICALS, ActionDescriptor, LocationGuess, SearchIntent
from agent_layer.core.services import AgentLayer
from agent_layer.core.validation import (
    ValidationError,
    parse_compare_ids,
    parse_lead_args,
    parse_search_args,
    parse_status_update,
)
from agent_layer.etl.transform import normalize_city

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {
    "name": "agent-layer",
    "version": "0.1.0",
    "description": "Alberta business directory for AI agents",
}

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses and datetimes into JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def _query_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def _envelope(
    data: Any,
    *,
    query_id: str,
    started: float,
    actions: Sequence[ActionDescriptor] = (),
    suggestions: Sequence[str] = (),
    **meta: Any,
) -> Dict[str, Any]:
    meta_payload = {key: value for key, value in meta.items() if value is not None}
    meta_payload["query_id"] = query_id
    meta_payload["duration_ms"] = int((time.monotonic() - started) * 1000)
    return {
        "data": to_jsonable(data),
        "meta": to_jsonable(meta_payload),
        "actions": to_jsonable(list(actions)),
        "suggestions": list(suggestions),
    }


def _required_str(args: Mapping[str, Any], name: str) -> str:
    value = args.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def _optional_vertical(args: Mapping[str, Any]) -> Optional[str]:
    vertical = args.get("vertical")
    if vertical in (None, ""):
        return None
    if vertical not in VERTICALS:
        raise ValidationError(f"vertical must be one of: {', '.join(VERTICALS)}")
    return vertical


class ToolHandlers:
    def __init__(self, layer: AgentLayer) -> None:
        self.layer = layer

    def build_intent(self, args: Mapping[str, Any], *, default_limit: Optional[int] = None) -> SearchIntent:
        """Turn validated search arguments into an intent, routing free text when no vertical is given."""
        settings = self.layer.settings
        params = parse_search_args(args, max_limit=settings.max_page_size)

        filters = dict(params["filters"])
        if params["min_rating"] is not None:
            filters["min_rating"] = params["min_rating"]

        province = (params["province"] or settings.default_province).upper()
        location = LocationGuess(city=normalize_city(params["city"]), province=province)
        query = params["query"]
        vertical = params["vertical"]

        if query and not vertical:
            parsed = parse_query(query)
            vertical = parsed.vertical
            if parsed.location and not params["city"]:
                location = LocationGuess(city=parsed.location.city, province=province)
            filters = {**filters, **parsed.filters}
            if parsed.vertical or parsed.location:
                # The sentence was understood; it is no longer a literal text filter.
                query = None

        return SearchIntent(
            intent="search",
            vertical=vertical,
            location=location,
            filters=filters,
            query=query,
            tags=params["tags"],
            limit=params["limit"] or default_limit or settings.search_page_size,
            cursor=params["cursor"],
        )

    # ---------- tools ----------

    def search(self, args: Mapping[str, Any], *, default_limit: Optional[int] = None) -> Dict[str, Any]:
        started = time.monotonic()
        intent = self.build_intent(args, default_limit=default_limit)
        result = self.layer.search.search(intent)

        places = []
        for place in result.records:
            payload = place.to_dict()
            payload["actions"] = to_jsonable(comparison.generate_actions(place))
            places.append(payload)

        data: Dict[str, Any] = {"places": places}
        if result.facets is not None:
            data["facets"] = result.facets

        return _envelope(
            data,
            query_id=_query_id("search"),
            started=started,
            actions=comparison.search_actions(result.records, intent.vertical),
            suggestions=get_suggestions(args.get("query") or ""),
            total=result.total,
            has_more=result.next_cursor is not None,
            next_cursor=result.next_cursor,
        )

    def get_place(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        place_id = _required_str(args, "place_id")
        place = self.layer.search.get_record(place_id, _optional_vertical(args))
        query_id = f"detail_{place_id}"

        if place is None:
            return _envelope(
                None,
                query_id=query_id,
                started=started,
                suggestions=["Try searching with different criteria"],
            )

        return _envelope(
            place.to_dict(),
            query_id=query_id,
            started=started,
            actions=comparison.generate_actions(place),
            suggestions=[
                f"See more {place.vertical}s in {place.location.city}",
                f"Compare with similar {place.vertical}s",
            ],
        )

    def compare(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        place_ids = parse_compare_ids(args)
        places = [self.layer.search.get_record(place_id) for place_id in place_ids]
        missing = [place_id for place_id, place in zip(place_ids, places) if place is None]

        outcome = comparison.compare(places)
        actions: List[ActionDescriptor] = []
        if outcome["comparison"] is not None:
            found = [place.id for place in places if place is not None]
            actions.append(
                ActionDescriptor(
                    type="create_lead",
                    label="Request quotes from all",
                    params={"place_ids": found, "type": "shortlist"},
                )
            )

        return _envelope(
            {"comparison": outcome["comparison"]},
            query_id=_query_id("compare"),
            started=started,
            actions=actions,
            suggestions=outcome["suggestions"],
            total=len(place_ids) - len(missing),
            missing=missing or None,
        )

    def create_lead(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        request = parse_lead_args(args, default_province=self.layer.settings.default_province)
        receipt = self.layer.leads.create_lead(request)

        return _envelope(
            {
                "lead_id": receipt.id,
                "status": receipt.status,
                "priority": receipt.priority,
                "created_at": receipt.created_at,
                "estimated_response": receipt.estimated_response,
                "message": receipt.message,
                "next_steps": receipt.next_steps,
            },
            query_id=_query_id("lead"),
            started=started,
            actions=[
                ActionDescriptor(type="get_detail", label="Check lead status", params={"lead_id": receipt.id})
            ],
            suggestions=receipt.next_steps,
        )

    def get_lead(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        lead_id = _required_str(args, "lead_id")
        lead = self.layer.leads.get_lead(lead_id)
        return _envelope(lead.to_dict() if lead else None, query_id=lead_id, started=started)

    def update_lead(self, lead_id: str, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        update = parse_status_update(args)
        lead = self.layer.leads.update_status(lead_id, update["status"], assigned_to=update["assigned_to"])
        return _envelope(lead.to_dict() if lead else None, query_id=lead_id, started=started)

    def discover(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        query = _required_str(args, "query")
        intent = parse_query(query, args.get("context") if isinstance(args.get("context"), dict) else None)

        actions: List[ActionDescriptor] = []
        if intent.vertical:
            actions.append(
                ActionDescriptor(
                    type="get_detail",
                    label=f"Search {intent.vertical}s",
                    params={"vertical": intent.vertical, "query": query},
                )
            )

        return _envelope(
            {"vertical": intent.vertical, "confidence": intent_confidence(intent), "intent": intent},
            query_id=_query_id("discover"),
            started=started,
            actions=actions,
            suggestions=get_suggestions(query),
        )

    def registry(self) -> Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]]:
        return {
            "agentlayer_search": self.search,
            "agentlayer_get_place": self.get_place,
            "agentlayer_compare": self.compare,
            "agentlayer_create_lead": self.create_lead,
            "agentlayer_get_lead": self.get_lead,
            "agentlayer_discover": self.discover,
        }


# ---------- Catalog ----------

_VERTICAL_SCHEMA = {"type": "string", "enum": list(VERTICALS), "description": "Business vertical"}

TOOL_CATALOG: List[Dict[str, Any]] = [
    {
        "name": "agentlayer_search",
        "description": (
            "Search for places (clinics, playgrounds, wellness centers) in Alberta. "
            "Returns structured data with actionable next steps."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "maxLength": 200, "description": "Natural language search query"},
                "vertical": _VERTICAL_SCHEMA,
                "city": {"type": "string", "description": "City name"},
                "province": {"type": "string", "default": "AB", "description": "Province code"},
                "filters": {"type": "object", "description": "Additional filters"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "min_rating": {"type": "number", "minimum": 0, "maximum": 5},
                "limit": {"type": "integer", "minimum": 1, "maximum": 50, "default": 10},
                "cursor": {"type": "string", "description": "Cursor from a previous page"},
            },
        },
    },
    {
        "name": "agentlayer_get_place",
        "description": "Get detailed information about a specific place by ID",
        "inputSchema": {
            "type": "object",
            "properties": {"place_id": {"type": "string", "description": "Unique place ID"}, "vertical": _VERTICAL_SCHEMA},
            "required": ["place_id"],
        },
    },
    {
        "name": "agentlayer_compare",
        "description": "Compare multiple places side by side",
        "inputSchema": {
            "type": "object",
            "properties": {
                "place_ids": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 1,
                    "maxItems": 5,
                    "description": "IDs of places to compare",
                }
            },
            "required": ["place_ids"],
        },
    },
    {
        "name": "agentlayer_create_lead",
        "description": "Create a lead (inquiry, booking request, or match request)",
        "inputSchema": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["match", "shortlist", "contact", "book"]},
                "vertical": _VERTICAL_SCHEMA,
                "place_ids": {"type": "array", "items": {"type": "string"}},
                "email": {"type": "string", "format": "email"},
                "phone": {"type": "string"},
                "name": {"type": "string"},
                "requirements": {"type": "string"},
                "timing": {"type": "string", "enum": ["asap", "this_week", "this_month", "flexible"]},
                "city": {"type": "string"},
                "province": {"type": "string", "default": "AB"},
                "message": {"type": "string"},
            },
            "required": ["type", "vertical", "email"],
        },
    },
    {
        "name": "agentlayer_get_lead",
        "description": "Get status of an existing lead",
        "inputSchema": {
            "type": "object",
            "properties": {"lead_id": {"type": "string", "description": "Lead ID"}},
            "required": ["lead_id"],
        },
    },
    {
        "name": "agentlayer_discover",
        "description": "Analyze a natural language query to determine the business vertical and intent",
        "inputSchema": {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Natural language query to analyze"}},
            "required": ["query"],
        },
    },
]


# ---------- JSON-RPC ----------


def _rpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}


def _call_tool(handlers: ToolHandlers, params: Mapping[str, Any]) -> Dict[str, Any]:
    name = params.get("name")
    arguments = params.get("arguments") or {}
    handler = handlers.registry().get(name)
    if handler is None:
        raise ValidationError(f"Unknown tool: {name}")
    if not isinstance(arguments, dict):
        raise ValidationError("arguments must be an object")

    result = handler(arguments)
    return {
        "content": [{"type": "text", "text": json.dumps(result, ensure_ascii=False)}],
        "structuredContent": result,
        "isError": False,
    }


def handle_rpc(handlers: ToolHandlers, payload: Any) -> Tuple[Dict[str, Any], int]:
    """Dispatch one JSON-RPC request; returns the response body and an HTTP status."""
    if not isinstance(payload, dict):
        return _rpc_error(None, INVALID_REQUEST, "Invalid Request: body must be an object"), 400

    request_id = payload.get("id")
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        return _rpc_error(request_id, INVALID_REQUEST, 'Invalid Request: jsonrpc must be "2.0"'), 400

    method = payload.get("method")
    params = payload.get("params") or {}
    if not isinstance(params, dict):
        return _rpc_error(request_id, INVALID_PARAMS, "params must be an object"), 400

    try:
        if method == "initialize":
            result: Dict[str, Any] = {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}, "prompts": {}, "resources": {}},
                "serverInfo": SERVER_INFO,
            }
        elif method == "tools/list":
            result = {"tools": TOOL_CATALOG}
        elif method == "tools/call":
            result = _call_tool(handlers, params)
        elif method == "resources/list":
            result = {"resources": []}
        elif method == "prompts/list":
            result = {"prompts": []}
        else:
            return _rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}"), 400
    except ValidationError as exc:
        return _rpc_error(request_id, INVALID_PARAMS, str(exc)), 400
    except Exception as exc:  # noqa: BLE001
        logger.exception("JSON-RPC %s failed: %s", method, exc)
        return _rpc_error(request_id, INTERNAL_ERROR, "Internal error"), 500

    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}, 200
