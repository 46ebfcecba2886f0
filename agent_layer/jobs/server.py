"""HTTP entrypoint exposing the REST API and the JSON-RPC tool endpoint."""

from __future__ import annotations

import logging
import threading
import time
from functools import lru_cache
from typing import Any, Dict, Mapping

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from agent_layer.core.config import get_settings
from agent_layer.core.leads import InvalidTransition
from agent_layer.core.services import AgentLayer, build_layer
from agent_layer.core.tools import SERVER_INFO, TOOL_CATALOG, ToolHandlers, handle_rpc, to_jsonable
from agent_layer.core.validation import ValidationError, parse_lead_filters

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

_BOOLEAN_FILTERS = ("is_walk_in", "accepting_new_patients", "has_party_packages", "is_open")
_VALUE_FILTERS = ("category", "feature", "max_age")
_TRUE_VALUES = {"1", "true", "yes", "on"}

_metrics_lock = threading.Lock()
_metrics_cache: Dict[str, Any] = {"expires_at": 0.0, "payload": None}


@lru_cache(maxsize=1)
def get_layer() -> AgentLayer:
    """Lazily build the shared components on first use."""
    return build_layer(get_settings())


def get_handlers() -> ToolHandlers:
    return ToolHandlers(get_layer())


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _search_args_from_query(args: Mapping[str, str]) -> Dict[str, Any]:
    search_args: Dict[str, Any] = {
        key: args.get(key)
        for key in ("query", "vertical", "city", "province", "min_rating", "limit", "cursor", "tags")
        if args.get(key) not in (None, "")
    }
    if "query" not in search_args and args.get("q"):
        search_args["query"] = args["q"]

    filters: Dict[str, Any] = {}
    for key in _BOOLEAN_FILTERS:
        if key in args:
            filters[key] = args[key].strip().lower() in _TRUE_VALUES
    for key in _VALUE_FILTERS:
        if args.get(key):
            filters[key] = args[key]
    if "max_age" in filters:
        try:
            filters["max_age"] = int(filters["max_age"])
        except ValueError as exc:
            raise ValidationError("max_age must be an integer") from exc
    if filters:
        search_args["filters"] = filters
    return search_args


def _not_found(envelope: Dict[str, Any], message: str) -> Any:
    return jsonify({**envelope, "error": message}), 404


# ---------- Errors ----------


@app.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError) -> Any:
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(InvalidTransition)
def handle_invalid_transition(exc: InvalidTransition) -> Any:
    return jsonify({"error": str(exc)}), 409


@app.errorhandler(Exception)
def handle_unexpected_error(exc: Exception) -> Any:
    if isinstance(exc, HTTPException):
        return jsonify({"error": exc.description}), exc.code
    logger.exception("Unhandled error on %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": "internal error"}), 500


# ---------- Operational routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    layer = get_layer()
    try:
        layer.store.ping()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Health check could not reach the store: %s", exc)
        return jsonify({"status": "degraded", "store": "unavailable"}), 503
    return jsonify({"status": "ok", "store": "ok", "connectors": len(layer.registry)}), 200


def _collect_metrics(layer: AgentLayer) -> Dict[str, Any]:
    by_vertical = layer.store.count_places_by_vertical()
    return {
        "places": {"total": sum(by_vertical.values()), "by_vertical": by_vertical},
        "leads": {"total": layer.store.count_leads()},
        "connectors": layer.registry.site_ids(),
    }


@app.get("/metrics")
def metrics() -> Any:
    layer = get_layer()
    now = time.monotonic()
    with _metrics_lock:
        if _metrics_cache["payload"] is None or now >= _metrics_cache["expires_at"]:
            _metrics_cache["payload"] = _collect_metrics(layer)
            _metrics_cache["expires_at"] = now + layer.settings.metrics_ttl
        payload = _metrics_cache["payload"]
    return jsonify({"data": payload}), 200


@app.post("/v1/sync")
def sync_sites() -> Any:
    payload = _json_body()
    sites = payload.get("sites")
    if sites is not None and (not isinstance(sites, list) or not all(isinstance(site, str) for site in sites)):
        raise ValidationError("sites must be a list of site ids")

    try:
        results = get_layer().orchestrator.sync(sites)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"data": {"results": to_jsonable(results)}}), 200


@app.get("/v1/admin/connectors")
def list_connectors() -> Any:
    return jsonify({"data": get_layer().registry.describe()}), 200


@app.get("/v1/admin/leads")
def list_leads() -> Any:
    filters = parse_lead_filters(request.args)
    leads = get_layer().leads.list_leads(**filters)
    meta = {"limit": filters["limit"], "offset": filters["offset"]}
    return jsonify({"data": [lead.to_dict() for lead in leads], "meta": meta}), 200


# ---------- REST API ----------


@app.get("/v1/search")
def search_v1() -> Any:
    settings = get_layer().settings
    envelope = get_handlers().search(_search_args_from_query(request.args), default_limit=settings.api_page_size)
    return jsonify(envelope), 200


@app.post("/v2/search")
def search_v2() -> Any:
    settings = get_layer().settings
    envelope = get_handlers().search(_json_body(), default_limit=settings.api_page_size)
    return jsonify(envelope), 200


@app.get("/v1/places/<place_id>")
def get_place(place_id: str) -> Any:
    envelope = get_handlers().get_place({"place_id": place_id, "vertical": request.args.get("vertical")})
    if envelope["data"] is None:
        return _not_found(envelope, "place not found")
    return jsonify(envelope), 200


@app.post("/v1/compare")
def compare_places() -> Any:
    return jsonify(get_handlers().compare(_json_body())), 200


@app.post("/v1/leads")
def create_lead() -> Any:
    return jsonify(get_handlers().create_lead(_json_body())), 201


@app.get("/v1/leads/<lead_id>")
def get_lead(lead_id: str) -> Any:
    envelope = get_handlers().get_lead({"lead_id": lead_id})
    if envelope["data"] is None:
        return _not_found(envelope, "lead not found")
    return jsonify(envelope), 200


@app.patch("/v1/leads/<lead_id>")
def update_lead(lead_id: str) -> Any:
    envelope = get_handlers().update_lead(lead_id, _json_body())
    if envelope["data"] is None:
        return _not_found(envelope, "lead not found")
    return jsonify(envelope), 200


@app.post("/v1/discover")
def discover() -> Any:
    return jsonify(get_handlers().discover(_json_body())), 200


# ---------- JSON-RPC ----------


@app.get("/mcp/health")
def mcp_health() -> Any:
    return jsonify({"status": "ok", "version": SERVER_INFO["version"], "protocol": "mcp", "tools": len(TOOL_CATALOG)}), 200


@app.post("/mcp")
def mcp_endpoint() -> Any:
    payload = request.get_json(silent=True)
    body, status = handle_rpc(get_handlers(), payload)
    return jsonify(body), status


def main() -> None:
    settings = get_settings()
    logger.info("[BOOT] Binding on 0.0.0.0:%d", settings.port)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
