"""Wiring of the store, search, lead and sync components into one object."""

import logging
from dataclasses import dataclass
from typing import Optional

from agent_layer.connectors.registry import ConnectorRegistry, SyncOrchestrator
from agent_layer.connectors.sources import default_registry
from agent_layer.core.config import Settings, get_settings
from agent_layer.core.db import RecordStore, open_store
from agent_layer.core.leads import LeadService
from agent_layer.core.search import SearchEngine
from agent_layer.vendors.notifications import SlackNotifier

logger = logging.getLogger(__name__)


@dataclass
class AgentLayer:
    settings: Settings
    store: RecordStore
    search: SearchEngine
    leads: LeadService
    registry: ConnectorRegistry
    orchestrator: SyncOrchestrator


def build_layer(
    settings: Optional[Settings] = None,
    *,
    store: Optional[RecordStore] = None,
    registry: Optional[ConnectorRegistry] = None,
    notifier=None,
) -> AgentLayer:
    """Build every component from settings; pieces passed in explicitly are used as-is."""
    settings = settings or get_settings()
    store = store or open_store(settings.database_url)
    registry = registry if registry is not None else default_registry(settings)
    if notifier is None and settings.slack_webhook_url:
        notifier = SlackNotifier(settings.slack_webhook_url, timeout=settings.fetch_timeout)

    layer = AgentLayer(
        settings=settings,
        store=store,
        search=SearchEngine(store, default_limit=settings.search_page_size, max_limit=settings.max_page_size),
        leads=LeadService(store, notifier=notifier),
        registry=registry,
        orchestrator=SyncOrchestrator(registry, store),
    )
    logger.info("Agent layer ready with %d connector(s)", len(registry))
    return layer
