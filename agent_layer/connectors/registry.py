"""Connector registry and the orchestrator that syncs registered sources into the store."""

import logging
from typing import Dict, Iterable, List, Optional

from agent_layer.connectors.base import SiteConnector
from agent_layer.core.db import RecordStore
from agent_layer.core.models import SyncResult

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Ordered collection of connectors keyed by ``site_id``."""

    def __init__(self, connectors: Iterable[SiteConnector] = ()) -> None:
        self._connectors: Dict[str, SiteConnector] = {}
        for connector in connectors:
            self.register(connector)

    def register(self, connector: SiteConnector) -> None:
        if not connector.site_id:
            raise ValueError("connector needs a site_id")
        if connector.site_id in self._connectors:
            logger.warning("Replacing connector %s", connector.site_id)
        self._connectors[connector.site_id] = connector

    def get(self, site_id: str) -> Optional[SiteConnector]:
        return self._connectors.get(site_id)

    def site_ids(self) -> List[str]:
        return list(self._connectors)

    def select(self, site_ids: Optional[Iterable[str]] = None) -> List[SiteConnector]:
        if site_ids is None:
            return list(self._connectors.values())
        wanted = set(site_ids)
        return [connector for site_id, connector in self._connectors.items() if site_id in wanted]

    def describe(self) -> List[Dict[str, str]]:
        return [
            {"site_id": connector.site_id, "vertical": connector.vertical, "state": connector.state}
            for connector in self._connectors.values()
        ]

    def __len__(self) -> int:
        return len(self._connectors)


class SyncOrchestrator:
    def __init__(self, registry: ConnectorRegistry, store: RecordStore) -> None:
        self.registry = registry
        self.store = store

    def sync(self, site_ids: Optional[Iterable[str]] = None) -> List[SyncResult]:
        """Run the selected connectors one after another.

        Raises ``ValueError`` when ``site_ids`` matches no registered connector.
        """
        connectors = self.registry.select(site_ids)
        if not connectors:
            raise ValueError("no registered connector matches the requested sites")

        results: List[SyncResult] = []
        for connector in connectors:
            logger.info("[Sync] Starting %s...", connector.site_id)
            result = connector.sync(self.store)
            results.append(result)
            logger.info(
                "[Sync] %s: +%d new, ~%d updated, %d errors (%dms)",
                result.site_id,
                result.created,
                result.updated,
                len(result.errors),
                result.duration_ms,
            )
        return results
