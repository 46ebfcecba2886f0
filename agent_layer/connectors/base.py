"""Connector contract shared by every data source that feeds the place store."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from agent_layer.core.db import RecordStore
from agent_layer.core.models import PlaceDraft, SyncResult
from agent_layer.etl.transform import merge_tags, strip_or_none, to_place_draft

logger = logging.getLogger(__name__)

RawPlace = Dict[str, Any]


class SiteConnector(ABC):
    """A data source with a stable ``site_id`` that yields raw records for one vertical."""

    site_id: str = ""
    vertical: str = ""
    default_province: str = "AB"

    def __init__(self) -> None:
        self.state = "idle"

    @abstractmethod
    def fetch_all(self) -> List[RawPlace]:
        """Return every raw record the source currently exposes."""

    def transform(self, raw: RawPlace) -> PlaceDraft:
        draft = to_place_draft(
            raw,
            site_id=self.site_id,
            vertical=self.vertical,
            default_province=self.default_province,
        )
        draft.tags = merge_tags(raw.get("tags"), [raw.get("category")], raw.get("features"))
        return draft

    def _set_state(self, state: str) -> None:
        logger.debug("[%s] %s -> %s", self.site_id, self.state, state)
        self.state = state

    def sync(self, store: RecordStore) -> SyncResult:
        """Fetch, transform and upsert every record; failures are collected, never raised."""
        started = time.monotonic()
        result = SyncResult(site_id=self.site_id)

        self._set_state("fetching")
        try:
            records = self.fetch_all()
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] fetch failed: %s", self.site_id, exc)
            result.errors.append(f"Fetch failed: {exc}")
            records = []

        self._set_state("transforming")
        for raw in records:
            external_id = strip_or_none(raw.get("id")) if isinstance(raw, dict) else None
            try:
                if not isinstance(raw, dict):
                    raise ValueError("record is not an object")
                draft = self.transform(raw)
                _, is_new = store.upsert_by_site_ref(self.site_id, external_id, draft)
            except Exception as exc:  # noqa: BLE001
                logger.warning("[%s] record %s failed: %s", self.site_id, external_id or "?", exc)
                result.errors.append(f"{external_id or '?'}: {exc}")
                continue
            if is_new:
                result.created += 1
            else:
                result.updated += 1

        self._set_state("done")
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result
