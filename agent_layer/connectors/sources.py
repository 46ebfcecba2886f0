"""Bundled connectors: partner data URLs with sample fallbacks, and local JSON files."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from agent_layer.connectors.base import RawPlace, SiteConnector
from agent_layer.connectors.registry import ConnectorRegistry
from agent_layer.core.config import Settings

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_TIMEOUT = 10


def load_json_records(path: Path) -> List[RawPlace]:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, list):
        raise ValueError(f"{path} does not contain a JSON array")
    return payload


class UrlConnector(SiteConnector):
    """Fetches a JSON array from ``data_url``; any failure falls back to the bundled sample file."""

    sample_file: str = ""

    def __init__(self, data_url: str = "", timeout: int = DEFAULT_TIMEOUT) -> None:
        super().__init__()
        self.data_url = data_url
        self.timeout = timeout

    def fetch_remote(self) -> List[RawPlace]:
        response = _SESSION.get(self.data_url, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            raise ValueError("data URL did not return a JSON array")
        return payload

    def fetch_all(self) -> List[RawPlace]:
        if self.data_url:
            try:
                return self.fetch_remote()
            except (requests.RequestException, ValueError) as exc:
                logger.warning("[%s] Failed to fetch from %s, using bundled data: %s", self.site_id, self.data_url, exc)
        return load_json_records(DATA_DIR / self.sample_file)


class EdmontonPlaygroundConnector(UrlConnector):
    site_id = "edmontonplayground"
    vertical = "playground"
    sample_file = "edmontonplayground.json"


class AlbertaClinicsConnector(UrlConnector):
    site_id = "albertaclinics"
    vertical = "clinic"
    sample_file = "albertaclinics.json"


class ABControlConnector(UrlConnector):
    site_id = "abcontrol"
    vertical = "industrial"
    sample_file = "abcontrol.json"


class CalgaryWellnessConnector(SiteConnector):
    """Reads ``<data_dir>/<city>/<category>.json`` scrape exports; unreadable files are skipped."""

    site_id = "calgarywellness"
    vertical = "wellness"
    cities = ("calgary", "edmonton")
    categories = ("massages", "spas")

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)

    def fetch_all(self) -> List[RawPlace]:
        places: List[RawPlace] = []
        for city in self.cities:
            for category in self.categories:
                path = self.data_dir / city / f"{category}.json"
                try:
                    records = load_json_records(path)
                except (OSError, ValueError) as exc:
                    logger.warning("[%s] Could not read %s/%s.json: %s", self.site_id, city, category, exc)
                    continue
                for record in records:
                    if isinstance(record, dict):
                        # "massages" -> "massage"
                        record = {**record, "category": category[:-1]}
                    places.append(record)
        return places


class JsonFileConnector(SiteConnector):
    def __init__(self, site_id: str, vertical: str, file_path: str) -> None:
        super().__init__()
        self.site_id = site_id
        self.vertical = vertical
        self.file_path = Path(file_path)

    def fetch_all(self) -> List[RawPlace]:
        return load_json_records(self.file_path)


def default_connectors(settings: Settings) -> Sequence[SiteConnector]:
    connectors: List[SiteConnector] = [
        EdmontonPlaygroundConnector(settings.edmontonplayground_data_url, timeout=settings.fetch_timeout),
        AlbertaClinicsConnector(settings.albertaclinics_data_url, timeout=settings.fetch_timeout),
        ABControlConnector(settings.abcontrol_data_url, timeout=settings.fetch_timeout),
    ]
    if settings.calgarywellness_data_dir:
        connectors.append(CalgaryWellnessConnector(settings.calgarywellness_data_dir))
    for connector in connectors:
        connector.default_province = settings.default_province
    return connectors


def default_registry(settings: Settings, registry: Optional[ConnectorRegistry] = None) -> ConnectorRegistry:
    if registry is None:
        registry = ConnectorRegistry()
    for connector in default_connectors(settings):
        registry.register(connector)
    return registry
