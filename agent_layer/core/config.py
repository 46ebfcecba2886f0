"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be used to build a component."""


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///agent_layer.db"
    port: int = 8080
    default_province: str = "AB"
    search_page_size: int = 10
    api_page_size: int = 20
    max_page_size: int = 50
    slack_webhook_url: str = ""
    fetch_timeout: int = 10
    metrics_ttl: int = 60
    edmontonplayground_data_url: str = ""
    albertaclinics_data_url: str = ""
    abcontrol_data_url: str = ""
    calgarywellness_data_dir: str = ""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "").strip() or Settings.database_url
    default_province = (os.getenv("DEFAULT_PROVINCE") or Settings.default_province).strip().upper()
    max_page_size = max(1, _int_env("MAX_PAGE_SIZE", Settings.max_page_size))
    slack_webhook_url = os.getenv("SLACK_WEBHOOK_URL", "").strip()

    if not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL is not set; using %s", database_url)
    if not slack_webhook_url:
        logger.warning("SLACK_WEBHOOK_URL is not configured; lead notifications will be skipped.")

    return Settings(
        database_url=database_url,
        port=_int_env("PORT", Settings.port),
        default_province=default_province,
        search_page_size=min(_int_env("SEARCH_PAGE_SIZE", Settings.search_page_size), max_page_size),
        api_page_size=min(_int_env("API_PAGE_SIZE", Settings.api_page_size), max_page_size),
        max_page_size=max_page_size,
        slack_webhook_url=slack_webhook_url,
        fetch_timeout=_int_env("FETCH_TIMEOUT", Settings.fetch_timeout),
        metrics_ttl=_int_env("METRICS_TTL", Settings.metrics_ttl),
        edmontonplayground_data_url=os.getenv("EDMONTONPLAYGROUND_DATA_URL", "").strip(),
        albertaclinics_data_url=os.getenv("ALBERTACLINICS_DATA_URL", "").strip(),
        abcontrol_data_url=os.getenv("ABCONTROL_DATA_URL", "").strip(),
        calgarywellness_data_dir=os.getenv("CALGARYWELLNESS_DATA_DIR", "").strip(),
    )
