import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure `agent_layer` is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agent_layer.connectors.registry import ConnectorRegistry  # noqa: E402
from agent_layer.connectors.sources import (  # noqa: E402
    ABControlConnector,
    AlbertaClinicsConnector,
    EdmontonPlaygroundConnector,
)
from agent_layer.core.config import Settings  # noqa: E402
from agent_layer.core.db import SQLiteStore, build_place  # noqa: E402
from agent_layer.core.services import build_layer  # noqa: E402
from agent_layer.etl.transform import to_place_draft, to_unified_place  # noqa: E402


class ImmediateExecutor:
    """Runs submitted work inline so background jobs finish before assertions."""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append((fn, args))
        fn(*args, **kwargs)


@pytest.fixture
def store(tmp_path):
    sqlite_store = SQLiteStore(str(tmp_path / "places.db"))
    sqlite_store.init_schema()
    return sqlite_store


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'agent_layer.db'}")


@pytest.fixture
def layer(settings):
    registry = ConnectorRegistry([EdmontonPlaygroundConnector(), AlbertaClinicsConnector(), ABControlConnector()])
    return build_layer(settings, registry=registry)


@pytest.fixture
def seeded_layer(layer):
    layer.orchestrator.sync()
    return layer


@pytest.fixture
def place_factory():
    """Build an in-memory UnifiedPlace from raw connector-style fields."""
    counter = {"n": 0}

    def make(vertical="clinic", **raw):
        counter["n"] += 1
        raw.setdefault("id", f"raw-{counter['n']}")
        raw.setdefault("name", f"Place {counter['n']}")
        raw.setdefault("city", "edmonton")
        draft = to_place_draft(raw, site_id="test", vertical=vertical)
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        record = build_place(draft, place_id=f"place_{counter['n']:03d}", slug=draft.slug, now=now)
        return to_unified_place(record)

    return make
