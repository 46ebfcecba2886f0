"""CLI job that syncs registered connectors into the place store."""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from agent_layer.connectors.registry import ConnectorRegistry
from agent_layer.connectors.sources import JsonFileConnector
from agent_layer.core.config import get_settings
from agent_layer.core.models import VERTICALS, SyncResult
from agent_layer.core.services import build_layer

logger = logging.getLogger(__name__)


def run_sync(sites: Optional[Sequence[str]] = None, json_files: Sequence[str] = (), json_vertical: str = "") -> List[SyncResult]:
    layer = build_layer(get_settings())
    for path in json_files:
        layer.registry.register(JsonFileConnector(Path(path).stem, json_vertical, path))
    return layer.orchestrator.sync(sites or None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync partner site data into the place store")
    parser.add_argument("--site", dest="sites", action="append", help="Site id to sync (repeatable); default all")
    parser.add_argument("--list", dest="list_only", action="store_true", help="List registered connectors and exit")
    parser.add_argument("--json-file", dest="json_files", action="append", default=[], help="Extra JSON array file to sync")
    parser.add_argument("--json-vertical", dest="json_vertical", choices=VERTICALS, help="Vertical of --json-file records")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.json_files and not args.json_vertical:
        parser.error("--json-file requires --json-vertical")

    if args.list_only:
        registry: ConnectorRegistry = build_layer(get_settings()).registry
        for entry in registry.describe():
            print(f"{entry['site_id']}\t{entry['vertical']}")
        return 0

    try:
        results = run_sync(args.sites, args.json_files, args.json_vertical or "")
    except ValueError as exc:
        logger.error("Sync aborted: %s", exc)
        return 1

    failed = sum(1 for result in results if result.errors)
    logger.info("Synced %d site(s), %d with errors", len(results), failed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
