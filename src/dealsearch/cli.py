"""CLI tools for running searches against candidate files and inspecting configuration."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from .config import get_config_manager
from .errors import DealSearchError
from .models import QuerySpec, SearchResults
from .search_engine import SearchEngine

logger = logging.getLogger(__name__)


def load_candidates(path: str) -> SearchResults:
    """Load a JSON file of per-entity candidate lists."""
    with open(Path(path), encoding="utf-8") as handle:
        data = json.load(handle)
    return SearchResults.model_validate(data)


async def run_search(args) -> Dict[str, Any]:
    """Rank the candidate file for the given query and return the JSON-ready result."""
    candidates = load_candidates(args.candidates)

    async def fetch(spec: QuerySpec) -> SearchResults:
        return candidates

    engine = SearchEngine(fetch, config=get_config_manager().get_config())
    params = {
        "query": args.query,
        "type": args.type,
        "sort": args.sort,
        "page": args.page,
        "limit": args.limit,
    }

    async with engine:
        results = None
        for _ in range(max(1, args.repeat)):
            results = await engine.search(params)

        output: Dict[str, Any] = {"results": results.model_dump(mode="json")}
        if args.show_analytics:
            report = await engine.get_analytics("1h")
            output["analytics"] = report.model_dump(mode="json")
            output["cache"] = await engine.cache_stats()

    return output


def show_config(args) -> Dict[str, Any]:
    return get_config_manager().get_config().to_dict()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Deal search ranking and analytics CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    search_parser = subparsers.add_parser("search", help="Rank a candidate file for a query")
    search_parser.add_argument(
        "--candidates", "-c", required=True, help="JSON file with deals/coupons/users/... lists"
    )
    search_parser.add_argument("--query", "-q", default="", help="Search query")
    search_parser.add_argument("--type", "-t", default="all", help="Entity type filter")
    search_parser.add_argument("--sort", "-s", default="relevance", help="Sort mode")
    search_parser.add_argument("--page", type=int, default=1)
    search_parser.add_argument("--limit", type=int, default=20)
    search_parser.add_argument(
        "--repeat", type=int, default=1, help="Run the search N times (exercises the cache)"
    )
    search_parser.add_argument(
        "--show-analytics", action="store_true", help="Include analytics and cache stats"
    )

    subparsers.add_parser("config", help="Show the effective configuration")

    args = parser.parse_args()

    if args.verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, get_config_manager().get_monitoring_config().log_level)
    logging.basicConfig(
        level=log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "search":
            output = asyncio.run(run_search(args))
        else:
            output = show_config(args)
    except (DealSearchError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
