from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from curator.core.config import get_settings
from curator.core.sources import known_sources
from curator.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from curator.services.providers import get_queue_manager, get_scan_orchestrator
from curator.services.repository import get_repository


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="curator", description="Hot dog content curation pipeline.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("daily", help="Run the daily scan across recommended sources")
    force = commands.add_parser("force", help="Scan the given sources at high priority")
    force.add_argument("sources", nargs="+", choices=known_sources())
    force.add_argument("--reason", default="Manual override")
    commands.add_parser("stats", help="Print queue statistics")
    commands.add_parser("recommendations", help="Print per-source scan recommendations")
    commands.add_parser("forecast", help="Print the seven day queue forecast")
    commands.add_parser("health", help="Print the queue health check")
    return parser


async def run_command(args: argparse.Namespace) -> Any:
    if args.command == "daily":
        return asdict(await get_scan_orchestrator().run_daily_scan())
    if args.command == "force":
        return [asdict(result) for result in await get_scan_orchestrator().force_scan(args.sources, args.reason)]

    queue_manager = get_queue_manager()
    if args.command == "forecast":
        return [asdict(day) for day in await queue_manager.weekly_forecast(datetime.now(timezone.utc).date())]
    if args.command == "stats":
        return asdict(await queue_manager.get_stats())
    if args.command == "recommendations":
        return [asdict(item) for item in await queue_manager.get_recommendations()]
    return asdict(await queue_manager.health_check())


async def _main(args: argparse.Namespace) -> Any:
    try:
        return await run_command(args)
    finally:
        await get_repository().close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    runtime = setup_telemetry(settings, "cli")
    try:
        result = asyncio.run(_main(args))
    finally:
        shutdown_telemetry(runtime)
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
