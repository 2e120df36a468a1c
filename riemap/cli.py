"""RieMap command line: catalog setup, one-shot processing and the API server.

Usage:
    riemap init [--output regions.json]
    riemap list [--level COUNTRY] [--parent europe] [--query ger]
    riemap process <region_id> [--timeout SECONDS]
    riemap analyze <region_id> [--version latest]
    riemap compare <region_id> <from_version> <to_version>
    riemap cleanup <region_id> [--keep N]
    riemap serve [--host HOST] [--port PORT]

Jobs and reports go to RIEMAP_DATABASE_URL when it is set, otherwise they
only live for the duration of the command.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from riemap.catalog.catalog import save_regions_file
from riemap.catalog.seed import default_regions
from riemap.config.settings import Settings, get_settings
from riemap.db.session import create_engine_for, make_session_factory
from riemap.errors import RiemapError
from riemap.models.job import JobStatus
from riemap.models.region import AdminLevel
from riemap.service import LATEST_ALIAS, PortalService

logger = logging.getLogger("riemap.cli")


async def _with_portal(
    settings: Settings, action: Callable[[PortalService], Awaitable[int]],
) -> int:
    engine = create_engine_for(settings) if settings.DATABASE_URL else None
    session_factory = make_session_factory(engine) if engine is not None else None
    portal = PortalService.from_settings(settings, session_factory=session_factory)
    try:
        return await action(portal)
    finally:
        await portal.orchestrator.shutdown()
        if engine is not None:
            await engine.dispose()


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace, settings: Settings) -> int:
    output = Path(args.output or settings.REGIONS_FILE or "regions.json")
    if output.exists() and not args.force:
        print(f"{output} already exists (use --force to overwrite)")
        return 1
    output.parent.mkdir(parents=True, exist_ok=True)
    regions = default_regions()
    save_regions_file(output, regions)
    Path(settings.DATA_DIR).mkdir(parents=True, exist_ok=True)
    Path(settings.TEMP_DIR).mkdir(parents=True, exist_ok=True)
    print(f"Wrote {len(regions)} regions to {output}")
    return 0


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    portal = PortalService.from_settings(settings)
    level = AdminLevel(args.level) if args.level else None
    for region in portal.search_regions(args.query, admin_level=level, parent_id=args.parent):
        latest = portal.store.latest(region.region_id) if region.provides_data_services else None
        marker = latest.version if latest else "-"
        print(f"{region.region_id:<32} {region.admin_level.value:<10} {marker:<14} {region.name}")
    return 0


def cmd_process(args: argparse.Namespace, settings: Settings) -> int:
    async def _process(portal: PortalService) -> int:
        job = await portal.request_processing(args.region_id)
        print(f"Job {job.job_id} accepted for {args.region_id}")
        job = await portal.orchestrator.wait(job.job_id, timeout=args.timeout)
        print(f"Job {job.job_id} {job.status.value}: {job.message}")
        if job.status is not JobStatus.COMPLETED:
            return 1
        data_file = portal.store.get(job.region_id, job.version)
        report = await portal.quality_report(data_file.quality_report_id)
        print(
            f"Version {data_file.version}: {data_file.size_bytes} bytes, "
            f"overall quality {report.overall_score:.1f}"
        )
        return 0

    return asyncio.run(_with_portal(settings, _process))


def cmd_analyze(args: argparse.Namespace, settings: Settings) -> int:
    async def _analyze(portal: PortalService) -> int:
        report = await portal.analyze_version(args.region_id, args.version)
        _print_json(report.model_dump(mode="json"))
        return 0

    return asyncio.run(_with_portal(settings, _analyze))


def cmd_compare(args: argparse.Namespace, settings: Settings) -> int:
    async def _compare(portal: PortalService) -> int:
        comparison = await portal.compare(args.region_id, args.from_version, args.to_version)
        _print_json(comparison.model_dump(mode="json"))
        return 0

    return asyncio.run(_with_portal(settings, _compare))


def cmd_cleanup(args: argparse.Namespace, settings: Settings) -> int:
    portal = PortalService.from_settings(settings)
    keep = args.keep or settings.KEEP_VERSIONS
    removed = portal.store.prune(args.region_id, keep)
    print(f"Removed {len(removed)} versions of {args.region_id}")
    for version in removed:
        print(f"  {version}")
    return 0


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run(
        "riemap.api.main:app",
        host=args.host or settings.HOST,
        port=args.port or settings.PORT,
        log_level=settings.LOG_LEVEL.value.lower(),
    )
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="riemap",
        description="Regional map extract ingestion and quality assessment",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Write the built-in region hierarchy to a JSON file")
    p.add_argument("--output", help="Target file (default: RIEMAP_REGIONS_FILE or regions.json)")
    p.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p.set_defaults(handler=cmd_init)

    p = sub.add_parser("list", help="List regions and their latest version")
    p.add_argument("--query", help="Case-insensitive name filter")
    p.add_argument("--level", choices=[level.value for level in AdminLevel])
    p.add_argument("--parent", help="Only direct children of this region")
    p.set_defaults(handler=cmd_list)

    p = sub.add_parser("process", help="Fetch, decode, analyze and publish one region")
    p.add_argument("region_id")
    p.add_argument("--timeout", type=float, default=None, help="Give up waiting after N seconds")
    p.set_defaults(handler=cmd_process)

    p = sub.add_parser("analyze", help="Re-score a stored version without publishing")
    p.add_argument("region_id")
    p.add_argument("--version", default=LATEST_ALIAS)
    p.set_defaults(handler=cmd_analyze)

    p = sub.add_parser("compare", help="Diff two stored versions of a region")
    p.add_argument("region_id")
    p.add_argument("from_version")
    p.add_argument("to_version")
    p.set_defaults(handler=cmd_compare)

    p = sub.add_parser("cleanup", help="Delete old versions beyond the retention count")
    p.add_argument("region_id")
    p.add_argument("--keep", type=int, default=None, help="Versions to keep (default: RIEMAP_KEEP_VERSIONS)")
    p.set_defaults(handler=cmd_cleanup)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.set_defaults(handler=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.value,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        return args.handler(args, settings)
    except RiemapError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
