"""CLI entry-point: ``python -m hnwatch run`` / ``watch`` / ``item`` / ``live`` / ``cache``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from hnwatch.cache import DedupCache
from hnwatch.config import JobConfig, Settings, load_jobs
from hnwatch.errors import HNWatchError, InitializationError
from hnwatch.hn_client import LIVE_DATA_CONFIGS, HNClient
from hnwatch.models import LiveDataKind
from hnwatch.pipeline import build_backend, run_pipeline, setup_logging, watch

logger = logging.getLogger(__name__)


def _resolve_job(settings: Settings, name: str | None) -> JobConfig:
    jobs = load_jobs(settings.jobs_file)
    if name is None:
        return next(iter(jobs.values()))
    if name not in jobs:
        logger.error("Unknown job '%s'. Defined jobs: %s", name, ", ".join(jobs))
        sys.exit(1)
    return jobs[name]


async def _show_item(settings: Settings, item_id: int) -> None:
    async with HNClient(settings.hn_base_url, timeout=settings.http_timeout) as client:
        item = await client.fetch_item(item_id)
    if item is None:
        logger.error("Item %d could not be fetched.", item_id)
        sys.exit(1)
    print(item.model_dump_json(indent=2, exclude_none=True))


async def _show_live(settings: Settings, kind: LiveDataKind, limit: int | None) -> None:
    config = LIVE_DATA_CONFIGS[kind]
    logger.info("%s: %s", config.label, config.description)
    async with HNClient(settings.hn_base_url, timeout=settings.http_timeout) as client:
        data = await client.fetch_live_data(kind, limit)
    print(data.model_dump_json(indent=2))


async def _cache_command(settings: Settings, job: JobConfig, args: argparse.Namespace) -> None:
    backend = build_backend(settings)
    try:
        cache = await DedupCache.init(backend, job.kv_prefix, job.kv_ttl_secs)
        if args.cache_command == "list":
            for key in await cache.list_keys(exhaustive=args.all):
                print(key)
        elif args.cache_command == "get":
            entry = await cache.get(args.key)
            if entry is None:
                logger.error("No live entry for %s", args.key)
                sys.exit(1)
            print(entry.model_dump_json(indent=2))
        elif args.cache_command == "delete":
            await cache.delete(args.key)
            logger.info("Deleted %s", args.key)
    finally:
        aclose = getattr(backend, "aclose", None)
        if aclose is not None:
            await aclose()


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{raw}'") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return value


def _add_job_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--job",
        default=None,
        help="Job name from the jobs file (default: the first job defined).",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="hnwatch",
        description="Notify about new Hacker News stories, once per story.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command")

    # ── run ────────────────────────────────────────────────────────────
    run_parser = sub.add_parser("run", help="Run one job once (for cron).")
    _add_job_args(run_parser)
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and filter but skip cache writes and notifications.",
    )

    # ── watch ──────────────────────────────────────────────────────────
    watch_parser = sub.add_parser("watch", help="Run one job repeatedly.")
    _add_job_args(watch_parser)
    watch_parser.add_argument(
        "--interval", type=float, default=600.0, help="Seconds between runs (default: 600)."
    )
    watch_parser.add_argument("--dry-run", action="store_true")

    # ── item / live ───────────────────────────────────────────────────
    item_parser = sub.add_parser("item", help="Fetch and print one item.")
    item_parser.add_argument("item_id", type=int)

    live_parser = sub.add_parser("live", help="Fetch and print one live-data endpoint.")
    live_parser.add_argument("kind", choices=[k.value for k in LiveDataKind])
    live_parser.add_argument(
        "--limit", type=_non_negative_int, default=None, help="Keep at most this many ids."
    )

    # ── cache ─────────────────────────────────────────────────────────
    cache_parser = sub.add_parser("cache", help="Inspect or correct the dedup cache.")
    _add_job_args(cache_parser)
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    list_parser = cache_sub.add_parser("list", help="List cached keys.")
    list_parser.add_argument("--all", action="store_true", help="Follow every page.")
    get_parser = cache_sub.add_parser("get", help="Print one cache entry.")
    get_parser.add_argument("key")
    delete_parser = cache_sub.add_parser("delete", help="Delete one cache entry.")
    delete_parser.add_argument("key")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    settings = Settings.from_env()

    try:
        if args.command == "run":
            job = _resolve_job(settings, args.job)
            asyncio.run(run_pipeline(settings, job, dry_run=args.dry_run))
        elif args.command == "watch":
            job = _resolve_job(settings, args.job)
            asyncio.run(watch(settings, job, args.interval, dry_run=args.dry_run))
        elif args.command == "item":
            asyncio.run(_show_item(settings, args.item_id))
        elif args.command == "live":
            asyncio.run(_show_live(settings, LiveDataKind(args.kind), args.limit))
        elif args.command == "cache":
            job = _resolve_job(settings, args.job)
            asyncio.run(_cache_command(settings, job, args))
        else:
            parser.print_help()
            sys.exit(1)
    except InitializationError as exc:
        logger.error("Cache unavailable: %s", exc)
        sys.exit(1)
    except HNWatchError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted.")


if __name__ == "__main__":
    main()
