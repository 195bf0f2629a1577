"""Pipeline orchestration: wires fetch → cached-id listing → filter → cache writes → notify."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Callable

from hnwatch.cache import DedupCache, parse_item_ids
from hnwatch.config import JobConfig, Settings
from hnwatch.emailer import EmailTransport
from hnwatch.errors import HNWatchError, InitializationError, ValidationError
from hnwatch.filters import apply_filters
from hnwatch.hn_client import HNClient
from hnwatch.kv import CloudflareKVBackend, KVBackend, SqliteKVBackend
from hnwatch.models import Item
from hnwatch.notifier import LogTransport, Notifier, Transport
from hnwatch.telegram import TelegramTransport

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@dataclass
class PipelineRun:
    """What one invocation saw and did. Never persisted."""

    job: str
    fetched: list[Item] = field(default_factory=list)
    cached_ids: set[int] = field(default_factory=set)
    filtered: list[Item] = field(default_factory=list)
    cache_failures: list[int] = field(default_factory=list)
    notified: int = 0


# ── Enrichment placeholders ───────────────────────────────────────────────
# Stand-ins for a future summariser/scorer; they only echo item fields.


def placeholder_summary(item: Item) -> str | None:
    return item.title


def placeholder_score(item: Item) -> int:
    return item.score if item.score is not None else -1


def entry_metadata(item: Item) -> dict[str, Any]:
    return {
        "uuid": str(uuid.uuid4()),
        "llm_summary": placeholder_summary(item),
        "llm_score": placeholder_score(item),
    }


# ── Steps ──────────────────────────────────────────────────────────────────


async def _fetch(job: JobConfig, client: HNClient) -> list[Item]:
    if job.shards:
        return await client.fetch_top_with_shards(
            job.limit, job.shards, job.shard_strategy, kind=job.feed
        )
    return await client.fetch_top(job.limit, kind=job.feed)


async def _cached_ids(cache: DedupCache, exhaustive: bool) -> set[int]:
    try:
        keys = await cache.list_keys(exhaustive=exhaustive)
    except HNWatchError as exc:
        # Better a duplicate notification than a skipped run.
        logger.error("Listing cached keys failed; treating cache as empty: %s", exc)
        return set()
    ids = parse_item_ids(keys, cache.prefix)
    logger.info("Found %d cached ids under %s", len(ids), cache.prefix)
    return ids


async def _cache_item(cache: DedupCache, item: Item) -> bool:
    try:
        await cache.create_item_entry(item, metadata=entry_metadata(item))
    except Exception:
        logger.exception("Cache write for item %d failed; notifying anyway", item.id)
        return False
    logger.debug("Cached item %d as %s", item.id, cache.item_key(item.id))
    return True


async def run_job(
    job: JobConfig,
    *,
    client: HNClient,
    cache: DedupCache,
    notifier: Notifier,
    dry_run: bool = False,
    clock: Callable[[], float] = time.time,
) -> PipelineRun:
    """Execute one invocation of *job*.

    Raises InitializationError when the cache cannot be bootstrapped; every
    other per-item failure is logged and absorbed.
    """
    run = PipelineRun(job=job.name)
    logger.info("=== hnwatch run start [job=%s feed=%s] ===", job.name, job.feed.value)

    # ── 0. Cache bootstrap ────────────────────────────────────────────
    await cache.ensure_ready()

    # ── 1. Fetch ──────────────────────────────────────────────────────
    run.fetched = await _fetch(job, client)
    logger.info("Total fetched: %d", len(run.fetched))
    if not run.fetched:
        logger.warning("No items fetched, nothing to do.")
        return run

    # ── 2–3. Cached ids ───────────────────────────────────────────────
    run.cached_ids = await _cached_ids(cache, job.exhaustive_listing)

    # ── 4. Filter ─────────────────────────────────────────────────────
    run.filtered = apply_filters(
        run.fetched,
        min_score=job.min_score,
        min_time=job.effective_min_time(clock()),
        cached_ids=run.cached_ids,
    )
    if not run.filtered:
        logger.info("Nothing new for job %s.", job.name)
        return run

    if dry_run:
        logger.info("Dry-run mode: skipping cache writes and notifications.")
        for item in run.filtered:
            logger.info("  [%s] %s by %s", item.score, item.title, item.by)
        return run

    # ── 5. Cache writes ───────────────────────────────────────────────
    written = await asyncio.gather(*(_cache_item(cache, item) for item in run.filtered))
    run.cache_failures = [item.id for item, ok in zip(run.filtered, written) if not ok]
    if run.cache_failures:
        logger.warning("Cache writes failed for %d items: %s", len(run.cache_failures), run.cache_failures)

    # ── 6. Notify ─────────────────────────────────────────────────────
    run.notified = await notifier.notify_all(run.filtered)

    logger.info(
        "=== hnwatch run done [job=%s] %d new, %d notified ===",
        job.name, len(run.filtered), run.notified,
    )
    return run


# ── Wiring ─────────────────────────────────────────────────────────────────


def build_backend(settings: Settings) -> KVBackend:
    if settings.kv_backend == "sqlite":
        return SqliteKVBackend(settings.kv_sqlite_path)
    if settings.kv_backend == "cloudflare":
        return CloudflareKVBackend(
            account_id=settings.cf_account_id,
            namespace_id=settings.cf_namespace_id,
            api_token=settings.cf_api_token,
            timeout=settings.http_timeout,
        )
    raise ValidationError(f"Unknown KV_BACKEND: {settings.kv_backend!r}")


def build_transports(settings: Settings) -> list[Transport]:
    transports: list[Transport] = []
    for channel in settings.notify_channels:
        if channel == "telegram":
            if not settings.telegram_enabled():
                logger.error("Telegram not configured. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")
                continue
            transports.append(
                TelegramTransport(
                    settings.telegram_bot_token,
                    settings.telegram_chat_id,
                    base_url=settings.telegram_base_url,
                    timeout=settings.http_timeout,
                )
            )
        elif channel == "email":
            if not settings.email_enabled():
                logger.error("Email not configured. Set SMTP_USERNAME, SMTP_PASSWORD and EMAIL_TO.")
                continue
            transports.append(
                EmailTransport(
                    smtp_host=settings.smtp_host,
                    smtp_port=settings.smtp_port,
                    username=settings.smtp_username,
                    password=settings.smtp_password,
                    to_addrs=settings.email_to,
                )
            )
        elif channel == "log":
            transports.append(LogTransport())
        else:
            logger.warning("Unknown notification channel %r, ignoring.", channel)
    return transports


def _close_later(stack: AsyncExitStack, resource: object) -> None:
    aclose = getattr(resource, "aclose", None)
    if aclose is not None:
        stack.push_async_callback(aclose)


async def run_pipeline(settings: Settings, job: JobConfig, dry_run: bool = False) -> PipelineRun:
    """Build every component from *settings* and run *job* once."""
    async with AsyncExitStack() as stack:
        client = HNClient(settings.hn_base_url, timeout=settings.http_timeout)
        _close_later(stack, client)
        backend = build_backend(settings)
        _close_later(stack, backend)
        transports = build_transports(settings)
        for transport in transports:
            _close_later(stack, transport)

        cache = DedupCache(backend, job.kv_prefix, job.kv_ttl_secs)
        return await run_job(
            job, client=client, cache=cache, notifier=Notifier(transports), dry_run=dry_run
        )


async def watch(
    settings: Settings,
    job: JobConfig,
    interval: float,
    dry_run: bool = False,
    max_runs: int | None = None,
) -> None:
    """Run *job* every *interval* seconds. A failed run never stops the schedule."""
    runs = 0
    while max_runs is None or runs < max_runs:
        try:
            await run_pipeline(settings, job, dry_run=dry_run)
        except InitializationError as exc:
            logger.error("Run aborted, cache unavailable: %s", exc)
        except Exception:
            logger.exception("Run of job %s failed", job.name)
        runs += 1
        if max_runs is None or runs < max_runs:
            await asyncio.sleep(interval)
