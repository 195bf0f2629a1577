"""Centralised configuration loaded from environment variables, dotenv and the jobs file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from hnwatch.errors import ValidationError
from hnwatch.models import LiveDataKind
from hnwatch.shards import ShardStrategy

load_dotenv()

logger = logging.getLogger(__name__)

# ── Paths ──────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# ── Endpoints ──────────────────────────────────────────────────────────────
HN_BASE_URL = "https://hacker-news.firebaseio.com/v0/"
HN_WEB_URL = "https://news.ycombinator.com/"
SHORT_LINK_BASE_URL = "https://readhacker.news/"
TELEGRAM_BASE_URL = "https://api.telegram.org/"
CLOUDFLARE_API_BASE_URL = "https://api.cloudflare.com/client/v4/"
APP_USER_AGENT = "hnwatch/0.1.0"

# ── Job defaults ───────────────────────────────────────────────────────────
LIMIT_DEFAULT = 5
SHARD_DEFAULT = 3
MIN_SCORE_DEFAULT = 100
UNIX_TIME_DEFAULT = 0
KV_PREFIX_DEFAULT = "HN"
KV_TTL_DEFAULT = 3600


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Process-wide settings. Build with :meth:`from_env`, then pass explicitly."""

    hn_base_url: str = HN_BASE_URL
    http_timeout: float = 10.0
    notify_channels: tuple[str, ...] = ("telegram",)

    # Telegram
    telegram_base_url: str = TELEGRAM_BASE_URL
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # KV store
    kv_backend: str = "sqlite"
    kv_sqlite_path: Path = PROJECT_ROOT / "var" / "hnwatch.sqlite3"
    cf_account_id: str = ""
    cf_namespace_id: str = ""
    cf_api_token: str = ""

    # Email
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_to: tuple[str, ...] = ()

    jobs_file: Path = PROJECT_ROOT / "config" / "jobs.yml"

    @classmethod
    def from_env(cls) -> Settings:
        env = os.getenv
        return cls(
            hn_base_url=env("HN_BASE_URL", HN_BASE_URL),
            http_timeout=float(env("HNWATCH_HTTP_TIMEOUT", "10")),
            notify_channels=_csv(env("NOTIFY_CHANNELS", "telegram")),
            telegram_base_url=env("TELEGRAM_BASE_URL", TELEGRAM_BASE_URL),
            telegram_bot_token=env("TELEGRAM_BOT_TOKEN", ""),
            telegram_chat_id=env("TELEGRAM_CHAT_ID", ""),
            kv_backend=env("KV_BACKEND", "sqlite").lower(),
            kv_sqlite_path=Path(env("KV_SQLITE_PATH", str(PROJECT_ROOT / "var" / "hnwatch.sqlite3"))),
            cf_account_id=env("CF_ACCOUNT_ID", ""),
            cf_namespace_id=env("CF_KV_NAMESPACE_ID", ""),
            cf_api_token=env("CF_API_TOKEN", ""),
            smtp_host=env("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(env("SMTP_PORT", "587")),
            smtp_username=env("SMTP_USERNAME", ""),
            smtp_password=env("SMTP_PASSWORD", ""),
            email_to=_csv(env("EMAIL_TO", "")),
            jobs_file=Path(env("HNWATCH_JOBS_FILE", str(PROJECT_ROOT / "config" / "jobs.yml"))),
        )

    def email_enabled(self) -> bool:
        return bool(self.smtp_username and self.smtp_password and self.email_to)

    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


class JobConfig(BaseModel):
    """Everything one scheduled invocation needs to know."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "top"
    feed: LiveDataKind = LiveDataKind.TOP
    limit: int | None = Field(default=LIMIT_DEFAULT, ge=0)
    # None disables sharding.
    shards: int | None = Field(default=SHARD_DEFAULT, gt=0)
    shard_strategy: ShardStrategy = ShardStrategy.INTERLEAVED
    min_score: int = MIN_SCORE_DEFAULT
    min_time: int = UNIX_TIME_DEFAULT
    max_age_secs: int | None = Field(default=None, gt=0)
    kv_prefix: str = KV_PREFIX_DEFAULT
    kv_ttl_secs: int = Field(default=KV_TTL_DEFAULT, gt=0)
    exhaustive_listing: bool = False

    @field_validator("feed")
    @classmethod
    def _story_feed(cls, value: LiveDataKind) -> LiveDataKind:
        if not value.is_story_list:
            raise ValueError(f"feed '{value.value}' is not a story list")
        return value

    def effective_min_time(self, now: float) -> int:
        """``min_time``, tightened by ``max_age_secs`` when set."""
        if self.max_age_secs is None:
            return self.min_time
        return max(self.min_time, int(now) - self.max_age_secs)


def load_jobs(jobs_path: Path) -> dict[str, JobConfig]:
    """Parse ``jobs.yml`` and return job-name → :class:`JobConfig`.

    A missing file yields the single built-in ``top`` job.
    """
    if not jobs_path.exists():
        logger.warning("Jobs file not found, using built-in defaults: %s", jobs_path)
        return {"top": JobConfig()}

    with open(jobs_path, encoding="utf-8") as fh:
        cfg = yaml.safe_load(fh) or {}

    raw_jobs = cfg.get("jobs") or {}
    jobs: dict[str, JobConfig] = {}
    for name, raw in raw_jobs.items():
        try:
            jobs[name] = JobConfig(**{**(raw or {}), "name": name})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid job '{name}' in {jobs_path}: {exc}") from exc

    if not jobs:
        raise ValidationError(f"No jobs defined in {jobs_path}")
    logger.debug("Loaded jobs %s from %s", ", ".join(jobs), jobs_path)
    return jobs
