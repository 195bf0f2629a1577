"""Tests for settings and the jobs file."""

from __future__ import annotations

from pathlib import Path

import pytest

from hnwatch.config import JobConfig, Settings, load_jobs
from hnwatch.errors import ValidationError
from hnwatch.models import LiveDataKind
from hnwatch.shards import ShardStrategy

JOBS_YML = """\
jobs:
  top:
    limit: 30
    shards: 3
    min_score: 100
    kv_prefix: HN
  best:
    feed: best
    limit: 50
    shard_strategy: sequential
    max_age_secs: 172800
    kv_prefix: HNBEST
    kv_ttl_secs: 86400
    exhaustive_listing: true
  plain:
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "jobs.yml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadJobs:
    def test_parses_all_jobs(self, tmp_path: Path) -> None:
        jobs = load_jobs(_write(tmp_path, JOBS_YML))
        assert list(jobs) == ["top", "best", "plain"]

        best = jobs["best"]
        assert best.name == "best"
        assert best.feed is LiveDataKind.BEST
        assert best.shard_strategy is ShardStrategy.SEQUENTIAL
        assert best.kv_ttl_secs == 86400
        assert best.exhaustive_listing is True

        assert jobs["plain"] == JobConfig(name="plain")

    def test_missing_file_gives_builtin_job(self, tmp_path: Path) -> None:
        jobs = load_jobs(tmp_path / "absent.yml")
        assert list(jobs) == ["top"]
        assert jobs["top"].kv_prefix == "HN"

    @pytest.mark.parametrize(
        "body",
        [
            "jobs:\n  bad:\n    shards: 0\n",
            "jobs:\n  bad:\n    feed: max_item\n",
            "jobs:\n  bad:\n    kv_ttl_secs: -1\n",
            "jobs:\n  bad:\n    colour: red\n",
        ],
    )
    def test_invalid_job_rejected(self, tmp_path: Path, body: str) -> None:
        with pytest.raises(ValidationError, match="bad"):
            load_jobs(_write(tmp_path, body))

    def test_empty_file_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            load_jobs(_write(tmp_path, ""))


class TestJobConfig:
    def test_min_time_without_age_cap(self) -> None:
        assert JobConfig(min_time=500).effective_min_time(10_000) == 500

    def test_age_cap_tightens_min_time(self) -> None:
        job = JobConfig(min_time=500, max_age_secs=3600)
        assert job.effective_min_time(10_000) == 6400
        assert job.effective_min_time(1_000) == 500

    def test_sharding_can_be_disabled(self) -> None:
        assert JobConfig(shards=None).shards is None


class TestSettings:
    def test_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("NOTIFY_CHANNELS", "telegram, email ,")
        monkeypatch.setenv("KV_BACKEND", "Cloudflare")
        monkeypatch.setenv("EMAIL_TO", "a@example.com,b@example.com")
        monkeypatch.setenv("SMTP_PORT", "2525")
        monkeypatch.setenv("HNWATCH_JOBS_FILE", str(tmp_path / "jobs.yml"))
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)

        settings = Settings.from_env()

        assert settings.notify_channels == ("telegram", "email")
        assert settings.kv_backend == "cloudflare"
        assert settings.email_to == ("a@example.com", "b@example.com")
        assert settings.smtp_port == 2525
        assert settings.jobs_file == tmp_path / "jobs.yml"
        assert not settings.telegram_enabled()

    def test_email_enabled_needs_credentials_and_recipients(self) -> None:
        assert not Settings(smtp_username="u", smtp_password="p").email_enabled()
        assert Settings(smtp_username="u", smtp_password="p", email_to=("x@y.z",)).email_enabled()
