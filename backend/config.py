"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_LEGACY_REPO_VAR = re.compile(r"^REPO_\d+$")


@dataclass(frozen=True)
class RepoConfig:
    """A mirrored repository and the storage path its assets are written under."""

    repo: str
    path: str = ""

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]


def parse_repo_entry(value: str) -> RepoConfig:
    """Parse ``owner/name[:storage/path]`` into a RepoConfig.

    Everything after the first colon is the storage path, so paths may
    themselves contain colons.
    """
    repo, _, path = value.strip().partition(":")
    repo = repo.strip()
    if not _REPO_PATTERN.match(repo):
        msg = f"Invalid repository declaration: {value!r} (expected owner/name[:path])"
        raise ValueError(msg)
    return RepoConfig(repo=repo, path=path.strip())


class Settings(BaseSettings):
    """Release mirror settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database (sync record store)
    database_url: str = "sqlite+aiosqlite:///data/db/release-mirror.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    http_timeout_seconds: float = Field(default=60.0, gt=0)

    # Object storage
    storage_backend: Literal["none", "s3", "local"] = "none"
    s3_bucket: str = ""
    s3_region: str = "auto"
    s3_endpoint_url: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    local_storage_dir: Path = Path("./data/mirror")

    # Repositories, as "owner/name:path" entries
    repos: list[str] = Field(default_factory=list)

    # Sync policy
    sync_timeout_seconds: float = Field(default=600.0, gt=0)
    stale_sync_minutes: int = Field(default=20, ge=1)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0)

    # Periodic trigger
    scheduler_enabled: bool = True
    check_interval_seconds: int = Field(default=604800, ge=1)
    scheduler_tick_seconds: float = Field(default=3600.0, gt=0)

    def validate_runtime(self) -> None:
        """Reject storage settings that cannot work at runtime."""
        violations: list[str] = []
        if self.storage_backend == "s3" and not self.s3_bucket:
            violations.append("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        if self.storage_backend == "local" and not str(self.local_storage_dir).strip():
            violations.append("LOCAL_STORAGE_DIR must be set when STORAGE_BACKEND=local")
        for entry in self.repos:
            try:
                parse_repo_entry(entry)
            except ValueError as exc:
                violations.append(str(exc))

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")


def load_repo_configs(
    settings: Settings, environ: Mapping[str, str] | None = None
) -> list[RepoConfig]:
    """Build the ordered repository list once at startup.

    Explicit ``REPOS`` entries come first, followed by legacy ``REPO_<n>``
    variables in numeric order. A repository declared twice keeps its first
    declaration.
    """
    if environ is None:
        environ = os.environ

    entries = list(settings.repos)
    legacy_keys = sorted(
        (key for key in environ if _LEGACY_REPO_VAR.match(key)),
        key=lambda key: int(key.removeprefix("REPO_")),
    )
    entries.extend(environ[key] for key in legacy_keys if environ[key].strip())

    configs: list[RepoConfig] = []
    seen: set[str] = set()
    for entry in entries:
        config = parse_repo_entry(entry)
        if config.repo in seen:
            logger.warning("Ignoring duplicate declaration for %s", config.repo)
            continue
        seen.add(config.repo)
        configs.append(config)
    return configs

