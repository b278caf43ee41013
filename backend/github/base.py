"""Release data classes and the release source protocol."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, BinaryIO, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class AssetRef:
    """A downloadable release asset.

    ``source_repo`` is stamped by whoever fetched the release and is checked
    again before upload, so an asset can never be stored under another repo.
    """

    name: str
    download_url: str
    source_repo: str | None = None
    size: int = 0

    def stamped(self, repo: str) -> AssetRef:
        """Return this asset with ``source_repo`` set, keeping an existing stamp."""
        if self.source_repo:
            return self
        return replace(self, source_repo=repo)


@dataclass(frozen=True)
class ReleaseInfo:
    """Latest release of a repository. Fetched per sync attempt, never persisted."""

    tag: str
    published_at: datetime | None = None
    assets: list[AssetRef] = field(default_factory=list)


@dataclass(frozen=True)
class RateLimit:
    """GitHub API quota as reported by the ``x-ratelimit-*`` headers."""

    limit: int
    remaining: int
    reset: datetime

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> RateLimit | None:
        """Parse rate-limit headers, returning None when any is missing or malformed."""
        try:
            limit = int(headers["x-ratelimit-limit"])
            remaining = int(headers["x-ratelimit-remaining"])
            reset = int(headers["x-ratelimit-reset"])
        except (KeyError, ValueError):
            return None
        return cls(
            limit=limit,
            remaining=remaining,
            reset=datetime.fromtimestamp(reset, tz=timezone.utc),
        )


@runtime_checkable
class ReleaseSource(Protocol):
    """Capability the sync core needs from GitHub."""

    async def fetch_latest_release(self, repo: str) -> ReleaseInfo:
        """Return the latest release of ``repo`` with every asset stamped."""
        ...

    async def download_asset(self, asset: AssetRef) -> BinaryIO:
        """Download the asset body into a readable file object positioned at 0."""
        ...
