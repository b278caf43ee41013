"""GitHub REST client for release metadata and asset downloads."""

from __future__ import annotations

import logging
import tempfile
from typing import TYPE_CHECKING, Any

import httpx

from backend.exceptions import DownloadError, ReleaseNotFoundError, UpstreamFetchError
from backend.github.base import AssetRef, RateLimit, ReleaseInfo
from backend.services.datetime_service import parse_datetime

if TYPE_CHECKING:
    from backend.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
_USER_AGENT = "release-mirror"
_SPOOL_MAX_BYTES = 8 * 1024 * 1024


def parse_release(data: dict[str, Any], repo: str) -> ReleaseInfo:
    """Convert a ``releases/latest`` payload into a ReleaseInfo stamped with ``repo``."""
    tag = str(data.get("tag_name") or "").strip()
    if not tag:
        raise UpstreamFetchError(repo, "release payload has no tag_name")

    published_raw = data.get("published_at")
    published_at = parse_datetime(published_raw) if published_raw else None

    assets: list[AssetRef] = []
    raw_assets = data.get("assets")
    if not isinstance(raw_assets, list):
        raw_assets = []
    for raw in raw_assets:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("name") or "").strip()
        url = str(raw.get("browser_download_url") or "").strip()
        if not name or not url:
            logger.warning("Skipping malformed asset entry in %s %s", repo, tag)
            continue
        assets.append(
            AssetRef(name=name, download_url=url, source_repo=repo, size=int(raw.get("size") or 0))
        )
    return ReleaseInfo(tag=tag, published_at=published_at, assets=assets)


class GitHubClient:
    """Async GitHub client. Records the latest rate-limit headers it sees."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token: str = "",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "User-Agent": _USER_AGENT,
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )
        self.rate_limit: RateLimit | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> GitHubClient:
        return cls(
            api_url=settings.github_api_url,
            token=settings.github_token,
            timeout=settings.http_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _record_rate_limit(self, response: httpx.Response) -> None:
        rate_limit = RateLimit.from_headers(response.headers)
        if rate_limit is not None:
            self.rate_limit = rate_limit

    async def fetch_latest_release(self, repo: str) -> ReleaseInfo:
        """Fetch ``repos/{repo}/releases/latest``.

        Raises:
            ReleaseNotFoundError: The repository has no published release.
            UpstreamFetchError: Transport failure, non-200 status or bad payload.
        """
        logger.info("Fetching latest release of %s", repo)
        try:
            response = await self._client.get(f"/repos/{repo}/releases/latest")
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(repo, str(exc) or type(exc).__name__) from exc

        self._record_rate_limit(response)
        if response.status_code == 404:
            raise ReleaseNotFoundError(repo, "no published release")
        if response.status_code != 200:
            raise UpstreamFetchError(
                repo, f"HTTP {response.status_code} {response.reason_phrase}".strip()
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamFetchError(repo, "response is not valid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamFetchError(repo, "unexpected response payload")

        release = parse_release(data, repo)
        logger.info(
            "Latest release of %s is %s (%d assets)", repo, release.tag, len(release.assets)
        )
        return release

    async def download_asset(self, asset: AssetRef) -> tempfile.SpooledTemporaryFile[bytes]:
        """Stream an asset into a spooled temporary file.

        Small assets stay in memory; larger ones spill to disk. The caller
        owns the returned file and must close it.

        Raises:
            DownloadError: Transport failure or non-success response.
        """
        spool: tempfile.SpooledTemporaryFile[bytes] = tempfile.SpooledTemporaryFile(
            max_size=_SPOOL_MAX_BYTES
        )
        try:
            async with self._client.stream(
                "GET", asset.download_url, headers={"Accept": "application/octet-stream"}
            ) as response:
                if not response.is_success:
                    raise DownloadError(
                        asset.name,
                        f"HTTP {response.status_code} {response.reason_phrase}".strip(),
                    )
                async for chunk in response.aiter_bytes():
                    spool.write(chunk)
        except httpx.HTTPError as exc:
            spool.close()
            raise DownloadError(asset.name, str(exc) or type(exc).__name__) from exc
        except BaseException:
            spool.close()
            raise
        spool.seek(0)
        return spool

    async def fetch_rate_limit(self) -> RateLimit | None:
        """Query ``/rate_limit``; falls back to the last seen headers on failure."""
        try:
            response = await self._client.get("/rate_limit")
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch GitHub rate limit: %s", exc)
            return self.rate_limit

        self._record_rate_limit(response)
        if response.status_code != 200:
            logger.warning("GitHub rate limit request failed: HTTP %d", response.status_code)
            return self.rate_limit

        try:
            core = response.json()["rate"]
            self.rate_limit = RateLimit.from_headers(
                {
                    "x-ratelimit-limit": str(core["limit"]),
                    "x-ratelimit-remaining": str(core["remaining"]),
                    "x-ratelimit-reset": str(core["reset"]),
                }
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Unexpected GitHub rate limit payload")
        return self.rate_limit
