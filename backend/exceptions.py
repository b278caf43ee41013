"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (misconfigured storage credentials, unexpected infrastructure failures).
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``MirrorError`` subclasses: sync failures that are recovered at repo or
  asset granularity inside a pass.  ``ConfigError`` and
  ``SyncInProgressError`` carry their HTTP status code on the class; the
  global handlers map ``StoreError`` to 503 and ``UpstreamFetchError`` to 502.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class MirrorError(Exception):
    """Base class for release mirroring failures."""


class ConfigError(MirrorError):
    """Repository configuration cannot satisfy the request. Never retried."""

    status_code = 400


class NoReposConfiguredError(ConfigError):
    """No repositories are configured."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("No repositories configured")


class RepoNotConfiguredError(ConfigError):
    """The requested repository is not in the configuration."""

    status_code = 404

    def __init__(self, repo: str) -> None:
        super().__init__(f"Repository not configured: {repo}")
        self.repo = repo


class UpstreamFetchError(MirrorError):
    """Release metadata could not be fetched from GitHub."""

    def __init__(self, repo: str, reason: str) -> None:
        super().__init__(f"Failed to fetch latest release for {repo}: {reason}")
        self.repo = repo
        self.reason = reason


class ReleaseNotFoundError(UpstreamFetchError):
    """The repository has no published release (or does not exist)."""


class DownloadError(MirrorError):
    """A release asset could not be downloaded."""

    def __init__(self, asset_name: str, reason: str) -> None:
        super().__init__(f"Failed to download {asset_name}: {reason}")
        self.asset_name = asset_name


class UploadError(MirrorError):
    """A downloaded asset could not be written to the object store."""

    def __init__(self, asset_name: str, reason: str) -> None:
        super().__init__(f"Failed to upload {asset_name}: {reason}")
        self.asset_name = asset_name


class StoreError(MirrorError):
    """The object store or the record store failed a read, write, list or delete."""


class SyncInProgressError(MirrorError):
    """A sync pass is already running."""

    status_code = 409

    def __init__(self) -> None:
        super().__init__("A sync is already in progress")


class SyncTimeoutError(MirrorError):
    """The batch exceeded its wall-clock time limit."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Sync timed out after {timeout_seconds:g} seconds")
        self.timeout_seconds = timeout_seconds


class StorageNotConfiguredError(ConfigError):
    """No object store is bound, so nothing can be mirrored."""

    status_code = 500

    def __init__(self) -> None:
        super().__init__("Object storage is not configured")
