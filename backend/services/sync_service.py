"""Sync orchestration: one pass over the configured repositories."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from backend.exceptions import (
    DownloadError,
    NoReposConfiguredError,
    RepoNotConfiguredError,
    StorageNotConfiguredError,
    StoreError,
    SyncInProgressError,
    SyncTimeoutError,
    UploadError,
    UpstreamFetchError,
)
from backend.services.asset_service import (
    AssetUploader,
    Platform,
    classify_asset,
    filter_valid_assets,
)
from backend.services.datetime_service import now_utc
from backend.services.log_service import SYNC_COMPLETE_MESSAGE, SYNC_FAILED_PREFIX
from backend.services.reconcile_service import FileReconciler
from backend.services.update_service import UpdateDecider

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
    from datetime import datetime

    from backend.config import RepoConfig
    from backend.github.base import ReleaseInfo, ReleaseSource
    from backend.services.log_service import SyncLogBroadcaster
    from backend.services.record_service import SyncRecordStore
    from backend.storage.base import ObjectStore

    ProgressSink = Callable[[str], Awaitable[None]]

logger = logging.getLogger(__name__)

class SyncGuard:
    """Single-flight flag: at most one sync pass runs at a time.

    Acquisition is synchronous, so within one event loop no two callers can
    both succeed.
    """

    def __init__(self) -> None:
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold the guard for the duration of the block.

        Raises:
            SyncInProgressError: Another pass holds the guard.
        """
        if not self.try_acquire():
            raise SyncInProgressError()
        try:
            yield
        finally:
            self.release()


class RepoOutcomeStatus(StrEnum):
    """How one repository fared in a pass."""

    SYNCED = "synced"
    UP_TO_DATE = "up_to_date"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class RepoOutcome:
    repo: str
    status: RepoOutcomeStatus
    version: str | None = None
    uploaded: int = 0
    failed_assets: int = 0
    deleted: int = 0
    error: str | None = None


@dataclass
class SyncPassResult:
    """Per-repository outcomes of one pass, in configuration order."""

    outcomes: list[RepoOutcome] = field(default_factory=list)
    completed: bool = False

    def outcome_for(self, repo: str) -> RepoOutcome | None:
        for outcome in self.outcomes:
            if outcome.repo == repo:
                return outcome
        return None


async def _discard(line: str) -> None:
    return None


class SyncOrchestrator:
    """Drives the per-repository sync state machine.

    Repositories are processed in configuration order and assets are
    uploaded one at a time. A failure is contained to its asset or its
    repository; the pass as a whole always ends with either
    ``SYNC_COMPLETE_MESSAGE`` or a line starting with ``SYNC_FAILED_PREFIX``.
    """

    def __init__(
        self,
        repos: Sequence[RepoConfig],
        releases: ReleaseSource,
        object_store: ObjectStore | None,
        records: SyncRecordStore,
        broadcaster: SyncLogBroadcaster | None = None,
        timeout_seconds: float = 600.0,
        guard: SyncGuard | None = None,
    ) -> None:
        self.repos = list(repos)
        self.guard = guard if guard is not None else SyncGuard()
        self.last_check: datetime | None = None
        self._releases = releases
        self._object_store = object_store
        self._records = records
        self._broadcaster = broadcaster
        self._timeout_seconds = timeout_seconds
        self._tasks: set[asyncio.Task[None]] = set()
        self._active_repo: str | None = None

        self.decider = UpdateDecider(records, object_store, releases)
        self._reconciler: FileReconciler | None = None
        self._uploader: AssetUploader | None = None
        if object_store is not None:
            all_repos = [config.repo for config in self.repos]
            self._reconciler = FileReconciler(object_store, records, all_repos)
            self._uploader = AssetUploader(releases, object_store, records)

    @property
    def is_syncing(self) -> bool:
        return self.guard.is_held

    def resolve_targets(self, repo: str | None = None) -> list[RepoConfig]:
        """Select the repositories a pass should cover.

        Raises:
            NoReposConfiguredError: Nothing is configured.
            RepoNotConfiguredError: ``repo`` is not among the configured repositories.
        """
        if not self.repos:
            raise NoReposConfiguredError()
        if not repo:
            return list(self.repos)
        targets = [config for config in self.repos if config.repo == repo]
        if not targets:
            raise RepoNotConfiguredError(repo)
        return targets

    def start_sync(self, repo: str | None = None, trigger: str = "manual") -> AsyncIterator[str]:
        """Start a pass in the background and return its progress lines.

        The pass runs as its own task, so it finishes even when the consumer
        stops iterating. Validation happens before this returns.

        Raises:
            ConfigError: No repositories, unknown ``repo`` or no object store.
            SyncInProgressError: Another pass is running.
        """
        targets = self.resolve_targets(repo)
        if self._object_store is None:
            raise StorageNotConfiguredError()
        if not self.guard.try_acquire():
            raise SyncInProgressError()

        queue: asyncio.Queue[str | None] = asyncio.Queue()

        async def _to_queue(line: str) -> None:
            await queue.put(line)

        async def _run() -> None:
            try:
                await self._run_batch(targets, _to_queue, trigger)
            finally:
                self.guard.release()
                await queue.put(None)

        task = asyncio.create_task(_run(), name=f"sync-{trigger}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _drain(queue)

    async def run_scheduled(
        self, prepare: Callable[[], Awaitable[None]] | None = None
    ) -> SyncPassResult | None:
        """Run a full pass unless one is already in flight.

        ``prepare`` runs first, while the guard is already held. Lines only go
        to the log and to live subscribers. Returns None when the pass was
        skipped.
        """
        if self._object_store is None:
            logger.error("Scheduled sync skipped: object storage is not configured")
            return None
        if not self.repos:
            logger.info("Scheduled sync skipped: no repositories configured")
            return None
        if not self.guard.try_acquire():
            logger.info("Scheduled sync skipped: a sync is already in progress")
            return None
        try:
            if prepare is not None:
                await prepare()
            return await self._run_batch(list(self.repos), _discard, "scheduled")
        finally:
            self.guard.release()

    async def wait_idle(self) -> None:
        """Wait for background passes started by ``start_sync``."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give background passes ``timeout`` seconds to finish, then cancel them."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            logger.warning("Cancelling unfinished sync pass %s", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_batch(
        self, targets: Sequence[RepoConfig], sink: ProgressSink, trigger: str
    ) -> SyncPassResult:
        async def emit(line: str) -> None:
            logger.info("%s", line)
            if self._broadcaster is not None:
                self._broadcaster.publish(line, repo=self._active_repo)
            await sink(line)

        self.last_check = now_utc()
        result = SyncPassResult()
        logger.info("Starting %s sync of %d repositories", trigger, len(targets))
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await self.run_pass(targets, emit, result)
        except TimeoutError:
            timeout = SyncTimeoutError(self._timeout_seconds)
            await self._fail_unfinished(targets, result, str(timeout))
            await emit(f"{SYNC_FAILED_PREFIX} {timeout}")
        except Exception as exc:
            logger.exception("Sync pass aborted")
            await emit(f"{SYNC_FAILED_PREFIX} {exc}")
        return result

    async def run_pass(
        self,
        targets: Sequence[RepoConfig],
        emit: ProgressSink,
        result: SyncPassResult | None = None,
    ) -> SyncPassResult:
        """Sync each target in order, then emit ``SYNC_COMPLETE_MESSAGE``."""
        if result is None:
            result = SyncPassResult()
        try:
            for config in targets:
                self._active_repo = config.repo
                result.outcomes.append(await self._sync_repo(config, emit))
        finally:
            self._active_repo = None
        result.completed = True
        await emit(SYNC_COMPLETE_MESSAGE)
        return result

    async def _fail_unfinished(
        self, targets: Sequence[RepoConfig], result: SyncPassResult, message: str
    ) -> None:
        finished = {outcome.repo for outcome in result.outcomes}
        for config in targets:
            if config.repo in finished:
                continue
            result.outcomes.append(
                RepoOutcome(repo=config.repo, status=RepoOutcomeStatus.TIMED_OUT, error=message)
            )
            try:
                await self._records.mark_error(config.repo, config.path, message)
            except StoreError as exc:
                logger.error("Failed to record timeout for %s: %s", config.repo, exc)

    async def _sync_repo(self, config: RepoConfig, emit: ProgressSink) -> RepoOutcome:
        repo = config.repo
        await emit(f"Starting sync for {repo}")

        try:
            release = await self._releases.fetch_latest_release(repo)
        except UpstreamFetchError as exc:
            await emit(f"Skipping {repo}: {exc}")
            return RepoOutcome(repo=repo, status=RepoOutcomeStatus.SKIPPED, error=str(exc))

        try:
            return await self._sync_release(config, release, emit)
        except Exception as exc:
            logger.exception("Sync of %s failed", repo)
            await emit(f"Error syncing {repo}: {exc}")
            try:
                await self._records.mark_error(repo, config.path, str(exc))
            except StoreError as store_exc:
                logger.error("Failed to record error for %s: %s", repo, store_exc)
            return RepoOutcome(
                repo=repo, status=RepoOutcomeStatus.FAILED, version=release.tag, error=str(exc)
            )

    async def _sync_release(
        self, config: RepoConfig, release: ReleaseInfo, emit: ProgressSink
    ) -> RepoOutcome:
        repo, path, tag = config.repo, config.path, release.tag
        if self._reconciler is None or self._uploader is None:
            raise StorageNotConfiguredError()

        if not await self.decider.needs_sync(repo, tag, path, release=release):
            # Written with an empty file list: nothing was uploaded by this pass.
            await self._records.mark_synced(repo, tag, path, [])
            await emit(f"{repo} is up to date ({tag})")
            return RepoOutcome(repo=repo, status=RepoOutcomeStatus.UP_TO_DATE, version=tag)

        await emit(f"Updating {repo} to {tag}")
        previous = await self._records.get(repo)
        recorded = list(previous.file_paths) if previous is not None else []
        previous_path = previous.path if previous is not None and previous.path != path else None
        await self._records.clear_file_list(repo)

        purge = await self._reconciler.purge(
            repo, path, recorded=recorded, previous_path=previous_path
        )
        if purge.failed:
            await emit(f"Removed {purge.deleted} old files of {repo} ({purge.failed} failed)")
        else:
            await emit(f"Removed {purge.deleted} old files of {repo}")

        assets = [asset.stamped(repo) for asset in filter_valid_assets(release.assets)]
        await emit(f"Found {len(assets)} assets to mirror for {repo} {tag}")

        keys: list[str] = []
        per_platform: Counter[Platform] = Counter()
        failed = 0
        for asset in assets:
            try:
                key = await self._uploader.upload(asset, repo, path)
            except (DownloadError, UploadError) as exc:
                failed += 1
                await emit(f"Failed to mirror {asset.name}: {exc}")
                continue
            if key is None:
                await emit(f"Skipped {asset.name}: it does not belong to {repo}")
                continue
            keys.append(key)
            per_platform[classify_asset(asset.name)] += 1
            await emit(f"Uploaded {asset.name} to {key}")

        try:
            await self._records.mark_synced(repo, tag, path, keys)
        except StoreError as exc:
            logger.error("Failed to save sync record for %s: %s", repo, exc)
            await emit(f"Warning: could not save sync record for {repo}: {exc}")

        breakdown = ", ".join(
            f"{platform.value}: {per_platform[platform]}"
            for platform in Platform
            if per_platform[platform]
        )
        summary = f"Synced {repo} {tag}: {len(keys)} files"
        if breakdown:
            summary += f" ({breakdown})"
        if failed:
            summary += f", {failed} failed"
        await emit(summary)
        return RepoOutcome(
            repo=repo,
            status=RepoOutcomeStatus.SYNCED,
            version=tag,
            uploaded=len(keys),
            failed_assets=failed,
            deleted=purge.deleted,
        )


async def _drain(queue: asyncio.Queue[str | None]) -> AsyncIterator[str]:
    while True:
        line = await queue.get()
        if line is None:
            return
        yield line
