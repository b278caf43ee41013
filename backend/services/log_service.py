"""Fan-out of sync progress lines to live log subscribers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 1000

SYNC_COMPLETE_MESSAGE = "All sync tasks complete"
SYNC_FAILED_PREFIX = "Sync failed:"


def is_pass_sentinel(line: str) -> bool:
    """Does ``line`` announce the end of a whole pass?"""
    return line == SYNC_COMPLETE_MESSAGE or line.startswith(SYNC_FAILED_PREFIX)


@dataclass(eq=False)
class LogSubscription:
    """A subscriber queue, optionally limited to the lines of one repository.

    A filtered subscription still receives the end-of-pass sentinels.
    """

    repo_filter: str | None = None
    queue: asyncio.Queue[str] = field(
        default_factory=lambda: asyncio.Queue(maxsize=_DEFAULT_QUEUE_SIZE)
    )

    def accepts(self, line: str, repo: str | None = None) -> bool:
        if not self.repo_filter or is_pass_sentinel(line):
            return True
        return repo == self.repo_filter


class SyncLogBroadcaster:
    """In-process publish/subscribe for progress lines.

    Publishing never blocks: a subscriber that does not keep up loses lines.
    """

    def __init__(self) -> None:
        self._subscriptions: set[LogSubscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, repo_filter: str | None = None) -> LogSubscription:
        subscription = LogSubscription(repo_filter=repo_filter or None)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: LogSubscription) -> None:
        self._subscriptions.discard(subscription)

    @asynccontextmanager
    async def subscription(self, repo_filter: str | None = None) -> AsyncIterator[LogSubscription]:
        subscription = self.subscribe(repo_filter)
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    def publish(self, line: str, repo: str | None = None) -> None:
        """Deliver ``line`` to matching subscribers; ``repo`` is the repository it is about."""
        for subscription in list(self._subscriptions):
            if not subscription.accepts(line, repo):
                continue
            try:
                subscription.queue.put_nowait(line)
            except asyncio.QueueFull:
                logger.debug("Dropping log line for a slow subscriber")
