"""Wires the queue, cache, client and credential watcher together."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from boqsync.config import BoqSyncConfig
from boqsync.credentials import CredentialWatcher
from boqsync.services.approval_api import ApprovalApiClient
from boqsync.storage.queue import SubmissionQueue
from boqsync.sync.cache import ApprovalStateCache
from boqsync.sync.facade import SubmissionFacade
from boqsync.sync.flush import FlushEngine, FlushOutcome

logger = logging.getLogger(__name__)


class Synchronizer:
    """Owns every synchronization component for one process."""

    def __init__(
        self,
        config: BoqSyncConfig,
        *,
        client: ApprovalApiClient | None = None,
        credentials: CredentialWatcher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config

        # Core components
        self.store = SubmissionQueue(config)
        self.credentials = credentials or CredentialWatcher(config.credential_file)
        self.client = client or ApprovalApiClient(
            config,
            token_provider=self.credentials.current_token,
        )
        self.cache = ApprovalStateCache(self.client)
        self.engine = FlushEngine(
            config,
            self.store,
            self.client,
            self.cache,
            self.credentials,
            clock=clock,
        )
        self.facade = SubmissionFacade(self.store, self.client, self.cache)

        # Track flush tasks spawned from credential callbacks so we can clean them up
        self._flush_tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.is_running = False

    async def start(self) -> None:
        """Load server state, watch for credentials and flush what is queued."""
        if self.is_running:
            logger.warning("Synchronizer is already running")
            return

        logger.info("Starting synchronizer")
        self.is_running = True
        self._loop = asyncio.get_running_loop()

        await self.cache.refresh_all()
        self.credentials.start(self._on_credential_change)

        if self.credentials.has_credential() and not self.store.is_empty:
            await self.engine.maybe_flush()

        logger.info("Synchronizer started")

    def stop(self) -> None:
        """Stop watching and cancel outstanding flush tasks."""
        if not self.is_running:
            return

        logger.info("Stopping synchronizer")
        self.is_running = False
        self.credentials.stop()

        for task in list(self._flush_tasks):
            task.cancel()
        self._flush_tasks.clear()

        logger.info("Synchronizer stopped")

    def _on_credential_change(self, present: bool) -> None:
        """Handle a credential change; may be called from the watcher thread."""
        if not present or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_flush)

    def _schedule_flush(self) -> None:
        if not self.is_running:
            return
        task = asyncio.get_running_loop().create_task(self.engine.maybe_flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        task.add_done_callback(self._log_flush_failure)

    @staticmethod
    def _log_flush_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exception = task.exception()
        if exception:
            logger.error("Background flush failed", exc_info=exception)

    async def flush(self) -> FlushOutcome:
        """Run a flush through the same gate as every other trigger."""
        return await self.engine.maybe_flush()

    async def run(self, poll_interval: float | None = None) -> None:
        """Start, then re-check the queue periodically until stopped."""
        interval = poll_interval or self.config.flush_check_interval
        await self.start()

        try:
            while self.is_running:
                await asyncio.sleep(interval)
                if not self.store.is_empty:
                    await self.engine.maybe_flush()
        except asyncio.CancelledError:
            logger.info("Synchronizer loop cancelled")
        finally:
            self.stop()

    def get_status(self) -> dict[str, Any]:
        """Get current synchronizer status."""
        queue_stats = self.store.get_queue_stats()
        return {
            "running": self.is_running,
            "credential_present": self.credentials.has_credential(),
            "queue_stats": queue_stats,
            "total_queued": sum(queue_stats.values()),
            "cache_stats": self.cache.get_stats(),
            "flush": self.engine.get_session_info(),
        }
