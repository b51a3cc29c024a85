"""Gated resubmission of queued submissions."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from boqsync.config import BoqSyncConfig
from boqsync.credentials import CredentialWatcher
from boqsync.error_handling import RemoteServiceError
from boqsync.models import FLUSH_ORDER, EntityKind
from boqsync.services.approval_api import ApprovalApiClient
from boqsync.storage.queue import SubmissionQueue
from boqsync.sync.cache import ApprovalStateCache

logger = logging.getLogger(__name__)


@dataclass
class FlushSession:
    """Per-process flush bookkeeping. Not persisted."""

    last_flush_time: float | None = None
    attempt_count: int = 0


@dataclass
class FlushOutcome:
    """Result of one call to ``maybe_flush``."""

    ran: bool
    skipped_reason: str | None = None
    delivered: int = 0
    retained: int = 0

    @classmethod
    def skipped(cls, reason: str) -> "FlushOutcome":
        return cls(ran=False, skipped_reason=reason)


class FlushEngine:
    """Resubmits queued shops and materials once the gate allows it.

    Every trigger (credential appearing, mount, periodic check, manual flush)
    calls :meth:`maybe_flush`. A pass is refused while another is in flight,
    within ``flush_min_interval`` of the previous pass, once
    ``flush_max_attempts`` passes have run, or while no credential is present.
    The attempt counter never resets within a process.
    """

    def __init__(
        self,
        config: BoqSyncConfig,
        store: SubmissionQueue,
        client: ApprovalApiClient,
        cache: ApprovalStateCache,
        credentials: CredentialWatcher,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.client = client
        self.cache = cache
        self.credentials = credentials
        self.clock = clock
        self.session = FlushSession()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _gate_reason(self) -> str | None:
        """Why a pass may not start right now, or None if it may."""
        if self._in_flight:
            return "in flight"

        last = self.session.last_flush_time
        if last is not None and self.clock() - last < self.config.flush_min_interval:
            return "cooldown"
        if self.session.attempt_count >= self.config.flush_max_attempts:
            return "attempt ceiling reached"

        if not self.credentials.has_credential():
            return "no credential"
        if self.store.is_empty:
            return "queue empty"
        return None

    async def maybe_flush(self) -> FlushOutcome:
        """Run one drain pass if the gate allows it."""
        reason = self._gate_reason()
        if reason is not None:
            logger.debug("Flush skipped: %s", reason)
            return FlushOutcome.skipped(reason)

        self._in_flight = True
        self.session.attempt_count += 1
        self.session.last_flush_time = self.clock()
        logger.info(
            "Flushing %s queued submissions (attempt %s/%s)",
            self.store.count(),
            self.session.attempt_count,
            self.config.flush_max_attempts,
        )

        try:
            delivered = 0
            for kind in FLUSH_ORDER:
                delivered += await self._drain(kind)
        finally:
            self._in_flight = False

        retained = self.store.count()
        logger.info("Flush finished: %s delivered, %s still queued", delivered, retained)
        return FlushOutcome(ran=True, delivered=delivered, retained=retained)

    async def _drain(self, kind: EntityKind) -> int:
        """Resubmit one kind's entries in order, settling each one as it lands."""
        delivered = 0

        for submission in self.store.pending(kind):
            if self.store.find(submission.local_id) is None:
                logger.debug("Skipping %s, discarded during flush", submission)
                continue
            try:
                entity = await self.client.create(kind, dict(submission.payload))
            except RemoteServiceError as e:
                logger.warning("Delivery of %s failed, keeping it queued: %s", submission, e)
                continue

            self._settle(kind, submission.local_id)
            delivered += 1
            logger.info("Delivered %s as %s %s", submission, kind.value, entity.entity_id)
            await self.cache.refresh_pending(kind)

        return delivered

    def _settle(self, kind: EntityKind, local_id: str) -> None:
        """Drop a delivered entry from the store, keeping everything else current."""
        # No await between reading and replacing the current entries
        retained = [e for e in self.store.pending(kind) if e.local_id != local_id]
        self.store.replace(kind, retained)

    def get_session_info(self) -> dict[str, object]:
        """Get the current gate state for status output."""
        return {
            "attempt_count": self.session.attempt_count,
            "max_attempts": self.config.flush_max_attempts,
            "last_flush_time": self.session.last_flush_time,
            "in_flight": self._in_flight,
        }
