"""Entry points for submitting, approving, rejecting and deleting records."""

import logging
from typing import NoReturn

from boqsync.error_handling import ApprovalActionError, RemoteServiceError
from boqsync.models import (
    EntityKind,
    QueuedSubmission,
    SubmissionPayload,
    SubmittableEntity,
    new_submission,
)
from boqsync.services.approval_api import ApprovalApiClient
from boqsync.storage.queue import SubmissionQueue
from boqsync.sync.cache import ApprovalStateCache

logger = logging.getLogger(__name__)


class SubmissionFacade:
    """What callers use instead of talking to the approval service directly.

    Submissions never fail from the caller's point of view: a payload that
    cannot be delivered is queued and ``None`` is returned. Admin actions are
    the opposite; a failed approve, reject or delete re-syncs the cache and
    raises :class:`ApprovalActionError`.
    """

    def __init__(
        self,
        store: SubmissionQueue,
        client: ApprovalApiClient,
        cache: ApprovalStateCache,
    ):
        self.store = store
        self.client = client
        self.cache = cache

    async def submit_for_approval(
        self,
        kind: EntityKind,
        payload: SubmissionPayload,
    ) -> SubmittableEntity | None:
        """Submit a new shop or material.

        Returns the server-confirmed entity, or ``None`` when the submission
        was queued for later delivery.

        Raises:
            StorageError: If the submission could not be queued either.
        """
        try:
            entity = await self.client.create(kind, dict(payload))
        except RemoteServiceError as e:
            logger.warning("Could not submit %s, queueing it: %s", kind.value, e)
            self.store.enqueue(new_submission(kind, payload))
            return None

        logger.info("Submitted %s", entity)
        await self.cache.refresh_pending(kind)
        return entity

    async def approve(self, kind: EntityKind, entity_id: str) -> None:
        try:
            await self.client.approve(kind, entity_id)
        except RemoteServiceError as e:
            await self._resync_and_raise("approve", kind, entity_id, e)

        logger.info("Approved %s %s", kind.value, entity_id)
        await self.cache.refresh_kind(kind)

    async def reject(
        self,
        kind: EntityKind,
        entity_id: str,
        reason: str | None = None,
    ) -> None:
        try:
            await self.client.reject(kind, entity_id, reason)
        except RemoteServiceError as e:
            await self._resync_and_raise("reject", kind, entity_id, e)

        logger.info("Rejected %s %s", kind.value, entity_id)
        await self.cache.refresh_kind(kind)

    async def delete_entity(self, kind: EntityKind, entity_id: str) -> None:
        """Delete a record on the server, or drop it from the queue if unsent."""
        queued = self.store.find(entity_id)
        if queued is not None and queued.kind is kind:
            self.store.discard(entity_id)
            return

        try:
            await self.client.delete(kind, entity_id)
        except RemoteServiceError as e:
            await self._resync_and_raise("delete", kind, entity_id, e)

        self.cache.remove(kind, entity_id)
        logger.info("Deleted %s %s", kind.value, entity_id)

    def discard_queued(self, local_id: str) -> bool:
        return self.store.discard(local_id)

    def queued(self, kind: EntityKind) -> tuple[QueuedSubmission, ...]:
        return self.store.pending(kind)

    async def _resync_and_raise(
        self,
        action: str,
        kind: EntityKind,
        entity_id: str,
        error: RemoteServiceError,
    ) -> NoReturn:
        logger.warning("Failed to %s %s %s, re-syncing: %s", action, kind.value, entity_id, error)
        await self.cache.refresh_kind(kind)
        raise ApprovalActionError(action, kind.value, entity_id, original_error=error) from error
