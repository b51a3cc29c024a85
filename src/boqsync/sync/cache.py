"""Client-side mirror of the server's approval state."""

import logging
import time
from typing import Any

from boqsync.error_handling import RemoteServiceError
from boqsync.models import FLUSH_ORDER, EntityKind, SubmittableEntity
from boqsync.services.approval_api import ApprovalApiClient

logger = logging.getLogger(__name__)


class ApprovalStateCache:
    """Four independently refreshed lists: confirmed and pending, per kind.

    A refresh always replaces its list with exactly what the server returned.
    A failed refresh is logged and leaves the previous list in place. There is
    no merging across lists; the server decides which list an entity is in.
    """

    def __init__(self, client: ApprovalApiClient):
        self.client = client
        self._confirmed: dict[EntityKind, tuple[SubmittableEntity, ...]] = {
            kind: () for kind in EntityKind
        }
        self._pending: dict[EntityKind, tuple[SubmittableEntity, ...]] = {
            kind: () for kind in EntityKind
        }
        self._refreshed_at: dict[tuple[EntityKind, bool], float] = {}

    @property
    def shops(self) -> tuple[SubmittableEntity, ...]:
        return self._confirmed[EntityKind.SHOP]

    @property
    def materials(self) -> tuple[SubmittableEntity, ...]:
        return self._confirmed[EntityKind.MATERIAL]

    @property
    def pending_shops(self) -> tuple[SubmittableEntity, ...]:
        return self._pending[EntityKind.SHOP]

    @property
    def pending_materials(self) -> tuple[SubmittableEntity, ...]:
        return self._pending[EntityKind.MATERIAL]

    def confirmed(self, kind: EntityKind) -> tuple[SubmittableEntity, ...]:
        return self._confirmed[kind]

    def pending_approval(self, kind: EntityKind) -> tuple[SubmittableEntity, ...]:
        return self._pending[kind]

    def last_refreshed(self, kind: EntityKind, *, pending: bool = False) -> float | None:
        """Epoch time of the last successful refresh of a list, if any."""
        return self._refreshed_at.get((kind, pending))

    def find(self, kind: EntityKind, entity_id: str) -> SubmittableEntity | None:
        """Look an entity up in the confirmed list, then the pending list."""
        for entity in (*self._confirmed[kind], *self._pending[kind]):
            if entity.entity_id == entity_id:
                return entity
        return None

    async def refresh_confirmed(self, kind: EntityKind) -> bool:
        """Replace the confirmed list of a kind from the server."""
        try:
            entities = await self.client.list_confirmed(kind)
        except RemoteServiceError as e:
            logger.warning("Refreshing %s failed, keeping cached list: %s", kind.collection, e)
            return False

        self._confirmed[kind] = tuple(entities)
        self._refreshed_at[(kind, False)] = time.time()
        logger.debug("Refreshed %s: %s entries", kind.collection, len(entities))
        return True

    async def refresh_pending(self, kind: EntityKind) -> bool:
        """Replace the pending-approval list of a kind from the server."""
        try:
            entities = await self.client.list_pending(kind)
        except RemoteServiceError as e:
            logger.warning(
                "Refreshing pending %s failed, keeping cached list: %s",
                kind.collection,
                e,
            )
            return False

        self._pending[kind] = tuple(entities)
        self._refreshed_at[(kind, True)] = time.time()
        logger.debug("Refreshed pending %s: %s entries", kind.collection, len(entities))
        return True

    async def refresh_kind(self, kind: EntityKind) -> bool:
        """Refresh both lists of a kind. True only if both succeeded."""
        confirmed_ok = await self.refresh_confirmed(kind)
        pending_ok = await self.refresh_pending(kind)
        return confirmed_ok and pending_ok

    async def refresh_all(self) -> bool:
        """Refresh all four lists."""
        results = [await self.refresh_kind(kind) for kind in FLUSH_ORDER]
        return all(results)

    def remove(self, kind: EntityKind, entity_id: str) -> None:
        """Drop an entity the server has confirmed deleting."""
        self._confirmed[kind] = tuple(
            e for e in self._confirmed[kind] if e.entity_id != entity_id
        )
        self._pending[kind] = tuple(
            e for e in self._pending[kind] if e.entity_id != entity_id
        )

    def get_stats(self) -> dict[str, Any]:
        """Get entry counts for every list."""
        stats: dict[str, Any] = {}
        for kind in FLUSH_ORDER:
            stats[kind.collection] = len(self._confirmed[kind])
            stats[f"pending_{kind.collection}"] = len(self._pending[kind])
        return stats
