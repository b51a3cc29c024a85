"""Shop and material records, their approval state and queued submissions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar, TypedDict


class EntityKind(Enum):
    """Kinds of records a supplier can submit for approval."""

    SHOP = "shop"
    MATERIAL = "material"

    @property
    def collection(self) -> str:
        """REST collection name and list envelope key."""
        return f"{self.value}s"

    @property
    def storage_key(self) -> str:
        """Name of the persisted queue entry for this kind."""
        return f"pending{self.value.title()}Requests"


# Shops before materials when draining the queue
FLUSH_ORDER = (EntityKind.SHOP, EntityKind.MATERIAL)


class ApprovalStatus(Enum):
    """Where a record is in the admin approval lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ApprovalStatus:
        """Derive the status from a server row.

        An explicit ``status`` wins. Otherwise the ``approved`` column is read:
        true is approved, false is rejected, null or missing is pending.
        """
        status = record.get("status")
        if isinstance(status, str) and status.lower() in {s.value for s in cls}:
            return cls(status.lower())

        approved = record.get("approved")
        if approved is True:
            return cls.APPROVED
        if approved is False:
            return cls.REJECTED
        if isinstance(approved, str) and approved.lower() in {s.value for s in cls}:
            return cls(approved.lower())
        return cls.PENDING


class ShopFields(TypedDict, total=False):
    """Descriptive fields of a shop."""

    name: str
    location: str
    phoneCountryCode: str
    contactNumber: str
    city: str
    state: str
    country: str
    pincode: str
    image: str
    rating: float
    categories: list[str]
    gstNo: str
    ownerId: str
    disabled: bool


class MaterialFields(TypedDict, total=False):
    """Descriptive fields of a material."""

    name: str
    code: str
    rate: float
    shopId: str
    unit: str
    category: str
    brandName: str
    modelNumber: str
    subCategory: str
    product: str
    technicalSpecification: str
    dimensions: str
    finish: str
    metalType: str
    image: str
    attributes: dict[str, Any]
    masterMaterialId: str
    disabled: bool


SubmissionPayload = ShopFields | MaterialFields


# Server column names -> client field names
_FIELD_ALIASES = {
    "shop_id": "shopId",
    "brandname": "brandName",
    "modelnumber": "modelNumber",
    "subcategory": "subCategory",
    "technicalspecification": "technicalSpecification",
    "master_material_id": "masterMaterialId",
    "gstno": "gstNo",
    "owner_id": "ownerId",
    "phonecountrycode": "phoneCountryCode",
    "contactnumber": "contactNumber",
}

_APPROVAL_KEYS = {"id", "approved", "status", "approval_reason", "approvalReason", "rejectionReason"}


def normalize_fields(record: dict[str, Any]) -> dict[str, Any]:
    """Map server column names onto client field names, dropping approval keys."""
    fields: dict[str, Any] = {}
    for key, value in record.items():
        if key in _APPROVAL_KEYS:
            continue
        client_key = _FIELD_ALIASES.get(key, key)
        # Prefer a value already present under the client name
        if client_key in fields and key != client_key:
            continue
        fields[client_key] = value
    return fields


@dataclass
class SubmittableEntity:
    """A server-confirmed shop or material."""

    kind: EntityKind
    entity_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    rejection_reason: str | None = None

    @property
    def name(self) -> str:
        return str(self.fields.get("name") or "")

    @classmethod
    def from_api(cls, kind: EntityKind, record: dict[str, Any]) -> SubmittableEntity:
        """Build an entity from a server record.

        Raises:
            ValueError: If the record carries no server id.
        """
        entity_id = record.get("id")
        if entity_id in (None, ""):
            msg = f"{kind.value} record has no server id"
            raise ValueError(msg)

        return cls(
            kind=kind,
            entity_id=str(entity_id),
            fields=normalize_fields(record),
            status=ApprovalStatus.from_record(record),
            rejection_reason=(
                record.get("approval_reason")
                or record.get("approvalReason")
                or record.get("rejectionReason")
            ),
        )

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name or self.entity_id} ({self.status.value})"


@dataclass(frozen=True)
class _QueuedBase:
    local_id: str
    payload: SubmissionPayload
    queued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    kind: ClassVar[EntityKind]

    def to_record(self) -> dict[str, Any]:
        """Serialize for the persisted queue entry."""
        return {
            "id": self.local_id,
            self.kind.value: dict(self.payload),
            "queuedAt": self.queued_at.isoformat(),
        }

    def __str__(self) -> str:
        name = self.payload.get("name") or "unnamed"
        return f"queued {self.kind.value} '{name}' ({self.local_id[:8]})"


@dataclass(frozen=True)
class QueuedShop(_QueuedBase):
    """A shop creation request that has not reached the server yet."""

    payload: ShopFields
    kind: ClassVar[EntityKind] = EntityKind.SHOP


@dataclass(frozen=True)
class QueuedMaterial(_QueuedBase):
    """A material creation request that has not reached the server yet."""

    payload: MaterialFields
    kind: ClassVar[EntityKind] = EntityKind.MATERIAL


QueuedSubmission = QueuedShop | QueuedMaterial

_QUEUED_TYPES: dict[EntityKind, type[QueuedShop] | type[QueuedMaterial]] = {
    EntityKind.SHOP: QueuedShop,
    EntityKind.MATERIAL: QueuedMaterial,
}


def new_submission(kind: EntityKind, payload: SubmissionPayload) -> QueuedSubmission:
    """Snapshot a payload as a queued submission with a fresh local id.

    Any ``id`` in the payload is dropped; queued submissions never carry a
    server id.
    """
    snapshot = {key: value for key, value in payload.items() if key != "id"}
    return _QUEUED_TYPES[kind](local_id=uuid.uuid4().hex, payload=snapshot)


def submission_from_record(kind: EntityKind, record: dict[str, Any]) -> QueuedSubmission:
    """Rebuild a queued submission from its persisted record.

    Raises:
        KeyError: If the record has no local id.
        ValueError: If ``queuedAt`` is not an ISO timestamp.
    """
    payload = record.get(kind.value) or {}
    queued_at = record.get("queuedAt")
    return _QUEUED_TYPES[kind](
        local_id=str(record["id"]),
        payload={key: value for key, value in payload.items() if key != "id"},
        queued_at=datetime.fromisoformat(queued_at) if queued_at else datetime.now(UTC),
    )


__all__ = [
    "FLUSH_ORDER",
    "ApprovalStatus",
    "EntityKind",
    "MaterialFields",
    "QueuedMaterial",
    "QueuedShop",
    "QueuedSubmission",
    "ShopFields",
    "SubmissionPayload",
    "SubmittableEntity",
    "new_submission",
    "normalize_fields",
    "submission_from_record",
]
