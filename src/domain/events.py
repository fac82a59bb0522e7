from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .base_types import BatchId, EventId, TransferId


class EventKind(StrEnum):
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    MERGE_IN = "merge_in"
    MERGE_OUT = "merge_out"
    PACKAGING_RUN = "packaging_run"
    KEG_FILL = "keg_fill"
    DISTILLATION_SHIPMENT = "distillation_shipment"
    PROCESS_LOSS = "process_loss"
    VOLUME_ADJUSTMENT = "volume_adjustment"


class MergeSource(StrEnum):
    BATCH = "batch"
    EXTERNAL_PRODUCTION = "external_production"


class DistillationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class ProcessLossKind(StrEnum):
    RACKING = "racking"
    FILTERING = "filtering"


class AdjustmentReason(StrEnum):
    CORRECTION = "correction"
    EVAPORATION = "evaporation"
    SPILLAGE = "spillage"
    SAMPLING = "sampling"
    CONTAMINATION = "contamination"
    MEASUREMENT_ERROR = "measurement_error"
    OTHER = "other"


def _require_non_negative(owner: str, **values: Decimal | int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{owner}.{name} must be >= 0")


class _VolumeEventBase(BaseModel):
    """Fields shared by every volume-affecting event.

    Events are immutable once recorded. Erroneous events are soft-deleted by
    setting ``deleted_at``; replay ignores them.
    """

    model_config = ConfigDict(frozen=True)

    id: EventId = Field(default_factory=lambda: EventId(uuid4()))
    batch_id: BatchId
    timestamp: datetime
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TransferOut(_VolumeEventBase):
    kind: Literal["transfer_out"] = "transfer_out"
    transfer_id: TransferId
    to_batch_id: BatchId
    volume_moved: Decimal
    volume_lost: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate(self) -> TransferOut:
        _require_non_negative("TransferOut", volume_moved=self.volume_moved, volume_lost=self.volume_lost)
        return self


class TransferIn(_VolumeEventBase):
    kind: Literal["transfer_in"] = "transfer_in"
    transfer_id: TransferId
    from_batch_id: BatchId
    volume_moved: Decimal

    @model_validator(mode="after")
    def _validate(self) -> TransferIn:
        _require_non_negative("TransferIn", volume_moved=self.volume_moved)
        return self


class MergeIn(_VolumeEventBase):
    kind: Literal["merge_in"] = "merge_in"
    from_source: MergeSource = MergeSource.BATCH
    from_batch_id: BatchId | None = None
    volume_added: Decimal

    @model_validator(mode="after")
    def _validate(self) -> MergeIn:
        _require_non_negative("MergeIn", volume_added=self.volume_added)
        if self.from_source == MergeSource.BATCH and self.from_batch_id is None:
            raise ValueError("MergeIn from a batch requires from_batch_id")
        if self.from_source == MergeSource.EXTERNAL_PRODUCTION and self.from_batch_id is not None:
            raise ValueError("MergeIn from external production cannot reference a batch")
        return self


class MergeOut(_VolumeEventBase):
    kind: Literal["merge_out"] = "merge_out"
    to_batch_id: BatchId
    volume_removed: Decimal

    @model_validator(mode="after")
    def _validate(self) -> MergeOut:
        _require_non_negative("MergeOut", volume_removed=self.volume_removed)
        return self


class PackagingRun(_VolumeEventBase):
    kind: Literal["packaging_run"] = "packaging_run"
    volume_taken: Decimal
    declared_loss: Decimal = Decimal(0)
    units_produced: int = 0
    unit_size_ml: Decimal = Decimal(0)
    voided: bool = False

    @model_validator(mode="after")
    def _validate(self) -> PackagingRun:
        _require_non_negative(
            "PackagingRun",
            volume_taken=self.volume_taken,
            declared_loss=self.declared_loss,
            units_produced=self.units_produced,
            unit_size_ml=self.unit_size_ml,
        )
        return self

    @property
    def expected_product_volume(self) -> Decimal:
        """Liters that ended up in packages."""
        return Decimal(self.units_produced) * self.unit_size_ml / 1000


class KegFill(_VolumeEventBase):
    kind: Literal["keg_fill"] = "keg_fill"
    volume_taken: Decimal
    declared_loss: Decimal = Decimal(0)
    voided: bool = False

    @model_validator(mode="after")
    def _validate(self) -> KegFill:
        _require_non_negative("KegFill", volume_taken=self.volume_taken, declared_loss=self.declared_loss)
        return self


class DistillationShipment(_VolumeEventBase):
    kind: Literal["distillation_shipment"] = "distillation_shipment"
    volume_sent: Decimal
    status: DistillationStatus = DistillationStatus.SENT

    @model_validator(mode="after")
    def _validate(self) -> DistillationShipment:
        _require_non_negative("DistillationShipment", volume_sent=self.volume_sent)
        return self


class ProcessLoss(_VolumeEventBase):
    kind: Literal["process_loss"] = "process_loss"
    loss_kind: ProcessLossKind
    volume_lost: Decimal
    is_historical_backfill: bool = False

    @model_validator(mode="after")
    def _validate(self) -> ProcessLoss:
        _require_non_negative("ProcessLoss", volume_lost=self.volume_lost)
        return self


class VolumeAdjustment(_VolumeEventBase):
    """Signed correction: positive adds volume, negative removes it."""

    kind: Literal["volume_adjustment"] = "volume_adjustment"
    signed_amount: Decimal
    reason_category: AdjustmentReason = AdjustmentReason.OTHER

    @model_validator(mode="after")
    def _validate(self) -> VolumeAdjustment:
        if self.signed_amount == 0:
            raise ValueError("VolumeAdjustment.signed_amount must be non-zero")
        return self


VolumeEvent = Annotated[
    Union[
        TransferOut,
        TransferIn,
        MergeIn,
        MergeOut,
        PackagingRun,
        KegFill,
        DistillationShipment,
        ProcessLoss,
        VolumeAdjustment,
    ],
    Field(discriminator="kind"),
]

volume_event_adapter: TypeAdapter[VolumeEvent] = TypeAdapter(VolumeEvent)


def parse_event(data: dict[str, object]) -> VolumeEvent:
    """Build the matching event variant from a plain mapping keyed by ``kind``."""
    return volume_event_adapter.validate_python(data)


def counterpart_of(event: VolumeEvent) -> BatchId | None:
    """Batch on the other side of a movement, if the event has one."""
    if isinstance(event, TransferOut):
        return event.to_batch_id
    if isinstance(event, TransferIn):
        return event.from_batch_id
    if isinstance(event, MergeIn):
        return event.from_batch_id
    if isinstance(event, MergeOut):
        return event.to_batch_id
    return None
