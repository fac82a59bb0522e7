from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from domain.base_types import Batch, BatchId, Classification, OriginStatus, TransferId
from domain.events import KegFill, PackagingRun, TransferIn, TransferOut, VolumeAdjustment
from tests.helpers.time_utils import DEFAULT_TIME_GEN, TimeGenerator


def make_batch(
    batch_id: str,
    initial: Decimal | int | str = 0,
    *,
    parent: str | None = None,
    classification: Classification = Classification.BASE_FERMENT,
    status: OriginStatus = OriginStatus.VERIFIED,
    split: bool = False,
    start: datetime | None = None,
    ts_gen: TimeGenerator = DEFAULT_TIME_GEN,
) -> Batch:
    return Batch(
        id=BatchId(batch_id),
        name=f"Batch {batch_id}",
        parent_batch_id=BatchId(parent) if parent else None,
        classification=classification,
        declared_initial_volume=Decimal(initial),
        origin_status=status,
        is_derived_by_split=split,
        start_timestamp=start or ts_gen(),
    )


def make_transfer(
    source: str,
    destination: str,
    volume: Decimal | int | str,
    *,
    loss: Decimal | int | str = 0,
    timestamp: datetime | None = None,
    ts_gen: TimeGenerator = DEFAULT_TIME_GEN,
) -> tuple[TransferOut, TransferIn]:
    """Both legs of one physical transfer, sharing a transfer id and timestamp."""
    transfer_id = TransferId(uuid4())
    timestamp = timestamp or ts_gen()
    out_leg = TransferOut(
        batch_id=BatchId(source),
        timestamp=timestamp,
        transfer_id=transfer_id,
        to_batch_id=BatchId(destination),
        volume_moved=Decimal(volume),
        volume_lost=Decimal(loss),
    )
    in_leg = TransferIn(
        batch_id=BatchId(destination),
        timestamp=timestamp,
        transfer_id=transfer_id,
        from_batch_id=BatchId(source),
        volume_moved=Decimal(volume),
    )
    return out_leg, in_leg


def make_packaging(
    batch_id: str,
    volume_taken: Decimal | int | str,
    *,
    units: int = 0,
    unit_size_ml: Decimal | int | str = 1000,
    loss: Decimal | int | str = 0,
    voided: bool = False,
    timestamp: datetime | None = None,
    ts_gen: TimeGenerator = DEFAULT_TIME_GEN,
) -> PackagingRun:
    return PackagingRun(
        batch_id=BatchId(batch_id),
        timestamp=timestamp or ts_gen(),
        volume_taken=Decimal(volume_taken),
        declared_loss=Decimal(loss),
        units_produced=units,
        unit_size_ml=Decimal(unit_size_ml),
        voided=voided,
    )


def make_keg_fill(
    batch_id: str,
    volume_taken: Decimal | int | str,
    *,
    loss: Decimal | int | str = 0,
    timestamp: datetime | None = None,
    ts_gen: TimeGenerator = DEFAULT_TIME_GEN,
) -> KegFill:
    return KegFill(
        batch_id=BatchId(batch_id),
        timestamp=timestamp or ts_gen(),
        volume_taken=Decimal(volume_taken),
        declared_loss=Decimal(loss),
    )


def make_adjustment(
    batch_id: str,
    amount: Decimal | int | str,
    *,
    timestamp: datetime | None = None,
    ts_gen: TimeGenerator = DEFAULT_TIME_GEN,
) -> VolumeAdjustment:
    return VolumeAdjustment(batch_id=BatchId(batch_id), timestamp=timestamp or ts_gen(), signed_amount=Decimal(amount))
