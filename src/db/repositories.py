from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, assert_never
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import models
from domain.base_types import Batch, BatchId, Classification, OriginStatus
from domain.event_store import DataAccessFailure
from domain.events import (
    DistillationShipment,
    EventKind,
    KegFill,
    MergeIn,
    MergeOut,
    PackagingRun,
    ProcessLoss,
    TransferIn,
    TransferOut,
    VolumeAdjustment,
    VolumeEvent,
    parse_event,
)
from domain.periods import ReportingWindow
from domain.units import VolumeUnit, to_liters

logger = logging.getLogger(__name__)

# Keeps the IN (...) list well under SQLite's bound-parameter limit.
BATCH_ID_CHUNK_SIZE = 500


def _as_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


class BatchRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, batch: Batch, *, unit: VolumeUnit = VolumeUnit.LITER) -> Batch:
        """Store ``batch``; its declared volume is recorded in ``unit``."""
        orm_batch = self._to_orm(batch, unit)
        self._session.add(orm_batch)
        self._session.commit()
        self._session.refresh(orm_batch)
        return self._to_domain(orm_batch)

    def create_many(self, batches: Iterable[Batch]) -> list[Batch]:
        orm_batches = [self._to_orm(batch, VolumeUnit.LITER) for batch in batches]
        if not orm_batches:
            return []
        self._session.add_all(orm_batches)
        self._session.commit()
        return [self._to_domain(orm_batch) for orm_batch in orm_batches]

    def get(self, batch_id: BatchId) -> Batch | None:
        orm_batch = self._session.get(models.BatchOrm, batch_id)
        if orm_batch is None or orm_batch.deleted_at is not None:
            return None
        return self._to_domain(orm_batch)

    def list(self) -> list[Batch]:
        stmt = select(models.BatchOrm).where(models.BatchOrm.deleted_at.is_(None)).order_by(models.BatchOrm.id)
        return [self._to_domain(orm_batch) for orm_batch in self._session.scalars(stmt)]

    def soft_delete(self, batch_id: BatchId, *, deleted_at: datetime | None = None) -> bool:
        orm_batch = self._session.get(models.BatchOrm, batch_id)
        if orm_batch is None or orm_batch.deleted_at is not None:
            return False
        orm_batch.deleted_at = _as_utc(deleted_at or datetime.now(timezone.utc))
        self._session.commit()
        return True

    @staticmethod
    def _to_orm(batch: Batch, unit: VolumeUnit) -> models.BatchOrm:
        return models.BatchOrm(
            id=batch.id,
            name=batch.name,
            parent_batch_id=batch.parent_batch_id,
            classification=batch.classification.value,
            initial_volume=batch.declared_initial_volume,
            initial_volume_unit=unit.value,
            origin_status=batch.origin_status.value,
            is_derived_by_split=batch.is_derived_by_split,
            start_timestamp=_as_utc(batch.start_timestamp),
        )

    @staticmethod
    def _to_domain(orm_batch: models.BatchOrm) -> Batch:
        return Batch(
            id=BatchId(orm_batch.id),
            name=orm_batch.name,
            parent_batch_id=BatchId(orm_batch.parent_batch_id) if orm_batch.parent_batch_id else None,
            classification=Classification(orm_batch.classification),
            declared_initial_volume=to_liters(orm_batch.initial_volume, orm_batch.initial_volume_unit),
            origin_status=OriginStatus(orm_batch.origin_status),
            is_derived_by_split=orm_batch.is_derived_by_split,
            start_timestamp=_as_utc(orm_batch.start_timestamp),
        )


class VolumeEventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, event: VolumeEvent) -> VolumeEvent:
        orm_event = self._to_orm(event)
        self._session.add(orm_event)
        self._session.commit()
        self._session.refresh(orm_event)
        return self._to_domain(orm_event)

    def create_many(self, events: Iterable[VolumeEvent]) -> list[VolumeEvent]:
        orm_events = [self._to_orm(event) for event in events]
        if not orm_events:
            return []
        self._session.add_all(orm_events)
        self._session.commit()
        return [self._to_domain(orm_event) for orm_event in orm_events]

    def get(self, event_id: UUID) -> VolumeEvent | None:
        orm_event = self._session.get(models.VolumeEventOrm, event_id)
        if orm_event is None or orm_event.deleted_at is not None:
            return None
        return self._to_domain(orm_event)

    def list(self) -> list[VolumeEvent]:
        stmt = (
            select(models.VolumeEventOrm)
            .where(models.VolumeEventOrm.deleted_at.is_(None))
            .order_by(models.VolumeEventOrm.timestamp, models.VolumeEventOrm.id)
        )
        return [self._to_domain(orm_event) for orm_event in self._session.scalars(stmt)]

    def list_for_batches(self, batch_ids: Iterable[BatchId], cutoff: datetime) -> dict[BatchId, list[VolumeEvent]]:
        ids = list(dict.fromkeys(batch_ids))
        grouped: dict[BatchId, list[VolumeEvent]] = {batch_id: [] for batch_id in ids}
        cutoff = _as_utc(cutoff)

        for offset in range(0, len(ids), BATCH_ID_CHUNK_SIZE):
            chunk = ids[offset : offset + BATCH_ID_CHUNK_SIZE]
            stmt = (
                select(models.VolumeEventOrm)
                .where(
                    models.VolumeEventOrm.batch_id.in_(chunk),
                    models.VolumeEventOrm.deleted_at.is_(None),
                    models.VolumeEventOrm.timestamp <= cutoff,
                )
                .order_by(models.VolumeEventOrm.timestamp, models.VolumeEventOrm.id)
            )
            for orm_event in self._session.scalars(stmt):
                grouped[BatchId(orm_event.batch_id)].append(self._to_domain(orm_event))

        return grouped

    def list_between(self, window: ReportingWindow) -> list[VolumeEvent]:
        column = models.VolumeEventOrm.timestamp
        start = _as_utc(window.start)
        end = _as_utc(window.end)
        stmt = (
            select(models.VolumeEventOrm)
            .join(models.BatchOrm, models.BatchOrm.id == models.VolumeEventOrm.batch_id)
            .where(
                models.VolumeEventOrm.deleted_at.is_(None),
                models.BatchOrm.deleted_at.is_(None),
                column >= start if window.start_inclusive else column > start,
                column <= end if window.end_inclusive else column < end,
            )
            .order_by(column, models.VolumeEventOrm.id)
        )
        return [self._to_domain(orm_event) for orm_event in self._session.scalars(stmt)]

    def soft_delete(self, event_id: UUID, *, deleted_at: datetime | None = None) -> bool:
        orm_event = self._session.get(models.VolumeEventOrm, event_id)
        if orm_event is None or orm_event.deleted_at is not None:
            return False
        orm_event.deleted_at = _as_utc(deleted_at or datetime.now(timezone.utc))
        self._session.commit()
        return True

    @staticmethod
    def _to_orm(event: VolumeEvent) -> models.VolumeEventOrm:
        orm_event = models.VolumeEventOrm(
            id=event.id,
            batch_id=event.batch_id,
            kind=event.kind,
            timestamp=_as_utc(event.timestamp),
            deleted_at=_as_utc(event.deleted_at) if event.deleted_at else None,
            voided=False,
            historical_backfill=False,
        )
        if isinstance(event, TransferOut):
            orm_event.transfer_id = event.transfer_id
            orm_event.counterpart_batch_id = event.to_batch_id
            orm_event.volume = event.volume_moved
            orm_event.loss = event.volume_lost
        elif isinstance(event, TransferIn):
            orm_event.transfer_id = event.transfer_id
            orm_event.counterpart_batch_id = event.from_batch_id
            orm_event.volume = event.volume_moved
        elif isinstance(event, MergeIn):
            orm_event.merge_source = event.from_source.value
            orm_event.counterpart_batch_id = event.from_batch_id
            orm_event.volume = event.volume_added
        elif isinstance(event, MergeOut):
            orm_event.counterpart_batch_id = event.to_batch_id
            orm_event.volume = event.volume_removed
        elif isinstance(event, PackagingRun):
            orm_event.volume = event.volume_taken
            orm_event.loss = event.declared_loss
            orm_event.units_produced = event.units_produced
            orm_event.unit_size_ml = event.unit_size_ml
            orm_event.voided = event.voided
        elif isinstance(event, KegFill):
            orm_event.volume = event.volume_taken
            orm_event.loss = event.declared_loss
            orm_event.voided = event.voided
        elif isinstance(event, DistillationShipment):
            orm_event.volume = event.volume_sent
            orm_event.status = event.status.value
        elif isinstance(event, ProcessLoss):
            orm_event.process_loss_kind = event.loss_kind.value
            orm_event.volume = event.volume_lost
            orm_event.historical_backfill = event.is_historical_backfill
        elif isinstance(event, VolumeAdjustment):
            orm_event.volume = event.signed_amount
            orm_event.reason_category = event.reason_category.value
        else:
            assert_never(event)
        return orm_event

    @staticmethod
    def _to_domain(orm_event: models.VolumeEventOrm) -> VolumeEvent:
        data: dict[str, Any] = {
            "id": orm_event.id,
            "batch_id": orm_event.batch_id,
            "kind": orm_event.kind,
            "timestamp": _as_utc(orm_event.timestamp),
            "deleted_at": _as_utc(orm_event.deleted_at) if orm_event.deleted_at else None,
        }
        kind = EventKind(orm_event.kind)
        if kind == EventKind.TRANSFER_OUT:
            data.update(
                transfer_id=orm_event.transfer_id,
                to_batch_id=orm_event.counterpart_batch_id,
                volume_moved=orm_event.volume,
                volume_lost=orm_event.loss,
            )
        elif kind == EventKind.TRANSFER_IN:
            data.update(
                transfer_id=orm_event.transfer_id,
                from_batch_id=orm_event.counterpart_batch_id,
                volume_moved=orm_event.volume,
            )
        elif kind == EventKind.MERGE_IN:
            data.update(
                from_source=orm_event.merge_source,
                from_batch_id=orm_event.counterpart_batch_id,
                volume_added=orm_event.volume,
            )
        elif kind == EventKind.MERGE_OUT:
            data.update(to_batch_id=orm_event.counterpart_batch_id, volume_removed=orm_event.volume)
        elif kind == EventKind.PACKAGING_RUN:
            data.update(
                volume_taken=orm_event.volume,
                declared_loss=orm_event.loss,
                units_produced=orm_event.units_produced,
                unit_size_ml=orm_event.unit_size_ml,
                voided=orm_event.voided,
            )
        elif kind == EventKind.KEG_FILL:
            data.update(volume_taken=orm_event.volume, declared_loss=orm_event.loss, voided=orm_event.voided)
        elif kind == EventKind.DISTILLATION_SHIPMENT:
            data.update(volume_sent=orm_event.volume, status=orm_event.status)
        elif kind == EventKind.PROCESS_LOSS:
            data.update(
                loss_kind=orm_event.process_loss_kind,
                volume_lost=orm_event.volume,
                is_historical_backfill=orm_event.historical_backfill,
            )
        elif kind == EventKind.VOLUME_ADJUSTMENT:
            data.update(signed_amount=orm_event.volume, reason_category=orm_event.reason_category)
        # Optional columns left NULL fall back to the model defaults.
        return parse_event({key: value for key, value in data.items() if value is not None})


class SqlEventStore:
    """:class:`domain.event_store.EventStore` backed by the SQLAlchemy repositories."""

    def __init__(self, session: Session) -> None:
        self._batches = BatchRepository(session)
        self._events = VolumeEventRepository(session)

    def list_batches(self) -> list[Batch]:
        try:
            return self._batches.list()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list batches")
            raise DataAccessFailure(str(exc), operation="list_batches") from exc

    def events_for(self, batch_ids: Iterable[BatchId], cutoff: datetime) -> dict[BatchId, list[VolumeEvent]]:
        try:
            return self._events.list_for_batches(batch_ids, cutoff)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read events up to %s", cutoff)
            raise DataAccessFailure(str(exc), operation="events_for") from exc

    def events_between(self, window: ReportingWindow) -> list[VolumeEvent]:
        try:
            return self._events.list_between(window)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read events between %s and %s", window.start, window.end)
            raise DataAccessFailure(str(exc), operation="events_between") from exc
