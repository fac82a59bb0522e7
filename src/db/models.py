from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class BatchOrm(Base):
    __tablename__ = "batches"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Lookup only; a parent may have been purged, so no foreign key.
    parent_batch_id: Mapped[str | None] = mapped_column(String, nullable=True)
    classification: Mapped[str] = mapped_column(String, nullable=False)
    initial_volume: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    initial_volume_unit: Mapped[str] = mapped_column(String, nullable=False, default="L")
    origin_status: Mapped[str] = mapped_column(String, nullable=False)
    is_derived_by_split: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    start_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class VolumeEventOrm(Base):
    """Single table for every event kind; columns a kind does not use stay NULL."""

    __tablename__ = "volume_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("batches.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    transfer_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    counterpart_batch_id: Mapped[str | None] = mapped_column(String, nullable=True)
    merge_source: Mapped[str | None] = mapped_column(String, nullable=True)

    volume: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    loss: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    units_produced: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unit_size_ml: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    voided: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    process_loss_kind: Mapped[str | None] = mapped_column(String, nullable=True)
    historical_backfill: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reason_category: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("ix_volume_events_batch_time", "batch_id", "timestamp"),
        Index("ix_volume_events_time", "timestamp"),
    )
