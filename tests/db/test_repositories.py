from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from db import repositories
from db.repositories import BatchRepository, SqlEventStore, VolumeEventRepository
from domain.base_types import BatchId, Classification, OriginStatus
from domain.event_store import DataAccessFailure
from domain.events import (
    DistillationShipment,
    DistillationStatus,
    KegFill,
    MergeIn,
    MergeSource,
    PackagingRun,
    ProcessLoss,
    ProcessLossKind,
    TransferOut,
    VolumeAdjustment,
)
from domain.periods import ReportingWindow
from domain.units import VolumeUnit
from tests.helpers.time_utils import day
from tests.helpers.volume_events import make_batch, make_keg_fill, make_transfer


@pytest.fixture()
def batch_repo(test_session: Session) -> BatchRepository:
    return BatchRepository(test_session)


@pytest.fixture()
def event_repo(test_session: Session) -> VolumeEventRepository:
    return VolumeEventRepository(test_session)


def test_create_and_get_batch(batch_repo: BatchRepository) -> None:
    batch = make_batch(
        "A",
        "1000.5",
        parent="ROOT",
        classification=Classification.FORTIFIED_BLEND,
        status=OriginStatus.EXCLUDED,
        split=True,
        start=day(3),
    )

    created = batch_repo.create(batch)

    assert created == batch
    assert batch_repo.get(BatchId("A")) == batch
    assert batch_repo.get(BatchId("missing")) is None


def test_gallon_volumes_are_normalized_to_liters(batch_repo: BatchRepository) -> None:
    batch_repo.create(make_batch("G", 100, start=day(1)), unit=VolumeUnit.WINE_GALLON)

    stored = batch_repo.get(BatchId("G"))

    assert stored is not None
    assert stored.declared_initial_volume == Decimal("378.541")


def test_soft_deleted_batches_are_hidden(batch_repo: BatchRepository) -> None:
    batch_repo.create_many([make_batch("A", 1, start=day(1)), make_batch("B", 2, start=day(1))])

    assert batch_repo.soft_delete(BatchId("A"))
    assert not batch_repo.soft_delete(BatchId("A"))

    assert [batch.id for batch in batch_repo.list()] == ["B"]
    assert batch_repo.get(BatchId("A")) is None


def test_every_event_kind_round_trips(batch_repo: BatchRepository, event_repo: VolumeEventRepository) -> None:
    batch_repo.create_many([make_batch("A", 1000, start=day(1)), make_batch("B", 0, parent="A", start=day(1))])
    out_leg, in_leg = make_transfer("A", "B", 200, loss="1.5", timestamp=day(2))
    events = [
        out_leg,
        in_leg,
        MergeIn(
            batch_id=BatchId("B"),
            timestamp=day(3),
            from_source=MergeSource.EXTERNAL_PRODUCTION,
            volume_added=Decimal(9),
        ),
        PackagingRun(
            batch_id=BatchId("B"),
            timestamp=day(4),
            volume_taken=Decimal(100),
            declared_loss=Decimal(2),
            units_produced=196,
            unit_size_ml=Decimal(500),
        ),
        KegFill(batch_id=BatchId("B"), timestamp=day(5), volume_taken=Decimal(58), voided=True),
        DistillationShipment(
            batch_id=BatchId("A"), timestamp=day(6), volume_sent=Decimal(40), status=DistillationStatus.RECEIVED
        ),
        ProcessLoss(
            batch_id=BatchId("A"),
            timestamp=day(7),
            loss_kind=ProcessLossKind.RACKING,
            volume_lost=Decimal(3),
            is_historical_backfill=True,
        ),
        VolumeAdjustment(batch_id=BatchId("A"), timestamp=day(8), signed_amount=Decimal("-2.25")),
    ]

    event_repo.create_many(events)

    assert {event.id: event for event in event_repo.list()} == {event.id: event for event in events}
    fetched = event_repo.get(out_leg.id)
    assert isinstance(fetched, TransferOut)
    assert fetched.volume_lost == Decimal("1.5")
    assert fetched.timestamp.tzinfo is not None


def test_list_for_batches_groups_and_filters(
    batch_repo: BatchRepository, event_repo: VolumeEventRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(repositories, "BATCH_ID_CHUNK_SIZE", 2)
    batch_repo.create_many([make_batch(name, 100, start=day(1)) for name in ("A", "B", "C")])
    deleted = make_keg_fill("A", 5, timestamp=day(3))
    event_repo.create_many(
        [
            make_keg_fill("A", 10, timestamp=day(2)),
            deleted,
            make_keg_fill("B", 20, timestamp=day(2)),
            make_keg_fill("C", 30, timestamp=day(9)),
        ]
    )
    assert event_repo.soft_delete(deleted.id, deleted_at=day(4))

    grouped = event_repo.list_for_batches([BatchId("A"), BatchId("B"), BatchId("C"), BatchId("X")], day(5))

    assert list(grouped) == ["A", "B", "C", "X"]
    assert [event.volume_taken for event in grouped[BatchId("A")]] == [Decimal(10)]  # type: ignore[union-attr]
    assert len(grouped[BatchId("B")]) == 1
    assert grouped[BatchId("C")] == []
    assert grouped[BatchId("X")] == []


def test_soft_deleted_events_are_hidden(batch_repo: BatchRepository, event_repo: VolumeEventRepository) -> None:
    batch_repo.create(make_batch("A", 100, start=day(1)))
    kept = make_keg_fill("A", 10, timestamp=day(2))
    erroneous = make_keg_fill("A", 50, timestamp=day(3))
    event_repo.create_many([kept, erroneous])

    assert event_repo.soft_delete(erroneous.id)
    assert not event_repo.soft_delete(erroneous.id)

    assert event_repo.get(erroneous.id) is None
    assert event_repo.get(kept.id) == kept
    assert [event.id for event in event_repo.list()] == [kept.id]


def test_soft_deleting_a_batch_keeps_its_event_rows(
    batch_repo: BatchRepository, event_repo: VolumeEventRepository
) -> None:
    batch_repo.create(make_batch("A", 100, start=day(1)))
    keg = event_repo.create(make_keg_fill("A", 10, timestamp=day(2)))

    assert batch_repo.soft_delete(BatchId("A"))

    assert event_repo.get(keg.id) == keg
    assert event_repo.list_between(ReportingWindow(start=day(1), end=day(3))) == []


def test_list_between_honors_window_flags(batch_repo: BatchRepository, event_repo: VolumeEventRepository) -> None:
    batch_repo.create_many([make_batch("A", 100, start=day(1)), make_batch("GONE", 100, start=day(1))])
    event_repo.create_many(
        [
            make_keg_fill("A", 1, timestamp=day(10)),
            make_keg_fill("A", 2, timestamp=day(15)),
            make_keg_fill("A", 3, timestamp=day(20)),
            make_keg_fill("GONE", 4, timestamp=day(15)),
        ]
    )
    batch_repo.soft_delete(BatchId("GONE"))

    default = event_repo.list_between(ReportingWindow(start=day(10), end=day(20)))
    half_open = event_repo.list_between(
        ReportingWindow(start=day(10), end=day(20), start_inclusive=True, end_inclusive=False)
    )

    assert [event.volume_taken for event in default] == [Decimal(2), Decimal(3)]  # type: ignore[union-attr]
    assert [event.volume_taken for event in half_open] == [Decimal(1), Decimal(2)]  # type: ignore[union-attr]


def test_cutoff_in_other_timezone_is_compared_in_utc(
    batch_repo: BatchRepository, event_repo: VolumeEventRepository
) -> None:
    batch_repo.create(make_batch("A", 100, start=day(1)))
    event_repo.create(make_keg_fill("A", 10, timestamp=datetime(2025, 1, 5, 12, tzinfo=timezone.utc)))
    cutoff = datetime.fromisoformat("2025-01-05T13:30:00+02:00")

    grouped = event_repo.list_for_batches([BatchId("A")], cutoff)

    assert grouped[BatchId("A")] == []


def test_sql_store_wraps_database_errors(test_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    store = SqlEventStore(test_session)

    def broken(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(test_session, "scalars", broken)

    with pytest.raises(DataAccessFailure) as exc_info:
        store.list_batches()

    assert exc_info.value.operation == "list_batches"
    assert isinstance(exc_info.value.__cause__, OperationalError)


def test_sql_store_reads_through_repositories(batch_repo: BatchRepository, test_session: Session) -> None:
    batch_repo.create(make_batch("A", 100, start=day(1)))
    VolumeEventRepository(test_session).create(make_keg_fill("A", 10, timestamp=day(2)))
    store = SqlEventStore(test_session)

    assert [batch.id for batch in store.list_batches()] == ["A"]
    assert len(store.events_for([BatchId("A")], day(3))[BatchId("A")]) == 1
    assert len(store.events_between(ReportingWindow(start=day(1), end=day(3)))) == 1
