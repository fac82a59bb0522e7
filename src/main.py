from __future__ import annotations

import argparse
import logging
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from config import AppSettings, config
from db.db import init_db
from db.repositories import SqlEventStore
from domain.periods import PeriodType, end_of_day, period_bounds, period_label
from domain.reconciliation import ReconciliationRun, ReconciliationService
from utils.reconciliation_summary import estimate_removal_excise, render_reconciliation


def run(
    db_file: Path,
    start: date,
    end: date,
    *,
    opening_balance: Decimal,
    settings: AppSettings,
    workers: int,
    prior_year_gallons: Decimal = Decimal(0),
) -> ReconciliationRun:
    session = init_db(db_file=db_file)
    store = SqlEventStore(session)
    service = ReconciliationService(
        store=store,
        policy=settings.reconciliation_policy(),
        filters=settings.waterfall_filters(),
        max_workers=workers,
    )

    # The opening snapshot is the close of the day before the period starts.
    result = service.run(
        period_start=end_of_day(start - timedelta(days=1)),
        period_end=end_of_day(end),
        opening_balance=opening_balance,
    )
    render_reconciliation(result, excise=estimate_removal_excise(result, prior_year_gallons_used=prior_year_gallons))
    return result


def _resolve_period(args: argparse.Namespace) -> tuple[date, date, str]:
    if args.start is not None or args.end is not None:
        if args.start is None or args.end is None:
            raise SystemExit("--start and --end must be given together")
        return args.start, args.end, f"{args.start} to {args.end}"

    start, end = period_bounds(args.period_type, args.year, args.period)
    return start, end, period_label(args.period_type, args.year, args.period)


def main(argv: Sequence[str] | None = None) -> None:
    settings = config()
    parser = argparse.ArgumentParser(
        description="Reconcile ledger inventory against the regulatory waterfall for a period."
    )
    parser.add_argument("--db", type=Path, default=settings.db_file)
    parser.add_argument("--period-type", choices=[p.value for p in PeriodType], default=PeriodType.MONTHLY.value)
    parser.add_argument("--year", type=int, default=date.today().year)
    parser.add_argument("--period", type=int, default=None, help="Month (1-12) or quarter (1-4)")
    parser.add_argument("--start", type=date.fromisoformat, default=None)
    parser.add_argument("--end", type=date.fromisoformat, default=None)
    parser.add_argument("--opening-balance", type=Decimal, default=settings.opening_balance_liters)
    parser.add_argument("--workers", type=int, default=settings.reconstruction_workers)
    parser.add_argument("--prior-year-gallons", type=Decimal, default=Decimal(0))
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    start, end, label = _resolve_period(args)
    print(f"Reconciliation for {label}")
    run(
        args.db,
        start,
        end,
        opening_balance=args.opening_balance,
        settings=settings,
        workers=args.workers,
        prior_year_gallons=args.prior_year_gallons,
    )


if __name__ == "__main__":
    main()
