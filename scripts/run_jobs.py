"""
Run a scheduled leave job by hand, e.g. from cron:

    python scripts/run_jobs.py monthly --year 2024 --month 3
    python scripts/run_jobs.py year-end --year 2024
    python scripts/run_jobs.py comp-off-expiry
"""
import argparse
import sys
from datetime import date

from leave_engine.core.logging import setup_logging
from leave_engine.database import init_db
from leave_engine.services import scheduler


def _regions(value):
    return [r.strip().upper() for r in value.split(",")] if value else None


def main(argv=None):
    today = date.today()
    parser = argparse.ArgumentParser(description="Run leave accrual and expiry jobs")
    sub = parser.add_subparsers(dest="job", required=True)

    monthly = sub.add_parser("monthly", help="Monthly pro-rated accrual")
    monthly.add_argument("--year", type=int, default=today.year)
    monthly.add_argument("--month", type=int, default=today.month)
    monthly.add_argument("--regions")

    annual = sub.add_parser("annual", help="Annual lump allocation")
    annual.add_argument("--year", type=int, default=today.year)
    annual.add_argument("--regions")

    year_end = sub.add_parser("year-end", help="Carry forward or expire balances of a closed year")
    year_end.add_argument("--year", type=int, default=today.year - 1)
    year_end.add_argument("--regions")

    expiry = sub.add_parser("comp-off-expiry", help="Lapse comp-off days past their expiry date")
    expiry.add_argument("--as-of", type=date.fromisoformat, default=today)

    args = parser.parse_args(argv)
    setup_logging()
    init_db()

    if args.job == "monthly":
        result = scheduler.run_monthly_accrual(args.year, args.month, _regions(args.regions))
    elif args.job == "annual":
        result = scheduler.run_annual_allocation(args.year, _regions(args.regions))
    elif args.job == "year-end":
        result = scheduler.run_year_end_carry_forward(args.year, _regions(args.regions))
    else:
        result = scheduler.run_comp_off_expiry(args.as_of)

    print(f"{result.job}: {result.success_count} succeeded, {result.failure_count} failed")
    for failed in (r for r in result.results if not r.success):
        print(f"  employee {failed.employee_id}: [{failed.error_code}] {failed.error}")
    return 1 if result.failure_count else 0


if __name__ == "__main__":
    sys.exit(main())
