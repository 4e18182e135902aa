#!/usr/bin/env python3
"""
Manual loan calculation runner.

Runs the loan calculation job once outside the scheduler, e.g. after a
deployment or to backfill a missed day:

    python scripts/run_loan_calculation.py
    python scripts/run_loan_calculation.py --date 2025-01-31

Make sure MONGODB_URI / MONGODB_DB_NAME are set (or present in .env).
"""

import argparse
import asyncio
import sys
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from accrual_engine.core import settings
from accrual_engine.core.logging_config import setup_logging
from accrual_engine.database.connection import init_db
from accrual_engine.services.loan_repository import loan_repository
from accrual_engine.workers.loan_calculation_job import calculate_loan_interest_and_penalty


async def main(run_date):
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    await init_db()
    summary = await calculate_loan_interest_and_penalty(loan_repository, today=run_date)
    print(f"Loan calculation finished: {summary.model_dump()}")
    return 0 if summary.errors == 0 else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the loan calculation job once")
    parser.add_argument("--date", type=date.fromisoformat, default=None,
                        help="Calendar date to calculate through (default: today in SCHEDULER_TIMEZONE)")
    args = parser.parse_args()
    if args.date and args.date > datetime.now(ZoneInfo(settings.SCHEDULER_TIMEZONE)).date():
        parser.error(f"--date {args.date.isoformat()} is in the future")
    sys.exit(asyncio.run(main(args.date)))
