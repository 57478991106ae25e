#!/usr/bin/env python
"""
Extend Dose Horizon
Tops up pending doses for every active reminder. Safe to run from cron:
days that already have a dose are skipped.

Usage: python scripts/extend_dose_horizon.py [--days 30] [--start 2024-01-01]
"""

import sys
import os
import argparse
import asyncio
import logging
from datetime import date
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import init_db
from services.schedule_expander import ExpansionResult, schedule_expander


logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


def extend_horizon(days: Optional[int] = None, start: Optional[date] = None) -> List[ExpansionResult]:
    """Expand all active reminders over the horizon"""
    init_db()
    results = asyncio.run(
        schedule_expander.extend_active_reminders(horizon_days=days, start_date=start)
    )

    created = sum(len(r.created) for r in results)
    partial = [r.reminder_id for r in results if r.partial]
    logger.info(f"Extended {len(results)} reminders, {created} doses created")
    if partial:
        logger.warning(f"Reminders with failed days: {partial}")
    return results


def main():
    parser = argparse.ArgumentParser(
        description="Materialize doses for all active reminders"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=settings.DOSE_HORIZON_DAYS,
        help="Number of days to cover (default: %(default)s)"
    )
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="First day as YYYY-MM-DD (default: today)"
    )

    args = parser.parse_args()

    results = extend_horizon(days=args.days, start=args.start)
    if any(r.partial for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
