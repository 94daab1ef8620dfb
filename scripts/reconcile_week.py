#!/usr/bin/env python3
"""
Reconcile one week of provider events against the canonical schedule.

Reads a JSON file of Odds API style events (a list, or {"data": [...]}),
resolves both teams of every event, finds the canonical game and writes the
team matching report to REPORTS_DIR.

Usage:
    python scripts/reconcile_week.py --season 2024 --week 3 --events odds_week3.json
    python scripts/reconcile_week.py --season 2024 --week 3 --events cfbd.json --provider cfbd

Exit status is 1 when the alias resource or canonical index fails to load.
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cfb_reconcile.core.config import settings
from cfb_reconcile.core.database import get_session_factory
from cfb_reconcile.core.logging import configure_logging
from cfb_reconcile.services.sync.errors import ReconciliationConfigError
from cfb_reconcile.services.sync.orchestrator import ProviderEvent, ReconciliationService

logger = logging.getLogger(__name__)


def load_events(path: Path, week: int, provider: str):
    """Read provider events from a JSON file."""
    with path.open(encoding='utf-8') as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get('data') or []
    events = []
    for item in payload:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed event entry: {item!r}")
            continue
        events.append(ProviderEvent.from_odds_api(item, week=week, provider=provider))
    return events


async def main():
    """Main entry point for the script."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Reconcile provider events with canonical teams and games"
    )
    parser.add_argument('--season', type=int, required=True, help='Season year')
    parser.add_argument('--week', type=int, required=True, help='Week being reconciled')
    parser.add_argument('--events', type=Path, required=True, help='JSON file of provider events')
    parser.add_argument(
        '--provider',
        default='odds_api',
        help='Provider name, selects provider-specific aliases (default: odds_api)'
    )
    parser.add_argument('--no-report', action='store_true', help='Skip writing the JSON report')
    args = parser.parse_args()

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    try:
        events = load_events(args.events, args.week, args.provider)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read events from {args.events}: {e}")
        sys.exit(1)

    service = ReconciliationService(get_session_factory(), settings)
    try:
        result = await service.reconcile(args.season, args.week, events, write=not args.no_report)
    except ReconciliationConfigError as e:
        logger.critical(f"Reconciliation aborted: {e}")
        sys.exit(1)

    print(f"\nRun {result.run_id}: {result.matched_count}/{len(result.events)} events matched")
    if result.report_path:
        print(f"Report: {result.report_path}")


if __name__ == "__main__":
    asyncio.run(main())
