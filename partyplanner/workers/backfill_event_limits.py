"""
Backfill snapshot limits on events created before snapshots existed.

Dry-run by default. Use --live to apply updates.
"""
import argparse
import os
from typing import Optional

from partyplanner.core.config import settings
from partyplanner.core.logging import configure_logging
from partyplanner.features.events.service import backfill_event_snapshots


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def main() -> int:
    parser = argparse.ArgumentParser(description="Fill null snapshot fields on events.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Apply updates to events.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Run without writes.")
    parser.set_defaults(dry_run=_parse_bool(os.getenv("PARTYPLANNER_BACKFILL_DRY_RUN", "1"), True))
    args = parser.parse_args()

    configure_logging(settings.ENV)
    report = backfill_event_snapshots(dry_run=args.dry_run)
    print(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
