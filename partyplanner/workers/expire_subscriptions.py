"""Periodic sweep: mark past-due subscriptions as expired."""
import argparse
from datetime import datetime
import logging

from partyplanner.core.config import settings
from partyplanner.core.logging import configure_logging
from partyplanner.features.subscriptions.service import expire_subscriptions

logger = logging.getLogger("partyplanner.workers.expire")


def run(now: datetime | None = None) -> dict:
    expired = expire_subscriptions(now=now)
    logger.info("[worker] expire sweep done", extra={"expired": expired})
    return {"expired": expired}


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire subscriptions past their expires_at.")
    parser.add_argument("--now", default=None, help="ISO timestamp to sweep at (defaults to current time).")
    args = parser.parse_args()

    configure_logging(settings.ENV)
    now = datetime.fromisoformat(args.now.replace("Z", "+00:00")) if args.now else None
    print(run(now))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
