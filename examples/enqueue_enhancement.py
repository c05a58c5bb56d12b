#!/usr/bin/env python3
"""Example: queue an enhancement request and, optionally, its deployment.

Usage:
    python examples/enqueue_enhancement.py "Add CSV export" "Export reports as CSV" \
        --requested-by alice@example.com --priority 8 --deploy-in-hours 24
"""

from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

# Allow running from the repo root without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from monitor_agent.config import Settings
from monitor_agent.store import Database, DeploymentStore, EnhancementStore, utcnow


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("title")
    parser.add_argument("description")
    parser.add_argument("--requested-by", default="")
    parser.add_argument("--priority", type=int, default=5)
    parser.add_argument("--deploy-in-hours", type=float, default=None)
    args = parser.parse_args()

    settings = Settings.from_env()
    database = Database(settings.database_url)
    database.create_all()
    try:
        record = EnhancementStore(database).create(
            args.title,
            args.description,
            requested_by=args.requested_by,
            priority=args.priority,
        )
        print(f"Queued enhancement #{record.id} (priority {record.priority})")
        if args.deploy_in_hours is not None:
            when = utcnow() + dt.timedelta(hours=args.deploy_in_hours)
            dep_id = DeploymentStore(database).create(record.id, when)
            print(f"Deployment {dep_id} scheduled for {when:%Y-%m-%d %H:%M} UTC")
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
