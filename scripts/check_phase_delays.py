#!/usr/bin/env python3
"""
List coins purchase orders stuck in a phase.

Orders sitting in sending, receiving or coins_entry longer than the
threshold are printed with the users responsible for that phase, and a
``phase_delayed`` notification is written to the log for each.

Usage:
    python scripts/check_phase_delays.py [--config PATH] [--hours N] [--as-of ISO]
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Report coins purchase orders delayed in a phase.")
    parser.add_argument("--config", type=Path, default=None, help="Workflow config YAML")
    parser.add_argument("--db-url", type=str, default=None, help="Overrides the configured database URL")
    parser.add_argument("--hours", type=int, default=None, help="Delay threshold in hours")
    parser.add_argument("--as-of", type=str, default=None, help="Reference time (ISO 8601, UTC if naive)")
    args = parser.parse_args()

    from workflow_config import get_active_config
    from workflow_kernel.db.engine import init_engine_from_url, session_scope
    from workflow_kernel.logging_config import configure_logging
    from workflow_kernel.services.notifications import LoggingNotifier
    from workflow_kernel.services.record_store import SqlAlchemyRecordStore
    from workflow_modules.coins_purchase.service import PurchaseOrderService

    config = get_active_config(args.config)
    configure_logging(level=config.engine.log_level)

    as_of = None
    if args.as_of:
        as_of = datetime.fromisoformat(args.as_of)
        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)
    hours = args.hours or config.engine.delay_threshold_hours

    init_engine_from_url(args.db_url or config.engine.database_url)
    with session_scope() as session:
        orders = PurchaseOrderService(SqlAlchemyRecordStore(session), notifier=LoggingNotifier())
        delayed = orders.notify_delayed(as_of=as_of, threshold=timedelta(hours=hours))

    if not delayed:
        print(f"No orders delayed more than {hours}h.")
        return 0

    print(f"{'ORDER':<20} {'PHASE':<12} {'DAYS':>5}  RESPONSIBLE")
    for item in delayed:
        label = item.order_number or str(item.order_id)
        print(f"{label:<20} {item.phase:<12} {item.days_delayed:>5}  {', '.join(sorted(item.responsible))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
