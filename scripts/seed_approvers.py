#!/usr/bin/env python3
"""
Create the schema and load approver chains and phase owners from config.

Creates every table (plus the history immutability triggers) if missing,
then replaces the ``department_admins`` rows of each configured
department and the ``coins_workflow_assignments`` rows of each configured
phase.  Safe to re-run.

Usage:
    python scripts/seed_approvers.py [--config PATH] [--db-url URL] [--drop]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed approver chains and phase owners.")
    parser.add_argument("--config", type=Path, default=None, help="Workflow config YAML")
    parser.add_argument("--db-url", type=str, default=None, help="Overrides the configured database URL")
    parser.add_argument("--drop", action="store_true", help="Drop all tables first")
    args = parser.parse_args()

    from workflow_config import get_active_config
    from workflow_config.bridges import seed_reference_data
    from workflow_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )
    from workflow_kernel.exceptions import InvalidConfigError
    from workflow_kernel.logging_config import configure_logging
    from workflow_kernel.services.record_store import SqlAlchemyRecordStore

    try:
        config = get_active_config(args.config)
    except InvalidConfigError as e:
        print("CONFIG INVALID:", file=sys.stderr)
        for err in e.errors:
            print(f"  ERROR: {err}", file=sys.stderr)
        return 1
    configure_logging(level=config.engine.log_level)

    db_url = args.db_url or config.engine.database_url
    print(f"Database: {db_url}")
    init_engine_from_url(db_url)
    if args.drop:
        print("Dropping tables...")
        drop_tables()
    create_tables()

    with session_scope() as session:
        counts = seed_reference_data(SqlAlchemyRecordStore(session), config)

    print(f"  config:            {config.config_id} v{config.version} ({config.checksum[:16]}...)")
    print(f"  department admins: {counts['department_admins']}")
    print(f"  phase owners:      {counts['phase_assignments']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
