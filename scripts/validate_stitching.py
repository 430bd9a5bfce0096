#!/usr/bin/env python3
"""
Validate stitching invariants in a LeadStitch database.

Checks:
- every event links to at most one lead
- every link has exactly one audit entry
- no usage counter exceeds its plan limit

Usage:
    python scripts/validate_stitching.py --db data/leadstitch.db [--account 1]
"""

import argparse
from datetime import datetime
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import func

from leadstitch.database import AuditEntry, LeadLink, UsageCounter, get_session
from leadstitch.env import load_env, load_settings
from storage.repositories.usage import current_period


def validate(db_path: Path, account_id=None, default_limit: int = 250) -> bool:
    """
    Check invariants; print a report.

    Returns True if all invariants hold, False otherwise.
    """
    print(f"Querying database at {db_path}...")
    session = get_session(db_path)
    problems = []

    try:
        links = session.query(LeadLink.event_id, func.count(LeadLink.id)).group_by(LeadLink.event_id)
        if account_id is not None:
            links = links.filter(LeadLink.account_id == account_id)
        multi = [(event_id, n) for event_id, n in links.all() if n > 1]
        for event_id, n in multi:
            problems.append(f"event {event_id} has {n} links")

        audit_q = session.query(AuditEntry.original_row_id, func.count(AuditEntry.id)).group_by(
            AuditEntry.original_row_id
        )
        link_q = session.query(LeadLink.event_id)
        if account_id is not None:
            audit_q = audit_q.filter(AuditEntry.account_id == account_id)
            link_q = link_q.filter(LeadLink.account_id == account_id)
        audits = dict(audit_q.all())
        for (event_id,) in link_q.all():
            count = audits.get(event_id, 0)
            if count != 1:
                problems.append(f"event {event_id} has {count} audit entries")

        counters = session.query(UsageCounter)
        if account_id is not None:
            counters = counters.filter(UsageCounter.account_id == account_id)
        now = datetime.now()
        for counter in counters.all():
            period = current_period(session, counter.account_id, now, default_limit)
            if (counter.period_start, counter.period_end) != (period.start, period.end):
                continue
            if counter.stitched_count > period.limit:
                problems.append(
                    f"account {counter.account_id} usage {counter.stitched_count} exceeds limit {period.limit}"
                )
    finally:
        session.close()

    if problems:
        print(f"\n❌ {len(problems)} invariant violations")
        for p in problems[:10]:
            print(f"   - {p}")
        if len(problems) > 10:
            print(f"   ... and {len(problems) - 10} more")
        return False

    print("✅ All stitching invariants hold")
    return True


def main():
    load_env()
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Validate stitching invariants")
    parser.add_argument("--db", type=Path, default=settings.db_path,
                        help="Path to SQLite database file")
    parser.add_argument("--account", type=int, help="Restrict checks to one account")

    args = parser.parse_args()

    if not args.db.exists():
        print(f"❌ Database file not found: {args.db}")
        sys.exit(1)

    success = validate(args.db, args.account, settings.default_plan_limit)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
