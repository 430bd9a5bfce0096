"""
Full Backfill Pipeline.

Responsibilities:
- Recompute attribution for every lead of an account, e.g. after the
  account switches policy.
- Ensure deterministic, ordered replay by lead creation time.

Non-Responsibilities:
- No matching; links are left as they are.

Invariant:
A full rebuild must be idempotent and reproducible.
"""

from typing import Optional

from leadstitch.database import MatchJob, session_scope
from leadstitch.env import Settings, load_settings
from leadstitch.errors import JobConflictError
from leadstitch.logger import get_logger
from leadstitch.policy import PolicyConfig
from pipelines.attribution.recompute import recompute_attribution
from pipelines.matching.orchestrator import account_locks
from storage.repositories.leads import lead_ids_for_account


def rebuild_attribution(
    session_factory,
    account_id: int,
    policy: PolicyConfig,
    settings: Optional[Settings] = None,
) -> int:
    """
    Replay attribution for all of an account's leads.

    Holds the account lock and refuses to start while the store records a
    running match job for the account (possibly from another process).

    Returns:
        Number of leads recomputed

    Raises:
        JobConflictError: a match job holds the account
    """
    settings = settings or load_settings()
    log = get_logger()

    with account_locks.hold(account_id, settings.lock_timeout):
        with session_scope(session_factory) as session:
            running = (
                session.query(MatchJob.id)
                .filter(MatchJob.account_id == account_id, MatchJob.status == "running")
                .first()
            )
            if running is not None:
                raise JobConflictError(f"Match job {running[0]} is running for account {account_id}")
            lead_ids = lead_ids_for_account(session, account_id)

        rebuilt = 0
        for lead_id in lead_ids:
            with session_scope(session_factory) as session:
                if recompute_attribution(session, lead_id, policy) is not None:
                    rebuilt += 1

        log.info("Attribution rebuild complete", account_id=account_id, leads=rebuilt, policy=policy.name)
        return rebuilt
