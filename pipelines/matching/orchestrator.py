"""
Match Orchestrator.

Responsibilities:
- Run one match job for an account: load the policy and the events of the
  requested uploads, then resolve events one at a time in occurrence order.
- Collect per-event failures without aborting the batch.
- Record the job and update upload statuses.

Non-Responsibilities:
- No HTTP, scheduling or report generation.

Invariant:
At most one job per account runs at a time, and events within a job are
processed strictly sequentially so each event sees every lead created
before it.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from leadstitch.database import MatchJob, NormalizedEvent, session_scope
from leadstitch.env import Settings, load_settings
from leadstitch.errors import InfrastructureError, JobConflictError, PersistenceError, PolicyValidationError
from leadstitch.logger import MatchMetrics, get_logger
from leadstitch.policy import DEFAULT_POLICY_YAML, PolicyConfig, parse_policy
from leadstitch.retry import RetryError, exponential_backoff, is_transient_error
from pipelines.attribution.recompute import recompute_attribution
from pipelines.entity_resolution.candidate_selector import generate_candidates
from pipelines.entity_resolution.resolver import resolve
from pipelines.matching.ledger import record_decision
from storage.repositories.events import ordered_event_ids, set_upload_status
from storage.repositories.policies import get_policy_document


@dataclass
class EventError:
    event_id: int
    message: str


@dataclass
class MatchSummary:
    job_id: Optional[int] = None
    status: str = "completed"
    policy_name: str = ""
    new_lead_count: int = 0
    link_count: int = 0
    errors: List[EventError] = field(default_factory=list)
    metrics: MatchMetrics = field(default_factory=MatchMetrics)

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "policy": self.policy_name,
            "newLeadCount": self.new_lead_count,
            "linkCount": self.link_count,
            "errors": [{"eventId": e.event_id, "message": e.message} for e in self.errors],
        }


class AccountLocks:
    """One mutex per account; unrelated accounts never contend."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, account_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, account_id: int, timeout: float):
        """
        Hold the account's lock for the duration of the block.

        Raises:
            JobConflictError: lock not acquired within timeout seconds
        """
        lock = self._lock_for(account_id)
        if not lock.acquire(timeout=timeout):
            raise JobConflictError(f"A match job is already running for account {account_id}")
        try:
            yield
        finally:
            lock.release()

    def is_held(self, account_id: int) -> bool:
        return self._lock_for(account_id).locked()


account_locks = AccountLocks()


def _read_with_retry(func, retries: int):
    """Bounded retries for job-level reads; exhaustion is an infrastructure fault."""
    wrapped = exponential_backoff(
        max_retries=retries,
        base_delay=0.2,
        max_delay=2.0,
        exceptions=(SQLAlchemyError,),
        retry_if=is_transient_error,
    )(func)
    try:
        return wrapped()
    except (RetryError, SQLAlchemyError) as e:
        raise InfrastructureError(str(e)) from e


def load_job_policy(session_factory, account_id: int, policy_document, policy_id, retries: int) -> PolicyConfig:
    """
    Resolve the job's policy: explicit document, stored policy, account
    default, then the built-in default.
    """
    if policy_document is not None:
        return parse_policy(policy_document)

    def fetch():
        with session_scope(session_factory) as session:
            return get_policy_document(session, account_id, policy_id)

    document = _read_with_retry(fetch, retries)
    if document is None:
        if policy_id is not None:
            raise InfrastructureError(f"Policy {policy_id} not found for account {account_id}")
        document = DEFAULT_POLICY_YAML
    return parse_policy(document)


def process_event(
    session_factory,
    event_id: int,
    policy: PolicyConfig,
    now: datetime,
    settings: Settings,
    summary: MatchSummary,
) -> None:
    """Generate, resolve, record and attribute one event."""
    log = get_logger()

    try:
        with session_scope(session_factory) as session:
            event = session.get(NormalizedEvent, event_id)
            if event is None:
                raise PersistenceError(f"Event {event_id} not found")
            candidates = generate_candidates(session, event, policy)
            winner = resolve(candidates, policy, event)
            outcome = record_decision(
                session, event, winner, candidates, policy, now, settings.default_plan_limit
            )
    except SQLAlchemyError as e:
        raise PersistenceError(str(e)) from e

    summary.link_count += 1
    summary.metrics.record_link(outcome.match_pass)
    if outcome.created:
        summary.new_lead_count += 1
        summary.metrics.record_lead_created()
        log.debug("Created new lead", event_id=event_id, stitch_id=outcome.stitch_id)
    else:
        log.debug(
            "Linked to existing lead",
            event_id=event_id,
            stitch_id=outcome.stitch_id,
            match_pass=outcome.match_pass,
            candidates=len(candidates),
        )

    try:
        with session_scope(session_factory) as session:
            recompute_attribution(session, outcome.lead_id, policy)
    except Exception as e:
        raise PersistenceError(f"Attribution recompute failed for lead {outcome.stitch_id}: {e}") from e


def _start_job(session_factory, account_id: int, upload_ids: List[int], started_at: datetime) -> int:
    """
    Claim the account by inserting its running job row.

    The store allows one running job per account, so this also excludes
    jobs started by other processes on the same database.

    Raises:
        JobConflictError: the account already has a running job
    """
    try:
        with session_scope(session_factory) as session:
            job = MatchJob(account_id=account_id, status="running", upload_ids=list(upload_ids), started_at=started_at)
            session.add(job)
            session.flush()
            return job.id
    except IntegrityError as e:
        raise JobConflictError(f"A match job is already running for account {account_id}") from e


def _finish_job(session_factory, job_id: int, summary: MatchSummary, error: Optional[str] = None) -> None:
    with session_scope(session_factory) as session:
        job = session.get(MatchJob, job_id)
        job.status = summary.status
        job.policy_name = summary.policy_name or None
        job.new_lead_count = summary.new_lead_count
        job.link_count = summary.link_count
        job.errors = [{"event_id": e.event_id, "message": e.message} for e in summary.errors]
        job.error = error
        job.completed_at = datetime.now()
        set_upload_status(
            session,
            job.account_id,
            job.upload_ids,
            "matched" if summary.status == "completed" else "failed",
        )


def release_job(session_factory, job_id: int, reason: str = "Released by operator") -> bool:
    """
    Mark a stuck running job failed so its account can be matched again.

    Returns:
        True if a running job was released
    """
    with session_scope(session_factory) as session:
        job = session.get(MatchJob, job_id)
        if job is None or job.status != "running":
            return False
        job.status = "failed"
        job.error = reason
        job.completed_at = datetime.now()
        set_upload_status(session, job.account_id, job.upload_ids, "failed")
    get_logger().warning("Released running match job", job_id=job_id, reason=reason)
    return True

def run_match(
    session_factory,
    account_id: int,
    upload_ids: List[int],
    policy_document=None,
    policy_id: Optional[int] = None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> MatchSummary:
    """
    Run a match job.

    Args:
        session_factory: sessionmaker for the store
        account_id: Account whose leads are matched
        upload_ids: Event batches to merge and process
        policy_document: YAML text or mapping (overrides policy_id)
        policy_id: Stored policy to use (default: account default, then built-in)
        settings: Engine settings (default: from environment)
        now: Clock for the billing period (default: datetime.now())

    Returns:
        MatchSummary; per-event failures are listed in summary.errors

    Raises:
        PolicyValidationError: the policy is malformed
        InfrastructureError: policy or events could not be read
        JobConflictError: another job holds the account
    """
    settings = settings or load_settings()
    now = now or datetime.now()
    log = get_logger()

    with account_locks.hold(account_id, settings.lock_timeout):
        summary = MatchSummary()
        summary.job_id = _read_with_retry(
            lambda: _start_job(session_factory, account_id, upload_ids, now), settings.db_retries
        )

        try:
            policy = load_job_policy(session_factory, account_id, policy_document, policy_id, settings.db_retries)
            summary.policy_name = policy.name

            def fetch_ids():
                with session_scope(session_factory) as session:
                    return ordered_event_ids(session, account_id, upload_ids)

            event_ids = _read_with_retry(fetch_ids, settings.db_retries)
        except (PolicyValidationError, InfrastructureError) as e:
            summary.status = "failed"
            log.error("Match job failed", job_id=summary.job_id, account_id=account_id, error=str(e))
            _finish_job(session_factory, summary.job_id, summary, error=str(e))
            raise

        log.info(
            "Starting match process",
            job_id=summary.job_id,
            account_id=account_id,
            upload_ids=list(upload_ids),
            event_count=len(event_ids),
            policy=policy.name,
        )

        for event_id in event_ids:
            summary.metrics.record_event_processed()
            try:
                process_event(session_factory, event_id, policy, now, settings, summary)
            except Exception as e:
                message = f"Failed to process event {event_id}: {e}"
                summary.errors.append(EventError(event_id=event_id, message=message))
                summary.metrics.record_event_failure(type(e).__name__)
                log.error(message, event_id=event_id, error_type=type(e).__name__)

        _finish_job(session_factory, summary.job_id, summary)
        log.info("Match process completed", **summary.to_dict())
        log.log_metrics_summary(summary.metrics)
        return summary
