"""
Lead Ledger.

Responsibilities:
- Turn a resolution result into persisted evidence: a new lead (metered
  against the account quota) or a link to the winning lead.
- Write exactly one link and one audit entry per event.

Non-Responsibilities:
- No candidate generation or tie-breaking.
- No attribution.

Invariant:
The usage slot is consumed in the same transaction that creates the lead,
so a lead never exists without its increment and vice versa.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from leadstitch.database import Lead, NormalizedEvent
from leadstitch.errors import PersistenceError
from leadstitch.policy import PolicyConfig
from pipelines.entity_resolution.scoring import MatchCandidate, MatchPass, evidence_confidence
from storage.repositories.leads import create_lead, insert_link, refresh_display_fields
from storage.repositories.usage import consume_lead_slot

NEW_LEAD_REASON = "New lead created"


@dataclass(frozen=True)
class LedgerOutcome:
    lead_id: int
    stitch_id: str
    created: bool
    match_pass: str
    confidence: float


def record_decision(
    session,
    event: NormalizedEvent,
    winner: Optional[MatchCandidate],
    candidates: List[MatchCandidate],
    policy: PolicyConfig,
    now: datetime,
    default_plan_limit: int,
) -> LedgerOutcome:
    """
    Persist the outcome for one event.

    Raises:
        UsageLimitExceeded: a new lead is needed but the quota is used up
        PersistenceError: the winning lead no longer exists
    """
    if winner is None:
        consume_lead_slot(session, event.account_id, now, default_plan_limit)
        lead = create_lead(session, event)
        insert_link(
            session,
            event,
            lead,
            MatchPass.NEW.value,
            {"keys": [], "window_days": 0},
            NEW_LEAD_REASON,
            1.0,
        )
        return LedgerOutcome(lead.id, lead.stitch_id, True, MatchPass.NEW.value, 1.0)

    lead = session.get(Lead, winner.lead_id)
    if lead is None or lead.account_id != event.account_id:
        raise PersistenceError(f"Lead {winner.lead_id} not found for account {event.account_id}")

    refresh_display_fields(lead, event)
    confidence = evidence_confidence(winner, candidates, policy)
    insert_link(
        session,
        event,
        lead,
        winner.match_pass.value,
        winner.matched_on,
        winner.reason,
        confidence,
    )
    return LedgerOutcome(lead.id, lead.stitch_id, False, winner.match_pass.value, confidence)
