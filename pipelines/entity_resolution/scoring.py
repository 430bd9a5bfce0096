"""
Scoring Logic for Entity Resolution.

Responsibilities:
- Turn a pass hit into a weighted, explainable MatchCandidate.
- Assign evidence confidence from the policy's confidence rules.

Non-Responsibilities:
- No database access.
- No candidate selection.
- No resolution decisions.

Invariant:
Given identical inputs, this module must always return
the same weight, confidence and explanation.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from leadstitch.policy import PolicyConfig


class MatchPass(str, Enum):
    PHONE_EXACT = "P1"
    EMAIL_EXACT = "P2"
    CLICK_CHAIN = "P3"
    FUZZY = "P4"
    NEW = "NEW"


# Pass -> key in policy windows/weights
POLICY_KEYS = {
    MatchPass.PHONE_EXACT: "phone_exact",
    MatchPass.EMAIL_EXACT: "email_exact",
    MatchPass.CLICK_CHAIN: "click_chain",
    MatchPass.FUZZY: "fuzzy_match",
}


@dataclass(frozen=True)
class LeadSnapshot:
    """Lead facts used by comparative tie-breakers."""

    lead_id: int
    lead_created_at: datetime
    first_event_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    longest_call_sec: Optional[int] = None
    revenue: float = 0.0


@dataclass(frozen=True)
class MatchCandidate:
    lead_id: int
    match_pass: MatchPass
    weight: float
    matched_keys: Tuple[str, ...]
    reason: str
    confidence: float
    window_days: float = 0
    lead: Optional[LeadSnapshot] = None

    @property
    def matched_on(self) -> dict:
        return {"keys": list(self.matched_keys), "window_days": self.window_days}


def pass_window(match_pass: MatchPass, policy: PolicyConfig) -> float:
    return getattr(policy.windows, POLICY_KEYS[match_pass])


def pass_confidence(match_pass: MatchPass, policy: PolicyConfig) -> float:
    rules = policy.confidence_rules
    if match_pass in (MatchPass.PHONE_EXACT, MatchPass.EMAIL_EXACT):
        return rules.one_deterministic
    if match_pass == MatchPass.CLICK_CHAIN:
        return rules.click_only
    return rules.fuzzy_only


def score_candidate(
    match_pass: MatchPass,
    lead_id: int,
    policy: PolicyConfig,
    matched_keys: List[str],
    reason: str,
) -> MatchCandidate:
    """Build a candidate carrying the policy weight and confidence for its pass."""
    return MatchCandidate(
        lead_id=lead_id,
        match_pass=match_pass,
        weight=getattr(policy.weights, POLICY_KEYS[match_pass]),
        matched_keys=tuple(matched_keys),
        reason=reason,
        confidence=pass_confidence(match_pass, policy),
        window_days=pass_window(match_pass, policy),
    )


def evidence_confidence(
    winner: MatchCandidate,
    candidates: List[MatchCandidate],
    policy: PolicyConfig,
) -> float:
    """
    Confidence of the link produced by the winner.

    Phone and email both pointing at the winning lead is two pieces of
    deterministic evidence; otherwise the winner's own pass confidence holds.
    """
    passes = {c.match_pass for c in candidates if c.lead_id == winner.lead_id}
    if MatchPass.PHONE_EXACT in passes and MatchPass.EMAIL_EXACT in passes:
        return policy.confidence_rules.two_deterministic
    return winner.confidence
