"""
Entity Resolution Orchestrator.

Responsibilities:
- Pick at most one winning candidate for an event.
- Order by weight; break ties with the policy's tie-breaker rules.
- Return an explainable resolution result (the winning candidate).

Non-Responsibilities:
- No database access.
- No feature computation.
- No mutation of persistent state.

Invariant:
This module must be deterministic given the same inputs.
"""

from typing import Callable, List, Optional

from leadstitch.policy import PolicyConfig
from pipelines.entity_resolution.scoring import MatchCandidate

# Tie-breakers that fire only for a given incoming source type
SOURCE_TYPE_RULES = {
    "call_over_form": "calls",
    "form_over_call": "forms",
    "appointment_over_call": "appts",
}


def _pick_unique_best(
    tied: List[MatchCandidate],
    value: Callable[[MatchCandidate], object],
    prefer_max: bool = True,
) -> Optional[MatchCandidate]:
    """
    Return the candidate whose lead holds the strict best value.

    Candidates without a value are ignored. If the best value is shared by
    more than one lead the rule does not discriminate and None is returned.
    """
    scored = [(c, value(c)) for c in tied if c.lead is not None and value(c) is not None]
    if not scored:
        return None
    best = max(v for _, v in scored) if prefer_max else min(v for _, v in scored)
    winners = [c for c, v in scored if v == best]
    if len({c.lead_id for c in winners}) != 1:
        return None
    return winners[0]


def apply_tie_breaker(rule: str, tied: List[MatchCandidate], event) -> Optional[MatchCandidate]:
    """Apply one named rule to the tied top-weight candidates; None = no decision."""
    if rule in SOURCE_TYPE_RULES:
        if event.source_type == SOURCE_TYPE_RULES[rule]:
            return tied[0]
        return None

    if rule == "latest_event_time":
        return _pick_unique_best(tied, lambda c: c.lead.last_event_at)

    if rule == "earliest_event_time":
        return _pick_unique_best(tied, lambda c: c.lead.first_event_at, prefer_max=False)

    if rule == "longer_call_duration":
        if event.source_type != "calls":
            return None
        return _pick_unique_best(tied, lambda c: c.lead.longest_call_sec)

    if rule == "higher_revenue":
        if not event.amount:
            return None
        return _pick_unique_best(tied, lambda c: c.lead.revenue)

    # Unknown rule names never discriminate
    return None


def resolve(candidates: List[MatchCandidate], policy: PolicyConfig, event) -> Optional[MatchCandidate]:
    """
    Select the winning candidate.

    Args:
        candidates: Output of generate_candidates (pass order)
        policy: Job policy (tie_breakers)
        event: Incoming event (source_type, amount)

    Returns:
        Winning candidate, or None to signal "create a new lead"
    """
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    # sorted() is stable: equal weights keep pass order
    ranked = sorted(candidates, key=lambda c: c.weight, reverse=True)
    if ranked[0].weight > ranked[1].weight:
        return ranked[0]

    tied = [c for c in ranked if c.weight == ranked[0].weight]
    for rule in policy.tie_breakers:
        choice = apply_tie_breaker(rule, tied, event)
        if choice is not None:
            return choice

    # No rule decided: first tied candidate in pass order
    return ranked[0]
