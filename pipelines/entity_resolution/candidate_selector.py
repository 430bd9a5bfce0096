"""
Candidate Selection Logic.

Responsibilities:
- Propose every plausible existing lead for one incoming event.
- Run the four passes in fixed order: phone-exact, email-exact,
  click-chain, fuzzy. Each pass may add zero or more candidates.
- Attach lead snapshots for comparative tie-breaking.

Non-Responsibilities:
- No winner selection.
- No writes.

Invariant:
Only leads of the event's own account are ever proposed, and an event
without phone, email, click id or name+location yields no candidates.
"""

from dataclasses import replace
from typing import Dict, List

from sqlalchemy import case, func

from leadstitch.database import Lead, LeadLink, NormalizedEvent
from leadstitch.normalize import normalize_email
from leadstitch.policy import PolicyConfig
from pipelines.entity_resolution import features
from pipelines.entity_resolution.scoring import (
    LeadSnapshot,
    MatchCandidate,
    MatchPass,
    score_candidate,
)


def phone_candidates(session, event: NormalizedEvent, policy: PolicyConfig) -> List[MatchCandidate]:
    """P1: identical phone, lead created within windows.phone_exact days."""
    if not event.phone:
        return []

    leads = (
        session.query(Lead.id, Lead.lead_created_at)
        .filter(Lead.account_id == event.account_id, Lead.phone == event.phone)
        .order_by(Lead.id)
        .all()
    )
    return [
        score_candidate(
            MatchPass.PHONE_EXACT,
            lead_id,
            policy,
            ["phone"],
            f"Phone exact match: {event.phone}",
        )
        for lead_id, lead_created_at in leads
        if features.within_window(event.occurred_at, lead_created_at, policy.windows.phone_exact)
    ]


def email_candidates(session, event: NormalizedEvent, policy: PolicyConfig) -> List[MatchCandidate]:
    """P2: identical normalized email, lead created within windows.email_exact days."""
    email = normalize_email(event.email)
    if not email:
        return []

    leads = (
        session.query(Lead.id, Lead.lead_created_at)
        .filter(Lead.account_id == event.account_id, func.lower(func.trim(Lead.email)) == email)
        .order_by(Lead.id)
        .all()
    )
    return [
        score_candidate(
            MatchPass.EMAIL_EXACT,
            lead_id,
            policy,
            ["email"],
            f"Email exact match: {email}",
        )
        for lead_id, lead_created_at in leads
        if features.within_window(event.occurred_at, lead_created_at, policy.windows.email_exact)
    ]


def click_chain_candidates(session, event: NormalizedEvent, policy: PolicyConfig) -> List[MatchCandidate]:
    """P3: an already-linked event shares the ad-click id (or client id)."""
    key = features.click_key(event.gclid, event.client_id)
    if key is None:
        return []
    field, value = key
    column = NormalizedEvent.gclid if field == "gclid" else NormalizedEvent.client_id

    prior = (
        session.query(LeadLink.lead_id, NormalizedEvent.occurred_at)
        .join(NormalizedEvent, NormalizedEvent.id == LeadLink.event_id)
        .filter(
            NormalizedEvent.account_id == event.account_id,
            NormalizedEvent.id != event.id,
            column == value,
        )
        .order_by(NormalizedEvent.occurred_at, NormalizedEvent.id)
        .all()
    )

    candidates: List[MatchCandidate] = []
    seen = set()
    for lead_id, occurred_at in prior:
        if lead_id in seen:
            continue
        if not features.within_window(event.occurred_at, occurred_at, policy.windows.click_chain):
            continue
        seen.add(lead_id)
        candidates.append(
            score_candidate(
                MatchPass.CLICK_CHAIN,
                lead_id,
                policy,
                [field],
                f"Click chain match: {value}",
            )
        )
    return candidates


def fuzzy_candidates(session, event: NormalizedEvent, policy: PolicyConfig) -> List[MatchCandidate]:
    """P4: similar name, overlapping location, compatible phone, close in time."""
    if not (event.name and event.location):
        return []

    leads = (
        session.query(Lead.id, Lead.name, Lead.location, Lead.phone, Lead.lead_created_at)
        .filter(
            Lead.account_id == event.account_id,
            Lead.name.isnot(None),
            Lead.location.isnot(None),
        )
        .order_by(Lead.id)
        .all()
    )

    candidates: List[MatchCandidate] = []
    for lead_id, name, location, phone, lead_created_at in leads:
        if not name or not location:
            continue
        if not features.within_window(event.occurred_at, lead_created_at, policy.windows.fuzzy_match):
            continue
        similarity = features.name_similarity(event.name, name)
        if similarity < features.NAME_SIMILARITY_THRESHOLD:
            continue
        if not features.locations_overlap(event.location, location):
            continue
        if not features.phones_compatible(event.phone, phone):
            continue
        candidates.append(
            score_candidate(
                MatchPass.FUZZY,
                lead_id,
                policy,
                ["name", "location"],
                f"Fuzzy match: name similarity {similarity:.2f}, location match",
            )
        )
    return candidates


def lead_snapshots(session, lead_ids) -> Dict[int, LeadSnapshot]:
    """Aggregate per-lead facts (event span, longest call, revenue)."""
    if not lead_ids:
        return {}

    leads = {
        lead_id: (created, revenue)
        for lead_id, created, revenue in session.query(Lead.id, Lead.lead_created_at, Lead.revenue)
        .filter(Lead.id.in_(lead_ids))
        .all()
    }
    call_duration = case((NormalizedEvent.source_type == "calls", NormalizedEvent.duration_sec), else_=None)
    stats = (
        session.query(
            LeadLink.lead_id,
            func.min(NormalizedEvent.occurred_at),
            func.max(NormalizedEvent.occurred_at),
            func.max(call_duration),
        )
        .join(NormalizedEvent, NormalizedEvent.id == LeadLink.event_id)
        .filter(LeadLink.lead_id.in_(lead_ids))
        .group_by(LeadLink.lead_id)
        .all()
    )
    by_lead = {row[0]: row[1:] for row in stats}

    snapshots = {}
    for lead_id, (created, revenue) in leads.items():
        first_at, last_at, longest = by_lead.get(lead_id, (None, None, None))
        snapshots[lead_id] = LeadSnapshot(
            lead_id=lead_id,
            lead_created_at=created,
            first_event_at=first_at,
            last_event_at=last_at,
            longest_call_sec=longest,
            revenue=float(revenue or 0),
        )
    return snapshots


def generate_candidates(session, event: NormalizedEvent, policy: PolicyConfig) -> List[MatchCandidate]:
    """
    Produce all candidates for an event, in pass order.

    Args:
        session: Open session (reads leads, links and events)
        event: Incoming normalized event
        policy: Job policy

    Returns:
        Candidates from P1, P2, P3, P4 (in that order); may be empty
    """
    if not features.has_matchable_keys(event):
        return []

    candidates: List[MatchCandidate] = []
    candidates.extend(phone_candidates(session, event, policy))
    candidates.extend(email_candidates(session, event, policy))
    candidates.extend(click_chain_candidates(session, event, policy))
    candidates.extend(fuzzy_candidates(session, event, policy))

    snapshots = lead_snapshots(session, sorted({c.lead_id for c in candidates}))
    return [replace(c, lead=snapshots.get(c.lead_id)) for c in candidates]
