"""
Leads Repository.

Responsibilities:
- Insert leads, links and audit entries.
- Read the events linked to a lead.
- Transaction-safe writes (callers own the transaction).

Non-Responsibilities:
- No matching or attribution decisions.

Invariant:
Repositories must not encode domain decisions.
"""

import threading
import time
import uuid
from typing import List, Optional

from leadstitch.database import AuditEntry, Lead, LeadLink, NormalizedEvent, Upload

DISPLAY_FIELDS = ("name", "phone", "email", "location")

_stitch_lock = threading.Lock()
_last_stitch_ns = 0


def new_stitch_id() -> str:
    """
    Monotonic, collision-free external lead id (hex ns stamp + random).

    The stamp never repeats or goes backwards within a process, even if the
    wall clock steps back.
    """
    global _last_stitch_ns
    with _stitch_lock:
        _last_stitch_ns = max(time.time_ns(), _last_stitch_ns + 1)
        stamp = _last_stitch_ns
    return f"{stamp:016x}{uuid.uuid4().hex[:12]}"


def create_lead(session, event: NormalizedEvent) -> Lead:
    """Create a lead seeded from the event's contact fields."""
    lead = Lead(
        account_id=event.account_id,
        stitch_id=new_stitch_id(),
        lead_created_at=event.occurred_at,
        name=event.name or None,
        phone=event.phone or None,
        email=event.email or None,
        location=event.location or None,
        revenue=float(event.amount or 0),
        confidence=1.0,
    )
    session.add(lead)
    session.flush()
    return lead


def refresh_display_fields(lead: Lead, event: NormalizedEvent) -> List[str]:
    """Fill empty display fields from the event. Returns the fields changed."""
    changed = []
    for field in DISPLAY_FIELDS:
        value = getattr(event, field)
        if value and not getattr(lead, field):
            setattr(lead, field, value)
            changed.append(field)
    if event.occurred_at < lead.lead_created_at:
        lead.lead_created_at = event.occurred_at
        changed.append("lead_created_at")
    return changed


def source_file_for(session, event: NormalizedEvent) -> str:
    upload = session.get(Upload, event.upload_id)
    if upload is not None and upload.filename:
        return upload.filename
    return f"upload_{event.upload_id}"


def insert_link(
    session,
    event: NormalizedEvent,
    lead: Lead,
    match_pass: str,
    matched_on: dict,
    reason: str,
    confidence: float,
) -> LeadLink:
    """Write a link and its mirrored audit entry."""
    link = LeadLink(
        account_id=event.account_id,
        lead_id=lead.id,
        event_id=event.id,
        match_pass=match_pass,
        matched_on=matched_on,
        reason=reason,
        confidence=confidence,
    )
    session.add(link)
    session.add(
        AuditEntry(
            account_id=event.account_id,
            lead_id=lead.id,
            source_file=source_file_for(session, event),
            original_row_id=event.id,
            matched_on=matched_on,
            match_pass=match_pass,
            reason=reason,
            confidence=confidence,
        )
    )
    session.flush()
    return link


def linked_events(session, lead_id: int) -> List[NormalizedEvent]:
    """Events linked to a lead, oldest first."""
    return (
        session.query(NormalizedEvent)
        .join(LeadLink, LeadLink.event_id == NormalizedEvent.id)
        .filter(LeadLink.lead_id == lead_id)
        .order_by(NormalizedEvent.occurred_at, NormalizedEvent.id)
        .all()
    )


def link_confidences(session, lead_id: int) -> List[float]:
    return [c for (c,) in session.query(LeadLink.confidence).filter(LeadLink.lead_id == lead_id).all()]


def lead_ids_for_account(session, account_id: int) -> List[int]:
    """Lead ids in creation order."""
    return [
        lead_id
        for (lead_id,) in session.query(Lead.id)
        .filter(Lead.account_id == account_id)
        .order_by(Lead.lead_created_at, Lead.id)
        .all()
    ]


def list_leads(session, account_id: int, limit: Optional[int] = None) -> List[Lead]:
    query = session.query(Lead).filter(Lead.account_id == account_id).order_by(Lead.id)
    if limit:
        query = query.limit(limit)
    return query.all()
