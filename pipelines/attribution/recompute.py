"""
Attribution Recomputation.

Responsibilities:
- Derive first-touch, last-touch and paid-last sources for a lead.
- Choose the final source/medium/campaign under the policy's mode.
- Total revenue and lead confidence from the linked evidence.

Non-Responsibilities:
- No matching.

Invariant:
Recomputing on an unchanged link set yields identical fields. Updates are
written inside the caller's transaction, so a failure leaves the lead's
prior attribution untouched.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from leadstitch.database import Lead
from leadstitch.normalize import channel_for_medium, is_paid_medium
from leadstitch.policy import AttributionMode, PolicyConfig
from storage.repositories.leads import link_confidences, linked_events

DIRECT = "direct"


@dataclass(frozen=True)
class AttributionSummary:
    final_channel: str
    final_source: str
    final_medium: str
    final_campaign: str
    first_touch_source: str
    last_touch_source: str
    paid_last_source: str
    revenue: float


def _touch(event):
    return (event.utm_source or DIRECT, event.utm_medium or "", event.utm_campaign or "")


def compute_attribution(events: Sequence, mode: AttributionMode) -> Optional[AttributionSummary]:
    """
    Compute attribution for events already linked to one lead.

    Args:
        events: Linked events (any order; sorted by occurred_at here)
        mode: Policy attribution mode

    Returns:
        Summary, or None when there are no events
    """
    if not events:
        return None

    ordered = sorted(events, key=lambda e: (e.occurred_at, e.id or 0))
    first, last = ordered[0], ordered[-1]

    paid = next((e for e in reversed(ordered) if is_paid_medium(e.utm_medium)), None)
    paid_last_source = (paid.utm_source or "paid") if paid else ""

    if mode == AttributionMode.FIRST_TOUCH:
        source, medium, campaign = _touch(first)
    elif mode == AttributionMode.LAST_TOUCH:
        source, medium, campaign = _touch(last)
    elif mode == AttributionMode.PAID_LAST:
        if paid is not None:
            source, medium, campaign = paid_last_source, paid.utm_medium, paid.utm_campaign or ""
        else:
            source, medium, campaign = _touch(last)
    elif mode == AttributionMode.CALL_FIRST:
        call = next((e for e in ordered if e.source_type == "calls"), None)
        if call is not None:
            source = call.utm_source or "phone"
            medium = call.utm_medium or "call"
            campaign = call.utm_campaign or ""
        else:
            source, medium, campaign = _touch(last)
    elif mode == AttributionMode.EQUAL_WEIGHT:
        # Single representative touch; credit splitting is not surfaced here
        source, medium, campaign = _touch(last)
    else:
        raise ValueError(f"Unknown attribution mode: {mode}")

    revenue = round(sum(float(e.amount or 0) for e in ordered), 2)

    return AttributionSummary(
        final_channel=channel_for_medium(medium),
        final_source=source,
        final_medium=medium,
        final_campaign=campaign,
        first_touch_source=first.utm_source or DIRECT,
        last_touch_source=last.utm_source or DIRECT,
        paid_last_source=paid_last_source,
        revenue=revenue,
    )


def lead_confidence(confidences: List[float]) -> float:
    """Weakest link; a lead with only its seeding event is fully confident."""
    return min(confidences) if confidences else 1.0


def recompute_attribution(session, lead_id: int, policy: PolicyConfig) -> Optional[AttributionSummary]:
    """
    Refresh a lead's attribution, revenue and confidence.

    Returns:
        The summary written, or None if the lead has no linked events
    """
    events = linked_events(session, lead_id)
    summary = compute_attribution(events, policy.attribution_mode)
    if summary is None:
        return None

    lead = session.get(Lead, lead_id)
    lead.final_channel = summary.final_channel
    lead.final_source = summary.final_source
    lead.final_medium = summary.final_medium
    lead.final_campaign = summary.final_campaign
    lead.first_touch_source = summary.first_touch_source
    lead.last_touch_source = summary.last_touch_source
    lead.paid_last_source = summary.paid_last_source
    lead.revenue = summary.revenue
    lead.confidence = lead_confidence(link_confidences(session, lead_id))
    session.flush()
    return summary
