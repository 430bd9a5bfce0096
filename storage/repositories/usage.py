"""
Usage Repository.

Responsibilities:
- Resolve the billing period and plan limit for an account.
- Consume one lead slot with a single conditional UPDATE.

Non-Responsibilities:
- No lead creation.

Invariant:
stitched_count never exceeds the plan limit; the check and the increment
are one statement, never a read followed by a write.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from leadstitch.database import Plan, Subscription, UsageCounter
from leadstitch.errors import UsageLimitExceeded


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime
    limit: int
    plan_code: Optional[str] = None


def calendar_month(now: datetime):
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


def current_period(session, account_id: int, now: datetime, default_limit: int) -> BillingPeriod:
    """
    Active subscription period covering `now`, else the calendar month
    with the default plan limit.
    """
    row = (
        session.query(Subscription.period_start, Subscription.period_end, Plan.monthly_limit, Plan.code)
        .join(Plan, Plan.id == Subscription.plan_id)
        .filter(
            Subscription.account_id == account_id,
            Subscription.status == "active",
            Subscription.period_start <= now,
            Subscription.period_end >= now,
        )
        .order_by(Subscription.period_start.desc())
        .first()
    )
    if row is not None:
        start, end, limit, code = row
        return BillingPeriod(start=start, end=end, limit=limit, plan_code=code)

    start, end = calendar_month(now)
    return BillingPeriod(start=start, end=end, limit=default_limit)


def get_or_create_counter(session, account_id: int, period: BillingPeriod) -> UsageCounter:
    counter = (
        session.query(UsageCounter)
        .filter_by(account_id=account_id, period_start=period.start, period_end=period.end)
        .first()
    )
    if counter is None:
        counter = UsageCounter(
            account_id=account_id,
            period_start=period.start,
            period_end=period.end,
            stitched_count=0,
        )
        session.add(counter)
        session.flush()
    return counter


def consume_lead_slot(session, account_id: int, now: datetime, default_limit: int) -> BillingPeriod:
    """
    Atomically increment the account's usage counter if below its limit.

    Raises:
        UsageLimitExceeded: the period's quota is already used up
    """
    period = current_period(session, account_id, now, default_limit)
    counter = get_or_create_counter(session, account_id, period)

    updated = (
        session.query(UsageCounter)
        .filter(UsageCounter.id == counter.id, UsageCounter.stitched_count < period.limit)
        .update(
            {UsageCounter.stitched_count: UsageCounter.stitched_count + 1},
            synchronize_session=False,
        )
    )
    session.expire(counter)
    if updated != 1:
        raise UsageLimitExceeded(account_id, period.limit)
    return period


def usage_summary(session, account_id: int, now: datetime, default_limit: int) -> dict:
    """Current period usage for reporting."""
    period = current_period(session, account_id, now, default_limit)
    counter = (
        session.query(UsageCounter)
        .filter_by(account_id=account_id, period_start=period.start, period_end=period.end)
        .first()
    )
    used = counter.stitched_count if counter else 0
    percent = round(used / period.limit * 100) if period.limit else 100
    return {
        "stitched_count": used,
        "limit": period.limit,
        "remaining": max(0, period.limit - used),
        "percent_used": percent,
        "plan_code": period.plan_code,
        "period_start": period.start.isoformat(),
        "period_end": period.end.isoformat(),
    }
