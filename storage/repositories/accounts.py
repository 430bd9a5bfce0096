"""
Accounts Repository.

Responsibilities:
- Create accounts, seed plans, attach subscriptions.

Invariant:
Repositories must not encode domain decisions.
"""

from datetime import datetime, timedelta
from typing import Optional

from leadstitch.database import Account, Plan, Subscription

DEFAULT_PLANS = [
    {"code": "FREE", "monthly_limit": 250, "price_usd": 0},
    {"code": "STARTER", "monthly_limit": 5000, "price_usd": 10},
    {"code": "PRO", "monthly_limit": 10000, "price_usd": 20},
]


def ensure_plans(session) -> int:
    """Insert any missing default plans. Returns number inserted."""
    existing = {code for (code,) in session.query(Plan.code).all()}
    added = 0
    for plan in DEFAULT_PLANS:
        if plan["code"] not in existing:
            session.add(Plan(**plan))
            added += 1
    session.flush()
    return added


def create_account(
    session,
    name: str,
    plan_code: Optional[str] = "FREE",
    now: Optional[datetime] = None,
    period_days: int = 30,
) -> Account:
    """
    Create an account, optionally with an active subscription starting now.

    Args:
        session: Open session
        name: Account display name
        plan_code: Plan to subscribe to (None = no subscription)
        now: Subscription period start (default: datetime.now())
        period_days: Length of the billing period
    """
    now = now or datetime.now()
    account = Account(name=name)
    session.add(account)
    session.flush()

    if plan_code:
        plan = session.query(Plan).filter_by(code=plan_code).first()
        if plan is None:
            raise ValueError(f"Unknown plan: {plan_code}")
        session.add(
            Subscription(
                account_id=account.id,
                plan_id=plan.id,
                period_start=now,
                period_end=now + timedelta(days=period_days),
                status="active",
            )
        )
        session.flush()
    return account
