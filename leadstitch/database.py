"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for events, leads, links and usage metering.
All engine state is partitioned by account_id.
"""

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine,
    Column,
    String,
    Text,
    DateTime,
    Integer,
    Float,
    Boolean,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Account(Base):
    """Tenant owning events, leads and usage."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    name = Column(String(160), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Plan(Base):
    """Billing plan; monthly_limit caps stitched leads per period."""

    __tablename__ = "plans"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)  # FREE, STARTER, PRO
    monthly_limit = Column(Integer, nullable=False)
    price_usd = Column(Integer, nullable=False, default=0)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    status = Column(String(32), nullable=False, default="active")  # active, past_due, canceled


class UsageCounter(Base):
    """Leads created per account per billing period."""

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("account_id", "period_start", "period_end", name="usage_account_period_idx"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    stitched_count = Column(Integer, nullable=False, default=0)


class Upload(Base):
    """One batch of normalized events (usually one source file)."""

    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    filename = Column(String(255), nullable=False)
    source_type = Column(String(40))  # forms, calls, chats, appts, invoices
    status = Column(String(20), nullable=False, default="normalized")  # uploaded, normalized, matched, failed
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class NormalizedEvent(Base):
    """
    One canonical interaction record.

    Written by the ingestion boundary and only read by the matching engine.
    """

    __tablename__ = "normalized_events"
    __table_args__ = (
        Index("events_account_time_idx", "account_id", "occurred_at"),
        Index("events_account_phone_idx", "account_id", "phone"),
        Index("events_account_email_idx", "account_id", "email"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    upload_id = Column(Integer, ForeignKey("uploads.id"), nullable=False)
    source_type = Column(String(40), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    name = Column(String(160))
    phone = Column(String(32))
    email = Column(String(320))
    gclid = Column(String(128))  # ad-click id
    client_id = Column(String(64))
    utm_source = Column(String(80))
    utm_medium = Column(String(80))
    utm_campaign = Column(String(160))
    landing_page = Column(Text)
    location = Column(String(120))
    duration_sec = Column(Integer)  # calls
    amount = Column(Float)  # invoices
    external_id = Column(String(128))
    original = Column(JSON, nullable=False, default=dict)


class Lead(Base):
    """Resolved identity ("stitch") built from one or more events."""

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("account_id", "stitch_id", name="acct_stitchid_idx"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    stitch_id = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    lead_created_at = Column(DateTime, nullable=False)  # earliest linked occurred_at
    name = Column(String(160))
    phone = Column(String(32))
    email = Column(String(320))
    location = Column(String(120))
    revenue = Column(Float, nullable=False, default=0.0)
    confidence = Column(Float, nullable=False, default=1.0)
    final_channel = Column(String(80))
    final_source = Column(String(80))
    final_medium = Column(String(80))
    final_campaign = Column(String(160))
    first_touch_source = Column(String(80))
    last_touch_source = Column(String(80))
    paid_last_source = Column(String(80))


class LeadLink(Base):
    """Evidence joining one event to one lead. Immutable once written."""

    __tablename__ = "lead_links"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("normalized_events.id"), nullable=False, unique=True)
    match_pass = Column(String(24), nullable=False)  # P1, P2, P3, P4, NEW
    matched_on = Column(JSON, nullable=False)  # {"keys": [...], "window_days": n}
    reason = Column(Text)
    confidence = Column(Float, nullable=False, default=1.0)


class AuditEntry(Base):
    """Export-scoped copy of a matching decision with file provenance."""

    __tablename__ = "audit_trail"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False)
    source_file = Column(String(255))
    original_row_id = Column(Integer)
    matched_on = Column(JSON, nullable=False)
    match_pass = Column(String(24), nullable=False)
    reason = Column(Text)
    confidence = Column(Float, nullable=False, default=1.0)


class StoredPolicy(Base):
    """Account-scoped policy document (YAML text)."""

    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("account_id", "name", name="policy_account_name_idx"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    name = Column(String(120), nullable=False)
    yaml = Column(Text, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class MatchJob(Base):
    """One run of the matcher; an account has at most one running job."""

    __tablename__ = "match_jobs"
    __table_args__ = (
        Index(
            "match_jobs_one_running_idx",
            "account_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    status = Column(String(20), nullable=False, default="queued")  # queued, running, completed, failed
    upload_ids = Column(JSON, nullable=False, default=list)
    policy_name = Column(String(120))
    new_lead_count = Column(Integer, nullable=False, default=0)
    link_count = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    error = Column(Text)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)


def get_engine(db_path: Path):
    """Create an engine bound to a SQLite file."""
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)


def get_session_factory(db_path: Path):
    """
    Build a session factory for the database.

    Args:
        db_path: Path to SQLite database file

    Returns:
        sessionmaker bound to a fresh engine
    """
    return sessionmaker(bind=get_engine(db_path), expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = get_session_factory(db_path)
    return Session()


@contextmanager
def session_scope(session_factory):
    """Yield a session that commits on success and rolls back on error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
