"""
Pytest configuration and shared fixtures.
"""

import itertools
import pytest
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List

import leadstitch.logger as logger_module
from leadstitch.database import Lead, NormalizedEvent, Upload, init_database, get_session_factory, session_scope
from leadstitch.env import Settings
from leadstitch.logger import StructuredLogger, reset_logger
from leadstitch.policy import DEFAULT_POLICY_YAML, parse_policy
from storage.repositories.accounts import create_account, ensure_plans
from storage.repositories.events import store_upload
from storage.repositories.leads import insert_link

NOW = datetime(2024, 3, 15, 12, 0, 0)

_lead_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def quiet_logger():
    """Route engine logging to a handler-less logger for every test."""
    logger_module._global_logger = StructuredLogger(
        name="leadstitch-test",
        level="DEBUG",
        enable_file=False,
        enable_console=False,
    )
    yield logger_module._global_logger
    reset_logger()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "leadstitch.db"
    init_database(path)
    return path


@pytest.fixture
def session_factory(db_path):
    return get_session_factory(db_path)


@pytest.fixture
def settings(tmp_path, db_path) -> Settings:
    return Settings(
        db_path=db_path,
        log_level="DEBUG",
        log_dir=tmp_path / "logs",
        default_plan_limit=250,
        lock_timeout=0.05,
        db_retries=0,
    )


@pytest.fixture
def account_id(session_factory) -> int:
    """Account on the FREE plan (250 leads) with a period covering NOW."""
    with session_scope(session_factory) as session:
        ensure_plans(session)
        account = create_account(session, "Acme Roofing", plan_code="FREE", now=NOW - timedelta(days=1))
        return account.id


@pytest.fixture
def policy_yaml() -> str:
    return DEFAULT_POLICY_YAML


@pytest.fixture
def policy(policy_yaml):
    return parse_policy(policy_yaml)


@pytest.fixture
def policy_dict() -> Dict[str, Any]:
    """Valid structural policy document."""
    return {
        "name": "Test Policy",
        "attribution_mode": "last_touch",
        "windows": {"phone_exact": 30, "email_exact": 30, "click_chain": 7, "fuzzy_match": 1},
        "weights": {"phone_exact": 1.0, "email_exact": 0.9, "click_chain": 0.7, "fuzzy_match": 0.5},
        "tie_breakers": ["latest_event_time"],
        "confidence_rules": {
            "two_deterministic": 1.0,
            "one_deterministic": 0.9,
            "click_only": 0.7,
            "fuzzy_only": 0.5,
        },
    }


@pytest.fixture
def load_events(session_factory):
    """Store event records as one upload; returns the upload id."""

    def _load(account_id: int, records: List[Dict[str, Any]], filename: str = "events.csv") -> int:
        with session_scope(session_factory) as session:
            upload, errors = store_upload(session, account_id, filename, records)
            assert errors == []
            return upload.id

    return _load


@pytest.fixture
def make_event(session_factory):
    """Insert one event row directly (own upload); returns the detached event."""

    def _make(account_id: int, occurred_at: datetime, source_type: str = "forms", **fields) -> NormalizedEvent:
        with session_scope(session_factory) as session:
            upload = Upload(account_id=account_id, filename="direct.csv", status="normalized")
            session.add(upload)
            session.flush()
            event = NormalizedEvent(
                account_id=account_id,
                upload_id=upload.id,
                source_type=source_type,
                occurred_at=occurred_at,
                original={},
                **fields,
            )
            session.add(event)
            session.flush()
            return event

    return _make


@pytest.fixture
def make_lead(session_factory):
    """Insert one lead row directly; returns its id."""

    def _make(account_id: int, lead_created_at: datetime, stitch_id: str = None, **fields) -> int:
        with session_scope(session_factory) as session:
            lead = Lead(
                account_id=account_id,
                stitch_id=stitch_id or f"lead-{next(_lead_seq):04d}",
                lead_created_at=lead_created_at,
                **fields,
            )
            session.add(lead)
            session.flush()
            return lead.id

    return _make


@pytest.fixture
def link_event(session_factory):
    """Link an existing event to a lead (link + audit entry)."""

    def _link(event: NormalizedEvent, lead_id: int, match_pass: str = "NEW", confidence: float = 1.0) -> None:
        with session_scope(session_factory) as session:
            lead = session.get(Lead, lead_id)
            insert_link(session, event, lead, match_pass, {"keys": [], "window_days": 0}, "seeded", confidence)

    return _link
