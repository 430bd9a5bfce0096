"""
Feature Extraction for Entity Resolution.

Responsibilities:
- Compute individual similarity and conflict features.
- Normalize and compare fields (time, name, location, phone, click ids).

Non-Responsibilities:
- No weighting logic.
- No persistence.

Invariant:
Features are pure functions of their inputs.
"""

from datetime import datetime
from typing import Optional, Tuple

from rapidfuzz.distance import Hamming, JaroWinkler

from leadstitch.normalize import phone_digits

NAME_SIMILARITY_THRESHOLD = 0.88
MAX_PHONE_HAMMING = 1

SECONDS_PER_DAY = 60 * 60 * 24


def within_window(a: datetime, b: datetime, window_days: float) -> bool:
    """True when |a - b| is at most window_days (fractional days allowed)."""
    diff_days = abs((a - b).total_seconds()) / SECONDS_PER_DAY
    return diff_days <= window_days


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Case-insensitive Jaro-Winkler similarity in [0, 1]."""
    if not a or not b:
        return 0.0
    return JaroWinkler.similarity(a.lower(), b.lower())


def locations_overlap(a: Optional[str], b: Optional[str]) -> bool:
    """Either location contains the other, ignoring case."""
    if not a or not b:
        return False
    la, lb = a.lower(), b.lower()
    return la in lb or lb in la


def phones_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """
    Phone check for fuzzy matching.

    Only applies when both sides carry a phone. Digit strings of different
    length never match; equal-length strings may differ in one position.
    """
    if not a or not b:
        return True
    da, db = phone_digits(a), phone_digits(b)
    if len(da) != len(db):
        return False
    return Hamming.distance(da, db) <= MAX_PHONE_HAMMING


def click_key(gclid: Optional[str], client_id: Optional[str]) -> Optional[Tuple[str, str]]:
    """(field, value) for click-chain matching; ad-click id wins over client id."""
    if gclid:
        return "gclid", gclid
    if client_id:
        return "client_id", client_id
    return None


def has_matchable_keys(event) -> bool:
    """Whether any pass could fire for this event."""
    return bool(
        event.phone
        or event.email
        or event.gclid
        or event.client_id
        or (event.name and event.location)
    )
