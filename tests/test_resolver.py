"""
Tests for candidate resolution and tie-breaking.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from pipelines.entity_resolution.resolver import apply_tie_breaker, resolve
from pipelines.entity_resolution.scoring import (
    LeadSnapshot,
    MatchPass,
    evidence_confidence,
    score_candidate,
)

T0 = datetime(2024, 3, 1, 9, 0)


def _event(source_type="forms", amount=None):
    return SimpleNamespace(source_type=source_type, amount=amount)


def _candidate(policy, lead_id, match_pass=MatchPass.PHONE_EXACT, **snapshot):
    c = score_candidate(match_pass, lead_id, policy, ["phone"], "test")
    return replace(c, lead=LeadSnapshot(lead_id=lead_id, lead_created_at=T0, **snapshot))


@pytest.fixture
def tie_policy(policy):
    """Default policy with no tie-breakers configured."""
    return replace(policy, tie_breakers=())


class TestResolve:
    """Test winner selection by weight."""

    def test_no_candidates(self, policy):
        assert resolve([], policy, _event()) is None

    def test_single_candidate(self, policy):
        c = _candidate(policy, 1, MatchPass.FUZZY)
        assert resolve([c], policy, _event()) is c

    def test_highest_weight_wins(self, policy):
        fuzzy = _candidate(policy, 1, MatchPass.FUZZY)
        email = _candidate(policy, 2, MatchPass.EMAIL_EXACT)
        click = _candidate(policy, 3, MatchPass.CLICK_CHAIN)

        assert resolve([fuzzy, click, email], policy, _event()).lead_id == 2

    def test_equal_weight_same_lead(self, tie_policy):
        """Two candidates for one lead at the top weight resolve to that lead."""
        a = _candidate(tie_policy, 5, MatchPass.PHONE_EXACT)
        b = _candidate(tie_policy, 5, MatchPass.PHONE_EXACT)
        assert resolve([a, b], tie_policy, _event()).lead_id == 5

    def test_fallback_keeps_pass_order(self, tie_policy):
        """With no rule deciding, the first of the tied candidates wins."""
        a = _candidate(tie_policy, 7)
        b = _candidate(tie_policy, 3)
        assert resolve([a, b], tie_policy, _event()) is a

    def test_deterministic(self, policy):
        cands = [
            _candidate(policy, 1, last_event_at=T0),
            _candidate(policy, 2, last_event_at=T0 + timedelta(hours=1)),
            _candidate(policy, 3, MatchPass.EMAIL_EXACT),
        ]
        winners = {resolve(list(cands), policy, _event()).lead_id for _ in range(5)}
        assert winners == {2}


class TestTieBreakers:
    """Test each named tie-breaker rule."""

    def test_latest_event_time(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("latest_event_time",))
        old = _candidate(policy, 1, last_event_at=T0)
        recent = _candidate(policy, 2, last_event_at=T0 + timedelta(days=1))

        assert resolve([old, recent], policy, _event()).lead_id == 2

    def test_earliest_event_time(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("earliest_event_time",))
        early = _candidate(policy, 1, first_event_at=T0)
        late = _candidate(policy, 2, first_event_at=T0 + timedelta(days=1))

        assert resolve([late, early], policy, _event()).lead_id == 1

    def test_longer_call_duration_for_calls(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("longer_call_duration",))
        short = _candidate(policy, 1, longest_call_sec=60)
        long = _candidate(policy, 2, longest_call_sec=600)

        assert resolve([short, long], policy, _event("calls")).lead_id == 2

    def test_longer_call_duration_ignored_for_forms(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("longer_call_duration",))
        short = _candidate(policy, 1, longest_call_sec=60)
        long = _candidate(policy, 2, longest_call_sec=600)

        assert resolve([short, long], policy, _event("forms")).lead_id == 1

    def test_higher_revenue_needs_amount(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("higher_revenue",))
        small = _candidate(policy, 1, revenue=100.0)
        big = _candidate(policy, 2, revenue=2500.0)

        assert resolve([small, big], policy, _event("invoices", amount=50.0)).lead_id == 2
        assert resolve([small, big], policy, _event("invoices")).lead_id == 1

    @pytest.mark.parametrize("rule,source_type", [
        ("call_over_form", "calls"),
        ("form_over_call", "forms"),
        ("appointment_over_call", "appts"),
    ])
    def test_source_type_rules(self, tie_policy, rule, source_type):
        tied = [_candidate(tie_policy, 4), _candidate(tie_policy, 9)]

        assert apply_tie_breaker(rule, tied, _event(source_type)) is tied[0]
        assert apply_tie_breaker(rule, tied, _event("chats")) is None

    def test_shared_best_value_does_not_decide(self, tie_policy):
        tied = [
            _candidate(tie_policy, 1, last_event_at=T0),
            _candidate(tie_policy, 2, last_event_at=T0),
        ]
        assert apply_tie_breaker("latest_event_time", tied, _event()) is None

    def test_missing_values_skipped(self, tie_policy):
        tied = [
            _candidate(tie_policy, 1),
            _candidate(tie_policy, 2, last_event_at=T0),
        ]
        assert apply_tie_breaker("latest_event_time", tied, _event()).lead_id == 2

    def test_unknown_rule_ignored(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("coin_flip", "latest_event_time"))
        old = _candidate(policy, 1, last_event_at=T0)
        recent = _candidate(policy, 2, last_event_at=T0 + timedelta(days=1))

        assert apply_tie_breaker("coin_flip", [old, recent], _event()) is None
        assert resolve([old, recent], policy, _event()).lead_id == 2

    def test_rules_apply_in_order(self, tie_policy):
        policy = replace(tie_policy, tie_breakers=("earliest_event_time", "latest_event_time"))
        a = _candidate(policy, 1, first_event_at=T0, last_event_at=T0 + timedelta(days=5))
        b = _candidate(policy, 2, first_event_at=T0 + timedelta(days=1), last_event_at=T0 + timedelta(days=9))

        assert resolve([a, b], policy, _event()).lead_id == 1

    def test_only_top_weight_candidates_compete(self, policy):
        phone = _candidate(policy, 1, MatchPass.PHONE_EXACT, last_event_at=T0)
        email = _candidate(policy, 2, MatchPass.EMAIL_EXACT, last_event_at=T0 + timedelta(days=3))

        assert resolve([phone, email], policy, _event()).lead_id == 1


class TestEvidenceConfidence:
    """Test link confidence from the evidence behind the winner."""

    def test_single_deterministic(self, policy):
        c = _candidate(policy, 1, MatchPass.PHONE_EXACT)
        assert evidence_confidence(c, [c], policy) == 0.9

    def test_two_deterministic(self, policy):
        phone = _candidate(policy, 1, MatchPass.PHONE_EXACT)
        email = _candidate(policy, 1, MatchPass.EMAIL_EXACT)
        assert evidence_confidence(phone, [phone, email], policy) == 1.0

    def test_two_deterministic_requires_same_lead(self, policy):
        phone = _candidate(policy, 1, MatchPass.PHONE_EXACT)
        email = _candidate(policy, 2, MatchPass.EMAIL_EXACT)
        assert evidence_confidence(phone, [phone, email], policy) == 0.9

    def test_click_and_fuzzy(self, policy):
        click = _candidate(policy, 1, MatchPass.CLICK_CHAIN)
        fuzzy = _candidate(policy, 2, MatchPass.FUZZY)
        assert evidence_confidence(click, [click], policy) == 0.7
        assert evidence_confidence(fuzzy, [fuzzy], policy) == 0.5
