"""
Tests for policy.py - Parsing policy documents into PolicyConfig.
"""

import pytest
import yaml

from leadstitch.errors import PolicyValidationError
from leadstitch.policy import (
    DEFAULT_POLICY_YAML,
    POLICY_PRESETS,
    AttributionMode,
    ConfidenceRules,
    parse_policy,
)


class TestParsePolicy:
    """Test policy parsing from YAML text and mappings."""

    def test_default_policy(self):
        policy = parse_policy(DEFAULT_POLICY_YAML)

        assert policy.name == "Default Paid-Last"
        assert policy.attribution_mode == AttributionMode.PAID_LAST
        assert policy.windows.phone_exact == 30
        assert policy.windows.click_chain == 7
        assert policy.windows.fuzzy_match == 1
        assert policy.weights.email_exact == 0.9
        assert policy.tie_breakers == ("latest_event_time", "longer_call_duration")
        assert policy.confidence_rules == ConfidenceRules()

    def test_from_mapping(self, policy_dict):
        policy = parse_policy(policy_dict)
        assert policy.name == "Test Policy"
        assert policy.attribution_mode == AttributionMode.LAST_TOUCH

    def test_yaml_and_mapping_agree(self, policy_dict):
        assert parse_policy(yaml.safe_dump(policy_dict)) == parse_policy(policy_dict)

    def test_numbers_become_floats(self, policy_dict):
        policy = parse_policy(policy_dict)
        assert isinstance(policy.windows.phone_exact, float)
        assert isinstance(policy.weights.phone_exact, float)

    def test_confidence_rules_default_when_omitted(self, policy_dict):
        del policy_dict["confidence_rules"]
        policy = parse_policy(policy_dict)
        assert policy.confidence_rules.one_deterministic == 0.9
        assert policy.confidence_rules.fuzzy_only == 0.5

    def test_partial_confidence_rules(self, policy_dict):
        policy_dict["confidence_rules"] = {"click_only": 0.6}
        policy = parse_policy(policy_dict)
        assert policy.confidence_rules.click_only == 0.6
        assert policy.confidence_rules.two_deterministic == 1.0

    def test_tie_breakers_preserve_order(self, policy_dict):
        policy_dict["tie_breakers"] = ["higher_revenue", "latest_event_time", "made_up_rule"]
        policy = parse_policy(policy_dict)
        assert policy.tie_breakers == ("higher_revenue", "latest_event_time", "made_up_rule")

    def test_policy_is_immutable(self, policy):
        with pytest.raises(Exception):
            policy.name = "Changed"

    def test_malformed_yaml(self):
        with pytest.raises(PolicyValidationError) as exc_info:
            parse_policy("name: [unclosed")
        assert str(exc_info.value).startswith("Invalid YAML policy")
        assert exc_info.value.problems

    def test_missing_windows_rejected(self, policy_dict):
        del policy_dict["windows"]
        with pytest.raises(PolicyValidationError) as exc_info:
            parse_policy(policy_dict)
        assert "Policy must have windows configuration" in exc_info.value.problems

    def test_missing_name_rejected(self):
        with pytest.raises(PolicyValidationError):
            parse_policy("attribution_mode: paid_last")

    def test_scalar_document_rejected(self):
        with pytest.raises(PolicyValidationError) as exc_info:
            parse_policy("just a string")
        assert exc_info.value.problems == ["Policy document must be a mapping"]


class TestPresets:
    """Test built-in policy presets."""

    def test_preset_keys(self):
        assert set(POLICY_PRESETS) == {
            "paid_last_roofing",
            "first_touch_pi_law",
            "dental_equal_weight",
            "auto_call_first",
        }

    @pytest.mark.parametrize("key", sorted(POLICY_PRESETS))
    def test_presets_parse(self, key):
        policy = parse_policy(POLICY_PRESETS[key])
        assert policy.name
        assert policy.tie_breakers

    def test_preset_modes(self):
        modes = {key: parse_policy(doc).attribution_mode for key, doc in POLICY_PRESETS.items()}
        assert modes["paid_last_roofing"] == AttributionMode.PAID_LAST
        assert modes["first_touch_pi_law"] == AttributionMode.FIRST_TOUCH
        assert modes["dental_equal_weight"] == AttributionMode.EQUAL_WEIGHT
        assert modes["auto_call_first"] == AttributionMode.CALL_FIRST
