"""
Declarative matching/attribution policy.

A policy document (YAML or an already-parsed mapping) is validated and turned
into an immutable PolicyConfig, loaded once per match job.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple, Union

import yaml

from .errors import PolicyValidationError
from .schema import validate_policy_document


class AttributionMode(str, Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    PAID_LAST = "paid_last"
    CALL_FIRST = "call_first"
    EQUAL_WEIGHT = "equal_weight"


@dataclass(frozen=True)
class PassSettings:
    """One number per matching pass (days for windows, weight for weights)."""

    phone_exact: float
    email_exact: float
    click_chain: float
    fuzzy_match: float


@dataclass(frozen=True)
class ConfidenceRules:
    two_deterministic: float = 1.0
    one_deterministic: float = 0.9
    click_only: float = 0.7
    fuzzy_only: float = 0.5


@dataclass(frozen=True)
class PolicyConfig:
    name: str
    attribution_mode: AttributionMode
    windows: PassSettings
    weights: PassSettings
    tie_breakers: Tuple[str, ...] = ()
    confidence_rules: ConfidenceRules = field(default_factory=ConfidenceRules)


def _pass_settings(values: Dict[str, Any]) -> PassSettings:
    return PassSettings(
        phone_exact=float(values["phone_exact"]),
        email_exact=float(values["email_exact"]),
        click_chain=float(values["click_chain"]),
        fuzzy_match=float(values["fuzzy_match"]),
    )


def parse_policy(document: Union[str, Dict[str, Any]]) -> PolicyConfig:
    """
    Parse a policy document into a PolicyConfig.

    Args:
        document: YAML text or an already-parsed mapping

    Raises:
        PolicyValidationError: if the document is unreadable or malformed
    """
    if isinstance(document, str):
        try:
            data = yaml.safe_load(document)
        except yaml.YAMLError as e:
            raise PolicyValidationError(f"Invalid YAML policy: {e}", [str(e)]) from e
    else:
        data = document

    problems = validate_policy_document(data)
    if problems:
        raise PolicyValidationError(f"Invalid YAML policy: {problems[0]}", problems)

    defaults = ConfidenceRules()
    rules = data.get("confidence_rules") or {}
    return PolicyConfig(
        name=data["name"].strip(),
        attribution_mode=AttributionMode(data["attribution_mode"]),
        windows=_pass_settings(data["windows"]),
        weights=_pass_settings(data["weights"]),
        tie_breakers=tuple(data.get("tie_breakers") or ()),
        confidence_rules=ConfidenceRules(
            two_deterministic=float(rules.get("two_deterministic", defaults.two_deterministic)),
            one_deterministic=float(rules.get("one_deterministic", defaults.one_deterministic)),
            click_only=float(rules.get("click_only", defaults.click_only)),
            fuzzy_only=float(rules.get("fuzzy_only", defaults.fuzzy_only)),
        ),
    )


DEFAULT_POLICY_YAML = """
name: "Default Paid-Last"
attribution_mode: "paid_last"
windows:
  phone_exact: 30
  email_exact: 30
  click_chain: 7
  fuzzy_match: 1
weights:
  phone_exact: 1.0
  email_exact: 0.9
  click_chain: 0.7
  fuzzy_match: 0.5
tie_breakers:
  - "latest_event_time"
  - "longer_call_duration"
confidence_rules:
  two_deterministic: 1.0
  one_deterministic: 0.9
  click_only: 0.7
  fuzzy_only: 0.5
""".strip()


POLICY_PRESETS = {
    "paid_last_roofing": """
name: "Paid-Last Roofing Default"
attribution_mode: "paid_last"
windows:
  phone_exact: 30
  email_exact: 30
  click_chain: 7
  fuzzy_match: 1
weights:
  phone_exact: 1.0
  email_exact: 0.9
  click_chain: 0.7
  fuzzy_match: 0.5
tie_breakers:
  - "latest_event_time"
  - "longer_call_duration"
  - "higher_revenue"
confidence_rules:
  two_deterministic: 1.0
  one_deterministic: 0.9
  click_only: 0.7
  fuzzy_only: 0.5
""".strip(),
    "first_touch_pi_law": """
name: "First-Touch PI Law"
attribution_mode: "first_touch"
windows:
  phone_exact: 60
  email_exact: 60
  click_chain: 14
  fuzzy_match: 3
weights:
  phone_exact: 1.0
  email_exact: 0.95
  click_chain: 0.8
  fuzzy_match: 0.6
tie_breakers:
  - "earliest_event_time"
  - "form_over_call"
confidence_rules:
  two_deterministic: 1.0
  one_deterministic: 0.95
  click_only: 0.8
  fuzzy_only: 0.6
""".strip(),
    "dental_equal_weight": """
name: "Dental Equal Weight"
attribution_mode: "equal_weight"
windows:
  phone_exact: 14
  email_exact: 14
  click_chain: 3
  fuzzy_match: 1
weights:
  phone_exact: 1.0
  email_exact: 1.0
  click_chain: 0.8
  fuzzy_match: 0.4
tie_breakers:
  - "appointment_over_call"
  - "latest_event_time"
confidence_rules:
  two_deterministic: 1.0
  one_deterministic: 0.9
  click_only: 0.7
  fuzzy_only: 0.4
""".strip(),
    "auto_call_first": """
name: "Auto Call-First"
attribution_mode: "call_first"
windows:
  phone_exact: 21
  email_exact: 21
  click_chain: 5
  fuzzy_match: 1
weights:
  phone_exact: 1.0
  email_exact: 0.85
  click_chain: 0.75
  fuzzy_match: 0.5
tie_breakers:
  - "call_over_form"
  - "longer_call_duration"
  - "latest_event_time"
confidence_rules:
  two_deterministic: 1.0
  one_deterministic: 0.85
  click_only: 0.75
  fuzzy_only: 0.5
""".strip(),
}
