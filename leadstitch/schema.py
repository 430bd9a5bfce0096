from datetime import datetime
from typing import Any, Dict, List

ATTRIBUTION_MODES = ["paid_last", "first_touch", "last_touch", "call_first", "equal_weight"]
PASS_KEYS = ["phone_exact", "email_exact", "click_chain", "fuzzy_match"]
CONFIDENCE_KEYS = ["two_deterministic", "one_deterministic", "click_only", "fuzzy_only"]
SOURCE_TYPES = ["calls", "forms", "appts", "invoices", "chats"]

EVENT_STR_FIELDS = [
    "name",
    "phone",
    "email",
    "gclid",
    "client_id",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "landing_page",
    "location",
    "external_id",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _check_pass_map(data: Dict[str, Any], field: str, errors: List[str]) -> None:
    value = data.get(field)
    if not isinstance(value, dict):
        errors.append(f"Policy must have {field} configuration")
        return
    for key in PASS_KEYS:
        if key not in value:
            errors.append(f"{field}.{key} is required")
        elif not _is_number(value[key]) or value[key] < 0:
            errors.append(f"{field}.{key} must be a non-negative number")


def validate_policy_document(data: Any) -> List[str]:
    """
    Returns a list of problems with a parsed policy document.
    Empty list means the document can be turned into a PolicyConfig.
    Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return ["Policy document must be a mapping"]

    errors: List[str] = []

    if not _is_non_empty_str(data.get("name")):
        errors.append("Policy must have a name")

    if data.get("attribution_mode") not in ATTRIBUTION_MODES:
        errors.append(
            "Policy must have a valid attribution_mode "
            f"(one of: {', '.join(ATTRIBUTION_MODES)})"
        )

    _check_pass_map(data, "windows", errors)
    _check_pass_map(data, "weights", errors)

    tie_breakers = data.get("tie_breakers")
    if tie_breakers is not None:
        if not isinstance(tie_breakers, list) or not all(isinstance(t, str) for t in tie_breakers):
            errors.append("tie_breakers must be a list of rule names")

    rules = data.get("confidence_rules")
    if rules is not None:
        if not isinstance(rules, dict):
            errors.append("confidence_rules must be a mapping")
        else:
            for key in CONFIDENCE_KEYS:
                if key in rules and (not _is_number(rules[key]) or not 0 <= rules[key] <= 1):
                    errors.append(f"confidence_rules.{key} must be between 0 and 1")

    return errors


def validate_event_record(data: Dict[str, Any]) -> List[str]:
    """
    Shape check for an already-normalized event record at the load boundary.
    Field contents (phone cleaning etc.) are trusted, not re-validated.
    """
    errors: List[str] = []

    if data.get("source_type") not in SOURCE_TYPES:
        errors.append(f"Field 'source_type' must be one of: {', '.join(SOURCE_TYPES)}")

    occurred_at = data.get("occurred_at")
    if not _is_non_empty_str(occurred_at):
        errors.append("Missing required field: occurred_at")
    else:
        try:
            datetime.fromisoformat(occurred_at)
        except ValueError:
            errors.append("Field 'occurred_at' must be an ISO-8601 timestamp")

    for f in EVENT_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in ("duration_sec", "amount"):
        if data.get(f) is not None and not _is_number(data[f]):
            errors.append(f"Field '{f}' must be a number if provided")

    return errors
