import re
from datetime import datetime, timezone


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


def parse_timestamp(value: str) -> datetime:
    """
    ISO-8601 text to a naive datetime.

    Offset-bearing values are converted to UTC first; naive values are
    taken as they are.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def phone_digits(phone: str | None) -> str:
    """Digits only; '+1 (555) 010-2000' -> '15550102000'."""
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


PAID_MEDIUMS = {"cpc", "paid", "ppc"}
SOCIAL_MEDIUMS = {"social", "facebook", "linkedin"}


def is_paid_medium(medium: str | None) -> bool:
    return bool(medium) and medium.lower() in PAID_MEDIUMS


def channel_for_medium(medium: str | None) -> str:
    """Map a UTM medium onto a reporting channel."""
    if not medium:
        return "direct"
    m = medium.lower()
    if m in PAID_MEDIUMS:
        return "paid_search"
    if m in SOCIAL_MEDIUMS:
        return "social"
    if m == "email":
        return "email"
    if m == "organic":
        return "organic_search"
    return "other"
