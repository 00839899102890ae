import re
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


# ----------------------------
# Helpers
# ----------------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; returns None for missing/garbage values.

    Naive timestamps are taken as UTC, a trailing 'Z' is accepted.
    """
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def minutes_after(dt: datetime, minutes: float) -> datetime:
    return dt + timedelta(minutes=minutes)


def norm_str(v: Any) -> str:
    return ("" if v is None else str(v)).strip()


def is_valid_email(email: Optional[str]) -> bool:
    # optional field: absent is fine
    if not email:
        return True
    email = str(email).strip()
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$", email) is not None


def is_valid_phone(phone: Optional[str]) -> bool:
    # digits with optional spaces, '+', '-'
    digits = re.sub(r"[^0-9]", "", norm_str(phone))
    return 7 <= len(digits) <= 15


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
