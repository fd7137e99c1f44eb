from __future__ import annotations

import ipaddress
from datetime import datetime, timezone

from app.ipverify.errors import ValidationError


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are timezone=False)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_identity(raw: str | None) -> str:
    """Canonical string form of an IP address ("::FFFF:1.2.3.4" and "1.2.3.4" stay distinct)."""
    value = (raw or "").strip()
    if not value:
        raise ValidationError("IP address is required")
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        raise ValidationError(f"Invalid IP address: {value!r}") from None


def parse_timestamp(raw: str | None) -> datetime | None:
    """ISO-8601 input -> naive UTC. Empty input means "now" to the caller."""
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"timestamp must be ISO-8601, got {raw!r}") from None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def isoformat(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None
