"""Recency windows and ISO-8601 timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .errors import ValidationError

WINDOWS: Dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def window_duration(window: str) -> timedelta:
    """Map a window literal (``24h``, ``7d``, ``30d``) to its duration.

    Raises:
        ValidationError: If ``window`` is not a supported literal.
    """
    try:
        return WINDOWS[window]
    except KeyError as exc:
        supported = ", ".join(WINDOWS)
        raise ValidationError(f"Invalid window {window!r}: expected one of {supported}.") from exc


def compute_since(window: str, now: Optional[datetime] = None) -> datetime:
    """Return the lower bound ``now - window`` as a UTC datetime."""
    reference = now or utc_now()
    return reference.astimezone(timezone.utc) - window_duration(window)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with a ``Z`` suffix and second precision."""
    utc_value = value.astimezone(timezone.utc).replace(microsecond=0)
    return utc_value.isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub ISO-8601 timestamps into timezone-aware datetimes."""
    if not value:
        return None

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
