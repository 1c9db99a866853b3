from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as sent by the conversation provider.

    Accepts a trailing 'Z', a space instead of 'T', and naive values (assumed UTC).
    Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def elapsed_whole_seconds(start: Any, end: Any) -> Optional[int]:
    """
    Whole seconds between two timestamps, or None.

    Zero and negative spans (clock skew, out-of-order events) are discarded, not clamped.
    """
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return None
    seconds = round((end_dt - start_dt).total_seconds())
    if seconds <= 0:
        return None
    return int(seconds)


def format_report_date(value: Any = None) -> str:
    # "October 19, 2026"
    dt = parse_timestamp(value) or now_utc()
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"
