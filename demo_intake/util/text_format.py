"""
Text formatting helpers shared by the report PDF and the report email.
"""

from __future__ import annotations

import re
from typing import Any, Optional


def numbered_bullets(items: list[str]) -> str:
    cleaned = [i.strip() for i in items if i and i.strip()]
    if not cleaned:
        return ""
    return "\n".join(f"{idx}. {val}" for idx, val in enumerate(cleaned, start=1))


def format_duration(seconds: Optional[int]) -> str:
    """
    Format a duration as m:ss ("7:05"). Absent or non-positive values give "".
    """
    if not seconds or seconds <= 0:
        return ""
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}"


def slugify(value: str, fallback: str = "patient") -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or fallback


def perception_to_text(value: Any) -> str:
    """
    Flatten the provider's perception analysis into readable text.

    The provider sends either a plain string or an object with
    appearance / behavior / emotional_states / screen_activities.
    """
    if isinstance(value, str):
        return value.strip()
    if not isinstance(value, dict):
        return ""

    lines: list[str] = []
    for key, label in (("appearance", "Appearance"), ("behavior", "Behavior")):
        text = value.get(key)
        if isinstance(text, str) and text.strip():
            lines.append(f"{label}: {text.strip()}")
    for key, label in (("emotional_states", "Emotional states"), ("screen_activities", "Screen activity")):
        items = value.get(key)
        if isinstance(items, list):
            cleaned = [str(i).strip() for i in items if str(i).strip()]
            if cleaned:
                lines.append(f"{label}: {', '.join(cleaned)}")
    # Free-form analyses sometimes arrive under a single key.
    for key in ("analysis", "summary", "text"):
        text = value.get(key)
        if isinstance(text, str) and text.strip():
            lines.append(text.strip())
    return "\n".join(lines)
