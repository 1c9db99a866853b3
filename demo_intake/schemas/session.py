from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant", "system"]
_ROLES = ("user", "assistant", "system")


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Forward-only lifecycle; completed and expired are terminal.
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.EXPIRED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Message(BaseModel):
    role: MessageRole
    content: str = Field(default="")
    timestamp: Optional[str] = Field(default=None)


class Session(BaseModel):
    id: str
    project_id: str = Field(default="")
    project_name: str = Field(default="")
    status: SessionStatus = Field(default=SessionStatus.PENDING)
    conversation_id: Optional[str] = Field(default=None)
    conversation_url: Optional[str] = Field(default=None)
    transcript: list[Message] = Field(default_factory=list)
    analysis_data: dict[str, Any] = Field(default_factory=dict)
    prospect_name: Optional[str] = Field(default=None)
    report_recipient: Optional[str] = Field(default=None)
    report_sent_at: Optional[str] = Field(default=None)
    duration_seconds: Optional[int] = Field(default=None)
    completed_at: Optional[str] = Field(default=None)
    created_at: Optional[str] = Field(default=None)

    @property
    def has_transcript(self) -> bool:
        return len(self.transcript) > 0

    @property
    def report_sent(self) -> bool:
        return bool(self.report_sent_at)


def messages_from_raw(raw: Any) -> list[Message]:
    """
    Map provider transcript entries ({role, content|message, timestamp?}) onto Message.

    Order is preserved. Entries that are not objects or carry an unknown role are dropped.
    """
    if not isinstance(raw, list):
        return []
    out: list[Message] = []
    for idx, item in enumerate(raw):
        if isinstance(item, Message):
            out.append(item)
            continue
        if not isinstance(item, dict):
            logger.warning("Dropping transcript entry %d: not an object", idx)
            continue
        role = str(item.get("role") or "").strip().lower()
        if role not in _ROLES:
            logger.warning("Dropping transcript entry %d: unknown role %r", idx, item.get("role"))
            continue
        text = item.get("content")
        if text is None:
            text = item.get("message")
        ts = item.get("timestamp")
        out.append(
            Message(
                role=role,  # type: ignore[arg-type]
                content=str(text) if text is not None else "",
                timestamp=str(ts) if ts else None,
            )
        )
    return out


def messages_to_raw(messages: list[Message]) -> list[dict[str, Any]]:
    return [m.model_dump(exclude_none=True) for m in messages]
