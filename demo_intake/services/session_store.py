from __future__ import annotations

import json
import logging
from typing import Any, Optional

from redis import Redis

from demo_intake.schemas.session import (
    Message,
    Session,
    SessionStatus,
    can_transition,
    messages_from_raw,
    messages_to_raw,
)
from demo_intake.services.idempotency_service import ClaimResult, release_report_claim, try_acquire_report_claim
from demo_intake.util.time import now_iso

logger = logging.getLogger(__name__)

ACTIVE_SESSIONS_KEY = "sessions:active"

_JSON_FIELDS = ("transcript", "analysis_data")
_INT_FIELDS = ("duration_seconds",)


class SessionStoreError(Exception):
    pass


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


def _conversation_key(conversation_id: str) -> str:
    return f"session_by_conversation:{conversation_id}"


def _to_hash(session: Session) -> dict[str, str]:
    data = session.model_dump(mode="json")
    out: dict[str, str] = {}
    for k, v in data.items():
        if v is None:
            continue
        if k in _JSON_FIELDS:
            out[k] = json.dumps(v, separators=(",", ":"), ensure_ascii=False)
        else:
            out[k] = str(v)
    return out


def _load_json(raw: str, default: Any, *, field: str, session_id: str) -> Any:
    try:
        return json.loads(raw)
    except Exception:  # noqa: BLE001
        logger.warning("Unparseable %s on session %s; treating as empty", field, session_id)
        return default


def _from_hash(data: dict[str, str]) -> Session:
    session_id = data.get("id", "")
    values: dict[str, Any] = {k: v for k, v in data.items() if v != ""}
    values["transcript"] = messages_from_raw(
        _load_json(data.get("transcript") or "[]", [], field="transcript", session_id=session_id)
    )
    analysis = _load_json(data.get("analysis_data") or "{}", {}, field="analysis_data", session_id=session_id)
    values["analysis_data"] = analysis if isinstance(analysis, dict) else {}
    for k in _INT_FIELDS:
        if k in values:
            try:
                values[k] = int(values[k])
            except ValueError:
                values.pop(k)
    return Session.model_validate(values)


class RedisSessionStore:
    """
    Session records kept as Redis hashes.

    Redis is the single serialization point between the completion triggers; the only
    conditional write is the report marker (HSETNX on report_sent_at).
    """

    def __init__(self, redis: Redis) -> None:
        self._r = redis

    def create(self, session: Session) -> None:
        self._r.hset(_session_key(session.id), mapping=_to_hash(session))
        if session.conversation_id:
            self._r.set(_conversation_key(session.conversation_id), session.id)
        if session.status == SessionStatus.ACTIVE:
            self._r.sadd(ACTIVE_SESSIONS_KEY, session.id)

    def get(self, session_id: str) -> Optional[Session]:
        data = self._r.hgetall(_session_key(session_id))
        if not data:
            return None
        return _from_hash(data)

    def find_by_conversation_id(self, conversation_id: str) -> Optional[Session]:
        if not conversation_id:
            return None
        session_id = self._r.get(_conversation_key(conversation_id))
        if not session_id:
            return None
        return self.get(session_id)

    def list_active_session_ids(self) -> list[str]:
        return sorted(self._r.smembers(ACTIVE_SESSIONS_KEY))

    def _require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionStoreError(f"Session not found: {session_id}")
        return session

    def transition_status(self, session_id: str, target: SessionStatus) -> bool:
        """
        Move a session forward in its lifecycle. Returns True if the status changed.

        Backward or sideways moves (e.g. completed -> active) are refused and logged.
        """
        session = self._require(session_id)
        if session.status == target:
            return False
        if not can_transition(session.status, target):
            logger.warning(
                "Refusing status change. session_id=%s current=%s target=%s",
                session_id,
                session.status.value,
                target.value,
            )
            return False

        mapping = {"status": target.value}
        if target == SessionStatus.COMPLETED and not session.completed_at:
            mapping["completed_at"] = now_iso()
        self._r.hset(_session_key(session_id), mapping=mapping)
        if target == SessionStatus.ACTIVE:
            self._r.sadd(ACTIVE_SESSIONS_KEY, session_id)
        else:
            self._r.srem(ACTIVE_SESSIONS_KEY, session_id)
        logger.info("Session status changed. session_id=%s %s -> %s", session_id, session.status.value, target.value)
        return True

    def save_transcript(
        self,
        session_id: str,
        transcript: list[Message],
        *,
        duration_seconds: Optional[int] = None,
    ) -> None:
        self._require(session_id)
        mapping = {"transcript": json.dumps(messages_to_raw(transcript), separators=(",", ":"), ensure_ascii=False)}
        if duration_seconds is not None and duration_seconds > 0:
            mapping["duration_seconds"] = str(duration_seconds)
        self._r.hset(_session_key(session_id), mapping=mapping)

    def merge_analysis_data(self, session_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Shallow-merge keys into the analysis_data blob, leaving other keys untouched.
        """
        session = self._require(session_id)
        merged = dict(session.analysis_data)
        merged.update(updates)
        self._r.hset(
            _session_key(session_id),
            mapping={"analysis_data": json.dumps(merged, separators=(",", ":"), ensure_ascii=False)},
        )
        return merged

    def record_report_sent(self, session_id: str, *, sent_at: str, recipient: str) -> bool:
        """
        Write the delivery marker only if it is not already set.

        Returns False when another invocation recorded a delivery first.
        """
        key = _session_key(session_id)
        if not self._r.exists(key):
            raise SessionStoreError(f"Session not found: {session_id}")
        if not self._r.hsetnx(key, "report_sent_at", sent_at):
            return False
        self._r.hset(key, mapping={"report_recipient": recipient})
        return True

    def try_claim_report(self, session_id: str, *, owner: str, ttl_seconds: int) -> ClaimResult:
        return try_acquire_report_claim(self._r, session_id=session_id, owner=owner, ttl_seconds=ttl_seconds)

    def release_report_claim(self, session_id: str, *, owner: str) -> None:
        release_report_claim(self._r, session_id=session_id, owner=owner)

    def save_intake_details(
        self,
        session_id: str,
        *,
        prospect_name: Optional[str],
        report_recipient: Optional[str],
    ) -> None:
        self._require(session_id)
        self._r.hset(
            _session_key(session_id),
            mapping={
                "prospect_name": (prospect_name or "").strip(),
                "report_recipient": (report_recipient or "").strip(),
            },
        )
