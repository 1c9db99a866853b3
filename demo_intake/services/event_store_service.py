from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from redis import Redis

from demo_intake.util.time import now_iso


@dataclass(frozen=True)
class StoredEvent:
    event_id: str
    source: str
    event_type: str
    external_id: str
    payload: dict[str, Any]
    received_at: str
    status: str
    last_error: str
    detail: str = ""


def new_event_id() -> str:
    return str(uuid4())


class EventStore:
    """Log of inbound webhook deliveries, kept for debugging with a TTL."""

    def __init__(self, redis: Redis, *, ttl_seconds: int) -> None:
        self._r = redis
        self._ttl = ttl_seconds

    def store_incoming_event(
        self,
        *,
        event_id: str,
        source: str,
        event_type: str,
        external_id: str,
        payload: dict[str, Any],
    ) -> None:
        key = f"event:{event_id}"
        self._r.hset(
            key,
            mapping={
                "id": event_id,
                "source": source,
                "event_type": event_type,
                "external_id": external_id,
                "payload_json": json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str),
                "received_at": now_iso(),
                "status": "received",
                "last_error": "",
            },
        )
        self._r.expire(key, self._ttl)

    def set_event_status(self, event_id: str, status: str, *, last_error: str = "", detail: str = "") -> None:
        mapping: dict[str, str] = {"status": status}
        if last_error:
            mapping["last_error"] = last_error
        if detail:
            mapping["detail"] = detail
        self._r.hset(f"event:{event_id}", mapping=mapping)

    def load_event(self, event_id: str) -> Optional[StoredEvent]:
        data = self._r.hgetall(f"event:{event_id}")
        if not data:
            return None
        payload_json = data.get("payload_json") or "{}"
        try:
            payload = json.loads(payload_json)
        except Exception:  # noqa: BLE001
            payload = {"_unparseable_payload_json": payload_json}
        return StoredEvent(
            event_id=data.get("id", event_id),
            source=data.get("source", ""),
            event_type=data.get("event_type", ""),
            external_id=data.get("external_id", ""),
            payload=payload,
            received_at=data.get("received_at", ""),
            status=data.get("status", ""),
            last_error=data.get("last_error", "") or "",
            detail=data.get("detail", "") or "",
        )
