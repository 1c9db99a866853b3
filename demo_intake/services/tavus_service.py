from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from demo_intake.schemas.session import messages_from_raw
from demo_intake.schemas.tavus import (
    EVENT_PERCEPTION_ANALYSIS,
    EVENT_REPLICA_JOINED,
    EVENT_SYSTEM_SHUTDOWN,
    EVENT_TRANSCRIPTION_READY,
    VerboseConversation,
)
from demo_intake.util.text_format import perception_to_text

logger = logging.getLogger(__name__)


class UpstreamFetchError(Exception):
    """The conversation provider could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


def _find_event(events: Any, event_type: str) -> Optional[dict[str, Any]]:
    if not isinstance(events, list):
        return None
    for ev in events:
        if isinstance(ev, dict) and ev.get("event_type") == event_type:
            return ev
    return None


def _event_props(ev: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not ev:
        return {}
    props = ev.get("properties")
    return props if isinstance(props, dict) else {}


def _first_str(*values: Any) -> Optional[str]:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def parse_verbose_conversation(conversation_id: str, body: dict[str, Any]) -> VerboseConversation:
    """
    Normalize a verbose conversation body.

    The provider has shipped two shapes: flat keys ("transcript", "system.shutdown", ...)
    and an "events" list whose entries carry the same data under "properties".
    """
    events = body.get("events")
    transcript_ev = _find_event(events, EVENT_TRANSCRIPTION_READY)
    shutdown_ev = _find_event(events, EVENT_SYSTEM_SHUTDOWN)
    joined_ev = _find_event(events, EVENT_REPLICA_JOINED)
    perception_ev = _find_event(events, EVENT_PERCEPTION_ANALYSIS)

    transcript = None
    if "transcript" in body:
        transcript = messages_from_raw(body.get("transcript"))
    elif "transcript" in _event_props(transcript_ev):
        transcript = messages_from_raw(_event_props(transcript_ev).get("transcript"))

    shutdown_key = body.get(EVENT_SYSTEM_SHUTDOWN)
    shutdown_obj = shutdown_key if isinstance(shutdown_key, dict) else {}
    shutdown_at = _first_str(
        shutdown_obj.get("timestamp"),
        shutdown_key if isinstance(shutdown_key, str) else None,
        (shutdown_ev or {}).get("timestamp"),
        (shutdown_ev or {}).get("created_at"),
    )
    shutdown_reason = _first_str(
        body.get("shutdown_reason"),
        shutdown_obj.get("reason"),
        _event_props(shutdown_ev).get("shutdown_reason"),
        _event_props(shutdown_ev).get("reason"),
    )

    joined_key = body.get(EVENT_REPLICA_JOINED)
    replica_joined_at = _first_str(
        joined_key if isinstance(joined_key, str) else None,
        joined_key.get("timestamp") if isinstance(joined_key, dict) else None,
        (joined_ev or {}).get("timestamp"),
        (joined_ev or {}).get("created_at"),
    )

    perception_raw = body.get(EVENT_PERCEPTION_ANALYSIS)
    if perception_raw is None:
        props = _event_props(perception_ev)
        perception_raw = props.get("analysis", props or None)
    perception = perception_to_text(perception_raw) or None

    return VerboseConversation(
        conversation_id=conversation_id,
        status=_first_str(body.get("status")),
        transcript=transcript,
        shutdown_reason=shutdown_reason,
        perception_analysis=perception,
        replica_joined_at=replica_joined_at,
        shutdown_at=shutdown_at,
    )


class TavusClient:
    """Read-only client for the conversation provider."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://tavusapi.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def get_conversation(self, conversation_id: str, *, verbose: bool = False) -> dict[str, Any]:
        if not conversation_id or not conversation_id.strip():
            raise ValueError("conversation_id must be a non-empty string")
        if not self._api_key:
            raise UpstreamFetchError("TAVUS_API_KEY not configured")

        url = f"{self._base_url}/v2/conversations/{conversation_id}"
        params = {"verbose": "true"} if verbose else None
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.get(url, headers=self._headers(), params=params)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TransportError as e:
            raise UpstreamFetchError(f"Tavus request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise UpstreamFetchError(f"Tavus HTTP {code}", status_code=code) from e
        except ValueError as e:
            raise UpstreamFetchError(f"Tavus returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise UpstreamFetchError(f"Unexpected Tavus response shape: {type(body).__name__}")
        return body

    def fetch_verbose_conversation(self, conversation_id: str) -> VerboseConversation:
        """
        Read transcript and shutdown/perception metadata for one conversation.

        A body without a transcript is a valid result (transcript=None); transport and
        HTTP failures raise UpstreamFetchError.
        """
        logger.info("Fetching verbose conversation. conversation_id=%s", conversation_id)
        body = self.get_conversation(conversation_id, verbose=True)
        conv = parse_verbose_conversation(conversation_id, body)
        logger.info(
            "Verbose conversation fetched. conversation_id=%s status=%s transcript_len=%s duration=%s",
            conversation_id,
            conv.status,
            len(conv.transcript) if conv.transcript is not None else None,
            conv.duration_seconds,
        )
        return conv

    def get_conversation_status(self, conversation_id: str) -> str:
        body = self.get_conversation(conversation_id, verbose=False)
        return str(body.get("status") or "")
