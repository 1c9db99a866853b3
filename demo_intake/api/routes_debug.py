from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from demo_intake.api.deps import get_services
from demo_intake.container import Services

router = APIRouter(prefix="/debug")


def _require_debug(services: Services = Depends(get_services)) -> Services:
    if not services.settings.ALLOW_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found")
    return services


@router.get("/ping")
def ping(_: Services = Depends(_require_debug)) -> dict:
    return {"ok": True}


@router.get("/info")
def info(services: Services = Depends(_require_debug)) -> dict[str, Any]:
    settings = services.settings
    # No secrets here, only whether they are set.
    return {
        "env": settings.ENV,
        "redis_url": settings.REDIS_URL,
        "rq_queue_name": settings.RQ_QUEUE_NAME,
        "llm_provider": settings.LLM_PROVIDER,
        "llm_model": settings.active_llm_model(),
        "tavus_configured": bool(settings.TAVUS_API_KEY),
        "email_configured": bool(settings.RESEND_API_KEY),
        "slack_configured": bool(settings.SLACK_WEBHOOK_URL),
        "poll_interval_seconds": settings.POLL_INTERVAL_SECONDS,
        "active_sessions": len(services.store.list_active_session_ids()),
    }


@router.get("/sessions/{session_id}")
def debug_session(session_id: str, services: Services = Depends(_require_debug)) -> dict[str, Any]:
    session = services.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    data = session.model_dump(mode="json")
    # Transcripts are long; the count is enough here.
    data["transcript"] = len(session.transcript)
    return data


@router.get("/events/{event_id}")
def debug_event(event_id: str, services: Services = Depends(_require_debug)) -> dict[str, Any]:
    ev = services.events.load_event(event_id)
    if ev is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return {
        "id": ev.event_id,
        "source": ev.source,
        "event_type": ev.event_type,
        "external_id": ev.external_id,
        "received_at": ev.received_at,
        "status": ev.status,
        "last_error": ev.last_error,
        "detail": ev.detail,
        "payload": ev.payload,
    }
