from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from demo_intake.api.deps import get_services
from demo_intake.container import Services
from demo_intake.schemas.tavus import TavusWebhookEvent
from demo_intake.services.completion_service import handle_tavus_event
from demo_intake.services.event_store_service import new_event_id

logger = logging.getLogger(__name__)
router = APIRouter()

PROCESSING_ERROR = "Processing error"


def _mark_failed(services: Services, event_id: str, error: str) -> None:
    try:
        services.events.set_event_status(event_id, "failed", last_error=error[:500])
    except Exception:  # noqa: BLE001
        logger.exception("Could not mark webhook event failed. event_id=%s", event_id)


@router.post("/webhooks/tavus")
async def tavus_webhook(request: Request, services: Services = Depends(get_services)) -> dict[str, Any]:
    """
    Always answers 200 so the provider does not retry; failures are logged and
    recorded on the event, never surfaced beyond a generic error string.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw.decode("utf-8") if raw else "{}")
        if not isinstance(payload, dict):
            raise ValueError(f"Webhook body is a {type(payload).__name__}, not an object")
        event = TavusWebhookEvent.model_validate(payload)
    except Exception as e:  # noqa: BLE001
        logger.warning("Unparseable Tavus webhook: %s", e)
        return {"received": True, "error": PROCESSING_ERROR}

    logger.info("Tavus webhook received. event_type=%s conversation_id=%s", event.event_type, event.conversation_id)
    event_id = new_event_id()
    try:
        services.events.store_incoming_event(
            event_id=event_id,
            source="tavus",
            event_type=event.event_type,
            external_id=event.conversation_id,
            payload=payload,
        )
        # The report path makes blocking HTTP calls; keep it off the event loop.
        outcome = await run_in_threadpool(handle_tavus_event, services, event)
        services.events.set_event_status(event_id, outcome.status, detail=outcome.detail)
    except Exception as e:  # noqa: BLE001
        logger.exception("Tavus webhook processing failed. event_id=%s", event_id)
        _mark_failed(services, event_id, str(e))
        return {"received": True, "error": PROCESSING_ERROR}

    return {"received": True}
