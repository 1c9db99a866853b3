from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from demo_intake.api.deps import get_services
from demo_intake.container import Services
from demo_intake.services.completion_service import CompletionError, complete_session, save_intake_details

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/demo")


class CompleteRequest(BaseModel):
    session_id: Optional[str] = Field(default=None)


class IntakeRequest(BaseModel):
    session_id: Optional[str] = Field(default=None)
    prospect_name: Optional[str] = Field(default=None)
    report_recipient: Optional[str] = Field(default=None)


@router.post("/complete", response_model=None)
async def complete_demo(request: Request, services: Services = Depends(get_services)) -> Any:
    # Page-exit beacons post text/plain, so the body is parsed by hand.
    raw = await request.body()
    try:
        payload = json.loads(raw.decode("utf-8") if raw else "{}")
        body = CompleteRequest.model_validate(payload if isinstance(payload, dict) else {})
    except Exception:  # noqa: BLE001
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    try:
        return await run_in_threadpool(complete_session, services, body.session_id or "")
    except CompletionError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception:  # noqa: BLE001
        logger.exception("Demo completion failed. session_id=%s", body.session_id)
        return JSONResponse(status_code=500, content={"error": "Failed to complete demo"})


@router.post("/intake", response_model=None)
def save_intake(body: IntakeRequest, services: Services = Depends(get_services)) -> Any:
    try:
        return save_intake_details(
            services,
            body.session_id or "",
            prospect_name=body.prospect_name,
            report_recipient=body.report_recipient,
        )
    except CompletionError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception:  # noqa: BLE001
        logger.exception("Saving intake details failed. session_id=%s", body.session_id)
        return JSONResponse(status_code=500, content={"error": "Failed to save intake information"})
