from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from demo_intake.util.time import now_iso

router = APIRouter()


@router.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True, "timestamp": now_iso()}


@router.get("/webhooks/tavus")
def tavus_webhook_health() -> dict[str, Any]:
    return {"status": "ok", "service": "tavus-webhook-handler", "timestamp": now_iso()}
