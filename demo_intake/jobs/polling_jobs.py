from __future__ import annotations

import logging
from typing import Any, Optional

from demo_intake.container import Services, build_services
from demo_intake.services.completion_service import poll_once
from demo_intake.services.rq_service import schedule_poll
from demo_intake.settings import get_settings

logger = logging.getLogger(__name__)

_services: Optional[Services] = None


def get_job_services() -> Services:
    """Services for this worker process, built on first use."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def poll_conversation(session_id: str, attempt: int = 1) -> dict[str, Any]:
    """
    RQ entrypoint for the polling trigger. Runs one cycle and schedules the next
    one at the fixed interval until the report is out or attempts run out.
    """
    services = get_job_services()
    settings = services.settings
    outcome = poll_once(services, session_id)
    logger.info(
        "Poll cycle done. session_id=%s attempt=%d action=%s reschedule=%s",
        session_id,
        attempt,
        outcome.action,
        outcome.reschedule,
    )

    scheduled = False
    if outcome.reschedule:
        if attempt < settings.POLL_MAX_ATTEMPTS:
            schedule_poll(
                services.queue,
                session_id,
                delay_seconds=settings.POLL_INTERVAL_SECONDS,
                attempt=attempt + 1,
            )
            scheduled = True
        else:
            logger.warning("Giving up polling after %d attempts. session_id=%s", attempt, session_id)

    result: dict[str, Any] = {
        "session_id": session_id,
        "attempt": attempt,
        "action": outcome.action,
        "next_scheduled": scheduled,
    }
    if outcome.report is not None:
        result["report"] = outcome.report.to_response()
    return result
