from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from demo_intake.container import Services
from demo_intake.schemas.session import SessionStatus, messages_from_raw
from demo_intake.schemas.tavus import (
    CONVERSATION_STATUS_ENDED,
    ENDED_EVENTS,
    EVENT_PERCEPTION_ANALYSIS,
    EVENT_SYSTEM_SHUTDOWN,
    EVENT_TRANSCRIPTION_READY,
    STARTED_EVENTS,
    TavusWebhookEvent,
)
from demo_intake.services.email_service import is_plausible_email
from demo_intake.services.orchestrator import AbortReason, IntakeReportResult
from demo_intake.services.rq_service import schedule_poll
from demo_intake.services.tavus_service import UpstreamFetchError
from demo_intake.util.text_format import perception_to_text

logger = logging.getLogger(__name__)

NO_TRANSCRIPT_YET = "No transcript available yet"


class CompletionError(Exception):
    """Request or precondition problem surfaced to the client as {error} with a 4xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class EventOutcome:
    status: str  # processed|ignored
    detail: str = ""
    report: Optional[IntakeReportResult] = None


@dataclass(frozen=True)
class PollOutcome:
    action: str
    reschedule: bool
    report: Optional[IntakeReportResult] = None


def _start_polling(services: Services, session_id: str) -> None:
    try:
        schedule_poll(services.queue, session_id, delay_seconds=services.settings.POLL_INTERVAL_SECONDS, attempt=1)
    except Exception as e:  # noqa: BLE001
        # Webhooks and the client call still cover completion without the poller.
        logger.warning("Failed to schedule conversation polling. session_id=%s err=%s", session_id, e)


def complete_session(services: Services, session_id: str) -> dict[str, Any]:
    """
    Client-initiated completion (page exit). Safe to call repeatedly and before the
    transcript exists. Raises CompletionError for 400/404 cases.
    """
    if not session_id or not str(session_id).strip():
        raise CompletionError(400, "Session ID required")

    session = services.store.get(session_id)
    if session is None:
        raise CompletionError(404, "Session not found")
    if not (session.conversation_id or "").strip():
        raise CompletionError(400, "No conversation started")

    services.store.transition_status(session_id, SessionStatus.COMPLETED)
    result = services.orchestrator.generate_report(session_id)

    if result.abort_reason == AbortReason.NO_TRANSCRIPT:
        logger.info("Transcript not ready at client completion; polling will retry. session_id=%s", session_id)
        _start_polling(services, session_id)
        return {"success": True, "message": NO_TRANSCRIPT_YET}
    return result.to_response()


def save_intake_details(
    services: Services,
    session_id: str,
    *,
    prospect_name: Optional[str],
    report_recipient: Optional[str],
) -> dict[str, Any]:
    if not session_id or not str(session_id).strip():
        raise CompletionError(400, "Session ID is required")

    session = services.store.get(session_id)
    if session is None:
        raise CompletionError(404, "Session not found")
    # Pending or active only; the form can land slightly after the call starts.
    if session.status in (SessionStatus.COMPLETED, SessionStatus.EXPIRED):
        raise CompletionError(400, "Session has already ended")
    if report_recipient and report_recipient.strip() and not is_plausible_email(report_recipient):
        raise CompletionError(400, "Invalid report recipient email")

    services.store.save_intake_details(session_id, prospect_name=prospect_name, report_recipient=report_recipient)
    logger.info("Saved intake details. session_id=%s has_recipient=%s", session_id, bool(report_recipient))
    return {"success": True}


def handle_tavus_event(services: Services, event: TavusWebhookEvent) -> EventOutcome:
    """
    Apply one provider event to its session.

    ended/shutdown        -> status completed (no report)
    transcription_ready   -> persist inline transcript, run the report
    started/replica_joined-> pending to active, start polling
    perception_analysis   -> merge into analysis_data
    anything else         -> acknowledged and ignored
    """
    store = services.store
    session = store.find_by_conversation_id(event.conversation_id)
    if session is None:
        logger.warning(
            "Webhook for unknown conversation. conversation_id=%s event_type=%s",
            event.conversation_id,
            event.event_type,
        )
        return EventOutcome(status="ignored", detail="unknown_conversation")

    details = event.details()
    event_type = event.event_type

    if event_type in ENDED_EVENTS:
        store.transition_status(session.id, SessionStatus.COMPLETED)
        if event_type == EVENT_SYSTEM_SHUTDOWN:
            reason = details.get("shutdown_reason") or details.get("reason")
            meta: dict[str, Any] = {"system_shutdown": {"timestamp": event.timestamp, "reason": reason}}
            if reason:
                meta["shutdown_reason"] = reason
            store.merge_analysis_data(session.id, meta)
        return EventOutcome(status="processed", detail="completed")

    if event_type == EVENT_TRANSCRIPTION_READY:
        inline = messages_from_raw(details.get("transcript"))
        if inline:
            store.save_transcript(session.id, inline)
            logger.info("Saved inline transcript. session_id=%s messages=%d", session.id, len(inline))
        result = services.orchestrator.generate_report(session.id)
        logger.info(
            "Report attempt from webhook. session_id=%s success=%s state=%s error=%s",
            session.id,
            result.success,
            result.state.value,
            result.error,
        )
        return EventOutcome(status="processed", detail="report_attempted", report=result)

    if event_type in STARTED_EVENTS:
        if store.transition_status(session.id, SessionStatus.ACTIVE):
            _start_polling(services, session.id)
        return EventOutcome(status="processed", detail="active")

    if event_type == EVENT_PERCEPTION_ANALYSIS:
        text = perception_to_text(details.get("analysis") or details.get("perception_analysis"))
        if not text:
            return EventOutcome(status="ignored", detail="empty_perception_analysis")
        store.merge_analysis_data(session.id, {"perception_analysis": text})
        return EventOutcome(status="processed", detail="perception_saved")

    logger.info("Ignoring webhook event. event_type=%s session_id=%s", event_type, session.id)
    return EventOutcome(status="ignored", detail=f"unhandled_event:{event_type}")


def _should_retry(result: IntakeReportResult) -> bool:
    if result.success:
        return False
    if result.abort_reason is not None:
        return result.abort_reason in (AbortReason.NO_TRANSCRIPT, AbortReason.DELIVERY_IN_PROGRESS)
    # Permanent send refusals, and a sent-but-unrecorded email, are not retried.
    return result.retryable


def poll_once(services: Services, session_id: str) -> PollOutcome:
    """
    One polling cycle. Active sessions are checked against the provider; a completed
    session whose report has not gone out yet gets another report attempt.
    """
    store = services.store
    session = store.get(session_id)
    if session is None:
        return PollOutcome(action="session_missing", reschedule=False)
    if session.report_sent_at:
        return PollOutcome(action="report_already_sent", reschedule=False)
    if session.status == SessionStatus.EXPIRED:
        return PollOutcome(action="expired", reschedule=False)

    if session.status in (SessionStatus.PENDING, SessionStatus.ACTIVE):
        if not (session.conversation_id or "").strip():
            return PollOutcome(action="waiting_for_conversation", reschedule=True)
        try:
            status = services.tavus.get_conversation_status(session.conversation_id)
        except UpstreamFetchError as e:
            logger.warning("Status poll failed. session_id=%s err=%s", session_id, e)
            return PollOutcome(action="status_unavailable", reschedule=e.transient)
        if status != CONVERSATION_STATUS_ENDED:
            return PollOutcome(action="in_progress", reschedule=True)
        logger.info("Polling detected ended conversation. session_id=%s", session_id)
        store.transition_status(session_id, SessionStatus.COMPLETED)

    result = services.orchestrator.generate_report(session_id)
    return PollOutcome(action="report_attempted", reschedule=_should_retry(result), report=result)
