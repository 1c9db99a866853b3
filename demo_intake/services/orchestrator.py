from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from demo_intake.schemas.intake import IntakeAnalysis
from demo_intake.schemas.session import Message, Session
from demo_intake.schemas.tavus import VerboseConversation
from demo_intake.services.analyzer_service import TranscriptAnalyzer, resolve_patient_name
from demo_intake.services.email_service import DeliveryResult, EmailDispatcher
from demo_intake.services.report_service import ReportRenderer
from demo_intake.services.session_store import RedisSessionStore
from demo_intake.services.slack_service import SlackNotifier
from demo_intake.services.tavus_service import TavusClient, UpstreamFetchError
from demo_intake.util.text_format import perception_to_text
from demo_intake.util.time import format_report_date, now_utc

logger = logging.getLogger(__name__)


class ReportState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    RENDERING = "rendering"
    SENDING = "sending"
    RECORDED = "recorded"
    ABORTED = "aborted"
    FAILED = "failed"


class AbortReason(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    NO_CONVERSATION = "no_conversation"
    NO_RECIPIENT = "no_recipient"
    ALREADY_SENT = "already_sent"
    DELIVERY_IN_PROGRESS = "delivery_in_progress"
    NO_TRANSCRIPT = "no_transcript"


@dataclass(frozen=True)
class IntakeReportResult:
    success: bool
    state: ReportState
    pdf_generated: bool = False
    email_sent: bool = False
    error: Optional[str] = None
    message: Optional[str] = None
    abort_reason: Optional[AbortReason] = None
    failed_step: Optional[str] = None
    retryable: bool = True
    patient_name: Optional[str] = None
    urgency_level: Optional[str] = None
    chief_complaint: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.state in (ReportState.FAILED, ReportState.RECORDED):
            out["pdfGenerated"] = self.pdf_generated
            out["emailSent"] = self.email_sent
        if self.patient_name:
            out["patientName"] = self.patient_name
        if self.urgency_level:
            out["urgencyLevel"] = self.urgency_level
        if self.error:
            out["error"] = self.error
        if self.message:
            out["message"] = self.message
        return out


def persist_fetched_conversation(store: RedisSessionStore, session_id: str, conv: VerboseConversation) -> None:
    """
    Save what a verbose fetch returned: transcript (if any), duration and the
    shutdown/perception metadata. Other analysis_data keys are left alone.
    """
    if conv.has_transcript:
        store.save_transcript(session_id, conv.transcript or [], duration_seconds=conv.duration_seconds)

    meta: dict[str, Any] = {}
    perception = perception_to_text(conv.perception_analysis)
    if perception:
        meta["perception_analysis"] = perception
    if conv.shutdown_reason:
        meta["shutdown_reason"] = conv.shutdown_reason
    if conv.shutdown_at:
        meta["system_shutdown"] = {"timestamp": conv.shutdown_at, "reason": conv.shutdown_reason}
    if meta:
        store.merge_analysis_data(session_id, meta)


def _has_spoken_turns(transcript: list[Message]) -> bool:
    return any(m.role != "system" for m in transcript)


def analysis_snapshot(analysis: IntakeAnalysis, *, analyzed_at: str) -> dict[str, Any]:
    return {
        "patient_name": analysis.patient_name,
        "chief_complaint": analysis.chief_complaint,
        "urgency_level": analysis.urgency_level,
        "symptoms_count": len(analysis.symptoms),
        "symptoms": list(analysis.symptoms),
        "analyzed_at": analyzed_at,
    }


class IntakeOrchestrator:
    """
    One report-generation attempt per call:

        idle -> fetching (transcript absent) -> analyzing -> rendering -> sending -> recorded

    Preconditions abort with no side effects. Step failures come back as a result
    with success=False; nothing raises out of generate_report().

    Duplicate delivery is guarded three ways: report_sent_at is checked up front and
    re-read just before dispatch, a short send lease (report_claim:{id}) keeps two
    concurrent invocations from both dispatching, and the marker itself is written
    with HSETNX. A lease that expires mid-send can still let a duplicate through.
    """

    def __init__(
        self,
        *,
        store: RedisSessionStore,
        tavus: TavusClient,
        analyzer: TranscriptAnalyzer,
        renderer: ReportRenderer,
        dispatcher: EmailDispatcher,
        notifier: Optional[SlackNotifier] = None,
        claim_ttl_seconds: int = 300,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._tavus = tavus
        self._analyzer = analyzer
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._claim_ttl = claim_ttl_seconds
        self._clock = clock

    def generate_report(self, session_id: str) -> IntakeReportResult:
        try:
            return self._run(session_id)
        except Exception as e:  # noqa: BLE001
            logger.exception("Intake report crashed. session_id=%s", session_id)
            self._notify_failed(session_id, "unexpected", str(e))
            return IntakeReportResult(success=False, state=ReportState.FAILED, error=str(e), failed_step="unexpected")

    def _abort(self, session_id: str, reason: AbortReason, error: str, **extra: Any) -> IntakeReportResult:
        logger.info("Intake report aborted. session_id=%s reason=%s", session_id, reason.value)
        return IntakeReportResult(success=False, state=ReportState.ABORTED, error=error, abort_reason=reason, **extra)

    def _notify_failed(self, session_id: str, step: str, error: str) -> None:
        if self._notifier is not None:
            self._notifier.notify_report_failed(session_id=session_id, step=step, error=error)

    def _fetch(self, session: Session) -> Optional[VerboseConversation]:
        try:
            conv = self._tavus.fetch_verbose_conversation((session.conversation_id or "").strip())
        except UpstreamFetchError as e:
            logger.warning(
                "Transcript fetch failed. session_id=%s conversation_id=%s status=%s err=%s",
                session.id,
                session.conversation_id,
                e.status_code,
                e,
            )
            return None
        persist_fetched_conversation(self._store, session.id, conv)
        return conv

    def _run(self, session_id: str) -> IntakeReportResult:
        session = self._store.get(session_id)
        if session is None:
            return self._abort(session_id, AbortReason.SESSION_NOT_FOUND, "Session not found")
        if not (session.conversation_id or "").strip():
            return self._abort(session_id, AbortReason.NO_CONVERSATION, "No conversation started")
        if not session.report_recipient:
            logger.info("No report recipient; skipping intake report. session_id=%s", session_id)
            return IntakeReportResult(
                success=True,
                state=ReportState.ABORTED,
                abort_reason=AbortReason.NO_RECIPIENT,
                message="No report recipient",
            )
        if session.report_sent_at:
            return self._abort(session_id, AbortReason.ALREADY_SENT, "Report already sent")

        transcript: list[Message] = list(session.transcript)
        duration_seconds = session.duration_seconds
        perception = perception_to_text(session.analysis_data.get("perception_analysis"))

        if not _has_spoken_turns(transcript):
            logger.info("Intake report state=%s session_id=%s", ReportState.FETCHING.value, session_id)
            conv = self._fetch(session)
            if conv is not None:
                if conv.has_transcript:
                    transcript = list(conv.transcript or [])
                duration_seconds = conv.duration_seconds or duration_seconds
                perception = perception_to_text(conv.perception_analysis) or perception

        if not _has_spoken_turns(transcript):
            return self._abort(session_id, AbortReason.NO_TRANSCRIPT, "No transcript available")

        logger.info(
            "Intake report state=%s session_id=%s messages=%d",
            ReportState.ANALYZING.value,
            session_id,
            len(transcript),
        )
        analysis = self._analyzer.analyze(transcript)
        patient_name = resolve_patient_name(
            session_name=session.prospect_name,
            analysis=analysis,
            transcript=transcript,
        )
        analysis = analysis.model_copy(update={"patient_name": patient_name})
        report_date = format_report_date(session.completed_at or self._clock())
        named = {
            "patient_name": patient_name,
            "urgency_level": analysis.urgency_level,
            "chief_complaint": analysis.chief_complaint,
        }

        logger.info("Intake report state=%s session_id=%s", ReportState.RENDERING.value, session_id)
        try:
            pdf = self._renderer.render(
                analysis=analysis,
                transcript=transcript,
                patient_name=patient_name,
                report_date=report_date,
                session_id=session_id,
                project_name=session.project_name,
                duration_seconds=duration_seconds,
                perception_analysis=perception or None,
                generated_at=self._clock(),
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Intake report render failed. session_id=%s", session_id)
            self._notify_failed(session_id, "render", str(e))
            return IntakeReportResult(
                success=False,
                state=ReportState.FAILED,
                pdf_generated=False,
                email_sent=False,
                error=f"Failed to generate PDF: {e}",
                failed_step="render",
                **named,
            )

        # Another trigger may have finished while we were analyzing and rendering.
        latest = self._store.get(session_id)
        if latest is None or latest.report_sent_at:
            return self._abort(session_id, AbortReason.ALREADY_SENT, "Report already sent", pdf_generated=True, **named)

        owner = str(uuid4())
        claim = self._store.try_claim_report(session_id, owner=owner, ttl_seconds=self._claim_ttl)
        if not claim.acquired:
            return self._abort(
                session_id,
                AbortReason.DELIVERY_IN_PROGRESS,
                "Report delivery already in progress",
                pdf_generated=True,
                **named,
            )

        try:
            logger.info("Intake report state=%s session_id=%s", ReportState.SENDING.value, session_id)
            recipient = session.report_recipient
            try:
                delivery = self._dispatcher.send(
                    recipient_email=recipient,
                    patient_name=patient_name,
                    report_date=report_date,
                    summary=analysis.summary,
                    pdf_buffer=pdf,
                    project_name=session.project_name,
                )
            except Exception as e:  # noqa: BLE001
                logger.exception("Email dispatcher raised. session_id=%s", session_id)
                delivery = DeliveryResult(success=False, error=str(e))

            if not delivery.success:
                error = delivery.error or "Email delivery failed"
                logger.error("Intake report email failed. session_id=%s err=%s", session_id, error)
                self._notify_failed(session_id, "send", error)
                return IntakeReportResult(
                    success=False,
                    state=ReportState.FAILED,
                    pdf_generated=True,
                    email_sent=False,
                    error=f"Failed to send email: {error}",
                    failed_step="send",
                    retryable=delivery.transient,
                    **named,
                )

            sent_at = self._clock().isoformat()
            try:
                recorded = self._store.record_report_sent(session_id, sent_at=sent_at, recipient=recipient)
                self._store.merge_analysis_data(
                    session_id,
                    {"intake_analysis": analysis_snapshot(analysis, analyzed_at=sent_at)},
                )
            except Exception as e:  # noqa: BLE001
                logger.exception("Email sent but recording failed. session_id=%s", session_id)
                self._notify_failed(session_id, "record", str(e))
                return IntakeReportResult(
                    success=False,
                    state=ReportState.FAILED,
                    pdf_generated=True,
                    email_sent=True,
                    error=f"Report sent but not recorded: {e}",
                    failed_step="record",
                    retryable=False,
                    **named,
                )
            if not recorded:
                logger.warning("report_sent_at was already set when recording. session_id=%s", session_id)
        finally:
            self._store.release_report_claim(session_id, owner=owner)

        logger.info(
            "Intake report state=%s session_id=%s patient=%s urgency=%s",
            ReportState.RECORDED.value,
            session_id,
            patient_name,
            analysis.urgency_level,
        )
        if self._notifier is not None:
            self._notifier.notify_report_sent(
                session_id=session_id,
                patient_name=patient_name,
                urgency_level=analysis.urgency_level,
                recipient=recipient,
            )
        return IntakeReportResult(
            success=True,
            state=ReportState.RECORDED,
            pdf_generated=True,
            email_sent=True,
            message=f"Report sent to {recipient}",
            **named,
        )
