from __future__ import annotations

import demo_intake.jobs.polling_jobs as polling_jobs
from demo_intake.schemas.session import SessionStatus
from demo_intake.services.completion_service import poll_once
from demo_intake.services.email_service import DeliveryResult
from demo_intake.services.rq_service import poll_job_id
from demo_intake.services.tavus_service import UpstreamFetchError
from tests.util_stubs import StubDispatcher, StubLLM, StubTavus, add_session, make_services

JANE_TRANSCRIPT = [{"role": "user", "content": "My name is Jane, I have a headache"}]


def test_active_conversation_keeps_polling():
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT, status="active"))
    add_session(services)

    outcome = poll_once(services, "S1")

    assert outcome.action == "in_progress"
    assert outcome.reschedule is True
    assert services.store.get("S1").status == SessionStatus.ACTIVE
    assert services.dispatcher.sends == []


def test_ended_conversation_completes_and_sends():
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT, status="ended"))
    add_session(services)

    outcome = poll_once(services, "S1")

    assert outcome.action == "report_attempted"
    assert outcome.reschedule is False
    assert outcome.report.success is True
    assert services.store.get("S1").status == SessionStatus.COMPLETED
    assert len(services.dispatcher.sends) == 1


def test_ended_without_transcript_keeps_polling():
    services = make_services(tavus=StubTavus(None, status="ended"))
    add_session(services)

    outcome = poll_once(services, "S1")

    assert outcome.reschedule is True
    assert services.store.get("S1").status == SessionStatus.COMPLETED


def test_completed_session_with_failed_send_is_retried():
    dispatcher = StubDispatcher(DeliveryResult(success=False, error="Email HTTP 500"))
    tavus = StubTavus(JANE_TRANSCRIPT)
    services = make_services(tavus=tavus, dispatcher=dispatcher)
    add_session(services, status=SessionStatus.COMPLETED)

    first = poll_once(services, "S1")
    dispatcher.result = DeliveryResult(success=True)
    second = poll_once(services, "S1")
    third = poll_once(services, "S1")

    assert first.reschedule is True
    assert second.report.success is True
    assert third.action == "report_already_sent"
    assert third.reschedule is False
    # Completed sessions are not status-polled.
    assert tavus.status_calls == []


def test_stop_conditions():
    services = make_services(tavus=StubTavus(status_error=UpstreamFetchError("Tavus HTTP 404", status_code=404)))
    add_session(services, session_id="S2", status=SessionStatus.EXPIRED)
    add_session(services, session_id="S3", conversation_id="C3")

    assert poll_once(services, "missing").reschedule is False
    assert poll_once(services, "S2").action == "expired"
    gone = poll_once(services, "S3")
    assert gone.action == "status_unavailable"
    assert gone.reschedule is False


def test_transient_status_error_keeps_polling():
    services = make_services(tavus=StubTavus(status_error=UpstreamFetchError("timeout")))
    add_session(services)

    assert poll_once(services, "S1").reschedule is True


def test_poll_job_reschedules_until_max_attempts(monkeypatch):
    services = make_services(tavus=StubTavus(status="active"))
    add_session(services)
    monkeypatch.setattr(polling_jobs, "_services", services)

    first = polling_jobs.poll_conversation("S1", 1)
    last = polling_jobs.poll_conversation("S1", 3)

    assert first["next_scheduled"] is True
    assert last["next_scheduled"] is False
    assert [job["args"] for job in services.queue.scheduled] == [("S1", 2)]
    assert services.queue.scheduled[0]["job_id"] == "poll-S1-2"


def test_poll_job_returns_report_response(monkeypatch):
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT, status="ended"))
    add_session(services)
    monkeypatch.setattr(polling_jobs, "_services", services)

    result = polling_jobs.poll_conversation("S1")

    assert result["report"]["success"] is True
    assert result["report"]["patientName"] == "Jane"
    assert services.queue.scheduled == []


def test_poll_job_id_is_rq_safe():
    assert poll_job_id("a1b2-c3", 4) == "poll-a1b2-c3-4"
    assert poll_job_id("sess:1/x", 1) == "poll-sess_1_x-1"


def test_permanent_send_refusal_stops_polling():
    dispatcher = StubDispatcher(
        DeliveryResult(success=False, error="Invalid recipient email: 'not-an-email'", transient=False)
    )
    llm = StubLLM()
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT), llm=llm, dispatcher=dispatcher)
    add_session(services, recipient="not-an-email", status=SessionStatus.COMPLETED)

    outcome = poll_once(services, "S1")

    assert outcome.action == "report_attempted"
    assert outcome.reschedule is False
    assert outcome.report.failed_step == "send"
    assert outcome.report.retryable is False
    assert len(llm.calls) == 1


def test_poll_job_does_not_reschedule_after_permanent_send_refusal(monkeypatch):
    dispatcher = StubDispatcher(DeliveryResult(success=False, error="Email HTTP 403: forbidden", transient=False))
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT, status="ended"), dispatcher=dispatcher)
    add_session(services)
    monkeypatch.setattr(polling_jobs, "_services", services)

    result = polling_jobs.poll_conversation("S1", 1)

    assert result["next_scheduled"] is False
    assert services.queue.scheduled == []
