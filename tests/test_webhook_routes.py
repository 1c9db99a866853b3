from __future__ import annotations

from fastapi.testclient import TestClient

import demo_intake.api.routes_webhooks_tavus as routes_webhooks_tavus
from demo_intake.main import create_app
from demo_intake.schemas.session import SessionStatus
from demo_intake.services.rq_service import POLL_JOB
from tests.util_stubs import StubTavus, add_session, make_services

JANE_TRANSCRIPT = [{"role": "user", "content": "My name is Jane, I have a headache"}]


def _client(services) -> TestClient:
    return TestClient(create_app(services))


def _event(event_type: str, **extra) -> dict:
    return {"conversation_id": "C1", "event_type": event_type, "timestamp": "2026-10-19T14:05:00Z", **extra}


def test_malformed_body_is_acknowledged():
    client = _client(make_services())

    resp = client.post("/webhooks/tavus", content=b"{not json", headers={"Content-Type": "application/json"})

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "error": "Processing error"}


def test_non_object_and_badly_typed_payloads_are_acknowledged():
    client = _client(make_services())

    for body in ([1, 2, 3], {"conversation_id": ["C1"], "event_type": "conversation.ended"}):
        resp = client.post("/webhooks/tavus", json=body)
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "error": "Processing error"}


def test_processing_exception_is_acknowledged_and_recorded(monkeypatch):
    services = make_services()
    add_session(services)
    stored = {}

    def boom(services_, event):
        raise RuntimeError("kaboom")

    original_store = services.events.store_incoming_event

    def remember(**kwargs):
        stored["event_id"] = kwargs["event_id"]
        original_store(**kwargs)

    monkeypatch.setattr(routes_webhooks_tavus, "handle_tavus_event", boom)
    monkeypatch.setattr(services.events, "store_incoming_event", remember)

    resp = _client(services).post("/webhooks/tavus", json=_event("conversation.ended"))

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "error": "Processing error"}
    ev = services.events.load_event(stored["event_id"])
    assert ev.status == "failed"
    assert "kaboom" in ev.last_error


def test_ended_event_completes_session_without_report():
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT))
    add_session(services)

    resp = _client(services).post("/webhooks/tavus", json=_event("conversation.ended"))

    assert resp.json() == {"received": True}
    session = services.store.get("S1")
    assert session.status == SessionStatus.COMPLETED
    assert session.completed_at
    assert services.dispatcher.sends == []
    assert services.store.list_active_session_ids() == []


def test_shutdown_event_records_reason():
    services = make_services()
    add_session(services, analysis_data={"custom": 1})

    _client(services).post(
        "/webhooks/tavus",
        json=_event("system.shutdown", properties={"shutdown_reason": "participant_left_timeout"}),
    )

    session = services.store.get("S1")
    assert session.status == SessionStatus.COMPLETED
    assert session.analysis_data["custom"] == 1
    assert session.analysis_data["shutdown_reason"] == "participant_left_timeout"
    assert session.analysis_data["system_shutdown"]["timestamp"] == "2026-10-19T14:05:00Z"


def test_transcription_ready_with_inline_transcript_sends_report():
    tavus = StubTavus(error=AssertionError("should not fetch"))
    services = make_services(tavus=tavus)
    add_session(services)

    resp = _client(services).post(
        "/webhooks/tavus",
        json=_event("application.transcription_ready", properties={"transcript": JANE_TRANSCRIPT}),
    )

    assert resp.json() == {"received": True}
    assert tavus.fetch_calls == []
    assert len(services.dispatcher.sends) == 1
    assert services.store.get("S1").report_sent_at


def test_transcription_ready_fetches_when_not_inline():
    tavus = StubTavus(JANE_TRANSCRIPT)
    services = make_services(tavus=tavus)
    add_session(services)

    _client(services).post("/webhooks/tavus", json=_event("application.transcription_ready"))

    assert tavus.fetch_calls == ["C1"]
    assert len(services.dispatcher.sends) == 1


def test_duplicate_transcription_events_send_once():
    services = make_services(tavus=StubTavus(JANE_TRANSCRIPT))
    add_session(services)
    client = _client(services)

    for _ in range(3):
        assert client.post("/webhooks/tavus", json=_event("application.transcription_ready")).status_code == 200

    assert len(services.dispatcher.sends) == 1


def test_started_event_activates_and_schedules_polling_once():
    services = make_services()
    add_session(services, status=SessionStatus.PENDING)
    client = _client(services)

    client.post("/webhooks/tavus", json=_event("conversation.started"))
    client.post("/webhooks/tavus", json=_event("system.replica_joined"))

    assert services.store.get("S1").status == SessionStatus.ACTIVE
    assert len(services.queue.scheduled) == 1
    job = services.queue.scheduled[0]
    assert job["func"] == POLL_JOB
    assert job["args"] == ("S1", 1)
    assert job["delay"].total_seconds() == 15


def test_started_event_never_reopens_a_completed_session():
    services = make_services()
    add_session(services, status=SessionStatus.COMPLETED)

    _client(services).post("/webhooks/tavus", json=_event("conversation.started"))

    assert services.store.get("S1").status == SessionStatus.COMPLETED
    assert services.queue.scheduled == []


def test_perception_event_merges_into_analysis_data():
    services = make_services()
    add_session(services, analysis_data={"custom": "keep"})

    _client(services).post(
        "/webhooks/tavus",
        json=_event("application.perception_analysis", properties={"analysis": "Patient looked pale."}),
    )

    data = services.store.get("S1").analysis_data
    assert data == {"custom": "keep", "perception_analysis": "Patient looked pale."}


def test_unknown_conversation_and_updated_event_are_ignored():
    services = make_services()
    add_session(services)
    client = _client(services)

    r1 = client.post("/webhooks/tavus", json={"conversation_id": "other", "event_type": "conversation.ended"})
    r2 = client.post("/webhooks/tavus", json=_event("conversation.updated"))

    assert r1.json() == {"received": True}
    assert r2.json() == {"received": True}
    assert services.store.get("S1").status == SessionStatus.ACTIVE


def test_webhook_health():
    resp = _client(make_services()).get("/webhooks/tavus")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "tavus-webhook-handler"
    assert body["timestamp"]
