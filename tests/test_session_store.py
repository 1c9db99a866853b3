from __future__ import annotations

import pytest

from demo_intake.schemas.session import Session, SessionStatus, messages_from_raw
from demo_intake.services.session_store import RedisSessionStore, SessionStoreError
from tests.util_fake_redis import FakeRedis


def _store_with(**fields) -> RedisSessionStore:
    store = RedisSessionStore(FakeRedis())
    store.create(Session(id="S1", conversation_id="C1", **fields))
    return store


def test_round_trip_and_conversation_index():
    transcript = messages_from_raw([{"role": "user", "content": "hello", "timestamp": "t1"}])
    store = _store_with(status=SessionStatus.ACTIVE, transcript=transcript, analysis_data={"a": 1}, duration_seconds=42)

    by_id = store.get("S1")
    by_conv = store.find_by_conversation_id("C1")

    assert by_id == by_conv
    assert by_id.transcript[0].content == "hello"
    assert by_id.analysis_data == {"a": 1}
    assert by_id.duration_seconds == 42
    assert store.list_active_session_ids() == ["S1"]
    assert store.get("nope") is None
    assert store.find_by_conversation_id("") is None


def test_status_moves_forward_only():
    store = _store_with()

    assert store.transition_status("S1", SessionStatus.ACTIVE) is True
    assert store.list_active_session_ids() == ["S1"]
    assert store.transition_status("S1", SessionStatus.COMPLETED) is True
    completed_at = store.get("S1").completed_at
    assert completed_at

    assert store.transition_status("S1", SessionStatus.ACTIVE) is False
    assert store.transition_status("S1", SessionStatus.EXPIRED) is False
    assert store.transition_status("S1", SessionStatus.COMPLETED) is False

    session = store.get("S1")
    assert session.status == SessionStatus.COMPLETED
    assert session.completed_at == completed_at
    assert store.list_active_session_ids() == []


def test_transition_on_missing_session_raises():
    with pytest.raises(SessionStoreError):
        RedisSessionStore(FakeRedis()).transition_status("nope", SessionStatus.ACTIVE)


def test_merge_analysis_data_keeps_other_keys():
    store = _store_with(analysis_data={"keep": True, "replace": 1})

    merged = store.merge_analysis_data("S1", {"replace": 2, "new": "x"})

    assert merged == {"keep": True, "replace": 2, "new": "x"}
    assert store.get("S1").analysis_data == merged


def test_save_transcript_ignores_non_positive_duration():
    store = _store_with()

    store.save_transcript("S1", messages_from_raw([{"role": "user", "content": "a"}]), duration_seconds=0)

    session = store.get("S1")
    assert len(session.transcript) == 1
    assert session.duration_seconds is None


def test_record_report_sent_is_set_once():
    store = _store_with(report_recipient="doc@example.com")

    assert store.record_report_sent("S1", sent_at="2026-10-19T10:00:00+00:00", recipient="doc@example.com") is True
    assert store.record_report_sent("S1", sent_at="2026-10-19T11:00:00+00:00", recipient="doc@example.com") is False
    assert store.get("S1").report_sent_at == "2026-10-19T10:00:00+00:00"

    with pytest.raises(SessionStoreError):
        store.record_report_sent("nope", sent_at="x", recipient="y")


def test_report_claim_is_exclusive_until_released():
    store = _store_with()

    first = store.try_claim_report("S1", owner="a", ttl_seconds=300)
    second = store.try_claim_report("S1", owner="b", ttl_seconds=300)
    store.release_report_claim("S1", owner="b")
    still_held = store.try_claim_report("S1", owner="c", ttl_seconds=300)
    store.release_report_claim("S1", owner="a")
    third = store.try_claim_report("S1", owner="c", ttl_seconds=300)

    assert first.acquired is True
    assert second.acquired is False
    assert second.existing_owner == "a"
    assert still_held.acquired is False
    assert third.acquired is True


def test_corrupt_transcript_reads_as_empty():
    redis = FakeRedis()
    store = RedisSessionStore(redis)
    store.create(Session(id="S1"))
    redis.hset("session:S1", mapping={"transcript": "{broken", "duration_seconds": "abc"})

    session = store.get("S1")

    assert session.transcript == []
    assert session.duration_seconds is None


def test_intake_details_blank_values_read_as_absent():
    store = _store_with(prospect_name="Old", report_recipient="old@example.com")

    store.save_intake_details("S1", prospect_name=" Jane ", report_recipient="")

    session = store.get("S1")
    assert session.prospect_name == "Jane"
    assert session.report_recipient is None
