from __future__ import annotations

import base64
import json

import httpx

from demo_intake.services.email_service import RESEND_API_URL, EmailDispatcher, attachment_filename, is_plausible_email


def _dispatcher(handler, api_key: str = "re_test") -> EmailDispatcher:
    return EmailDispatcher(api_key=api_key, from_address="Reports <r@example.com>", transport=httpx.MockTransport(handler))


def _send(dispatcher: EmailDispatcher, recipient: str = "doc@example.com"):
    return dispatcher.send(
        recipient_email=recipient,
        patient_name="Jane Doe",
        report_date="October 19, 2026",
        summary="Headache <3 days> & nausea",
        pdf_buffer=b"%PDF-1.4 test",
        project_name="Clinic",
    )


def test_send_posts_report_with_attachment():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    result = _send(_dispatcher(handler))

    assert result.success is True
    assert result.message_id == "email_123"
    assert seen["url"] == RESEND_API_URL
    assert seen["auth"] == "Bearer re_test"
    body = seen["body"]
    assert body["to"] == ["doc@example.com"]
    assert body["subject"] == "Patient Intake Report: Jane Doe - October 19, 2026"
    attachment = body["attachments"][0]
    assert attachment["filename"] == "intake-report-jane-doe-2026-10-19.pdf"
    assert base64.b64decode(attachment["content"]) == b"%PDF-1.4 test"
    assert "Headache &lt;3 days&gt; &amp; nausea" in body["html"]
    assert "Program: Clinic" in body["text"]


def test_invalid_recipient_never_calls_provider():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    for bad in ("", "not-an-email", "a@b", "two words@example.com"):
        result = _send(_dispatcher(handler), recipient=bad)
        assert result.success is False
        assert result.error

    assert calls == []


def test_provider_errors_become_failed_results():
    rejected = _send(_dispatcher(lambda request: httpx.Response(422, json={"message": "invalid from"})))

    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    timed_out = _send(_dispatcher(down))

    assert rejected.success is False
    assert "422" in rejected.error
    assert timed_out.success is False
    assert rejected.transient is False
    assert timed_out.transient is True


def test_missing_api_key_fails_without_sending():
    result = _send(_dispatcher(lambda request: httpx.Response(200, json={}), api_key=""))

    assert result.success is False
    assert "RESEND_API_KEY" in result.error
    assert result.transient is False


def test_attachment_filename_variants():
    assert attachment_filename("Jane Doe", "2026-10-19T14:30:00Z") == "intake-report-jane-doe-2026-10-19.pdf"
    assert attachment_filename("Unknown Patient", "March 3, 2026") == "intake-report-unknown-patient-2026-03-03.pdf"
    assert attachment_filename("", "someday") == "intake-report-patient-someday.pdf"


def test_is_plausible_email():
    assert is_plausible_email("doc@example.com")
    assert is_plausible_email(" doc@clinic.co.uk ")
    assert not is_plausible_email(None)
    assert not is_plausible_email("doc@localhost")


def test_rate_limit_and_server_errors_are_transient():
    limited = _send(_dispatcher(lambda request: httpx.Response(429, json={"message": "slow down"})))
    broken = _send(_dispatcher(lambda request: httpx.Response(502, text="bad gateway")))
    bad_recipient = _send(_dispatcher(lambda request: httpx.Response(200, json={})), recipient="not-an-email")

    assert (limited.success, limited.transient) == (False, True)
    assert (broken.success, broken.transient) == (False, True)
    assert (bad_recipient.success, bad_recipient.transient) == (False, False)
