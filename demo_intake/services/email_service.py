from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

import httpx

from demo_intake.util.text_format import slugify
from demo_intake.util.time import parse_timestamp

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_plausible_email(value: Optional[str]) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value.strip()))  # type: ignore[union-attr]


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None
    # False when resending the same request cannot succeed.
    transient: bool = True


def attachment_filename(patient_name: str, report_date: str) -> str:
    dt = parse_timestamp(report_date)
    if dt is None:
        try:
            dt = datetime.strptime(report_date.strip(), "%B %d, %Y")
        except ValueError:
            dt = None
    date_part = dt.date().isoformat() if dt else slugify(report_date, fallback="report")
    return f"intake-report-{slugify(patient_name)}-{date_part}.pdf"


def _text_body(patient_name: str, report_date: str, summary: str, project_name: Optional[str]) -> str:
    lines = [
        "A new patient intake report is attached.",
        "",
        f"Patient: {patient_name}",
        f"Date: {report_date}",
    ]
    if project_name:
        lines.append(f"Program: {project_name}")
    lines += [
        "",
        "Summary:",
        summary,
        "",
        "This report was generated by an AI-assisted intake system and must be verified by a clinician.",
    ]
    return "\n".join(lines)


def _html_body(patient_name: str, report_date: str, summary: str, project_name: Optional[str]) -> str:
    program = f"<p><strong>Program:</strong> {escape(project_name)}</p>" if project_name else ""
    return (
        "<div style=\"font-family:Helvetica,Arial,sans-serif;font-size:14px;color:#111\">"
        "<h2 style=\"margin:0 0 12px\">Patient Intake Report</h2>"
        f"<p><strong>Patient:</strong> {escape(patient_name)}</p>"
        f"<p><strong>Date:</strong> {escape(report_date)}</p>"
        f"{program}"
        "<h3 style=\"margin:16px 0 6px\">Summary</h3>"
        f"<p>{escape(summary)}</p>"
        "<p style=\"font-size:12px;color:#666\">The full report is attached as a PDF. "
        "It was generated by an AI-assisted intake system and must be verified by a clinician.</p>"
        "</div>"
    )


class EmailDispatcher:
    """Sends the rendered report through the Resend API. One attempt per call."""

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._from = from_address
        self._timeout = timeout
        self._transport = transport

    def send(
        self,
        *,
        recipient_email: str,
        patient_name: str,
        report_date: str,
        summary: str,
        pdf_buffer: bytes,
        project_name: Optional[str] = None,
    ) -> DeliveryResult:
        if not is_plausible_email(recipient_email):
            logger.warning("Refusing to send intake report: invalid recipient %r", recipient_email)
            return DeliveryResult(success=False, error=f"Invalid recipient email: {recipient_email!r}", transient=False)
        if not self._api_key:
            return DeliveryResult(success=False, error="RESEND_API_KEY not configured", transient=False)

        payload = {
            "from": self._from,
            "to": [recipient_email.strip()],
            "subject": f"Patient Intake Report: {patient_name} - {report_date}",
            "html": _html_body(patient_name, report_date, summary, project_name),
            "text": _text_body(patient_name, report_date, summary, project_name),
            "attachments": [
                {
                    "filename": attachment_filename(patient_name, report_date),
                    "content": base64.b64encode(pdf_buffer).decode("ascii"),
                }
            ],
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

        logger.info("Sending intake report email. to=%s pdf_bytes=%d", recipient_email, len(pdf_buffer))
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(RESEND_API_URL, headers=headers, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:300]
            logger.error("Email provider rejected intake report. status=%s body=%s", status, detail)
            return DeliveryResult(
                success=False,
                error=f"Email HTTP {status}: {detail}",
                transient=status >= 500 or status in (408, 429),
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Email send failed: %s", e)
            return DeliveryResult(success=False, error=f"Email send failed: {e}")

        message_id = body.get("id") if isinstance(body, dict) else None
        logger.info("Intake report email accepted. to=%s message_id=%s", recipient_email, message_id)
        return DeliveryResult(success=True, message_id=message_id)
