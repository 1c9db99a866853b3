from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


def _format_text_message(title: str, message: str, fields: Optional[list[dict[str, str]]] = None) -> str:
    lines = [f"*{title}*", "", message]
    if fields:
        lines.append("")
        for field in fields:
            value = field.get("value") or "N/A"
            lines.append(f"*{field['title']}*: {value}")
    return "\n".join(lines)


class SlackNotifier:
    """Markdown alerts to a Slack incoming webhook. Failures are logged, never raised."""

    def __init__(self, *, webhook_url: str, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._webhook_url = webhook_url
        self._transport = transport

    def send_alert(self, *, text: str) -> None:
        if not self._webhook_url:
            logger.debug("Slack webhook not configured; skipping alert: %s", text)
            return
        try:
            with httpx.Client(timeout=10.0, transport=self._transport) as client:
                resp = client.post(self._webhook_url, json={"text": text})
                resp.raise_for_status()
        except Exception as e:  # noqa: BLE001
            # Never crash the pipeline just because Slack failed.
            logger.exception("Failed to send Slack alert: %s", e)

    def notify_report_sent(
        self,
        *,
        session_id: str,
        patient_name: str,
        urgency_level: str,
        recipient: str,
    ) -> None:
        self.send_alert(
            text=_format_text_message(
                "📄 Intake Report Delivered",
                f"Report for *{patient_name}* was emailed.",
                [
                    {"title": "Urgency", "value": urgency_level.upper()},
                    {"title": "Recipient", "value": recipient},
                    {"title": "Session", "value": session_id},
                ],
            )
        )

    def notify_report_failed(self, *, session_id: str, step: str, error: str) -> None:
        self.send_alert(
            text=_format_text_message(
                "❌ Intake Report Failed",
                "The report was not delivered; the next completion signal will retry.",
                [
                    {"title": "Step", "value": step},
                    {"title": "Session", "value": session_id},
                    {"title": "Error", "value": error},
                ],
            )
        )
