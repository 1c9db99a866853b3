"""
Intake report PDF: a clinical summary page, an observations page and a
verbatim transcript section that paginates on its own.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import KeepTogether, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from demo_intake.schemas.intake import IntakeAnalysis
from demo_intake.schemas.session import Message
from demo_intake.util.text_format import format_duration

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Not available"

DISCLAIMER = (
    "This report was generated by an AI-assisted intake system. All clinical information "
    "should be verified by the treating physician. This document is intended to supplement, "
    "not replace, standard clinical assessment and professional medical judgment. Patient "
    "responses were collected via automated video consultation and have not been independently verified."
)

PRIORITY_DESCRIPTIONS = {
    "high": "STAT - Immediate physician evaluation required",
    "medium": "URGENT - Prompt evaluation recommended",
    "low": "ROUTINE - Standard evaluation",
}

_PRIORITY_COLORS = {
    "high": (colors.HexColor("#b91c1c"), colors.HexColor("#fee2e2")),
    "medium": (colors.HexColor("#b45309"), colors.HexColor("#fef3c7")),
    "low": (colors.HexColor("#15803d"), colors.HexColor("#dcfce7")),
}

ROLE_LABELS = {"user": "PATIENT", "assistant": "AI INTAKE"}


class ReportRenderError(Exception):
    pass


@dataclass(frozen=True)
class TranscriptEntry:
    role: str
    label: str
    text: str


def transcript_entries(transcript: list[Message]) -> list[TranscriptEntry]:
    """The verbatim section's blocks: one per non-system message, in conversation order."""
    entries: list[TranscriptEntry] = []
    for msg in transcript:
        if msg.role == "system":
            continue
        text = msg.content.strip() if msg.content else ""
        entries.append(
            TranscriptEntry(
                role=msg.role,
                label=ROLE_LABELS.get(msg.role, msg.role.upper()),
                text=text or "(no speech captured)",
            )
        )
    return entries


def _p(text: str) -> str:
    # Paragraph markup: escape, keep line breaks.
    return escape(text).replace("\n", "<br/>")


def _build_styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    body = ParagraphStyle("IntakeBody", parent=base["BodyText"], fontName="Helvetica", fontSize=9, leading=12.5)
    return {
        "facility": ParagraphStyle("Facility", parent=body, fontName="Helvetica-Bold", fontSize=14, leading=18, alignment=TA_CENTER),
        "title": ParagraphStyle("Title", parent=body, fontSize=11, leading=14, alignment=TA_CENTER),
        "banner": ParagraphStyle("Banner", parent=body, fontSize=7, textColor=colors.white, alignment=TA_CENTER),
        "section": ParagraphStyle(
            "Section", parent=body, fontName="Helvetica-Bold", fontSize=10, leading=13, spaceBefore=8, spaceAfter=4
        ),
        "label": ParagraphStyle("Label", parent=body, fontName="Helvetica-Bold"),
        "body": body,
        "bullet": ParagraphStyle("Bullet", parent=body, leftIndent=10, bulletIndent=2),
        "empty": ParagraphStyle("Empty", parent=body, fontName="Helvetica-Oblique", textColor=colors.HexColor("#666666"), leftIndent=4),
        "quote": ParagraphStyle("Quote", parent=body, fontName="Helvetica-Oblique", leftIndent=12, spaceAfter=3),
        "small": ParagraphStyle("Small", parent=body, fontSize=7.5, leading=10),
        "patient_role": ParagraphStyle("PatientRole", parent=body, fontName="Helvetica-Bold", fontSize=8, textColor=colors.HexColor("#1d4ed8")),
        "assistant_role": ParagraphStyle("AssistantRole", parent=body, fontName="Helvetica-Bold", fontSize=8, textColor=colors.HexColor("#374151")),
        "patient_msg": ParagraphStyle("PatientMsg", parent=body, leftIndent=2),
        "assistant_msg": ParagraphStyle("AssistantMsg", parent=body, leftIndent=14, textColor=colors.HexColor("#374151")),
    }


def _boxed(markup: str, style: ParagraphStyle, *, border: Any, background: Any) -> Paragraph:
    # A single Paragraph so the box can split across pages; a one-cell Table cannot.
    boxed_style = ParagraphStyle(
        f"{style.name}Boxed",
        parent=style,
        borderWidth=1.2,
        borderColor=border,
        backColor=background,
        borderPadding=6,
        leftIndent=6,
        rightIndent=6,
        spaceBefore=6,
        spaceAfter=8,
    )
    return Paragraph(markup, boxed_style)


class ReportRenderer:
    def __init__(self, *, facility_name: str = "AI-ASSISTED PATIENT INTAKE") -> None:
        self.facility_name = facility_name
        self._styles = _build_styles()

    def render(
        self,
        *,
        analysis: IntakeAnalysis,
        transcript: list[Message],
        patient_name: str,
        report_date: str,
        session_id: str,
        project_name: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        perception_analysis: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> bytes:
        """
        Render the report to PDF bytes. The same inputs (including generated_at)
        always produce the same bytes. Raises ReportRenderError.
        """
        stamp = generated_at.isoformat() if generated_at else NOT_AVAILABLE
        buf = io.BytesIO()
        try:
            doc = SimpleDocTemplate(
                buf,
                pagesize=A4,
                leftMargin=15 * mm,
                rightMargin=15 * mm,
                topMargin=12 * mm,
                bottomMargin=18 * mm,
                title=f"Intake Report - {patient_name}",
                author=self.facility_name,
                invariant=1,
            )
            width = doc.width
            story: list[Any] = []
            story += self._summary_page(analysis, patient_name, report_date, session_id, project_name, duration_seconds, width)
            story.append(PageBreak())
            story += self._observations_page(analysis, patient_name, report_date, perception_analysis, width)
            story.append(PageBreak())
            story += self._transcript_section(transcript, patient_name, report_date)

            def _footer(canvas: Any, doc_: Any) -> None:
                canvas.saveState()
                canvas.setFont("Helvetica", 7)
                canvas.setFillColor(colors.HexColor("#555555"))
                canvas.drawString(doc_.leftMargin, 10 * mm, f"Encounter ID: {session_id}  |  Generated: {stamp}")
                canvas.drawRightString(doc_.leftMargin + doc_.width, 10 * mm, f"Page {canvas.getPageNumber()}")
                canvas.restoreState()

            doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
        except Exception as e:  # noqa: BLE001
            raise ReportRenderError(f"PDF rendering failed: {e}") from e

        pdf = buf.getvalue()
        logger.info("Intake report rendered. session_id=%s bytes=%d", session_id, len(pdf))
        return pdf

    def _list_or_empty(self, items: list[str], empty_text: str) -> list[Any]:
        s = self._styles
        if not items:
            return [Paragraph(_p(empty_text), s["empty"])]
        return [Paragraph(_p(item), s["bullet"], bulletText="•") for item in items]

    def _header(self, title: str, width: float) -> list[Any]:
        s = self._styles
        banner = Table([[Paragraph("CONFIDENTIAL MEDICAL RECORD - PROTECTED HEALTH INFORMATION", s["banner"])]], colWidths=[width])
        banner.setStyle(TableStyle([("BACKGROUND", (0, 0), (-1, -1), colors.black)]))
        return [
            Paragraph(_p(self.facility_name), s["facility"]),
            Paragraph(_p(title), s["title"]),
            Spacer(1, 4),
            banner,
            Spacer(1, 10),
        ]

    def _summary_page(
        self,
        analysis: IntakeAnalysis,
        patient_name: str,
        report_date: str,
        session_id: str,
        project_name: Optional[str],
        duration_seconds: Optional[int],
        width: float,
    ) -> list[Any]:
        s = self._styles
        level = analysis.urgency_level
        border, background = _PRIORITY_COLORS.get(level, _PRIORITY_COLORS["low"])

        story = self._header("PRE-VISIT ASSESSMENT REPORT", width)
        story.append(
            _boxed(
                f"<b>TRIAGE PRIORITY: {escape(level.upper())}</b><br/>"
                + _p(PRIORITY_DESCRIPTIONS.get(level, PRIORITY_DESCRIPTIONS["low"])),
                s["body"],
                border=border,
                background=background,
            )
        )

        story.append(Paragraph("Patient Demographics", s["section"]))
        rows = [
            [Paragraph("Patient Name:", s["label"]), Paragraph(_p(patient_name), s["body"]),
             Paragraph("Date:", s["label"]), Paragraph(_p(report_date), s["body"])],
            [Paragraph("Encounter ID:", s["label"]), Paragraph(_p(session_id), s["body"]),
             Paragraph("Duration:", s["label"]), Paragraph(_p(format_duration(duration_seconds) or NOT_AVAILABLE), s["body"])],
            [Paragraph("Program:", s["label"]), Paragraph(_p(project_name or NOT_AVAILABLE), s["body"]), "", ""],
        ]
        demographics = Table(rows, colWidths=[width * 0.17, width * 0.38, width * 0.13, width * 0.32])
        demographics.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("LINEBELOW", (0, -1), (-1, -1), 0.5, colors.grey)]))
        story.append(demographics)

        story.append(Paragraph("Chief Complaint (CC)", s["section"]))
        story.append(_boxed(_p(analysis.chief_complaint), s["body"], border=colors.grey, background=colors.white))

        story.append(Paragraph("History of Present Illness (HPI)", s["section"]))
        story.append(Paragraph("Reported Symptoms:", s["label"]))
        story += self._list_or_empty(analysis.symptoms, "No specific symptoms documented")

        story.append(Paragraph("Allergies", s["section"]))
        if analysis.allergies:
            story.append(
                _boxed(
                    "<b>ALLERGY ALERT - Known Allergies</b>" + "".join(f"<br/>• {_p(a)}" for a in analysis.allergies),
                    s["body"],
                    border=colors.HexColor("#b91c1c"),
                    background=colors.HexColor("#fee2e2"),
                )
            )
        else:
            story.append(Paragraph("No Known Allergies (NKA)", s["body"]))

        story.append(Paragraph("Current Medications", s["section"]))
        story += self._list_or_empty(analysis.medications, "No current medications reported")

        story.append(Paragraph("Past Medical History (PMH)", s["section"]))
        story += self._list_or_empty(analysis.medical_history, "No significant PMH reported")
        return story

    def _observations_page(
        self,
        analysis: IntakeAnalysis,
        patient_name: str,
        report_date: str,
        perception_analysis: Optional[str],
        width: float,
    ) -> list[Any]:
        s = self._styles
        story = self._header("ASSESSMENT & OBSERVATIONS", width)
        story.append(Paragraph(f"Patient: {_p(patient_name)}  |  Date: {_p(report_date)}", s["small"]))

        story.append(Paragraph("Visual Assessment", s["section"]))
        if perception_analysis and perception_analysis.strip():
            story.append(
                _boxed(
                    "<b>AI-Captured Observations</b><br/>" + _p(perception_analysis.strip()),
                    s["body"],
                    border=colors.grey,
                    background=colors.HexColor("#f5f5f5"),
                )
            )
        else:
            story.append(Paragraph("No visual observations captured (not available)", s["empty"]))

        story.append(Paragraph("Pertinent Patient Statements", s["section"]))
        if analysis.key_quotes:
            story += [Paragraph(f"“{_p(q)}”", s["quote"]) for q in analysis.key_quotes]
        else:
            story.append(Paragraph("No significant statements flagged (not available)", s["empty"]))

        story.append(Paragraph("AI-Generated Clinical Summary", s["section"]))
        story.append(_boxed(_p(analysis.summary), s["body"], border=colors.black, background=colors.HexColor("#fafafa")))

        story.append(Paragraph("Recommended Follow-Up", s["section"]))
        if analysis.recommended_actions:
            story += [
                Paragraph(_p(action), s["bullet"], bulletText=f"{i}.")
                for i, action in enumerate(analysis.recommended_actions, start=1)
            ]
        else:
            story.append(Paragraph("No specific follow-up actions recommended", s["empty"]))

        story.append(Spacer(1, 12))
        story.append(
            _boxed(
                "<b>Documentation Notice</b><br/>" + _p(DISCLAIMER),
                s["small"],
                border=colors.grey,
                background=colors.white,
            )
        )
        return story

    def _transcript_section(self, transcript: list[Message], patient_name: str, report_date: str) -> list[Any]:
        s = self._styles
        entries = transcript_entries(transcript)
        story: list[Any] = [
            Paragraph("Verbatim Transcript", s["facility"]),
            Paragraph(
                f"Patient: {_p(patient_name)}  |  Date: {_p(report_date)}  |  Messages: {len(entries)}",
                s["small"],
            ),
            Spacer(1, 8),
        ]
        if not entries:
            story.append(Paragraph("No transcript messages available", s["empty"]))
            return story

        for entry in entries:
            is_patient = entry.role == "user"
            role_style = s["patient_role"] if is_patient else s["assistant_role"]
            msg_style = s["patient_msg"] if is_patient else s["assistant_msg"]
            story.append(
                KeepTogether(
                    [
                        Paragraph(f"[{entry.label}]", role_style),
                        Paragraph(_p(entry.text), msg_style),
                        Spacer(1, 6),
                    ]
                )
            )
        return story
