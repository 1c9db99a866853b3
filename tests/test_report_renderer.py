from __future__ import annotations

from datetime import datetime, timezone

import pytest

import demo_intake.services.report_service as report_service
from demo_intake.schemas.intake import IntakeAnalysis
from demo_intake.schemas.session import messages_from_raw
from demo_intake.services.report_service import ReportRenderError, ReportRenderer, transcript_entries

GENERATED_AT = datetime(2026, 10, 19, 14, 30, tzinfo=timezone.utc)

TRANSCRIPT = messages_from_raw(
    [
        {"role": "system", "content": "persona"},
        {"role": "assistant", "content": "What brings you in today?"},
        {"role": "user", "content": "Chest pain <sharp> & short of breath"},
        {"role": "system", "content": "tool call"},
        {"role": "assistant", "content": ""},
        {"role": "user", "content": "It started at 3am."},
    ]
)

ANALYSIS = IntakeAnalysis(
    patient_name="Jane",
    chief_complaint="Chest pain with shortness of breath",
    symptoms=["Chest pain", "Shortness of breath"],
    allergies=["Penicillin"],
    urgency_level="high",
    key_quotes=["It feels like pressure"],
    recommended_actions=["ECG", "Troponin"],
    summary="Possible cardiac event.",
)


def _render(**overrides) -> bytes:
    kwargs = dict(
        analysis=ANALYSIS,
        transcript=TRANSCRIPT,
        patient_name="Jane",
        report_date="October 19, 2026",
        session_id="S1",
        project_name="Cardio Clinic",
        duration_seconds=425,
        perception_analysis="Clutching chest.",
        generated_at=GENERATED_AT,
    )
    kwargs.update(overrides)
    return ReportRenderer(facility_name="TEST CLINIC").render(**kwargs)


def test_transcript_entries_keep_order_and_skip_system():
    entries = transcript_entries(TRANSCRIPT)

    assert len(entries) == len([m for m in TRANSCRIPT if m.role != "system"])
    assert [e.label for e in entries] == ["AI INTAKE", "PATIENT", "AI INTAKE", "PATIENT"]
    assert entries[1].text == "Chest pain <sharp> & short of breath"
    assert entries[2].text == "(no speech captured)"
    assert entries[3].text == "It started at 3am."


def test_render_produces_pdf():
    pdf = _render()

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_render_is_deterministic_for_same_inputs():
    assert _render() == _render()


def test_render_with_empty_sections():
    pdf = _render(
        analysis=IntakeAnalysis.fallback(),
        transcript=[],
        project_name=None,
        duration_seconds=None,
        perception_analysis=None,
        generated_at=None,
    )

    assert pdf.startswith(b"%PDF")


def test_long_transcript_paginates():
    long_transcript = messages_from_raw(
        [{"role": "user" if i % 2 else "assistant", "content": f"Message number {i}. " * 20} for i in range(120)]
    )

    pdf = _render(transcript=long_transcript)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > len(_render())


def test_build_failure_is_wrapped(monkeypatch):
    def boom(self, *args, **kwargs):
        raise ValueError("layout exploded")

    monkeypatch.setattr(report_service.SimpleDocTemplate, "build", boom)

    with pytest.raises(ReportRenderError) as err:
        _render()
    assert "layout exploded" in str(err.value)


def test_perception_text_longer_than_a_page_splits_across_pages():
    perception = "Patient appears calm, maintains eye contact and speaks in full sentences. " * 150

    pdf = _render(perception_analysis=perception)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > len(_render())


def test_summary_and_chief_complaint_longer_than_a_page_still_render():
    analysis = ANALYSIS.model_copy(
        update={
            "summary": "Long clinical summary sentence. " * 300,
            "chief_complaint": "Recurring chest pressure on exertion. " * 120,
            "allergies": [f"Allergen {i}" for i in range(90)],
        }
    )

    pdf = _render(analysis=analysis)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > len(_render())
