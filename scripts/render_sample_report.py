"""
Render a sample intake report to disk without calling any external service.

    python scripts/render_sample_report.py [output.pdf]
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

from demo_intake.schemas.intake import IntakeAnalysis
from demo_intake.schemas.session import messages_from_raw
from demo_intake.services.report_service import ReportRenderer
from demo_intake.util.time import format_report_date

TRANSCRIPT = [
    {"role": "assistant", "content": "Hi, I'm the intake assistant. What brings you in today?"},
    {"role": "user", "content": "My name is Jane. I've had a pounding headache for three days."},
    {"role": "assistant", "content": "Any other symptoms, like fever or nausea?"},
    {"role": "user", "content": "Some nausea in the mornings. I take lisinopril for blood pressure."},
    {"role": "assistant", "content": "Any allergies to medications?"},
    {"role": "user", "content": "Penicillin gives me hives."},
]

ANALYSIS = IntakeAnalysis(
    patient_name="Jane",
    chief_complaint="Headache for three days with morning nausea.",
    symptoms=["Headache (3 days)", "Morning nausea"],
    medical_history=["Hypertension"],
    medications=["Lisinopril"],
    allergies=["Penicillin (hives)"],
    urgency_level="medium",
    key_quotes=["I've had a pounding headache for three days."],
    recommended_actions=["Check blood pressure", "Neurological exam"],
    summary="Adult patient with a three-day headache and morning nausea; on lisinopril; penicillin allergy.",
)


def main() -> None:
    out = Path(sys.argv[1] if len(sys.argv) > 1 else "sample-intake-report.pdf")
    now = datetime.now(timezone.utc)
    pdf = ReportRenderer().render(
        analysis=ANALYSIS,
        transcript=messages_from_raw(TRANSCRIPT),
        patient_name=ANALYSIS.patient_name,
        report_date=format_report_date(now),
        session_id="sample-session",
        project_name="Sample Clinic",
        duration_seconds=312,
        perception_analysis="Appeared tired; touched forehead several times.",
        generated_at=now,
    )
    out.write_bytes(pdf)
    print(f"✅ Wrote {len(pdf)} bytes to {out}")


if __name__ == "__main__":
    main()
