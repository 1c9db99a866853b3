from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

UrgencyLevel = Literal["low", "medium", "high"]
URGENCY_LEVELS: tuple[str, ...] = ("low", "medium", "high")

UNKNOWN_PATIENT = "Unknown Patient"
MAX_KEY_QUOTES = 5
MAX_RECOMMENDED_ACTIONS = 5

# Placeholders used when the upstream record omits a string field.
DEFAULT_CHIEF_COMPLAINT = "Not specified"
DEFAULT_SUMMARY = "No summary available"

FALLBACK_CHIEF_COMPLAINT = "Unable to analyze - see transcript"
FALLBACK_SUMMARY = "Automated analysis failed. Please review the full transcript."
FALLBACK_ACTIONS = ["Review full transcript manually"]

# Upstream JSON keys, as demanded by the analysis prompt.
_LIST_FIELDS = {
    "symptoms": "symptoms",
    "medicalHistory": "medical_history",
    "medications": "medications",
    "allergies": "allergies",
}


class IntakeAnalysis(BaseModel):
    patient_name: str = Field(default=UNKNOWN_PATIENT)
    chief_complaint: str = Field(default=DEFAULT_CHIEF_COMPLAINT)
    symptoms: list[str] = Field(default_factory=list)
    medical_history: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    urgency_level: UrgencyLevel = Field(default="low")
    key_quotes: list[str] = Field(default_factory=list, max_length=MAX_KEY_QUOTES)
    recommended_actions: list[str] = Field(default_factory=list, max_length=MAX_RECOMMENDED_ACTIONS)
    summary: str = Field(default=DEFAULT_SUMMARY)

    @classmethod
    def fallback(cls) -> "IntakeAnalysis":
        """The fixed record returned whenever automated analysis fails."""
        return cls(
            patient_name=UNKNOWN_PATIENT,
            chief_complaint=FALLBACK_CHIEF_COMPLAINT,
            urgency_level="medium",
            recommended_actions=list(FALLBACK_ACTIONS),
            summary=FALLBACK_SUMMARY,
        )


def _coerce_str(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        if isinstance(item, bool) or item is None:
            continue
        if isinstance(item, (str, int, float)):
            text = str(item).strip()
            if text:
                out.append(text)
    return out


def _coerce_urgency(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in URGENCY_LEVELS:
        return value.strip().lower()
    return "low"


def coerce_intake_analysis(raw: dict[str, Any]) -> IntakeAnalysis:
    """
    Field-by-field validation of an untrusted analysis object.

    Non-list arrays become [], unknown urgency becomes "low", quotes and actions
    are capped at five, and missing strings take their placeholder text.
    """
    lists = {attr: _coerce_str_list(raw.get(key)) for key, attr in _LIST_FIELDS.items()}
    return IntakeAnalysis(
        patient_name=_coerce_str(raw.get("patientName"), UNKNOWN_PATIENT),
        chief_complaint=_coerce_str(raw.get("chiefComplaint"), DEFAULT_CHIEF_COMPLAINT),
        urgency_level=_coerce_urgency(raw.get("urgencyLevel")),  # type: ignore[arg-type]
        key_quotes=_coerce_str_list(raw.get("keyQuotes"))[:MAX_KEY_QUOTES],
        recommended_actions=_coerce_str_list(raw.get("recommendedActions"))[:MAX_RECOMMENDED_ACTIONS],
        summary=_coerce_str(raw.get("summary"), DEFAULT_SUMMARY),
        **lists,
    )
