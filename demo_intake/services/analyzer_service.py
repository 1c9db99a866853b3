from __future__ import annotations

import json
import logging
import re
from typing import Optional, Protocol

from demo_intake.schemas.intake import UNKNOWN_PATIENT, IntakeAnalysis, coerce_intake_analysis
from demo_intake.schemas.session import Message
from demo_intake.services.llm_service import LLMError, extract_json_object

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, *, system: str, user: str) -> str: ...


ANALYSIS_SYSTEM_PROMPT = (
    "You are a medical intake analysis assistant. "
    "You extract structured information from intake conversations for a doctor's review. "
    "Output ONLY a JSON object, with no markdown and no commentary."
)

ANALYSIS_PROMPT = """Analyze the following conversation transcript between a patient and an AI intake nurse. Extract structured information for a doctor's review.

IMPORTANT: Be thorough but only include information that was actually discussed in the conversation. Do not invent or assume information that wasn't mentioned.

Return a JSON object with exactly these fields:

{
  "patientName": "The patient's name if mentioned, otherwise 'Unknown Patient'",
  "chiefComplaint": "The main reason for the visit in 1-2 sentences",
  "symptoms": ["List of symptoms reported by the patient"],
  "medicalHistory": ["Any medical history mentioned (conditions, surgeries, etc.)"],
  "medications": ["Current medications mentioned"],
  "allergies": ["Any allergies mentioned"],
  "urgencyLevel": "low, medium, or high based on symptoms described",
  "keyQuotes": ["Important direct quotes from the patient (max 5)"],
  "recommendedActions": ["Suggested follow-up actions for the doctor (max 5)"],
  "summary": "A 2-3 sentence summary of the intake for quick doctor review"
}

Guidelines for urgency level:
- HIGH: Chest pain, difficulty breathing, severe bleeding, stroke symptoms, severe allergic reaction, thoughts of self-harm
- MEDIUM: Fever over 101F, persistent pain, vomiting, concerning symptoms that aren't immediately life-threatening
- LOW: Routine complaints, minor injuries, prescription refills, general questions

TRANSCRIPT:
"""

ROLE_LABELS = {"user": "PATIENT", "assistant": "AI INTAKE NURSE"}


def format_transcript(transcript: list[Message]) -> str:
    """Role-labelled text block in conversation order, system turns removed."""
    blocks: list[str] = []
    for msg in transcript:
        if msg.role == "system":
            continue
        label = ROLE_LABELS.get(msg.role, msg.role.upper())
        stamp = f" [{msg.timestamp}]" if msg.timestamp else ""
        blocks.append(f"{label}{stamp}: {msg.content}")
    return "\n\n".join(blocks)


class TranscriptAnalyzer:
    def __init__(self, llm: TextGenerator) -> None:
        self._llm = llm

    def analyze(self, transcript: list[Message]) -> IntakeAnalysis:
        """
        Structured intake record for a transcript. Never raises: any failure yields
        IntakeAnalysis.fallback().
        """
        try:
            formatted = format_transcript(transcript)
            raw = self._llm.generate(system=ANALYSIS_SYSTEM_PROMPT, user=ANALYSIS_PROMPT + formatted)
            parsed = json.loads(extract_json_object(raw))
            if not isinstance(parsed, dict):
                raise LLMError(f"Analysis JSON is a {type(parsed).__name__}, not an object")
            analysis = coerce_intake_analysis(parsed)
        except Exception as e:  # noqa: BLE001
            logger.warning("Transcript analysis failed; using fallback record: %s", e, exc_info=True)
            return IntakeAnalysis.fallback()

        logger.info(
            "Transcript analyzed. urgency=%s symptoms=%d allergies=%d quotes=%d",
            analysis.urgency_level,
            len(analysis.symptoms),
            len(analysis.allergies),
            len(analysis.key_quotes),
        )
        return analysis


_NAME_PATTERNS = (
    # (pattern, captured word must be capitalized in the transcript)
    (re.compile(r"\bmy name is ([a-z]+)", re.IGNORECASE), False),
    (re.compile(r"\bi(?:'|’)?m ([a-z]+)", re.IGNORECASE), True),
    (re.compile(r"\bcall me ([a-z]+)", re.IGNORECASE), False),
)

# Words that follow "I'm" in ordinary speech and are never names.
_NOT_NAMES = frozenset(
    {
        "a", "an", "the", "not", "so", "just", "here", "fine", "good", "okay", "ok", "well",
        "feeling", "having", "getting", "going", "doing", "being", "trying", "still", "really",
        "very", "sick", "tired", "sorry", "sure", "worried", "concerned", "scared", "allergic",
        "taking", "on", "in", "at", "from", "also", "pregnant", "currently", "about", "afraid",
    }
)


def extract_patient_name(transcript: list[Message]) -> str:
    """
    First name introduced by the patient ("my name is X", "I'm X", "call me X"),
    capitalized, or "Unknown Patient".
    """
    for msg in transcript:
        if msg.role != "user" or not msg.content:
            continue
        for pattern, needs_capital in _NAME_PATTERNS:
            for match in pattern.finditer(msg.content):
                word = match.group(1)
                if word.lower() in _NOT_NAMES:
                    continue
                if needs_capital and not word[:1].isupper():
                    continue
                return word[:1].upper() + word[1:].lower()
    return UNKNOWN_PATIENT


def resolve_patient_name(
    *,
    session_name: Optional[str],
    analysis: IntakeAnalysis,
    transcript: list[Message],
) -> str:
    """Session field, then the analysis, then the transcript, then "Unknown Patient"."""
    if session_name and session_name.strip():
        return session_name.strip()
    if analysis.patient_name and analysis.patient_name != UNKNOWN_PATIENT:
        return analysis.patient_name
    return extract_patient_name(transcript)
