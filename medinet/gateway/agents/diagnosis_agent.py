"""
Diagnosis Agent — The Classifier.

Turns a finished questioning transcript into a ranked disease list, an
aggregate severity score and an urgency tier.  Never raises: a failed or
unparseable model response yields the fixed fallback outcome with
``degraded=True`` so the pipeline always has something to book against.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from medinet import settings
from medinet.gateway.agents.llm_utils import (
    CompletionClient,
    CompletionError,
    extract_json_object,
)
from medinet.gateway.outcomes import DiagnosisOutcome, Disease, UrgencyTier
from medinet.gateway.session import Turn, TurnRole

logger = logging.getLogger("gateway.agents.diagnosis")

DEFAULT_ACTIONS = [
    "Consult with a medical professional",
    "Monitor your symptoms",
]

DIAGNOSIS_SYSTEM_PROMPT = """\
You are a medical AI that analyzes symptoms and predicts possible diseases.
Given a patient's symptoms you must:
1. Identify the 3-5 most likely diseases or conditions
2. Assign a confidence score (0-100) and a severity (0-100) to each
3. Calculate an overall severity score (0-100) based on symptom urgency
4. Categorize urgency as: low, medium, high, or critical

Format your response as JSON:
{
  "diseases": [{"name": "Disease Name", "confidence": 85, "severity": 60, "description": "Brief explanation"}],
  "overallSeverity": 65,
  "urgencyLevel": "medium",
  "recommendedActions": ["Action 1", "Action 2"]
}

This is preliminary screening, not a diagnosis."""


def fallback_outcome() -> DiagnosisOutcome:
    return DiagnosisOutcome(
        diseases=[
            Disease(
                name="Common Viral Infection",
                confidence=60,
                severity=40,
                description="Based on general symptoms",
            )
        ],
        severity_score=40,
        urgency=UrgencyTier.LOW,
        recommended_actions=[
            "Rest and stay hydrated",
            "Monitor symptoms",
            "Consult a doctor if symptoms worsen",
        ],
        degraded=True,
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_score(value: Any, default: int = 50) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return max(0, min(100, _round_half_up(number)))


def aggregate_severity(diseases: list[Disease]) -> int:
    """Confidence-weighted mean of disease severities, 50 when Σc is zero."""
    total_confidence = sum(d.confidence for d in diseases)
    if total_confidence == 0:
        return 50
    weighted = sum(d.confidence * d.severity for d in diseases)
    return _round_half_up(weighted / total_confidence)


def urgency_for_score(
    score: int, thresholds: dict[str, int] | None = None
) -> UrgencyTier:
    t = thresholds or settings.SEVERITY_THRESHOLDS
    if score >= t["critical"]:
        return UrgencyTier.CRITICAL
    if score >= t["high"]:
        return UrgencyTier.HIGH
    if score >= t["medium"]:
        return UrgencyTier.MEDIUM
    return UrgencyTier.LOW


class SymptomSeverityClassifier:
    """Classifies a transcript into a DiagnosisOutcome (specialty left empty)."""

    def __init__(
        self,
        completion: CompletionClient,
        thresholds: dict[str, int] | None = None,
    ) -> None:
        self._completion = completion
        self._thresholds = thresholds or dict(settings.SEVERITY_THRESHOLDS)

    async def classify(self, transcript: list[Turn]) -> DiagnosisOutcome:
        prompt = self._build_prompt(transcript)
        try:
            raw = await self._completion.complete(prompt, DIAGNOSIS_SYSTEM_PROMPT)
        except CompletionError as exc:
            logger.warning("Diagnosis completion failed, using fallback: %s", exc)
            return fallback_outcome()

        data = extract_json_object(raw)
        if data is None:
            logger.warning("Diagnosis response had no JSON object, using fallback")
            return fallback_outcome()

        try:
            outcome = self.parse(data)
        except Exception as exc:
            logger.warning("Diagnosis payload rejected, using fallback: %s", exc)
            return fallback_outcome()

        if outcome is None:
            logger.warning("Diagnosis payload listed no named diseases, using fallback")
            return fallback_outcome()

        logger.info(
            "Diagnosis: top=%s severity=%d urgency=%s (%d candidates)",
            outcome.top_disease.name, outcome.severity_score,
            outcome.urgency.value, len(outcome.diseases),
        )
        return outcome

    def parse(self, data: dict[str, Any]) -> DiagnosisOutcome | None:
        """Build an outcome from the decoded JSON, or None if no disease survives."""
        raw_diseases = data.get("diseases")
        if not isinstance(raw_diseases, list):
            return None

        diseases: list[Disease] = []
        for item in raw_diseases:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            description = item.get("description")
            diseases.append(
                Disease(
                    name=name.strip(),
                    confidence=_clamp_score(item.get("confidence")),
                    severity=_clamp_score(item.get("severity")),
                    description=description if isinstance(description, str) else None,
                )
            )
        if not diseases:
            return None

        # sorted() is stable, so equal confidences keep the model's order
        diseases = sorted(diseases, key=lambda d: d.confidence, reverse=True)

        overall = data.get("overallSeverity")
        if overall is None or isinstance(overall, bool):
            severity_score = aggregate_severity(diseases)
        else:
            severity_score = _clamp_score(overall, default=aggregate_severity(diseases))

        urgency = self._coerce_urgency(data.get("urgencyLevel"), severity_score)

        actions = data.get("recommendedActions")
        if isinstance(actions, list):
            actions = [str(a) for a in actions if str(a).strip()]
        if not actions:
            actions = list(DEFAULT_ACTIONS)

        return DiagnosisOutcome(
            diseases=diseases,
            severity_score=severity_score,
            urgency=urgency,
            recommended_actions=actions,
        )

    def _coerce_urgency(self, value: Any, severity_score: int) -> UrgencyTier:
        if isinstance(value, str):
            try:
                return UrgencyTier(value.strip().lower())
            except ValueError:
                logger.debug("Ignoring unknown urgency tier %r", value)
        return urgency_for_score(severity_score, self._thresholds)

    @staticmethod
    def generate_summary(outcome: DiagnosisOutcome) -> str:
        top = outcome.top_disease
        actions = "\n".join(
            f"{i}. {action}" for i, action in enumerate(outcome.recommended_actions, 1)
        )
        return (
            f"Based on our conversation, the most likely condition is "
            f"**{top.name}** ({top.confidence}% confidence).\n\n"
            f"**Severity Level**: {outcome.urgency.value.upper()}\n"
            f"**Recommended Specialty**: {outcome.specialty or 'General Medicine'}\n\n"
            f"**Recommended Actions**:\n{actions}\n\n"
            "**Important**: This is an AI-generated preliminary assessment, not a "
            "medical diagnosis. Please consult with a healthcare professional for "
            "accurate diagnosis and treatment."
        )

    @staticmethod
    def _build_prompt(transcript: list[Turn]) -> str:
        patient_text = " | ".join(
            t.text for t in transcript if t.role == TurnRole.PATIENT
        )
        conversation = "\n".join(
            f"{'Patient' if t.role == TurnRole.PATIENT else 'Doctor'}: {t.text}"
            for t in transcript
            if t.role != TurnRole.SYSTEM
        )
        return (
            "Analyze these symptoms and provide a diagnosis in JSON format.\n\n"
            f"Patient Symptoms Summary: {patient_text}\n\n"
            f"Full Conversation Context:\n{conversation}\n\n"
            "Respond with JSON only."
        )
