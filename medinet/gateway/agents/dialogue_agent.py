"""
Dialogue Agent — The Interviewer.

Greets the patient and asks one focused follow-up question per turn until
enough has been gathered for a diagnosis.  Readiness is decided from the
model's DIAGNOSIS_READY sentinel together with the per-session turn count
the orchestrator passes in; the agent itself holds no conversation state,
so one instance serves every session.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel

from medinet import settings
from medinet.gateway.agents.llm_utils import CompletionClient, CompletionError
from medinet.gateway.session import Turn, format_transcript

logger = logging.getLogger("gateway.agents.dialogue")

DIAGNOSIS_READY = "DIAGNOSIS_READY"

_SENTINEL_RE = re.compile(rf"^{DIAGNOSIS_READY}[:\s]*", re.IGNORECASE)

TRANSITION_SENTENCE = (
    "Thank you for providing detailed information. "
    "Let me analyze your symptoms now."
)

# Indexed by min(turn_count - 1, 5)
FALLBACK_QUESTIONS: list[str] = [
    "I understand. How long have you been experiencing these symptoms?",
    "On a scale of 1-10, how severe is your discomfort?",
    "Have you noticed any other symptoms along with this?",
    "Does anything make your symptoms better or worse?",
    "Have you had similar issues in the past?",
    "Thank you for sharing. Let me analyze this information.",
]

DOCTOR_SYSTEM_PROMPT = """\
You are an empathetic AI medical assistant conducting a preliminary consultation.

Ask ONE clear, focused follow-up question at a time about:
- Duration of symptoms (how long?)
- Severity or intensity (mild, moderate, severe?)
- Associated symptoms (anything else?)
- Triggering factors (what makes it worse or better?)
- Previous medical history (had this before?)

Be conversational and caring. Keep questions simple and direct, and never ask
several questions at once. After 4-6 detailed exchanges with good symptom
information, start your response with "DIAGNOSIS_READY".

You are gathering information only, not diagnosing. Keep responses under
2 sentences."""


class DialogueTurn(BaseModel):
    text: str
    ready_for_diagnosis: bool = False


class ConsultationDialogue:
    """Produces the assistant's side of the questioning stage."""

    def __init__(
        self,
        completion: CompletionClient,
        min_turns: int | None = None,
        max_turns: int | None = None,
    ) -> None:
        self._completion = completion
        self.min_turns = min_turns if min_turns is not None else settings.MIN_TURNS
        self.max_turns = max_turns if max_turns is not None else settings.MAX_TURNS

    def greet(self, patient_name: str | None = None) -> str:
        name = f" {patient_name}" if patient_name else ""
        return (
            f"Hello{name}! I'm your AI medical assistant. I'm here to help "
            "understand your health concerns and guide you to the right "
            "specialist.\n\n"
            "Please describe your main symptoms or what's bothering you today.\n\n"
            "Note: This is a preliminary screening tool, not a substitute for "
            "professional medical advice."
        )

    async def next_turn(self, transcript: list[Turn], turn_count: int) -> DialogueTurn:
        """
        Ask the model for the next question given the transcript so far.

        ``turn_count`` is the session's counter after it was incremented for
        the patient message that triggered this call.
        """
        prompt = self._build_prompt(transcript, turn_count)
        try:
            raw = await self._completion.complete(prompt, DOCTOR_SYSTEM_PROMPT)
        except CompletionError as exc:
            logger.warning(
                "Dialogue completion failed at turn %d, using fallback question: %s",
                turn_count, exc,
            )
            return self.fallback_turn(turn_count)

        return self.interpret(raw, turn_count)

    def interpret(self, raw: str, turn_count: int) -> DialogueTurn:
        """Apply the readiness rule to a raw model response."""
        trimmed = raw.strip()
        has_sentinel = bool(_SENTINEL_RE.match(trimmed))
        reached_max = turn_count >= self.max_turns
        ready = (has_sentinel and turn_count >= self.min_turns) or reached_max

        text = _SENTINEL_RE.sub("", trimmed, count=1).strip()
        if (reached_max and not has_sentinel) or not text:
            text = TRANSITION_SENTENCE

        logger.info(
            "Dialogue turn %d/%d: sentinel=%s ready=%s",
            turn_count, self.max_turns, has_sentinel, ready,
        )
        return DialogueTurn(text=text, ready_for_diagnosis=ready)

    def fallback_turn(self, turn_count: int) -> DialogueTurn:
        index = min(max(turn_count, 1) - 1, len(FALLBACK_QUESTIONS) - 1)
        return DialogueTurn(
            text=FALLBACK_QUESTIONS[index],
            ready_for_diagnosis=turn_count >= self.max_turns,
        )

    def _build_prompt(self, transcript: list[Turn], turn_count: int) -> str:
        return (
            "You are conducting a medical consultation. Review the conversation "
            "and decide:\n"
            "1. If you need more information, ask ONE specific follow-up question\n"
            f"2. If you have enough information, respond with \"{DIAGNOSIS_READY}\" "
            "at the start\n\n"
            f"Current question count: {turn_count}/{self.max_turns}\n\n"
            f"Conversation:\n{format_transcript(transcript)}\n\n"
            f"Your response (if ready for diagnosis, start with \"{DIAGNOSIS_READY}\"):"
        )
