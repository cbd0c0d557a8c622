"""
Consultation Session — in-memory state for one live patient conversation.

One Session per active conversation, owned by the SessionOrchestrator's
session table.  The transcript is append-only while the session is active;
once the status leaves ACTIVE no further turns may be appended.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConsultationStage(str, Enum):
    GREETING = "greeting"
    QUESTIONING = "questioning"
    DIAGNOSING = "diagnosing"
    BOOKING = "booking"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TurnRole(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"
    SYSTEM = "system"


TERMINAL_STATUSES = {SessionStatus.COMPLETED, SessionStatus.CANCELLED}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Errors
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SessionNotFoundError(Exception):
    """The session id is unknown (never created or already evicted)."""


class SessionClosedError(SessionNotFoundError):
    """The session exists but is terminal; the caller must start a new one."""


class SessionCreationError(Exception):
    """The ledger could not create the consultation record."""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class GeoPoint(BaseModel):
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return -90 <= self.latitude <= 90 and -180 <= self.longitude <= 180


class Turn(BaseModel):
    """One utterance.  Frozen once created."""

    model_config = ConfigDict(frozen=True)

    turn_id: str = Field(default_factory=_new_uuid)
    role: TurnRole
    text: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: Optional[dict[str, Any]] = None


class Session(BaseModel):
    session_id: str = Field(default_factory=_new_uuid)
    consultation_id: str
    patient_id: str
    patient_name: Optional[str] = None
    transcript: list[Turn] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    stage: ConsultationStage = ConsultationStage.GREETING
    # Dialogue counter: one per processed patient message in this session
    turn_count: int = 0
    location: Optional[GeoPoint] = None
    started_at: datetime = Field(default_factory=_now)
    last_activity: datetime = Field(default_factory=_now)
    # Set when an end request arrives while a pipeline step holds the session
    pending_close: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def append_turn(
        self,
        role: TurnRole,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> Turn:
        if not self.is_active:
            raise SessionClosedError(
                f"Session {self.session_id} is {self.status.value}; "
                "no further turns may be appended"
            )
        turn = Turn(role=role, text=text, metadata=metadata)
        self.transcript.append(turn)
        self.last_activity = turn.timestamp
        return turn

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or _now()) - self.started_at).total_seconds()

    def finish(self, status: SessionStatus) -> None:
        """Move to a terminal status.  No-op if already terminal."""
        if self.is_terminal:
            return
        self.status = status
        self.stage = (
            ConsultationStage.COMPLETED
            if status == SessionStatus.COMPLETED
            else ConsultationStage.CANCELLED
        )


def format_transcript(transcript: list[Turn]) -> str:
    """Render a transcript as 'Patient: ...' / 'AI Doctor: ...' lines."""
    labels = {
        TurnRole.PATIENT: "Patient",
        TurnRole.ASSISTANT: "AI Doctor",
        TurnRole.SYSTEM: "System",
    }
    return "\n".join(f"{labels[t.role]}: {t.text}" for t in transcript)
