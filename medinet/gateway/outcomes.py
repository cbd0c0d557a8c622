"""
Consultation outcomes — the diagnosis and appointment produced once per session.
"""

from __future__ import annotations

import uuid
import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UrgencyTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


# Urgency → booking priority rank (1 = most urgent)
PRIORITY_BY_URGENCY: dict[UrgencyTier, int] = {
    UrgencyTier.CRITICAL: 1,
    UrgencyTier.HIGH: 2,
    UrgencyTier.MEDIUM: 3,
    UrgencyTier.LOW: 4,
}

PRIORITY_LABELS: dict[int, str] = {
    1: "Critical (Urgent)",
    2: "High Priority",
    3: "Medium Priority",
    4: "Low Priority",
}


def priority_label(priority: int) -> str:
    return PRIORITY_LABELS.get(priority, "Standard")


class Disease(BaseModel):
    name: str
    confidence: int = Field(default=50, ge=0, le=100)
    severity: int = Field(default=50, ge=0, le=100)
    description: Optional[str] = None


class DiagnosisOutcome(BaseModel):
    diseases: list[Disease] = Field(min_length=1)
    severity_score: int = Field(ge=0, le=100)
    urgency: UrgencyTier
    # Empty until the SpecialtyResolver runs
    specialty: str = ""
    recommended_actions: list[str] = Field(default_factory=list)
    # True when the classifier fell back to the fixed outcome
    degraded: bool = False

    @property
    def top_disease(self) -> Disease:
        return self.diseases[0]


class Appointment(BaseModel):
    appointment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    consultation_id: str
    patient_id: str
    doctor_id: str
    date: dt.date
    time: str  # "HH:MM"
    priority: int = Field(ge=1, le=4)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: str = ""
