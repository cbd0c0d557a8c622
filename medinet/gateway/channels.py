"""
Channel Abstractions — outbound delivery of the specialist report.

The NotificationFanout never talks to a transport directly.  It iterates
the ReportChannels it was given; adding a channel is:
  1. Implement a ReportChannel subclass in dispatchers/
  2. Register it in setup.py
Zero changes to the fan-out or the orchestrator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from medinet.gateway.agents.location_agent import LocationInfo
from medinet.gateway.directory import Doctor, PatientProfile
from medinet.gateway.outcomes import Appointment, DiagnosisOutcome

logger = logging.getLogger("gateway.channels")


class PatientReport(BaseModel):
    """Everything a specialist needs about one finished consultation."""

    consultation_id: str
    patient: PatientProfile
    transcript: list[str] = Field(default_factory=list)
    diagnosis: DiagnosisOutcome
    appointment: Appointment
    doctor: Doctor
    location: Optional[LocationInfo] = None
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class DeliveryResult(BaseModel):
    """Outcome of a single report delivery attempt."""

    success: bool
    channel: str
    recipient: str = ""
    # Set when the channel was not configured or had no address to send to
    skipped: bool = False
    error: Optional[str] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class ReportChannel(ABC):
    """Abstract outbound channel for the specialist report."""

    channel_name: str = ""  # overridden by subclasses

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when the channel's credentials are present."""

    @abstractmethod
    async def send(self, report: PatientReport) -> DeliveryResult:
        """Deliver one report.  Should return a DeliveryResult rather than raise."""

    def skip(self, reason: str, recipient: str = "") -> DeliveryResult:
        logger.info("%s channel skipped: %s", self.channel_name, reason)
        return DeliveryResult(
            success=False,
            channel=self.channel_name,
            recipient=recipient,
            skipped=True,
            error=reason,
        )
