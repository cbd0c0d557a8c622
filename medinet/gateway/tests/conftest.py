"""
Test configuration for gateway tests.

Builds a consultation core from in-process fakes and patches it into
medinet.gateway.setup, the same singletons the routers read at request time.
"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from medinet.gateway.agents.booking_agent import SlotScheduler
from medinet.gateway.agents.diagnosis_agent import (
    DIAGNOSIS_SYSTEM_PROMPT,
    SymptomSeverityClassifier,
)
from medinet.gateway.agents.dialogue_agent import ConsultationDialogue
from medinet.gateway.agents.llm_utils import CompletionClient
from medinet.gateway.agents.location_agent import LocationDistanceAgent
from medinet.gateway.agents.report_agent import NotificationFanout
from medinet.gateway.agents.specialty_mapper import SpecialtyResolver
from medinet.gateway.channels import DeliveryResult, ReportChannel
from medinet.gateway.directory import Doctor, DoctorDirectory, PatientDirectory, PatientProfile
from medinet.gateway.ledger import ConsultationLedger
from medinet.gateway.orchestrator import SessionOrchestrator
from medinet.gateway.realtime import RealtimeGateway

SCHEDULER_NOW = datetime(2025, 3, 12, 14, 20)

DIAGNOSIS_RESPONSE = (
    '{"diseases": [{"name": "Acute Migraine", "confidence": 80, "severity": 75}],'
    ' "recommendedActions": ["Rest in a dark room"]}'
)


class StubCompletion(CompletionClient):
    """Numbered follow-up questions for the dialogue, a fixed JSON diagnosis."""

    def __init__(self):
        self.questions = 0

    async def complete(self, prompt: str, system_instructions: str = "") -> str:
        if system_instructions == DIAGNOSIS_SYSTEM_PROMPT:
            return DIAGNOSIS_RESPONSE
        self.questions += 1
        return f"Question {self.questions}?"


class RecordingChannel(ReportChannel):

    def __init__(self, name: str):
        self.channel_name = name
        self.sent = []

    @property
    def is_configured(self) -> bool:
        return True

    async def send(self, report) -> DeliveryResult:
        self.sent.append(report)
        return DeliveryResult(success=True, channel=self.channel_name)


def build_core(max_turns: int = 2) -> SimpleNamespace:
    completion = StubCompletion()
    ledger = ConsultationLedger()
    doctors = DoctorDirectory(doctors=[
        Doctor(doctor_id="D-N1", name="Nina Patel", specialty="Neurology",
               experience_years=15, email="np@clinic.test"),
        Doctor(doctor_id="D-GM", name="Grace Moore", specialty="General Medicine",
               experience_years=8),
    ])
    scheduler = SlotScheduler(doctors, ledger, clock=lambda: SCHEDULER_NOW)
    channels = [RecordingChannel("email"), RecordingChannel("whatsapp")]
    orchestrator = SessionOrchestrator(
        ledger=ledger,
        dialogue=ConsultationDialogue(completion, min_turns=1, max_turns=max_turns),
        classifier=SymptomSeverityClassifier(completion),
        specialty_resolver=SpecialtyResolver(completion),
        scheduler=scheduler,
        notifier=NotificationFanout(channels, timeout_seconds=1),
        location_agent=LocationDistanceAgent(api_key=""),
        patient_directory=PatientDirectory(patients=[
            PatientProfile(patient_id="p1", name="Pat One"),
        ]),
    )
    return SimpleNamespace(
        completion=completion,
        ledger=ledger,
        scheduler=scheduler,
        channels=channels,
        orchestrator=orchestrator,
        gateway=RealtimeGateway(orchestrator),
    )


def build_app() -> FastAPI:
    from medinet.routers import consultation, health, realtime

    app = FastAPI()
    app.include_router(health.router)
    app.include_router(consultation.router)
    app.include_router(realtime.router)
    return app


@pytest.fixture
def core():
    return build_core()


@pytest.fixture
def client(core):
    """TestClient over the core routers with the fake core patched into setup."""
    with patch("medinet.gateway.setup._orchestrator", core.orchestrator), \
         patch("medinet.gateway.setup._ledger", core.ledger), \
         patch("medinet.gateway.setup._scheduler", core.scheduler), \
         patch("medinet.gateway.setup._realtime_gateway", core.gateway):
        with TestClient(build_app()) as test_client:
            yield test_client


@pytest.fixture
def uninitialized_client():
    with patch("medinet.gateway.setup._orchestrator", None), \
         patch("medinet.gateway.setup._ledger", None), \
         patch("medinet.gateway.setup._scheduler", None), \
         patch("medinet.gateway.setup._realtime_gateway", None):
        with TestClient(build_app()) as test_client:
            yield test_client
