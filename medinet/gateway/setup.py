"""
Core Setup — initializes and wires together the consultation core.

Called once during app startup.  Every collaborator can be overridden,
which is how the tests assemble a core with fake completion and channels.
If initialization fails the app keeps serving health checks and the core
routes answer 503.
"""

from __future__ import annotations

import logging

from medinet import settings
from medinet.gateway.agents.booking_agent import SlotScheduler
from medinet.gateway.agents.diagnosis_agent import SymptomSeverityClassifier
from medinet.gateway.agents.dialogue_agent import ConsultationDialogue
from medinet.gateway.agents.llm_utils import CompletionClient, GeminiCompletionClient
from medinet.gateway.agents.location_agent import LocationDistanceAgent
from medinet.gateway.agents.report_agent import NotificationFanout
from medinet.gateway.agents.specialty_mapper import SpecialtyResolver
from medinet.gateway.channels import ReportChannel
from medinet.gateway.directory import DoctorDirectory, PatientDirectory
from medinet.gateway.dispatchers.email_dispatcher import EmailReportDispatcher
from medinet.gateway.dispatchers.whatsapp_dispatcher import WhatsAppReportDispatcher
from medinet.gateway.ledger import ConsultationLedger
from medinet.gateway.orchestrator import SessionOrchestrator
from medinet.gateway.realtime import RealtimeGateway

logger = logging.getLogger("gateway.setup")

# Module-level singletons (set during initialize)
_ledger: ConsultationLedger | None = None
_scheduler: SlotScheduler | None = None
_orchestrator: SessionOrchestrator | None = None
_realtime_gateway: RealtimeGateway | None = None


async def initialize_core(
    *,
    gcs_manager=None,
    completion: CompletionClient | None = None,
    channels: list[ReportChannel] | None = None,
    doctor_directory: DoctorDirectory | None = None,
    patient_directory: PatientDirectory | None = None,
    location_agent: LocationDistanceAgent | None = None,
    start_background: bool = True,
) -> SessionOrchestrator:
    """
    Wire together all core components and start the session cleanup loop.

    Returns the fully initialized SessionOrchestrator.
    """
    global _ledger, _scheduler, _orchestrator, _realtime_gateway

    logger.info("Initializing Medinet consultation core...")

    # 1. Storage (GCS when a bucket is configured, otherwise in-memory)
    if gcs_manager is None and settings.GCS_BUCKET_NAME:
        from medinet.dependencies import get_gcs
        gcs_manager = get_gcs()
    _ledger = ConsultationLedger(gcs_bucket_manager=gcs_manager)

    # 2. Rosters
    if doctor_directory is None:
        doctor_directory = DoctorDirectory(
            gcs_manager=gcs_manager, csv_path=settings.DOCTOR_ROSTER_PATH
        )
    if patient_directory is None:
        patient_directory = PatientDirectory(
            gcs_manager=gcs_manager, csv_path=settings.PATIENT_ROSTER_PATH
        )

    # 3. Stage agents (one model per role unless a completion is injected)
    dialogue = ConsultationDialogue(
        completion or GeminiCompletionClient(model=settings.DOCTOR_MODEL)
    )
    classifier = SymptomSeverityClassifier(
        completion or GeminiCompletionClient(model=settings.DIAGNOSIS_MODEL)
    )
    resolver = SpecialtyResolver(
        completion or GeminiCompletionClient(model=settings.SPECIALTY_MODEL)
    )
    _scheduler = SlotScheduler(doctor_directory, _ledger)

    # 4. Report channels
    if channels is None:
        channels = [EmailReportDispatcher(), WhatsAppReportDispatcher()]
    notifier = NotificationFanout(channels)

    # 5. Orchestrator
    _orchestrator = SessionOrchestrator(
        ledger=_ledger,
        dialogue=dialogue,
        classifier=classifier,
        specialty_resolver=resolver,
        scheduler=_scheduler,
        notifier=notifier,
        location_agent=location_agent,
        patient_directory=patient_directory,
    )

    # 6. Realtime gateway + cleanup loop
    _realtime_gateway = RealtimeGateway(_orchestrator)
    if start_background:
        _realtime_gateway.start()

    logger.info(
        "Core initialized: ledger=%s, channels=%s",
        "gcs" if _ledger.persistent else "memory",
        notifier.channel_status(),
    )
    return _orchestrator


async def shutdown_core() -> None:
    """Gracefully stop background tasks and drop the singletons."""
    global _ledger, _scheduler, _orchestrator, _realtime_gateway
    if _realtime_gateway:
        await _realtime_gateway.stop()
        logger.info("Core shutdown complete")
    _ledger = None
    _scheduler = None
    _orchestrator = None
    _realtime_gateway = None


def get_orchestrator() -> SessionOrchestrator | None:
    return _orchestrator


def get_realtime_gateway() -> RealtimeGateway | None:
    return _realtime_gateway


def get_ledger() -> ConsultationLedger | None:
    return _ledger


def get_scheduler() -> SlotScheduler | None:
    return _scheduler
