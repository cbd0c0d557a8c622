"""
Session Orchestrator — the consultation state machine.

Owns the in-memory session table and drives each session through

    greeting → questioning → diagnosing → booking → notifying → completed

with ``cancelled`` reachable from any non-terminal state by idle timeout.

Every processed message appends exactly two turns to the session
transcript (patient + assistant).  The diagnosis, booking and notification
steps run once, inside the session's lock, on the message that makes the
dialogue ready; their own failures degrade to fallback values so the
patient always gets a response.

Concurrency (single event loop):
  - one asyncio.Lock per session serializes process_message calls
  - end_session during an in-flight step only marks ``pending_close``;
    the in-flight call finishes, closes and evicts
  - cleanup iterates a snapshot of the session table
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel

from medinet import settings
from medinet.gateway.agents.booking_agent import ScheduledAppointment, SlotScheduler
from medinet.gateway.agents.diagnosis_agent import SymptomSeverityClassifier, fallback_outcome
from medinet.gateway.agents.dialogue_agent import ConsultationDialogue
from medinet.gateway.agents.location_agent import LocationDistanceAgent, LocationInfo
from medinet.gateway.agents.report_agent import NotificationFanout, NotificationResult
from medinet.gateway.agents.specialty_mapper import GENERAL_MEDICINE, SpecialtyResolver
from medinet.gateway.channels import PatientReport
from medinet.gateway.directory import Doctor, PatientDirectory, PatientProfile
from medinet.gateway.ledger import ConsultationLedger, ConsultationSummary, LedgerError
from medinet.gateway.outcomes import Appointment, DiagnosisOutcome
from medinet.gateway.session import (
    ConsultationStage,
    GeoPoint,
    Session,
    SessionClosedError,
    SessionCreationError,
    SessionNotFoundError,
    SessionStatus,
    TurnRole,
    format_transcript,
)

logger = logging.getLogger("gateway.orchestrator")


class ProcessResult(BaseModel):
    session_id: str
    response_text: str
    state: ConsultationStage
    diagnosis: Optional[DiagnosisOutcome] = None
    appointment: Optional[Appointment] = None
    doctor: Optional[Doctor] = None
    location: Optional[LocationInfo] = None
    notifications: Optional[NotificationResult] = None


class SessionOrchestrator:

    def __init__(
        self,
        ledger: ConsultationLedger,
        dialogue: ConsultationDialogue,
        classifier: SymptomSeverityClassifier,
        specialty_resolver: SpecialtyResolver,
        scheduler: SlotScheduler,
        notifier: NotificationFanout,
        location_agent: LocationDistanceAgent | None = None,
        patient_directory: PatientDirectory | None = None,
        session_timeout_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ledger = ledger
        self._dialogue = dialogue
        self._classifier = classifier
        self._specialty = specialty_resolver
        self._scheduler = scheduler
        self._notifier = notifier
        self._location = location_agent or LocationDistanceAgent()
        self._patients = patient_directory or PatientDirectory(patients=[])
        self._timeout = (
            session_timeout_seconds
            if session_timeout_seconds is not None
            else settings.SESSION_TIMEOUT_SECONDS
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Sessions with a process_message step currently running
        self._in_flight: set[str] = set()
        # Terminal status requested by end/cleanup while a step was in flight
        self._close_requests: dict[str, SessionStatus] = {}

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Queries
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @property
    def active_session_count(self) -> int:
        return sum(1 for s in list(self._sessions.values()) if s.is_active)

    async def get_patient_history(self, patient_id: str) -> list[ConsultationSummary]:
        return await self._ledger.list_consultations(patient_id)

    def service_status(self) -> dict[str, Any]:
        return {
            "active_sessions": self.active_session_count,
            "tracked_sessions": len(self._sessions),
            "channels": self._notifier.channel_status(),
            "maps_configured": self._location.is_configured,
            "persistent_ledger": self._ledger.persistent,
        }

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Lifecycle
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def start_session(
        self, patient_id: str, patient_name: str | None = None
    ) -> tuple[str, str]:
        note = f"Consultation started for {patient_name or patient_id}"
        try:
            consultation_id = await self._ledger.create_consultation(patient_id, note)
        except LedgerError as exc:
            logger.error("Could not create consultation for %s: %s", patient_id, exc)
            raise SessionCreationError(
                f"Could not create consultation for patient {patient_id}"
            ) from exc

        session = Session(
            consultation_id=consultation_id,
            patient_id=patient_id,
            patient_name=patient_name,
        )
        self._sessions[session.session_id] = session
        self._locks[session.session_id] = asyncio.Lock()

        greeting = self._dialogue.greet(patient_name)
        session.append_turn(TurnRole.ASSISTANT, greeting)
        await self._persist_turn(session, TurnRole.ASSISTANT, greeting)
        session.stage = ConsultationStage.QUESTIONING

        logger.info(
            "Session %s started for patient %s (consultation %s)",
            session.session_id, patient_id, consultation_id,
        )
        return session.session_id, greeting

    async def end_session(self, session_id: str) -> None:
        """Explicit end: mark completed, persist closure, evict.  Idempotent."""
        await self._request_close(session_id, SessionStatus.COMPLETED)

    async def update_patient_location(
        self, session_id: str, latitude: float, longitude: float
    ) -> None:
        point = GeoPoint(latitude=latitude, longitude=longitude)
        if not point.is_valid():
            raise ValueError(
                f"Invalid coordinates: latitude={latitude}, longitude={longitude}"
            )
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return
        session.location = point
        logger.info("Session %s location updated", session_id)

    async def cleanup_inactive_sessions(self, now: datetime | None = None) -> list[str]:
        """
        Cancel active sessions older than the timeout and evict terminal ones.

        Returns the ids that were cancelled or evicted.
        """
        now = now or self._clock()
        swept: list[str] = []
        for session_id, session in list(self._sessions.items()):
            if session.age_seconds(now) <= self._timeout:
                continue
            if session.is_active:
                logger.info("Session %s timed out, cancelling", session_id)
                await self._request_close(session_id, SessionStatus.CANCELLED)
                swept.append(session_id)
            elif session_id not in self._in_flight:
                self._evict(session_id)
                swept.append(session_id)
        if swept:
            logger.info("Cleanup swept %d session(s)", len(swept))
        return swept

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Message processing
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def process_message(self, session_id: str, text: str) -> ProcessResult:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Unknown session {session_id}")
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        async with self._locks[session_id]:
            # The session may have closed while this call waited for the lock
            if session_id not in self._sessions or session.is_terminal:
                raise SessionClosedError(
                    f"Session {session_id} is closed; start a new session"
                )
            self._in_flight.add(session_id)
            try:
                return await self._process(session, text.strip())
            finally:
                self._in_flight.discard(session_id)
                status = self._close_requests.pop(session_id, None)
                if status is not None:
                    await self._close(session, status)

    async def _process(self, session: Session, text: str) -> ProcessResult:
        session.append_turn(TurnRole.PATIENT, text)
        await self._persist_turn(session, TurnRole.PATIENT, text)

        session.turn_count += 1
        turn = await self._dialogue.next_turn(list(session.transcript), session.turn_count)

        session.append_turn(TurnRole.ASSISTANT, turn.text)
        await self._persist_turn(session, TurnRole.ASSISTANT, turn.text)

        if not turn.ready_for_diagnosis:
            return ProcessResult(
                session_id=session.session_id,
                response_text=turn.text,
                state=ConsultationStage.QUESTIONING,
            )
        return await self._run_pipeline(session, turn.text)

    async def _run_pipeline(self, session: Session, assistant_text: str) -> ProcessResult:
        cid = session.consultation_id
        logger.info("Session %s ready for diagnosis after %d turns", session.session_id, session.turn_count)

        session.stage = ConsultationStage.DIAGNOSING
        try:
            outcome = await self._classifier.classify(list(session.transcript))
        except Exception as exc:
            logger.error("Classifier failed for %s, using fallback: %s", session.session_id, exc)
            outcome = fallback_outcome()
        outcome.specialty = await self._specialty.resolve(outcome.diseases) or GENERAL_MEDICINE

        summary = self._classifier.generate_summary(outcome)
        await self._ledger_call("record diagnosis", self._ledger.record_diagnosis(cid, outcome))
        await self._ledger_call(
            "append diagnosis summary",
            self._ledger.append_turn(
                cid, TurnRole.SYSTEM, summary,
                {"kind": "diagnosis_summary", "degraded": outcome.degraded},
            ),
        )
        sections = [assistant_text, summary]

        session.stage = ConsultationStage.BOOKING
        booked = await self._schedule(session, outcome)
        location: LocationInfo | None = None
        if booked is not None:
            sections.append(
                self._scheduler.generate_confirmation(
                    booked.appointment, booked.doctor, outcome.specialty
                )
            )
            await self._log_system_event(cid, "AppointmentScheduled", {
                "appointment": booked.appointment.model_dump(mode="json"),
            })
            location = await self._locate(session, booked.doctor)
            if location is not None:
                sections.append(self._location.location_summary(location))
                await self._log_system_event(cid, "LocationCalculated", {
                    "location": location.model_dump(mode="json"),
                })

        notifications: NotificationResult | None = None
        if booked is not None:
            session.stage = ConsultationStage.NOTIFYING
            notifications = await self._notify(session, outcome, booked, location)
            if notifications is not None:
                await self._log_system_event(cid, "ReportSent", {
                    "email_sent": notifications.email_sent,
                    "whatsapp_sent": notifications.messaging_sent,
                    "channels": dict(notifications.results),
                })
                if notifications.any_sent:
                    sections.append(self._notifier.acknowledgement(notifications))

        await self._close(session, SessionStatus.COMPLETED, evict=False)

        return ProcessResult(
            session_id=session.session_id,
            response_text="\n\n".join(sections),
            state=ConsultationStage.COMPLETED,
            diagnosis=outcome,
            appointment=booked.appointment if booked else None,
            doctor=booked.doctor if booked else None,
            location=location,
            notifications=notifications,
        )

    # ── Pipeline stages (each swallows its own failure) ──

    async def _schedule(
        self, session: Session, outcome: DiagnosisOutcome
    ) -> ScheduledAppointment | None:
        try:
            return await self._scheduler.schedule_appointment(
                session.consultation_id, session.patient_id, outcome
            )
        except Exception as exc:
            logger.error("Scheduling failed for %s: %s", session.session_id, exc)
            return None

    async def _locate(self, session: Session, doctor: Doctor) -> LocationInfo | None:
        if session.location is None or not doctor.has_clinic_location:
            return None
        clinic = GeoPoint(latitude=doctor.clinic_latitude, longitude=doctor.clinic_longitude)
        try:
            return await self._location.calculate_distance(
                session.location, clinic, doctor.clinic_address or ""
            )
        except Exception as exc:
            logger.warning("Distance lookup failed for %s: %s", session.session_id, exc)
            return None

    async def _notify(
        self,
        session: Session,
        outcome: DiagnosisOutcome,
        booked: ScheduledAppointment,
        location: LocationInfo | None,
    ) -> NotificationResult | None:
        try:
            profile = await self._patients.get(session.patient_id)
        except Exception as exc:
            logger.warning("Patient lookup failed for %s: %s", session.patient_id, exc)
            profile = None
        if profile is None:
            profile = PatientProfile(
                patient_id=session.patient_id, name=session.patient_name or ""
            )

        report = PatientReport(
            consultation_id=session.consultation_id,
            patient=profile,
            transcript=format_transcript(session.transcript).splitlines(),
            diagnosis=outcome,
            appointment=booked.appointment,
            doctor=booked.doctor,
            location=location,
        )
        try:
            return await self._notifier.send_report(report)
        except Exception as exc:
            logger.error("Notification fan-out failed for %s: %s", session.session_id, exc)
            return None

    # ── Closing ──

    async def _request_close(self, session_id: str, status: SessionStatus) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session_id in self._in_flight:
            session.pending_close = True
            self._close_requests.setdefault(session_id, status)
            logger.info("Session %s busy; close deferred", session_id)
            return
        await self._close(session, status)

    async def _close(
        self, session: Session, status: SessionStatus, evict: bool = True
    ) -> None:
        if session.is_active:
            session.finish(status)
            await self._ledger_call(
                "close consultation",
                self._ledger.close_consultation(session.consultation_id, status),
            )
            logger.info("Session %s %s", session.session_id, status.value)
        if evict:
            self._evict(session.session_id)

    def _evict(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._close_requests.pop(session_id, None)

    # ── Ledger helpers ──

    async def _log_system_event(
        self, consultation_id: str, event_type: str, data: dict[str, Any]
    ) -> None:
        await self._ledger_call(
            f"log {event_type}",
            self._ledger.append_turn(
                consultation_id, TurnRole.SYSTEM, f"System Event: {event_type}",
                {"kind": "system_event", "event": event_type, **data},
            ),
        )

    async def _persist_turn(self, session: Session, role: TurnRole, text: str) -> None:
        await self._ledger_call(
            f"append {role.value} turn",
            self._ledger.append_turn(session.consultation_id, role, text),
        )

    async def _ledger_call(self, what: str, coro) -> None:
        try:
            await coro
        except LedgerError as exc:
            logger.warning("Ledger failed to %s: %s", what, exc)
