"""
Consultation Ledger — durable record of consultations, turns, diagnoses
and appointments.

Records live in an in-memory store.  When a GCSBucketManager is supplied,
every mutation is written through to the bucket as JSON:

    consultations/consultation_{cid}.json        consultation + turns + diagnoses
    consultations/patients/patient_{pid}.json    index of the patient's consultations
    appointments/doctor_{did}/{date}.json        the doctor's appointments that day

GCS calls are synchronous and run through ``asyncio.to_thread``.  A failed
write raises LedgerError; the in-memory record has already been updated by
then, so reads stay consistent within the process.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from medinet.gateway.outcomes import Appointment, AppointmentStatus, DiagnosisOutcome
from medinet.gateway.session import SessionStatus, TurnRole

logger = logging.getLogger("gateway.ledger")


class LedgerError(Exception):
    """Storage failure in the ledger."""


class ConsultationNotFoundError(LedgerError):
    """No consultation with the given id."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Persisted shapes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class LedgerEntry(BaseModel):
    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: TurnRole
    text: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: Optional[dict[str, Any]] = None


class DiagnosisRecord(BaseModel):
    diagnosis_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    consultation_id: str
    disease_name: str
    confidence: int
    severity_level: str
    actions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class ConsultationRecord(BaseModel):
    consultation_id: str
    patient_id: str
    initial_note: str = ""
    diseases: list[str] = Field(default_factory=list)
    severity_score: Optional[int] = None
    specialty: Optional[str] = None
    status: str = SessionStatus.ACTIVE.value
    created_at: datetime = Field(default_factory=_now)
    closed_at: Optional[datetime] = None
    entries: list[LedgerEntry] = Field(default_factory=list)
    diagnoses: list[DiagnosisRecord] = Field(default_factory=list)


class ConsultationSummary(BaseModel):
    """Row in a patient's consultation history."""

    consultation_id: str
    patient_id: str
    status: str
    specialty: Optional[str] = None
    top_disease: Optional[str] = None
    severity_score: Optional[int] = None
    created_at: datetime
    closed_at: Optional[datetime] = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Ledger
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConsultationLedger:
    CONSULTATION_PREFIX = "consultations"
    APPOINTMENT_PREFIX = "appointments"

    def __init__(self, gcs_bucket_manager=None) -> None:
        self._gcs = gcs_bucket_manager
        self._consultations: dict[str, ConsultationRecord] = {}
        self._appointments: dict[str, Appointment] = {}

    @property
    def persistent(self) -> bool:
        return self._gcs is not None

    # ── Blob paths ──

    def _consultation_path(self, consultation_id: str) -> str:
        return f"{self.CONSULTATION_PREFIX}/consultation_{consultation_id}.json"

    def _patient_index_path(self, patient_id: str) -> str:
        return f"{self.CONSULTATION_PREFIX}/patients/patient_{patient_id}.json"

    def _appointment_path(self, doctor_id: str, day: date) -> str:
        return f"{self.APPOINTMENT_PREFIX}/doctor_{doctor_id}/{day.isoformat()}.json"

    # ── Write-through ──

    async def _write(self, path: str, payload: Any) -> None:
        if self._gcs is None:
            return
        ok = await asyncio.to_thread(self._gcs.write_json, path, payload)
        if not ok:
            raise LedgerError(f"Failed to write {path}")

    async def _persist_consultation(self, record: ConsultationRecord) -> None:
        await self._write(
            self._consultation_path(record.consultation_id),
            record.model_dump(mode="json"),
        )

    async def _persist_patient_index(self, patient_id: str) -> None:
        if self._gcs is None:
            return
        summaries = [
            s.model_dump(mode="json") for s in await self._merged_summaries(patient_id)
        ]
        await self._write(
            self._patient_index_path(patient_id),
            {"patient_id": patient_id, "consultations": summaries},
        )

    async def _persist_doctor_day(self, doctor_id: str, day: date) -> None:
        if self._gcs is None:
            return
        appts = [
            a.model_dump(mode="json")
            for a in await self._merged_appointments(doctor_id, day)
        ]
        await self._write(self._appointment_path(doctor_id, day), appts)

    def _require(self, consultation_id: str) -> ConsultationRecord:
        record = self._consultations.get(consultation_id)
        if record is None:
            raise ConsultationNotFoundError(f"No consultation {consultation_id}")
        return record

    # ── Consultations ──

    async def create_consultation(self, patient_id: str, initial_note: str = "") -> str:
        consultation_id = str(uuid.uuid4())
        record = ConsultationRecord(
            consultation_id=consultation_id,
            patient_id=patient_id,
            initial_note=initial_note,
        )
        self._consultations[consultation_id] = record
        try:
            await self._persist_consultation(record)
            await self._persist_patient_index(patient_id)
        except LedgerError:
            # A consultation that never reached storage must not exist locally either
            self._consultations.pop(consultation_id, None)
            raise
        logger.info("Created consultation %s for patient %s", consultation_id, patient_id)
        return consultation_id

    async def append_turn(
        self,
        consultation_id: str,
        role: TurnRole,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        record = self._require(consultation_id)
        entry = LedgerEntry(role=role, text=text, metadata=metadata)
        record.entries.append(entry)
        await self._persist_consultation(record)
        return entry

    async def record_diagnosis(
        self, consultation_id: str, outcome: DiagnosisOutcome
    ) -> DiagnosisRecord:
        record = self._require(consultation_id)
        top = outcome.top_disease
        diagnosis = DiagnosisRecord(
            consultation_id=consultation_id,
            disease_name=top.name,
            confidence=top.confidence,
            severity_level=outcome.urgency.value,
            actions=list(outcome.recommended_actions),
        )
        record.diseases = [d.name for d in outcome.diseases]
        record.severity_score = outcome.severity_score
        record.specialty = outcome.specialty or None
        record.diagnoses.append(diagnosis)
        await self._persist_consultation(record)
        await self._persist_patient_index(record.patient_id)
        logger.info(
            "Recorded diagnosis for %s: %s (%s)",
            consultation_id, top.name, outcome.urgency.value,
        )
        return diagnosis

    async def close_consultation(self, consultation_id: str, status: SessionStatus) -> None:
        record = self._require(consultation_id)
        record.status = status.value
        record.closed_at = _now()
        await self._persist_consultation(record)
        await self._persist_patient_index(record.patient_id)
        logger.info("Closed consultation %s as %s", consultation_id, status.value)

    @staticmethod
    def _summarize(r: ConsultationRecord) -> ConsultationSummary:
        return ConsultationSummary(
            consultation_id=r.consultation_id,
            patient_id=r.patient_id,
            status=r.status,
            specialty=r.specialty,
            top_disease=r.diseases[0] if r.diseases else None,
            severity_score=r.severity_score,
            created_at=r.created_at,
            closed_at=r.closed_at,
        )

    def _summaries_for(self, patient_id: str) -> list[ConsultationSummary]:
        return [
            self._summarize(r)
            for r in self._consultations.values()
            if r.patient_id == patient_id
        ]

    async def _stored_summaries(self, patient_id: str) -> list[ConsultationSummary]:
        if self._gcs is None:
            return []
        data = await asyncio.to_thread(
            self._gcs.read_json, self._patient_index_path(patient_id)
        )
        if not data:
            return []
        return [
            ConsultationSummary.model_validate(row)
            for row in data.get("consultations", [])
        ]

    async def _merged_summaries(self, patient_id: str) -> list[ConsultationSummary]:
        # Rows held in this process win over the stored copy of the same id
        merged = {s.consultation_id: s for s in await self._stored_summaries(patient_id)}
        merged.update((s.consultation_id, s) for s in self._summaries_for(patient_id))
        return sorted(merged.values(), key=lambda s: s.created_at, reverse=True)

    async def list_consultations(self, patient_id: str) -> list[ConsultationSummary]:
        """Patient's consultations, newest first."""
        return await self._merged_summaries(patient_id)

    async def list_active(self, limit: int = 50) -> list[ConsultationSummary]:
        """Active consultations held by this process, newest first."""
        rows = [
            self._summarize(r)
            for r in self._consultations.values()
            if r.status == SessionStatus.ACTIVE.value
        ]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return rows[:limit]

    async def get_consultation(self, consultation_id: str) -> ConsultationRecord | None:
        record = self._consultations.get(consultation_id)
        if record is not None or self._gcs is None:
            return record
        data = await asyncio.to_thread(
            self._gcs.read_json, self._consultation_path(consultation_id)
        )
        if not data:
            return None
        return ConsultationRecord.model_validate(data)

    async def get_conversation(self, consultation_id: str) -> list[LedgerEntry]:
        record = await self.get_consultation(consultation_id)
        if record is None:
            raise ConsultationNotFoundError(f"No consultation {consultation_id}")
        return list(record.entries)

    async def get_diagnoses(self, consultation_id: str) -> list[DiagnosisRecord]:
        record = await self.get_consultation(consultation_id)
        if record is None:
            raise ConsultationNotFoundError(f"No consultation {consultation_id}")
        return list(record.diagnoses)

    # ── Appointments ──

    async def record_appointment(self, appointment: Appointment) -> None:
        self._appointments[appointment.appointment_id] = appointment
        try:
            await self._persist_doctor_day(appointment.doctor_id, appointment.date)
        except LedgerError:
            # An unstored booking must not hold the slot
            self._appointments.pop(appointment.appointment_id, None)
            raise
        logger.info(
            "Recorded appointment %s with doctor %s on %s at %s",
            appointment.appointment_id, appointment.doctor_id,
            appointment.date.isoformat(), appointment.time,
        )

    async def _merged_appointments(self, doctor_id: str, day: date) -> list[Appointment]:
        merged: dict[str, Appointment] = {}
        if self._gcs is not None:
            data = await asyncio.to_thread(
                self._gcs.read_json, self._appointment_path(doctor_id, day)
            )
            for row in data or []:
                appt = Appointment.model_validate(row)
                merged[appt.appointment_id] = appt
        for appt in self._appointments.values():
            if appt.doctor_id == doctor_id and appt.date == day:
                merged[appt.appointment_id] = appt
        return sorted(merged.values(), key=lambda a: a.time)

    async def booked_times(self, doctor_id: str, day: date) -> list[str]:
        """Times already taken (status scheduled) for the doctor on ``day``."""
        return [
            a.time
            for a in await self._merged_appointments(doctor_id, day)
            if a.status == AppointmentStatus.SCHEDULED
        ]

    async def get_appointment_for(self, consultation_id: str) -> Appointment | None:
        for appt in self._appointments.values():
            if appt.consultation_id == consultation_id:
                return appt
        return None
