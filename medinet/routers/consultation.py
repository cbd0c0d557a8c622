"""
Consultation API — read-only HTTP view of the consultation ledger.

Endpoints:
  GET /api/consultations                       Active consultations, newest first
  GET /api/consultations/status                Active sessions + channel configuration
  GET /api/consultations/patient/{pid}         A patient's consultation history
  GET /api/consultations/{cid}                 One consultation record and its appointment
  GET /api/consultations/{cid}/logs            Its conversation log
  GET /api/consultations/{cid}/diagnosis       Its recorded diagnoses
  GET /api/doctors/{did}/slots?date=YYYY-MM-DD Free half-hour slots for a doctor
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from medinet.dependencies import require_ledger, require_orchestrator, require_scheduler
from medinet.gateway.ledger import (
    ConsultationLedger,
    ConsultationNotFoundError,
    ConsultationRecord,
    ConsultationSummary,
    DiagnosisRecord,
    LedgerEntry,
)
from medinet.gateway.outcomes import Appointment

logger = logging.getLogger("gateway.api")

router = APIRouter(tags=["consultations"])


# ── Response Models ──


class ConsultationStatusResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = 0
    tracked_sessions: int = 0
    channels: dict[str, bool] = Field(default_factory=dict)
    maps_configured: bool = False
    persistent_ledger: bool = False


class ActiveConsultationsResponse(BaseModel):
    consultations: list[ConsultationSummary]


class ConsultationDetail(ConsultationRecord):
    appointment: Optional[Appointment] = None


class PatientHistoryResponse(BaseModel):
    patient_id: str
    consultations: list[ConsultationSummary]


class ConversationResponse(BaseModel):
    consultation_id: str
    entries: list[LedgerEntry]


class DiagnosisResponse(BaseModel):
    consultation_id: str
    diagnoses: list[DiagnosisRecord]


class SlotsResponse(BaseModel):
    doctor_id: str
    date: dt.date
    available_slots: list[str]


# ── Endpoints ──


@router.get("/api/consultations", response_model=ActiveConsultationsResponse)
async def active_consultations(
    limit: int = Query(50, ge=1, le=200), ledger=Depends(require_ledger)
):
    return ActiveConsultationsResponse(consultations=await ledger.list_active(limit))


@router.get("/api/consultations/status", response_model=ConsultationStatusResponse)
async def consultation_status(orchestrator=Depends(require_orchestrator)):
    status: dict[str, Any] = orchestrator.service_status()
    return ConsultationStatusResponse(**status)


@router.get("/api/consultations/patient/{patient_id}", response_model=PatientHistoryResponse)
async def patient_history(patient_id: str, orchestrator=Depends(require_orchestrator)):
    consultations = await orchestrator.get_patient_history(patient_id)
    return PatientHistoryResponse(patient_id=patient_id, consultations=consultations)


async def _load(ledger: ConsultationLedger, consultation_id: str) -> ConsultationRecord:
    record = await ledger.get_consultation(consultation_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} not found")
    return record


@router.get("/api/consultations/{consultation_id}", response_model=ConsultationDetail)
async def get_consultation(consultation_id: str, ledger=Depends(require_ledger)):
    record = await _load(ledger, consultation_id)
    return ConsultationDetail(
        **record.model_dump(),
        appointment=await ledger.get_appointment_for(consultation_id),
    )


@router.get("/api/consultations/{consultation_id}/logs", response_model=ConversationResponse)
async def get_consultation_logs(consultation_id: str, ledger=Depends(require_ledger)):
    try:
        entries = await ledger.get_conversation(consultation_id)
    except ConsultationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} not found")
    return ConversationResponse(consultation_id=consultation_id, entries=entries)


@router.get("/api/consultations/{consultation_id}/diagnosis", response_model=DiagnosisResponse)
async def get_consultation_diagnosis(consultation_id: str, ledger=Depends(require_ledger)):
    try:
        diagnoses = await ledger.get_diagnoses(consultation_id)
    except ConsultationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} not found")
    return DiagnosisResponse(consultation_id=consultation_id, diagnoses=diagnoses)


@router.get("/api/doctors/{doctor_id}/slots", response_model=SlotsResponse)
async def doctor_slots(
    doctor_id: str,
    date: str = Query(..., description="Day to inspect, YYYY-MM-DD"),
    scheduler=Depends(require_scheduler),
):
    try:
        day = dt.date.fromisoformat(date)
    except ValueError:
        logger.warning("Rejected slots query for %s: bad date %r", doctor_id, date)
        raise HTTPException(status_code=400, detail=f"Invalid date '{date}', expected YYYY-MM-DD")
    slots = await scheduler.available_slots(doctor_id, day)
    return SlotsResponse(doctor_id=doctor_id, date=day, available_slots=slots)
