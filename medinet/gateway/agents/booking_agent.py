"""
Booking Agent — The Scheduler.

Books the patient with the most experienced available doctor of the
resolved specialty, at a slot whose distance from now is fixed by the
urgency tier:
  - CRITICAL: next full hour (same day, or tomorrow past 23:00)
  - HIGH:     tomorrow at 09:00
  - MEDIUM:   in 3 days at 10:00
  - LOW:      in 7 days at 14:00

Falls back to General Medicine when the specialty has no available doctor.
Returns None (never raises) when nobody can be booked or the appointment
cannot be persisted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import NamedTuple

from medinet.gateway.agents.specialty_mapper import GENERAL_MEDICINE
from medinet.gateway.directory import Doctor, DoctorDirectory, DirectoryError
from medinet.gateway.ledger import ConsultationLedger, LedgerError
from medinet.gateway.outcomes import (
    PRIORITY_BY_URGENCY,
    Appointment,
    DiagnosisOutcome,
    UrgencyTier,
    priority_label,
)

logger = logging.getLogger("gateway.agents.booking")

# Urgency → (days ahead, fixed time).  CRITICAL is computed from ``now``.
SLOT_OFFSETS: dict[UrgencyTier, tuple[int, time]] = {
    UrgencyTier.HIGH: (1, time(9, 0)),
    UrgencyTier.MEDIUM: (3, time(10, 0)),
    UrgencyTier.LOW: (7, time(14, 0)),
}

# Bookable half-hour slots, 09:00 through 16:30
DAY_SLOTS: list[str] = [
    f"{hour:02d}:{minute:02d}" for hour in range(9, 17) for minute in (0, 30)
]


class ScheduledAppointment(NamedTuple):
    appointment: Appointment
    doctor: Doctor


def calculate_slot(urgency: UrgencyTier, now: datetime) -> tuple[date, str]:
    """Deterministic (date, "HH:MM") for an urgency tier relative to ``now``."""
    if urgency == UrgencyTier.CRITICAL:
        slot = (now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)
        return slot.date(), slot.strftime("%H:%M")
    days, at = SLOT_OFFSETS[urgency]
    return (now + timedelta(days=days)).date(), at.strftime("%H:%M")


class SlotScheduler:

    def __init__(
        self,
        directory: DoctorDirectory,
        ledger: ConsultationLedger,
        clock=None,
    ) -> None:
        self._directory = directory
        self._ledger = ledger
        self._clock = clock or datetime.now

    async def schedule_appointment(
        self,
        consultation_id: str,
        patient_id: str,
        outcome: DiagnosisOutcome,
    ) -> ScheduledAppointment | None:
        specialty = outcome.specialty or GENERAL_MEDICINE
        try:
            doctors = await self._directory.find_by_specialty(specialty)
            if not doctors and specialty != GENERAL_MEDICINE:
                logger.info(
                    "No available %s doctor, falling back to %s",
                    specialty, GENERAL_MEDICINE,
                )
                doctors = await self._directory.find_by_specialty(GENERAL_MEDICINE)
        except DirectoryError as exc:
            logger.error("Doctor lookup failed for %s: %s", consultation_id, exc)
            return None

        if not doctors:
            logger.warning(
                "No doctors available for %s (specialty %s); nothing booked",
                consultation_id, specialty,
            )
            return None

        # Stable: equal experience keeps directory order
        doctor = sorted(doctors, key=lambda d: d.experience_years, reverse=True)[0]
        slot_date, slot_time = calculate_slot(outcome.urgency, self._clock())

        appointment = Appointment(
            consultation_id=consultation_id,
            patient_id=patient_id,
            doctor_id=doctor.doctor_id,
            date=slot_date,
            time=slot_time,
            priority=PRIORITY_BY_URGENCY[outcome.urgency],
            notes=f"Auto-scheduled based on {outcome.urgency.value} urgency",
        )

        try:
            await self._ledger.record_appointment(appointment)
        except LedgerError as exc:
            logger.error(
                "Could not persist appointment for %s: %s", consultation_id, exc
            )
            return None

        logger.info(
            "Booked %s with Dr. %s (%s) on %s at %s, priority %d",
            consultation_id, doctor.name, doctor.specialty,
            slot_date.isoformat(), slot_time, appointment.priority,
        )
        return ScheduledAppointment(appointment=appointment, doctor=doctor)

    calculate_slot = staticmethod(calculate_slot)

    async def available_slots(self, doctor_id: str, day: date) -> list[str]:
        booked = set(await self._ledger.booked_times(doctor_id, day))
        return [slot for slot in DAY_SLOTS if slot not in booked]

    @staticmethod
    def generate_confirmation(
        appointment: Appointment, doctor: Doctor, specialty: str
    ) -> str:
        return (
            "**Appointment Scheduled Successfully!**\n\n"
            f"**Doctor**: Dr. {doctor.name}\n"
            f"**Specialty**: {specialty or doctor.specialty}\n"
            f"**Date**: {appointment.date.strftime('%B %d, %Y')}\n"
            f"**Time**: {appointment.time}\n"
            f"**Priority**: {priority_label(appointment.priority)}\n\n"
            "You will receive a confirmation shortly. Please arrive 10 minutes "
            "before your appointment time.\n\n"
            "**Important Reminders**:\n"
            "- Bring any relevant medical records\n"
            "- List your current medications\n"
            "- Prepare questions you want to ask the doctor\n\n"
            "If you need to reschedule, please contact us at least 24 hours in advance."
        )
