"""
Tests for the Booking Agent — urgency offsets, doctor selection,
General Medicine fallback, free slots and the confirmation text.
"""

from datetime import date, datetime

import pytest

from fakes import FakeBucket, make_doctors
from medinet.gateway.agents.booking_agent import DAY_SLOTS, SlotScheduler, calculate_slot
from medinet.gateway.directory import Doctor, DoctorDirectory
from medinet.gateway.ledger import ConsultationLedger
from medinet.gateway.outcomes import Appointment, DiagnosisOutcome, Disease, UrgencyTier

NOW = datetime(2025, 3, 12, 14, 20)


def _outcome(urgency: UrgencyTier, specialty: str = "Neurology") -> DiagnosisOutcome:
    return DiagnosisOutcome(
        diseases=[Disease(name="Acute Migraine", confidence=80, severity=75)],
        severity_score=75,
        urgency=urgency,
        specialty=specialty,
    )


def _scheduler(doctors=None, ledger=None, now=NOW) -> SlotScheduler:
    directory = DoctorDirectory(doctors=make_doctors() if doctors is None else doctors)
    return SlotScheduler(directory, ledger or ConsultationLedger(), clock=lambda: now)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Slot calculation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCalculateSlot:

    def test_high_is_next_day_at_nine(self):
        assert calculate_slot(UrgencyTier.HIGH, NOW) == (date(2025, 3, 13), "09:00")

    def test_medium_is_three_days_at_ten(self):
        assert calculate_slot(UrgencyTier.MEDIUM, NOW) == (date(2025, 3, 15), "10:00")

    def test_low_is_seven_days_at_two_pm(self):
        assert calculate_slot(UrgencyTier.LOW, NOW) == (date(2025, 3, 19), "14:00")

    def test_critical_is_next_full_hour(self):
        assert calculate_slot(UrgencyTier.CRITICAL, NOW) == (date(2025, 3, 12), "15:00")

    def test_critical_rolls_over_midnight(self):
        late = datetime(2025, 3, 12, 23, 40)
        assert calculate_slot(UrgencyTier.CRITICAL, late) == (date(2025, 3, 13), "00:00")

    def test_month_boundary(self):
        assert calculate_slot(UrgencyTier.LOW, datetime(2025, 2, 26, 8, 0)) == (
            date(2025, 3, 5), "14:00",
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Scheduling
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestScheduleAppointment:

    @pytest.mark.asyncio
    async def test_high_urgency_booking(self):
        ledger = ConsultationLedger()
        booked = await _scheduler(ledger=ledger).schedule_appointment(
            "c-1", "p1", _outcome(UrgencyTier.HIGH)
        )

        assert booked is not None
        appt = booked.appointment
        assert appt.date == date(2025, 3, 13)
        assert appt.time == "09:00"
        assert appt.priority == 2
        assert appt.consultation_id == "c-1"
        assert appt.patient_id == "p1"
        assert await ledger.get_appointment_for("c-1") == appt

    @pytest.mark.asyncio
    async def test_picks_most_experienced_doctor(self):
        booked = await _scheduler().schedule_appointment("c-1", "p1", _outcome(UrgencyTier.LOW))
        assert booked.doctor.doctor_id == "D-N1"
        assert booked.appointment.priority == 4

    @pytest.mark.asyncio
    async def test_critical_priority_is_one(self):
        booked = await _scheduler().schedule_appointment(
            "c-1", "p1", _outcome(UrgencyTier.CRITICAL)
        )
        assert booked.appointment.priority == 1
        assert booked.appointment.time == "15:00"

    @pytest.mark.asyncio
    async def test_unavailable_specialty_falls_back_to_general_medicine(self):
        booked = await _scheduler().schedule_appointment(
            "c-1", "p1", _outcome(UrgencyTier.MEDIUM, specialty="Cardiology")
        )
        assert booked.doctor.doctor_id == "D-GM"

    @pytest.mark.asyncio
    async def test_empty_specialty_means_general_medicine(self):
        booked = await _scheduler().schedule_appointment(
            "c-1", "p1", _outcome(UrgencyTier.MEDIUM, specialty="")
        )
        assert booked.doctor.specialty == "General Medicine"

    @pytest.mark.asyncio
    async def test_no_doctor_at_all_returns_none(self):
        doctors = [Doctor(doctor_id="D-X", name="Busy", specialty="General Medicine",
                          available=False)]
        ledger = ConsultationLedger()
        booked = await _scheduler(doctors=doctors, ledger=ledger).schedule_appointment(
            "c-1", "p1", _outcome(UrgencyTier.HIGH, specialty="Dermatology")
        )
        assert booked is None
        assert await ledger.get_appointment_for("c-1") is None

    @pytest.mark.asyncio
    async def test_ledger_failure_returns_none(self):
        bucket = FakeBucket(fail_writes=True)
        ledger = ConsultationLedger(gcs_bucket_manager=bucket)
        scheduler = _scheduler(ledger=ledger)

        booked = await scheduler.schedule_appointment("c-1", "p1", _outcome(UrgencyTier.HIGH))

        assert booked is None
        assert await ledger.get_appointment_for("c-1") is None
        assert await ledger.booked_times("D-N1", date(2025, 3, 13)) == []

        # Once storage recovers the same slot is still offered
        bucket.fail_writes = False
        retry = await scheduler.schedule_appointment("c-1", "p1", _outcome(UrgencyTier.HIGH))
        assert retry.appointment.time == "09:00"
        assert await ledger.booked_times("D-N1", date(2025, 3, 13)) == ["09:00"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Free slots + confirmation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAvailableSlots:

    @pytest.mark.asyncio
    async def test_empty_day_has_every_slot(self):
        slots = await _scheduler().available_slots("D-N1", date(2025, 3, 13))
        assert slots == DAY_SLOTS
        assert slots[0] == "09:00" and slots[-1] == "16:30"
        assert len(slots) == 16

    @pytest.mark.asyncio
    async def test_booked_slot_is_removed(self):
        ledger = ConsultationLedger()
        scheduler = _scheduler(ledger=ledger)
        await scheduler.schedule_appointment("c-1", "p1", _outcome(UrgencyTier.HIGH))

        slots = await scheduler.available_slots("D-N1", date(2025, 3, 13))

        assert "09:00" not in slots
        assert len(slots) == 15

    @pytest.mark.asyncio
    async def test_cancelled_appointment_frees_slot(self):
        ledger = ConsultationLedger()
        await ledger.record_appointment(Appointment(
            consultation_id="c-9", patient_id="p9", doctor_id="D-N1",
            date=date(2025, 3, 13), time="10:30", priority=3, status="cancelled",
        ))
        slots = await _scheduler(ledger=ledger).available_slots("D-N1", date(2025, 3, 13))
        assert "10:30" in slots


class TestConfirmation:

    def test_confirmation_text(self):
        doctor = make_doctors()[1]
        appt = Appointment(
            consultation_id="c-1", patient_id="p1", doctor_id=doctor.doctor_id,
            date=date(2025, 3, 13), time="09:00", priority=2,
        )
        text = SlotScheduler.generate_confirmation(appt, doctor, "Neurology")
        assert "**Appointment Scheduled Successfully!**" in text
        assert "**Doctor**: Dr. Nina Patel" in text
        assert "**Date**: March 13, 2025" in text
        assert "**Time**: 09:00" in text
        assert "**Priority**: High Priority" in text
