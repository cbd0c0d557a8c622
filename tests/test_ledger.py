"""
Tests for the Consultation Ledger — in-memory records and GCS write-through.
"""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from fakes import FakeBucket
from medinet.gateway.ledger import (
    ConsultationLedger,
    ConsultationNotFoundError,
    LedgerError,
)
from medinet.gateway.outcomes import Appointment, DiagnosisOutcome, Disease, UrgencyTier
from medinet.gateway.session import SessionStatus, TurnRole


def _outcome() -> DiagnosisOutcome:
    return DiagnosisOutcome(
        diseases=[
            Disease(name="Acute Migraine", confidence=80, severity=75),
            Disease(name="Tension Headache", confidence=20, severity=40),
        ],
        severity_score=68,
        urgency=UrgencyTier.MEDIUM,
        specialty="Neurology",
        recommended_actions=["Rest"],
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  In-memory behaviour
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestConsultations:

    @pytest.mark.asyncio
    async def test_create_and_append(self, ledger):
        cid = await ledger.create_consultation("p1", "started")
        await ledger.append_turn(cid, TurnRole.ASSISTANT, "Hello")
        await ledger.append_turn(cid, TurnRole.PATIENT, "headache")

        entries = await ledger.get_conversation(cid)

        assert [e.role for e in entries] == [TurnRole.ASSISTANT, TurnRole.PATIENT]
        assert entries[1].text == "headache"
        assert ledger.persistent is False

    @pytest.mark.asyncio
    async def test_append_to_unknown_consultation(self, ledger):
        with pytest.raises(ConsultationNotFoundError):
            await ledger.append_turn("nope", TurnRole.PATIENT, "hi")

    @pytest.mark.asyncio
    async def test_record_diagnosis_updates_record(self, ledger):
        cid = await ledger.create_consultation("p1")
        record = await ledger.record_diagnosis(cid, _outcome())

        assert record.disease_name == "Acute Migraine"
        assert record.severity_level == "medium"
        consultation = await ledger.get_consultation(cid)
        assert consultation.diseases == ["Acute Migraine", "Tension Headache"]
        assert consultation.severity_score == 68
        assert consultation.specialty == "Neurology"
        assert await ledger.get_diagnoses(cid) == [record]

    @pytest.mark.asyncio
    async def test_close_sets_status(self, ledger):
        cid = await ledger.create_consultation("p1")
        await ledger.close_consultation(cid, SessionStatus.CANCELLED)
        consultation = await ledger.get_consultation(cid)
        assert consultation.status == "cancelled"
        assert consultation.closed_at is not None

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_per_patient(self, ledger):
        first = await ledger.create_consultation("p1")
        second = await ledger.create_consultation("p1")
        await ledger.create_consultation("p2")
        await ledger.record_diagnosis(second, _outcome())
        older = await ledger.get_consultation(first)
        older.created_at = older.created_at - timedelta(minutes=5)

        history = await ledger.list_consultations("p1")

        assert [h.consultation_id for h in history] == [second, first]
        assert history[0].top_disease == "Acute Migraine"
        assert await ledger.list_consultations("nobody") == []

    @pytest.mark.asyncio
    async def test_list_active_skips_closed_and_honours_limit(self, ledger):
        closed = await ledger.create_consultation("p1")
        older = await ledger.create_consultation("p2")
        newer = await ledger.create_consultation("p3")
        await ledger.close_consultation(closed, SessionStatus.COMPLETED)
        record = await ledger.get_consultation(older)
        record.created_at = record.created_at - timedelta(minutes=5)

        assert [s.consultation_id for s in await ledger.list_active()] == [newer, older]
        assert [s.consultation_id for s in await ledger.list_active(limit=1)] == [newer]

    @pytest.mark.asyncio
    async def test_unknown_consultation_reads(self, ledger):
        assert await ledger.get_consultation("missing") is None
        with pytest.raises(ConsultationNotFoundError):
            await ledger.get_diagnoses("missing")


class TestAppointments:

    @pytest.mark.asyncio
    async def test_booked_times_only_scheduled(self, ledger):
        day = date(2025, 3, 13)
        for time, status in [("09:00", "scheduled"), ("09:30", "cancelled"), ("11:00", "scheduled")]:
            await ledger.record_appointment(Appointment(
                consultation_id=f"c-{time}", patient_id="p1", doctor_id="D-1",
                date=day, time=time, priority=3, status=status,
            ))
        assert await ledger.booked_times("D-1", day) == ["09:00", "11:00"]
        assert await ledger.booked_times("D-2", day) == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  GCS write-through
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestWriteThrough:

    @pytest.mark.asyncio
    async def test_blob_layout(self):
        bucket = FakeBucket()
        ledger = ConsultationLedger(gcs_bucket_manager=bucket)

        cid = await ledger.create_consultation("p1")
        await ledger.record_appointment(Appointment(
            consultation_id=cid, patient_id="p1", doctor_id="D-1",
            date=date(2025, 3, 13), time="09:00", priority=2,
        ))

        assert f"consultations/consultation_{cid}.json" in bucket.blobs
        assert "consultations/patients/patient_p1.json" in bucket.blobs
        assert "appointments/doctor_D-1/2025-03-13.json" in bucket.blobs
        assert ledger.persistent is True

    @pytest.mark.asyncio
    async def test_failed_create_leaves_no_record(self):
        ledger = ConsultationLedger(gcs_bucket_manager=FakeBucket(fail_writes=True))
        with pytest.raises(LedgerError):
            await ledger.create_consultation("p1")
        assert await ledger.list_consultations("p1") == []

    @pytest.mark.asyncio
    async def test_reads_fall_back_to_bucket(self):
        bucket = FakeBucket()
        writer = ConsultationLedger(gcs_bucket_manager=bucket)
        cid = await writer.create_consultation("p1", "from another process")
        await writer.append_turn(cid, TurnRole.PATIENT, "dizzy")

        reader = ConsultationLedger(gcs_bucket_manager=bucket)

        record = await reader.get_consultation(cid)
        assert record.initial_note == "from another process"
        assert [e.text for e in await reader.get_conversation(cid)] == ["dizzy"]
        history = await reader.list_consultations("p1")
        assert [h.consultation_id for h in history] == [cid]

    @pytest.mark.asyncio
    async def test_create_writes_record_and_patient_index(self):
        gcs = MagicMock()
        gcs.write_json.return_value = True
        gcs.read_json.return_value = None
        ledger = ConsultationLedger(gcs_bucket_manager=gcs)
        await ledger.create_consultation("p1")
        assert gcs.write_json.call_count == 2

    @pytest.mark.asyncio
    async def test_new_ledger_on_same_bucket_keeps_history(self):
        bucket = FakeBucket()
        first = ConsultationLedger(gcs_bucket_manager=bucket)
        old_cid = await first.create_consultation("p1", "before restart")

        second = ConsultationLedger(gcs_bucket_manager=bucket)
        new_cid = await second.create_consultation("p1", "after restart")

        history = await second.list_consultations("p1")
        assert {h.consultation_id for h in history} == {new_cid, old_cid}
        stored = bucket.blobs["consultations/patients/patient_p1.json"]["consultations"]
        assert {row["consultation_id"] for row in stored} == {old_cid, new_cid}

        # Closing in the new process keeps the older row in the index
        await second.close_consultation(new_cid, SessionStatus.COMPLETED)
        stored = bucket.blobs["consultations/patients/patient_p1.json"]["consultations"]
        assert len(stored) == 2

    @pytest.mark.asyncio
    async def test_new_ledger_on_same_bucket_keeps_bookings(self):
        bucket = FakeBucket()
        day = date(2025, 3, 13)
        first = ConsultationLedger(gcs_bucket_manager=bucket)
        await first.record_appointment(Appointment(
            consultation_id="c-1", patient_id="p1", doctor_id="D-1",
            date=day, time="09:00", priority=3,
        ))

        second = ConsultationLedger(gcs_bucket_manager=bucket)
        assert await second.booked_times("D-1", day) == ["09:00"]
        await second.record_appointment(Appointment(
            consultation_id="c-2", patient_id="p2", doctor_id="D-1",
            date=day, time="10:00", priority=3,
        ))

        assert await second.booked_times("D-1", day) == ["09:00", "10:00"]
        stored = bucket.blobs["appointments/doctor_D-1/2025-03-13.json"]
        assert [row["time"] for row in stored] == ["09:00", "10:00"]

    @pytest.mark.asyncio
    async def test_failed_booking_frees_the_slot(self):
        ledger = ConsultationLedger(gcs_bucket_manager=FakeBucket(fail_writes=True))
        day = date(2025, 3, 13)
        with pytest.raises(LedgerError):
            await ledger.record_appointment(Appointment(
                consultation_id="c-1", patient_id="p1", doctor_id="D-1",
                date=day, time="09:00", priority=3,
            ))
        assert await ledger.booked_times("D-1", day) == []
        assert await ledger.get_appointment_for("c-1") is None
