"""
Shared fixtures for the Medinet test suite.
The fakes themselves live in fakes.py so test modules can import them.
"""

import pytest

from fakes import make_doctors
from medinet.gateway.directory import DoctorDirectory, PatientDirectory, PatientProfile
from medinet.gateway.ledger import ConsultationLedger


@pytest.fixture
def doctors():
    return make_doctors()


@pytest.fixture
def doctor_directory(doctors):
    return DoctorDirectory(doctors=doctors)


@pytest.fixture
def patient_directory():
    return PatientDirectory(patients=[
        PatientProfile(patient_id="p1", name="Pat One", email="p1@mail.test", age=34),
        PatientProfile(patient_id="p2", name="Pat Two"),
    ])


@pytest.fixture
def ledger():
    return ConsultationLedger()
