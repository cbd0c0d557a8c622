"""
Clinic directory — read-only doctor and patient rosters.

Both rosters are CSV files parsed with pandas, fetched either from the GCS
bucket (``clinic_data/doctors.csv``, ``clinic_data/patients.csv``) or from
a local path.  Either directory can also be built straight from records,
which is how the tests and the bucket-less development mode use it.
"""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel

logger = logging.getLogger("gateway.directory")


class DirectoryError(Exception):
    """A roster could not be loaded or parsed."""


class Doctor(BaseModel):
    doctor_id: str
    name: str
    specialty: str
    available: bool = True
    experience_years: int = 0
    clinic_latitude: Optional[float] = None
    clinic_longitude: Optional[float] = None
    clinic_address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None

    @property
    def has_clinic_location(self) -> bool:
        return self.clinic_latitude is not None and self.clinic_longitude is not None


class PatientProfile(BaseModel):
    patient_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None


_TRUTHY = {"true", "yes", "y", "1", "available"}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _CSVRoster:
    """Loads one roster CSV as a list of row dicts (all values as strings)."""

    def __init__(self, columns: list[str], gcs_manager=None, csv_path: str | None = None) -> None:
        self.columns = columns
        self._gcs = gcs_manager
        self._csv_path = csv_path

    @property
    def has_source(self) -> bool:
        return bool(self._csv_path)

    def _read_text(self) -> str | None:
        if self._gcs is not None:
            return self._gcs.read_file_as_string(self._csv_path)
        path = Path(self._csv_path)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def load_rows(self) -> list[dict[str, str]]:
        content = self._read_text()
        if not content:
            logger.warning("Roster %s is missing or empty", self._csv_path)
            return []
        try:
            # dtype=str keeps ids like 'D001' and phone numbers intact
            df = pd.read_csv(io.StringIO(content), dtype=str)
        except pd.errors.EmptyDataError:
            return []
        except pd.errors.ParserError as exc:
            raise DirectoryError(f"Could not parse roster {self._csv_path}: {exc}") from exc

        for col in self.columns:
            if col not in df.columns:
                df[col] = ""
        return df.fillna("").to_dict(orient="records")


class DoctorDirectory:
    """Looks up doctors by specialty or id."""

    COLUMNS = [
        "doctor_id", "name", "specialty", "available", "experience_years",
        "clinic_latitude", "clinic_longitude", "clinic_address",
        "email", "phone", "whatsapp",
    ]

    def __init__(
        self,
        doctors: list[Doctor] | None = None,
        gcs_manager=None,
        csv_path: str | None = None,
    ) -> None:
        self._roster = _CSVRoster(self.COLUMNS, gcs_manager, csv_path)
        self._doctors: list[Doctor] | None = list(doctors) if doctors is not None else None
        self._load_lock = asyncio.Lock()

    @staticmethod
    def parse_row(row: dict[str, str]) -> Doctor:
        try:
            experience = int(float(row.get("experience_years") or 0))
        except ValueError:
            experience = 0

        def _coord(key: str) -> float | None:
            value = _blank_to_none(row.get(key))
            try:
                return float(value) if value is not None else None
            except ValueError:
                return None

        return Doctor(
            doctor_id=str(row["doctor_id"]).strip(),
            name=str(row.get("name", "")).strip(),
            specialty=str(row.get("specialty", "")).strip(),
            available=str(row.get("available") or "true").strip().lower() in _TRUTHY,
            experience_years=experience,
            clinic_latitude=_coord("clinic_latitude"),
            clinic_longitude=_coord("clinic_longitude"),
            clinic_address=_blank_to_none(row.get("clinic_address")),
            email=_blank_to_none(row.get("email")),
            phone=_blank_to_none(row.get("phone")),
            whatsapp=_blank_to_none(row.get("whatsapp")),
        )

    async def _ensure_loaded(self) -> list[Doctor]:
        if self._doctors is not None:
            return self._doctors
        async with self._load_lock:
            if self._doctors is None:
                if not self._roster.has_source:
                    self._doctors = []
                else:
                    rows = await asyncio.to_thread(self._roster.load_rows)
                    self._doctors = [
                        self.parse_row(r) for r in rows if str(r.get("doctor_id", "")).strip()
                    ]
                    logger.info("Loaded %d doctors from roster", len(self._doctors))
        return self._doctors

    async def find_by_specialty(self, specialty: str) -> list[Doctor]:
        """Available doctors in ``specialty``, most experienced first."""
        doctors = await self._ensure_loaded()
        wanted = specialty.strip().lower()
        matches = [
            d for d in doctors
            if d.available and d.specialty.lower() == wanted
        ]
        return sorted(matches, key=lambda d: d.experience_years, reverse=True)

    async def get(self, doctor_id: str) -> Doctor | None:
        for doctor in await self._ensure_loaded():
            if doctor.doctor_id == doctor_id:
                return doctor
        return None


class PatientDirectory:
    COLUMNS = ["patient_id", "name", "email", "phone", "age", "gender"]

    def __init__(
        self,
        patients: list[PatientProfile] | None = None,
        gcs_manager=None,
        csv_path: str | None = None,
    ) -> None:
        self._roster = _CSVRoster(self.COLUMNS, gcs_manager, csv_path)
        self._patients: dict[str, PatientProfile] | None = (
            {p.patient_id: p for p in patients} if patients is not None else None
        )
        self._load_lock = asyncio.Lock()

    @staticmethod
    def parse_row(row: dict[str, str]) -> PatientProfile:
        age_raw = _blank_to_none(row.get("age"))
        try:
            age = int(float(age_raw)) if age_raw is not None else None
        except ValueError:
            age = None
        return PatientProfile(
            patient_id=str(row["patient_id"]).strip(),
            name=str(row.get("name", "")).strip(),
            email=_blank_to_none(row.get("email")),
            phone=_blank_to_none(row.get("phone")),
            age=age,
            gender=_blank_to_none(row.get("gender")),
        )

    async def _ensure_loaded(self) -> dict[str, PatientProfile]:
        if self._patients is not None:
            return self._patients
        async with self._load_lock:
            if self._patients is None:
                if not self._roster.has_source:
                    self._patients = {}
                else:
                    rows = await asyncio.to_thread(self._roster.load_rows)
                    profiles = [
                        self.parse_row(r) for r in rows if str(r.get("patient_id", "")).strip()
                    ]
                    self._patients = {p.patient_id: p for p in profiles}
                    logger.info("Loaded %d patients from roster", len(self._patients))
        return self._patients

    async def get(self, patient_id: str) -> PatientProfile | None:
        return (await self._ensure_loaded()).get(patient_id)
