"""
Centralized configuration for Medinet.
Env-based constants for the consultation core, its collaborators and the server.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# --- GCS ---
# Empty bucket name keeps the ledger and directories in memory.
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME", "")
DOCTOR_ROSTER_PATH = os.getenv("DOCTOR_ROSTER_PATH", "clinic_data/doctors.csv")
PATIENT_ROSTER_PATH = os.getenv("PATIENT_ROSTER_PATH", "clinic_data/patients.csv")

# --- LLM ---
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
DOCTOR_MODEL = os.getenv("DOCTOR_MODEL", "gemini-2.0-flash")
DIAGNOSIS_MODEL = os.getenv("DIAGNOSIS_MODEL", "gemini-2.0-flash")
SPECIALTY_MODEL = os.getenv("SPECIALTY_MODEL", "gemini-2.0-flash")
LLM_TIMEOUT_SECONDS = _int_env("LLM_TIMEOUT_SECONDS", 30)

# --- Dialogue ---
MIN_TURNS = _int_env("MIN_TURNS", 3)
MAX_TURNS = _int_env("MAX_TURNS", 6)

# --- Diagnosis ---
# Ascending urgency cut-offs on the aggregate severity score (0-100)
SEVERITY_THRESHOLDS = {
    "medium": _int_env("SEVERITY_MEDIUM", 50),
    "high": _int_env("SEVERITY_HIGH", 70),
    "critical": _int_env("SEVERITY_CRITICAL", 85),
}

# --- Notifications ---
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "noreply@medinet.app")
SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "AI Medical System")
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_WHATSAPP_FROM = os.getenv("TWILIO_WHATSAPP_FROM", "")
NOTIFICATION_TIMEOUT_SECONDS = _int_env("NOTIFICATION_TIMEOUT_SECONDS", 15)

# --- Maps ---
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
MAPS_TIMEOUT_SECONDS = _int_env("MAPS_TIMEOUT_SECONDS", 10)

# --- Sessions ---
SESSION_TIMEOUT_SECONDS = _int_env("SESSION_TIMEOUT_SECONDS", 30 * 60)
SESSION_CLEANUP_INTERVAL_SECONDS = _int_env("SESSION_CLEANUP_INTERVAL_SECONDS", 10 * 60)

# --- Server ---
PORT = int(os.getenv("PORT", "8080"))
