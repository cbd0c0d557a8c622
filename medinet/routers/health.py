from fastapi import APIRouter

from medinet import settings

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "Medinet AI Doctor Server is Running",
        "features": ["consultation", "diagnosis", "booking", "notifications"],
        "endpoints": {
            "consultation_ws": "/ws",
            "active_consultations": "/api/consultations",
            "patient_history": "/api/consultations/patient/{patient_id}",
            "consultation": "/api/consultations/{consultation_id}",
            "consultation_logs": "/api/consultations/{consultation_id}/logs",
            "diagnosis": "/api/consultations/{consultation_id}/diagnosis",
            "doctor_slots": "/api/doctors/{doctor_id}/slots?date=YYYY-MM-DD",
            "status": "/api/consultations/status",
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    from medinet.gateway.setup import get_orchestrator

    return {
        "status": "healthy",
        "service": "medinet",
        "core_initialized": get_orchestrator() is not None,
        "port": settings.PORT,
    }
