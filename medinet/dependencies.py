"""
Lazy-init shared dependencies used across multiple routers.
"""

import logging

from fastapi import HTTPException

from medinet import settings

logger = logging.getLogger("medinet-server")

# Global singleton - initialized lazily
gcs = None


def get_gcs():
    """Lazy initialization of GCS Bucket Manager.  None when no bucket is configured."""
    global gcs
    if gcs is None and settings.GCS_BUCKET_NAME:
        from medinet.infrastructure.gcs import GCSBucketManager
        logger.info("Initializing GCS Bucket Manager (lazy)...")
        gcs = GCSBucketManager(bucket_name=settings.GCS_BUCKET_NAME)
    return gcs


def require_orchestrator():
    """Router dependency: the SessionOrchestrator, or 503 before startup completes."""
    from medinet.gateway.setup import get_orchestrator
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Consultation core not initialized")
    return orchestrator


def require_ledger():
    from medinet.gateway.setup import get_ledger
    ledger = get_ledger()
    if ledger is None:
        raise HTTPException(status_code=503, detail="Consultation core not initialized")
    return ledger


def require_scheduler():
    from medinet.gateway.setup import get_scheduler
    scheduler = get_scheduler()
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Consultation core not initialized")
    return scheduler
