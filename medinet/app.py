"""
Medinet AI Doctor Server — Application Factory
"""

import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medinet import settings

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("medinet-server")

_startup_time = time.time()
logger.info("Server initialization started...")

# ── 2. Create FastAPI app ──
app = FastAPI(title="Medinet AI Doctor Server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 3. Register routers ──
from medinet.routers import consultation, health, realtime  # noqa: E402

app.include_router(health.router)
app.include_router(consultation.router)
app.include_router(realtime.router)


# ── 4. Startup / shutdown ──
@app.on_event("startup")
async def startup_event():
    logger.info("=" * 60)
    logger.info("Medinet AI Doctor Server Starting")
    logger.info("Listening on port: %s", settings.PORT)
    logger.info("Total init time: %.2fs", time.time() - _startup_time)
    logger.info("=" * 60)

    # The consultation core must be up before sockets are served
    try:
        from medinet.gateway.setup import initialize_core
        await initialize_core()
        logger.info("Consultation core initialized")
    except Exception as e:
        logger.warning("Consultation core failed to start, running without it: %s", e)


@app.on_event("shutdown")
async def shutdown_event():
    from medinet.gateway.setup import shutdown_core
    await shutdown_core()
