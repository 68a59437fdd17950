# i-Mitra Grievance Tracker: FastAPI application
# Complaint filing, AI/keyword routing, SLA tracking, role dashboards and live push

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from . import __version__, db as db_module
from .config import (
    FRONTEND_URL, OPENAI_API_KEY, OPENAI_MODEL, SLA_POLICY, SLA_SWEEP_INTERVAL_SECONDS,
    SYSTEM_NAME, UPLOAD_DIR, now_utc,
)
from .errors import register_error_handlers
from .monitor import run_sla_monitor
from .realtime import router as realtime_router
from .routes import ROUTERS
from .security import SecurityHeadersMiddleware, limiter

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await db_module.startup_db()
    logger.info("OpenAI model: %s (%s) | SLA policy: %s", OPENAI_MODEL,
                "enabled" if OPENAI_API_KEY else "keyword fallback only", SLA_POLICY)
    monitor = None
    if SLA_SWEEP_INTERVAL_SECONDS > 0:
        monitor = asyncio.create_task(run_sla_monitor(db_module.get_db, SLA_SWEEP_INTERVAL_SECONDS))
    yield
    if monitor:
        monitor.cancel()
        try:
            await monitor
        except asyncio.CancelledError:
            pass
    db_module.shutdown_db()

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title=SYSTEM_NAME, version=__version__, lifespan=lifespan)
app.state.limiter = limiter
register_error_handlers(app)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")

for router in ROUTERS:
    app.include_router(router)
app.include_router(realtime_router)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {"status": "healthy", "system": SYSTEM_NAME, "timestamp": now_utc()}

def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
