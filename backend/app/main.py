"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.cache import close_redis
from backend.app.core.config import settings
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.container import ServiceContainer, get_container

# ── API routers ──
from backend.app.api.v1.crowd import router as crowd_router
from backend.app.api.v1.emergency import router as emergency_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, seed demo data, start background jobs."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    container = await ServiceContainer.build()
    app.state.container = container

    if settings.SEED_SAMPLE_LOCATIONS:
        await container.tracker.seed_sample_locations()
    if settings.SCHEDULER_ENABLED:
        await container.scheduler.start()

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await container.close()
    await close_redis()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Crowd-safety routing and emergency-response backend. "
        "Tracks crowd density per location, runs the emergency-alert "
        "lifecycle with community verification, auto-detects stampede "
        "risk at critical hotspots, scores and ranks routes by crowd and "
        "emergency exposure, and plans evacuation routes."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(crowd_router)
app.include_router(emergency_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "crowd-density",
            "emergency-alerts",
            "emergency-detection",
            "safe-routing",
            "evacuation-planning",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(container)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(container: ServiceContainer = Depends(get_container)):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(container)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
