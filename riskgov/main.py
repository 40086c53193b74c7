"""
RiskGov — FastAPI Application.

Run: uvicorn riskgov.main:app --host 0.0.0.0 --port 8001 --reload

  - /api/v1/scoring, /risks, /controls  ← effectiveness & residual risk
  - /api/v1/tolerances                  ← tolerance metrics & coverage
  - /api/v1/kris/{id}/observations      ← observation intake → evaluation
  - /api/v1/breaches                    ← breach lifecycle & board exceptions
  - /api/v1/appetite                    ← status rollups & recalculation
  - GET /health, GET /ready             ← health checks
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from riskgov.api.routers.appetite import router as appetite_router
from riskgov.api.routers.breaches import router as breaches_router
from riskgov.api.routers.observations import router as observations_router
from riskgov.api.routers.scoring import router as scoring_router
from riskgov.api.routers.tolerances import router as tolerances_router
from riskgov.config import settings
from riskgov.db.engine import close_db, get_engine, init_db
from riskgov.exceptions import register_exception_handlers
from riskgov.middleware.error_handler import ErrorHandlerMiddleware
from riskgov.middleware.request_context import RequestContextMiddleware
from riskgov.middleware.tenant import TenantMiddleware

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info("riskgov_starting", version=settings.app_version, environment=settings.environment)
    await init_db()
    yield
    await close_db()
    logger.info("riskgov_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="RiskGov",
        description=(
            "# RiskGov — Risk Scoring & Appetite Governance Engine\n\n"
            "- **Scoring**: DIME control effectiveness → residual risk\n"
            "- **Tolerances**: zone evaluation, windowed breach rules, coverage\n"
            "- **Breaches**: single active breach per metric, escalation, board exceptions\n"
            "- **Appetite**: category and enterprise worst-case rollups\n\n"
            "All endpoints except /health and /ready require `Authorization: Bearer <JWT>`."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness checks"},
            {"name": "scoring", "description": "Control effectiveness and residual risk"},
            {"name": "tolerances", "description": "Tolerance metrics, KRI links, coverage"},
            {"name": "observations", "description": "KRI observation intake and evaluation"},
            {"name": "breaches", "description": "Breach lifecycle and board exceptions"},
            {"name": "appetite", "description": "Appetite status rollups and recalculation"},
        ],
    )

    register_exception_handlers(app)

    # ── Middleware (last added = outermost) ──────────────────────────
    app.add_middleware(TenantMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(scoring_router)
    app.include_router(tolerances_router)
    app.include_router(observations_router)
    app.include_router(breaches_router)
    app.include_router(appetite_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness check. Does not check dependencies."""
        return {"status": "ok", "version": settings.app_version, "service": "riskgov"}

    @app.get("/ready", tags=["health"])
    async def readiness():
        """Readiness check: 200 when the database answers, 503 otherwise."""
        try:
            async with get_engine().connect() as conn:
                await asyncio.wait_for(
                    conn.execute(text("SELECT 1")),
                    timeout=settings.health_check_timeout_seconds,
                )
        except Exception as e:
            logger.warning("readiness_check_failed", error=str(e))
            return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unavailable"})
        return {"status": "ready", "database": "ok"}

    return app


app = create_app()
