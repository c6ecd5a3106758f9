"""
Relay Service - Main Application
================================

FastAPI application that proves income claims, attests them on the
ledger and verifies them on the target chain.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.relay.dependencies import build_orchestrator, get_orchestrator
from services.relay.routes import claimants, proofs, relays
from zkrelay.config import settings
from zkrelay.errors import RelayError
from zkrelay.logging import get_logger, setup_logging
from zkrelay.models import HealthResponse
from zkrelay.pipeline import PipelineOrchestrator


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="relay",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "relay_service_starting",
        environment=settings.environment.value,
        port=settings.port,
    )

    # Startup
    orchestrator = build_orchestrator(settings)
    try:
        await orchestrator.ledger.connect()
        logger.info("ledger_connected", mode=settings.ledger.mode.value)

        await orchestrator.chain.connect()
        logger.info("chain_connected", mode=settings.chain.mode.value)

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    app.state.orchestrator = orchestrator

    yield

    # Shutdown
    logger.info("relay_service_shutting_down")
    await orchestrator.shutdown()
    await orchestrator.ledger.disconnect()
    await orchestrator.chain.disconnect()
    await orchestrator.registry.close()
    app.state.orchestrator = None


# Create FastAPI application
app = FastAPI(
    title="ZK Relay Service",
    description="Income threshold proofs relayed from the attestation ledger to the target chain",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its dependencies.
    """
    components = await orchestrator.health_check()

    # Determine overall status
    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="relay",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "ZK Relay Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    proofs.router,
    prefix="/api/v1/proofs",
    tags=["Proofs"],
)

app.include_router(
    relays.router,
    prefix="/api/v1/relays",
    tags=["Relays"],
)

app.include_router(
    claimants.router,
    prefix="/api/v1/claimants",
    tags=["Claimants"],
)


# ============================================================================
# Error Handlers
# ============================================================================


def _envelope(status_code: int, error: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "status_code": status_code},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return _envelope(exc.status_code, exc.detail)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Pipeline errors that escape a route are upstream failures."""
    logger.error(
        "relay_error",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _envelope(
        status.HTTP_502_BAD_GATEWAY,
        {"type": type(exc).__name__, "message": str(exc)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.relay.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
