"""
VaultLedger - Credential Trust Ledger

Main application entry point.

Run with:
    uvicorn vaultledger.main:app
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import router
from .core import Hasher, NotFoundError, StorageError
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)
from .services import Services, build_services

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _cors_origins() -> list[str]:
    raw = os.environ.get("VAULTLEDGER_CORS_ORIGINS")
    if raw is None:
        return DEFAULT_CORS_ORIGINS
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _error_summary(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the echoed input, which may not be valid UTF-8."""
    return [
        {
            "type": error.get("type"),
            "loc": [part if Hasher.is_encodable(part) else ascii(part) for part in error.get("loc", ())],
            "msg": error.get("msg"),
        }
        for error in exc.errors()
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = build_services()

    services: Services = app.state.services

    if services.ledger.verify():
        logger.info("Chain integrity verified OK", total_blocks=len(services.ledger))
    else:
        logger.error("Chain integrity check FAILED!")

    logger.info(
        "Application startup complete",
        backend=services.store.describe(),
        total_blocks=len(services.ledger),
    )

    yield

    if owns_services:
        services.close()
        app.state.services = None
    logger.info("Application shutdown complete")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Prebuilt services (tests). When omitted they are built
            from the environment in the lifespan.
    """
    app = FastAPI(
        title="VaultLedger",
        description="""
## Credential Trust Ledger

An append-only, tamper-evident ledger that anchors credential
certificates, token revocations and public key registrations.

### Guarantees

- **Append-only**: blocks are never edited or removed
- **Hash-chained**: every block commits to its predecessor
- **Signed**: certificates carry an Ed25519 signature over a canonical payload
- **Revocable**: a revoked token fingerprint stays revoked

### Verification

A certificate is trusted only when its signature, expiry and token
match, its token is not revoked, its anchor block exists and the
whole chain verifies.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": jsonable_encoder(_error_summary(exc))},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(
            "Storage failure",
            path=request.url.path,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage unavailable, retry the request"},
        )

    app.include_router(router, prefix="/api")

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "vaultledger"}

    @app.get("/health/detailed", tags=["System"])
    async def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Document store connectivity
        - Chain integrity

        Returns 200 if healthy, 503 if unhealthy.
        """
        services: Services = request.app.state.services
        health_status = check_health(ledger=services.ledger, store=services.store)

        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """Counters, latency percentiles and verification outcomes."""
        return get_metrics().get_summary()

    @app.get("/", tags=["System"])
    async def service_info(request: Request):
        services: Services = request.app.state.services
        return {
            "name": "VaultLedger API",
            "version": __version__,
            "storage_backend": services.store.describe(),
            "total_blocks": len(services.ledger),
            "endpoints": {
                "ledger": {
                    "blocks": "/api/ledger/blocks",
                    "block_by_hash": "/api/ledger/blocks/{hash}",
                    "block_by_index": "/api/ledger/blocks/index/{index}",
                    "verify": "/api/ledger/verify",
                    "stats": "/api/ledger/stats",
                },
                "certificates": {
                    "register": "/api/certificates",
                    "detail": "/api/certificates/{id}",
                    "verify": "/api/certificates/{id}/verify",
                    "by_issuer": "/api/certificates/issuer/{userId}",
                    "stats": "/api/certificates/stats",
                },
                "tokens": {
                    "revoke": "/api/tokens/revoke",
                    "revoked": "/api/tokens/revoked",
                    "check": "/api/tokens/revoked/{tokenHash}",
                    "stats": "/api/tokens/stats",
                },
                "users": {
                    "public_key": "/api/users/{userId}/public-key",
                    "public_keys": "/api/users/public-keys",
                },
            },
        }

    return app


app = create_app()
