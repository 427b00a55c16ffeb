"""
Fairplay Settlement entry point.
FastAPI service that escrows, resolves and pays out provably fair wagers.
"""

import sys
from pathlib import Path

# Add parent directory to path so imports work when running directly
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

from fairplay.core.logger import init_logging, get_logger
from fairplay.config import settings
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from fairplay.core.exceptions import SettlementError
from fairplay.core.scheduler import PayoutWorker
from fairplay.core.settlement import WagerSettlementCoordinator, build_coordinator
from fairplay.routers import admin, api

# Initialize logging first
init_logging(
    level=settings.logging.level,
    log_to_file=settings.logging.log_to_file,
    formatter=settings.logging.formatter,
    log_file_path=settings.paths.get_log_path(),
)
logger = get_logger("main")


# ==================== Security Headers Middleware ====================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response


# ==================== UVLoop Integration =====================

try:
    import uvloop

    uvloop.install()
    logger.info("uvloop installed and enabled.")
except ImportError:
    logger.info("uvloop not found, using default asyncio event loop.")


# ==================== Exception Handlers ====================


async def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}",
                     extra={"wager_id": exc.wager_id})
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}",
                    extra={"wager_id": exc.wager_id})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions gracefully."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.server.debug else None,
        },
    )


# ==================== Application Setup ====================


def create_app(coordinator: WagerSettlementCoordinator = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.server.name,
        docs_url="/docs" if settings.server.debug else None,
        redoc_url=None,
    )

    app.state.coordinator = coordinator or build_coordinator(settings)
    app.state.worker = PayoutWorker(app.state.coordinator, settings.scheduler)

    # Add slowapi rate limiter
    app.state.limiter = api.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Add security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware (for development)
    if settings.server.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Include routers
    app.include_router(api.router, prefix="/api")
    app.include_router(admin.router, prefix="/admin")

    @app.on_event("startup")
    async def startup_event():
        if settings.scheduler.enabled:
            app.state.worker.start()
        logger.info(f"Application '{settings.server.name}' started "
                    f"(ledger={settings.ledger.backend}, transport={settings.payout.transport})")

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.worker.shutdown()
        await app.state.coordinator.close()

    return app


app = create_app()


# ==================== Main Entry Point ====================

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Fairplay Settlement Server")
    parser.add_argument(
        "--sandbox",
        action="store_true",
        help="Use the in-memory ledger and static seed source",
    )
    args = parser.parse_args()

    if args.sandbox:
        import os

        # The reload subprocess loads its own config from the environment
        os.environ["LEDGER_BACKEND"] = "memory"
        settings.ledger.backend = "memory"
        logger.info("*** SANDBOX LEDGER ENABLED ***")

    logger.info(f"Starting server on {settings.server.host}:{settings.server.port}")
    uvicorn.run(
        "fairplay.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )
