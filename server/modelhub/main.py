"""ModelHub Server - Entry Point"""

import contextlib

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from .logging_config import configure_logging, get_logger
from .config import get_settings

# Configure logging at module load (before any other imports that might log)
configure_logging(get_settings().log_level)
logger = get_logger(__name__)

# Payload size limit (1MB) - reject oversized requests before processing
MAX_PAYLOAD_BYTES = 1 * 1024 * 1024


class PayloadSizeLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        content_length = request.headers.get('content-length')
        if content_length and int(content_length) > MAX_PAYLOAD_BYTES:
            return JSONResponse(
                status_code=413,
                content={
                    "error": True,
                    "code": "PAYLOAD_TOO_LARGE",
                    "message": f"Payload too large. Maximum size is {MAX_PAYLOAD_BYTES // 1024}KB."
                }
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
        return response


def ensure_default_admin(username: str) -> bool:
    """Create the bootstrap global admin if missing. Returns True when created."""
    from . import repository
    from .database import get_db

    if not username:
        return False
    with get_db() as cursor:
        if repository.user_exists(cursor, username):
            return False
        repository.insert_user(cursor, username, admin=True, created_by="system")
    logger.info("Created default admin '%s'", username)
    return True


def create_app() -> FastAPI:
    """Full server: REST API plus middleware, health checks and startup tasks."""
    from .api import app as api_app, log_requests, modelhub_error_handler
    from .database import init_schema, test_connection
    from .errors import ModelHubError

    settings = get_settings()

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        init_schema()
        ensure_default_admin(settings.default_admin)
        yield

    app = FastAPI(title="ModelHub", lifespan=lifespan)
    app.add_exception_handler(ModelHubError, modelhub_error_handler)

    app.middleware("http")(log_requests)
    app.add_middleware(PayloadSizeLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Content-Type", "Accept", settings.user_header],
    )

    # Mount REST API - api_app routes are /api/*, so include directly
    for route in api_app.routes:
        app.routes.append(route)

    @app.get("/health")
    def health():
        return {"status": "healthy", "service": "modelhub"}

    @app.get("/health/live")
    def health_live():
        """Liveness check - process is running."""
        return {"status": "alive"}

    @app.get("/health/ready")
    def health_ready():
        """Readiness check - verifies database is accessible."""
        try:
            test_connection()
            return {"status": "ready", "database": "connected"}
        except Exception as e:
            logger.warning("Readiness check failed: %s", e)
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "database": "unavailable"}
            )

    return app


def main():
    import uvicorn

    settings = get_settings()
    app = create_app()
    logger.info("Starting ModelHub Server")
    logger.info("Endpoints: API=/api/*, health=/health")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
