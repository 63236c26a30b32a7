"""
FastAPI Auth Server Application Factory
=======================================

Backend for the SSO demo: the React frontend sends users here to log in
through the identity provider, and calls the protected endpoints with the
cookies this service sets.

Architecture:
    Browser (frontend) → Auth server (this service) → Identity provider

Routers (under API_PREFIX, default /api/v1):
    - /auth/*   : Login redirect, callback, current user, logout, audit log
    - /health   : Health check endpoint

Environment Variables:
    See authserver/app/config.py. The provider settings
    (SCALEKIT_ENVIRONMENT_URL, SCALEKIT_CLIENT_ID, SCALEKIT_CLIENT_SECRET)
    are required for logins to work; SESSION_SECRET and ENCRYPTION_KEY fall
    back to insecure defaults with a warning.

Running the Service:
    Development:
        uvicorn authserver.app.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        ENVIRONMENT=production uvicorn authserver.app.main:app --host 0.0.0.0 --port 8080

    Refresh tokens and sessions live in process memory, so run a single
    worker.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from .auth.audit import AuditLog
from .auth.cookies import CookiePolicy
from .auth.crypto import TokenCipher
from .auth.errors import AuthGateError
from .auth.gate import TokenVerificationGate
from .auth.orchestrator import AuthOrchestrator
from .auth.provider import IdentityProvider, ScalekitProvider
from .auth.routes import auth_router
from .auth.session import SessionStore
from .auth.store import RefreshTokenStore
from .config import Settings, get_settings, validate_configuration
from .models import HealthResponse
from .security_headers import SecurityHeadersMiddleware

logger = logging.getLogger("authserver.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Application state container.

    Holds the shared auth components. Each create_app() call builds its own
    instance, so tests never share refresh tokens, sessions or audit entries.
    """

    def __init__(self, settings: Settings, provider: Optional[IdentityProvider] = None):
        self.settings = settings

        self.cipher = TokenCipher.from_secret(settings.ENCRYPTION_KEY)
        self.refresh_tokens = RefreshTokenStore()
        self.audit_log = AuditLog()
        self.sessions = SessionStore(
            secret=settings.SESSION_SECRET,
            ttl_seconds=settings.SESSION_TTL_SECONDS,
        )
        self.cookies = CookiePolicy(
            secure=settings.is_production,
            session_max_age=settings.SESSION_TTL_SECONDS,
        )
        self.provider: IdentityProvider = provider or ScalekitProvider(
            environment_url=settings.provider_url,
            client_id=settings.SCALEKIT_CLIENT_ID,
            client_secret=settings.SCALEKIT_CLIENT_SECRET,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        )

        self.gate = TokenVerificationGate(
            cipher=self.cipher,
            refresh_tokens=self.refresh_tokens,
            audit_log=self.audit_log,
            sessions=self.sessions,
            provider=self.provider,
            cookies=self.cookies,
            provider_timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        self.orchestrator = AuthOrchestrator(
            cipher=self.cipher,
            refresh_tokens=self.refresh_tokens,
            audit_log=self.audit_log,
            sessions=self.sessions,
            provider=self.provider,
            cookies=self.cookies,
            frontend_url=settings.frontend_url,
            redirect_uri=settings.auth_redirect_uri,
            post_logout_redirect_uri=settings.post_logout_redirect_uri,
            logout_redirect=settings.LOGOUT_REDIRECT,
            provider_timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup logs the service configuration; shutdown closes the provider
    HTTP client.
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    logger.info(
        "Auth server started",
        extra={
            "environment": settings.ENVIRONMENT,
            "frontend_url": settings.frontend_url,
            "api_prefix": settings.API_PREFIX,
        }
    )

    yield

    logger.info("Shutting down auth server")
    try:
        await app_state.provider.aclose()
    except Exception as e:
        logger.error(f"Error closing identity provider client: {e}")
    logger.info("Auth server shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Auth components (cipher, stores, gate, orchestrator)
        - CORS and security header middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use instead of the environment
        provider: Identity provider to use instead of the Scalekit client

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    status_report = validate_configuration(settings)
    for error in status_report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in status_report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    app = FastAPI(
        title="SSO Auth Server",
        description="SSO login, session and token verification backend",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.app_state = AppState(settings, provider)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix=settings.API_PREFIX)

    @app.get(f"{settings.API_PREFIX}/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="OK")

    @app.exception_handler(AuthGateError)
    async def auth_gate_exception_handler(request: Request, exc: AuthGateError) -> JSONResponse:
        """Render a gate rejection and clear the cookies it invalidated."""
        response = JSONResponse(
            status_code=exc.status_code,
            content={"authenticated": False, "message": exc.message},
        )
        app.state.app_state.cookies.clear(response, *exc.clear_cookies)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Route not found"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Something went wrong!",
                "message": str(exc) if settings.ENVIRONMENT == "development" else "Internal server error",
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "authserver.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower()
    )
