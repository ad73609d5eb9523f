"""
FastAPI Application Factory
===========================

Entry point for the OIDC login service: a protected root page guarded by
an OpenID Connect authorization-code login against one identity provider.

Routes:
    - /          : Protected page (redirects to the provider when logged out)
    - /callback  : OIDC callback (code exchange, ID token verification, cookie)
    - /health    : Health check endpoint

Environment Variables (all optional, see oidc_login/config.py):
    - OIDC_ISSUER_URL, OIDC_CLIENT_ID, OIDC_CLIENT_SECRET, OIDC_REDIRECT_URI
    - OIDC_SCOPES, OIDC_TOKEN_AUTH_METHOD, OIDC_EAGER_DISCOVERY
    - HTTP_TIMEOUT_SECONDS, JWKS_CACHE_SECONDS, CLOCK_SKEW_SECONDS
    - SERVER_HOST, SERVER_PORT, LOG_LEVEL, LOG_JSON

Running the Service:
    Development:
        uvicorn oidc_login.main:app --reload --port 8080

    Console script:
        oidc-login

Provider discovery runs during startup. If the provider cannot be reached
the application refuses to start and uvicorn exits with a non-zero status.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from oidc_login import __version__
from oidc_login.auth import auth_router
from oidc_login.auth.errors import DiscoveryError
from oidc_login.auth.provider import OIDCConfigProvider
from oidc_login.config import Settings, get_settings
from oidc_login.models import HealthResponse


SERVICE_NAME = "oidc-login"

_JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}'
)
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON-shaped lines instead of plain text
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=_JSON_FORMAT if json_format else _TEXT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Keep HTTP client internals quiet below WARNING
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Run provider discovery (unless OIDC_EAGER_DISCOVERY is off)

    Shutdown tasks:
        - Close the outbound HTTP client if this app created it
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    logger = logging.getLogger("oidc_login.main")

    logger.info(
        "Starting %s %s (issuer=%s, client_id=%s, redirect_uri=%s)",
        SERVICE_NAME,
        __version__,
        settings.OIDC_ISSUER_URL,
        settings.OIDC_CLIENT_ID,
        settings.OIDC_REDIRECT_URI,
    )

    if settings.OIDC_EAGER_DISCOVERY:
        try:
            await app.state.config_provider.get()
        except DiscoveryError:
            logger.critical("Identity provider unavailable, refusing to start")
            raise

    yield

    logger.info("Shutting down %s", SERVICE_NAME)
    if app.state.owns_http_client:
        await app.state.http_client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use instead of the environment-loaded singleton
        http_client: Client for all provider requests; one is created (and
                     closed on shutdown) when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="OIDC Login Service",
        description="Protected page behind an OpenID Connect authorization-code login",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.owns_http_client = http_client is None
    app.state.http_client = http_client or httpx.AsyncClient(
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    app.state.config_provider = OIDCConfigProvider(settings, app.state.http_client)

    app.include_router(auth_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Reports whether provider discovery has completed.
        """
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=__version__,
            provider_ready=app.state.config_provider.ready,
        )

    @app.exception_handler(DiscoveryError)
    async def discovery_error_handler(request: Request, exc: DiscoveryError) -> PlainTextResponse:
        logging.getLogger("oidc_login.main").error(
            "Request to %s failed, identity provider unavailable: %s", request.url.path, exc
        )
        return PlainTextResponse("identity provider unavailable", status_code=500)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """
        Log unhandled errors and answer with a plain-text 500.
        """
        logging.getLogger("oidc_login.main").error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return PlainTextResponse("Internal Server Error", status_code=500)

    return app


# Create app instance for uvicorn
app = create_app()


def run() -> None:
    """Run the service with uvicorn on SERVER_HOST:SERVER_PORT."""
    settings = get_settings()
    uvicorn.run(
        "oidc_login.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
