"""
Authentication routes for the protected page and the OIDC callback.

This module implements the OAuth 2.0 / OIDC authorization code flow:

    GET /           -> login success, or 302 to the provider's login page
    GET|POST /callback
                    -> exchange code, verify ID token, set cookie, 302 to /
"""

import logging
from typing import Dict

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from oidc_login.auth.errors import ClaimsDecodeError, TokenExchangeError, VerificationError
from oidc_login.auth.provider import OIDCConfigProvider, exchange_code
from oidc_login.auth.session import build_session_cookie, get_session_cookie
from oidc_login.config import Settings


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


# =============================================================================
# Dependencies
# =============================================================================

def get_config_provider(request: Request) -> OIDCConfigProvider:
    return request.app.state.config_provider


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error(message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=500)


async def _read_callback_params(request: Request) -> Dict[str, str]:
    """Merge query parameters with a POSTed form body; the body wins."""
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


# =============================================================================
# Protected Page
# =============================================================================

@auth_router.get("/", response_class=PlainTextResponse)
async def protected_page(
    request: Request,
    config_provider: OIDCConfigProvider = Depends(get_config_provider),
) -> Response:
    """
    Serve the protected page, or send the browser to the provider's login.

    Only the presence of the session cookie is checked; the token inside
    is not re-verified here.
    """
    if get_session_cookie(request) is None:
        oauth2_config, _ = await config_provider.get()
        return RedirectResponse(url=oauth2_config.auth_code_url(""), status_code=302)

    return PlainTextResponse("login success")


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.api_route("/callback", methods=["GET", "POST"])
async def callback(
    request: Request,
    config_provider: OIDCConfigProvider = Depends(get_config_provider),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """
    Handle the provider's redirect back after login.

    Every failure answers 500 with a plain-text reason and leaves no
    cookie behind; the cookie is only written once all checks pass.
    """
    oauth2_config, provider = await config_provider.get()

    try:
        params = await _read_callback_params(request)
    except (StarletteHTTPException, MultiPartException, ValueError) as e:
        logger.warning("Callback form could not be parsed: %s", e)
        return _error("parse form error")

    if "error" in params:
        logger.warning(
            "Provider returned an error to the callback: %s (%s)",
            params["error"],
            params.get("error_description", ""),
        )

    try:
        token_response = await exchange_code(http_client, oauth2_config, params.get("code", ""))
    except TokenExchangeError as e:
        logger.warning("Token exchange failed: %s", e)
        return _error("Can't get access token")

    raw_id_token = token_response.extra("id_token")
    if not isinstance(raw_id_token, str):
        logger.warning("Token response did not contain an id_token")
        return _error("missing token")

    verifier = provider.verifier(oauth2_config.client_id, leeway=settings.CLOCK_SKEW_SECONDS)
    try:
        id_token = await verifier.verify(raw_id_token)
    except VerificationError as e:
        logger.warning("ID token verification failed: %s", e)
        return _error(f"id token verify error: {e}")

    try:
        claims = id_token.claims()
    except ClaimsDecodeError as e:
        logger.warning("ID token claims could not be decoded: %s", e)
        return _error(str(e))

    logger.info("ID token claims: %r", claims)

    response = RedirectResponse(url="/", status_code=302)
    response.headers.append("set-cookie", build_session_cookie(raw_id_token))
    return response
