"""
Session Cookie Module
=====================

The browser session is a single cookie holding the raw ID token:

    Authorization=Bearer <raw id token>; Path=/

No expiry, Secure, HttpOnly or SameSite attributes are set and the cookie
is never signed or encrypted. Anyone holding the cookie is treated as
logged in. Production deployments need a real session mechanism instead.
"""

from typing import Optional

from fastapi import Request


SESSION_COOKIE_NAME = "Authorization"
SESSION_COOKIE_PATH = "/"
BEARER_PREFIX = "Bearer "


def build_session_cookie(raw_id_token: str) -> str:
    """
    Build the Set-Cookie header value for a freshly verified ID token.

    Written by hand because Starlette's set_cookie quotes values that
    contain a space and always adds a SameSite attribute.
    """
    return f"{SESSION_COOKIE_NAME}={BEARER_PREFIX}{raw_id_token}; Path={SESSION_COOKIE_PATH}"


def get_session_cookie(request: Request) -> Optional[str]:
    """Return the session cookie value, or None when absent or empty."""
    return request.cookies.get(SESSION_COOKIE_NAME) or None



def extract_bearer_token(cookie_value: Optional[str]) -> Optional[str]:
    """
    Strip the Bearer prefix from a session cookie value.

    The login gate never calls this; it is for code that wants the token
    back, such as a handler that forwards it to an API.

    Returns:
        The raw token, or None if the value is not a bearer value
    """
    if not cookie_value:
        return None
    value = cookie_value.strip('"')
    if not value.startswith(BEARER_PREFIX):
        return None
    return value[len(BEARER_PREFIX):].strip() or None
