"""
Authentication Package

This package handles the OpenID Connect login flow against a single
identity provider.

Modules:
- provider: issuer discovery, token exchange, the once-only config provider
- utils: JWKS fetching, caching, and ID token verification utilities
- session: the Authorization session cookie
- routes: the protected page (/) and the callback endpoint (/callback)
- errors: exceptions raised along the way

The authentication flow:
1. Browser requests / without a session cookie and is sent to the provider
2. User authenticates with the identity provider
3. Provider redirects to /callback with an authorization code
4. Service exchanges the code, verifies the ID token, sets the cookie
5. Browser is sent back to / and sees the protected page
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
