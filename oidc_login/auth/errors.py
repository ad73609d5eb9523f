"""
Exceptions raised by the OIDC login flow.

DiscoveryError is initialization-fatal; every other error is scoped to the
request that triggered it.
"""


class OIDCError(Exception):
    """Base exception for identity provider interactions"""
    pass


class DiscoveryError(OIDCError):
    """Provider metadata could not be fetched or is invalid"""
    pass


class TokenExchangeError(OIDCError):
    """Authorization code could not be exchanged for tokens"""
    pass


class VerificationError(OIDCError):
    """ID token failed signature or claim verification"""
    pass


class ClaimsDecodeError(OIDCError):
    """Verified ID token payload could not be decoded into claims"""
    pass
