"""
Authentication utilities for OIDC token verification and JWKS management.

This module handles:
- Fetching and caching the provider's JWKS (JSON Web Key Set)
- Verifying ID tokens returned by the token endpoint
- Decoding verified token payloads into typed claims
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError, JWTError
from jose.utils import base64url_decode

from oidc_login.auth.errors import ClaimsDecodeError, VerificationError
from oidc_login.models import Claims, claims_adapter


logger = logging.getLogger(__name__)


# =============================================================================
# JWKS Cache
# =============================================================================

class RemoteKeySet:
    """
    JWKS published by the provider, cached for ``cache_seconds``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        jwks_uri: str,
        cache_seconds: int = 3600,
    ):
        self.jwks_uri = jwks_uri
        self._http = http_client
        self._cache_seconds = cache_seconds
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def fetch(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the JWKS, serving it from cache while it is fresh.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Returns:
            JWKS document containing keys

        Raises:
            VerificationError: If the JWKS endpoint is unreachable or the
                               document is invalid
        """
        now = time.monotonic()
        if (
            not force_refresh
            and self._jwks is not None
            and (now - self._fetched_at) < self._cache_seconds
        ):
            return self._jwks

        try:
            response = await self._http.get(self.jwks_uri)
        except httpx.HTTPError as e:
            raise VerificationError(f"failed to fetch keys: {e}") from e

        if response.status_code != 200:
            raise VerificationError(
                f"failed to fetch keys: {response.status_code} {response.text}"
            )

        try:
            jwks_data = response.json()
        except ValueError as e:
            raise VerificationError(f"failed to decode keys: {e}") from e

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise VerificationError("Invalid JWKS response: missing 'keys' field")

        # entries that are not JSON objects cannot be keys
        jwks_data["keys"] = [key for key in jwks_data["keys"] if isinstance(key, dict)]

        self._jwks = jwks_data
        self._fetched_at = now
        logger.debug("Fetched %d signing keys from %s", len(jwks_data["keys"]), self.jwks_uri)
        return jwks_data

    async def signing_keys(self, kid: Optional[str], alg: str) -> List[Dict[str, Any]]:
        """
        Return the keys that may have signed a token with this ``kid`` and ``alg``.

        Only keys whose type fits the algorithm are returned, and only the
        key named by ``kid`` when the token carries one. An empty selection
        forces one refresh in case the provider rotated keys.
        """
        keys = _select_keys(await self.fetch(), kid, alg)
        if not keys:
            logger.info("No signing key for kid=%s alg=%s in cached JWKS, refreshing", kid, alg)
            keys = _select_keys(await self.fetch(force_refresh=True), kid, alg)
            if not keys:
                raise VerificationError(
                    f"Unable to find matching signing key {kid!r} for {alg} in JWKS"
                )
        return keys


_KEY_TYPES = {"RS": "RSA", "PS": "RSA", "ES": "EC", "HS": "oct", "Ed": "OKP"}


def _select_keys(jwks: Dict[str, Any], kid: Optional[str], alg: str) -> List[Dict[str, Any]]:
    kty = _KEY_TYPES.get(alg[:2])
    return [
        key for key in jwks["keys"]
        if key.get("kty") == kty
        and key.get("use", "sig") == "sig"
        and (not kid or key.get("kid") == kid)
    ]


# =============================================================================
# ID Token
# =============================================================================

def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


class IDToken:
    """
    A verified ID token.

    Attributes:
        raw: The compact-serialized token exactly as the provider issued it
        issuer, subject, audience, expiry, issued_at, nonce: standard claims
    """

    def __init__(self, raw: str, verified_claims: Dict[str, Any]):
        self.raw = raw
        self.issuer: str = verified_claims.get("iss", "")
        self.subject: str = verified_claims.get("sub", "")
        aud = verified_claims.get("aud", [])
        self.audience: List[str] = [aud] if isinstance(aud, str) else list(aud)
        self.expiry = _timestamp(verified_claims.get("exp"))
        self.issued_at = _timestamp(verified_claims.get("iat"))
        self.nonce: Optional[str] = verified_claims.get("nonce")

    def claims(self) -> Claims:
        """
        Decode the token payload into a string-keyed claim mapping.

        Raises:
            ClaimsDecodeError: If the payload is not a JSON object
        """
        try:
            payload_segment = self.raw.split(".")[1]
            payload = base64url_decode(payload_segment.encode("ascii"))
            return claims_adapter.validate_json(payload)
        except (IndexError, ValueError) as e:
            raise ClaimsDecodeError(f"failed to decode id token claims: {e}") from e

    def __repr__(self) -> str:
        return f"IDToken(iss={self.issuer!r}, sub={self.subject!r}, aud={self.audience!r})"


# =============================================================================
# Verifier
# =============================================================================

class IDTokenVerifier:
    """
    Verifies ID tokens issued by one provider for one client.

    Checks performed:
    1. Token header names a supported algorithm
    2. Signature matches a key from the provider's JWKS
    3. iss equals the provider issuer
    4. aud contains the client ID
    5. exp / nbf / iat are valid within ``leeway`` seconds
    """

    def __init__(
        self,
        issuer: str,
        key_set: RemoteKeySet,
        client_id: str,
        algorithms: Sequence[str] = ("RS256",),
        leeway: int = 10,
    ):
        self.issuer = issuer
        self.client_id = client_id
        self.algorithms = list(algorithms)
        self.leeway = leeway
        self._key_set = key_set

    async def verify(self, raw_id_token: str) -> IDToken:
        """
        Verify a raw ID token.

        Raises:
            VerificationError: With the reason the token was rejected
        """
        try:
            header = jwt.get_unverified_header(raw_id_token)
        except JWTError as e:
            raise VerificationError(f"malformed jwt: {e}") from e

        alg = header.get("alg")
        if alg not in self.algorithms:
            raise VerificationError(
                f"id token signed with unsupported algorithm, expected {self.algorithms} got {alg!r}"
            )

        keys = await self._key_set.signing_keys(header.get("kid"), alg)

        try:
            verified = jwt.decode(
                raw_id_token,
                {"keys": keys},
                algorithms=self.algorithms,
                audience=self.client_id,
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_jti": False,
                    "verify_at_hash": False,
                    "leeway": self.leeway,
                },
            )
        except ExpiredSignatureError as e:
            raise VerificationError(f"token is expired: {e}") from e
        except JWTClaimsError as e:
            raise VerificationError(f"invalid token claims: {e}") from e
        except JWTError as e:
            raise VerificationError(f"failed to verify signature: {e}") from e
        except JOSEError as e:
            raise VerificationError(f"unusable signing key: {e}") from e

        id_token = IDToken(raw_id_token, verified)
        # jose lets a token without aud through when an audience is requested
        if self.client_id not in id_token.audience:
            raise VerificationError(
                f"expected audience {self.client_id!r} got {id_token.audience!r}"
            )
        return id_token
