"""
Identity provider discovery, token exchange and the process-wide
configuration provider.

The OAuth2 client configuration and the provider handle are produced
together, exactly once per process, and every request handler reads the
same pair through ``OIDCConfigProvider.get()``.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
from pydantic import ValidationError

from oidc_login.auth.errors import DiscoveryError, TokenExchangeError
from oidc_login.auth.utils import IDTokenVerifier, RemoteKeySet
from oidc_login.config import Settings
from oidc_login.models import Endpoint, OAuth2Config, ProviderMetadata, TokenResponse


logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


# =============================================================================
# Provider
# =============================================================================

class Provider:
    """
    Resolved identity provider: metadata plus its signing key set.
    """

    def __init__(self, metadata: ProviderMetadata, key_set: RemoteKeySet):
        self.metadata = metadata
        self.key_set = key_set

    @classmethod
    async def discover(
        cls,
        http_client: httpx.AsyncClient,
        issuer: str,
        jwks_cache_seconds: int = 3600,
    ) -> "Provider":
        """
        Fetch and validate ``<issuer>/.well-known/openid-configuration``.

        Raises:
            DiscoveryError: If the issuer is unreachable, the document is
                            malformed, or it names a different issuer
        """
        url = issuer.rstrip("/") + WELL_KNOWN_PATH

        try:
            response = await http_client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise DiscoveryError(f"unable to reach issuer {issuer}: {e}") from e

        if response.status_code != 200:
            raise DiscoveryError(
                f"discovery request to {url} failed: {response.status_code} {response.text}"
            )

        try:
            metadata = ProviderMetadata.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DiscoveryError(f"failed to decode provider discovery object: {e}") from e

        if metadata.issuer.rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(
                "issuer did not match the issuer returned by provider, "
                f"expected {issuer!r} got {metadata.issuer!r}"
            )

        logger.info(
            "Discovered OIDC provider %s (authorization_endpoint=%s, token_endpoint=%s)",
            metadata.issuer,
            metadata.authorization_endpoint,
            metadata.token_endpoint,
        )
        return cls(metadata, RemoteKeySet(http_client, metadata.jwks_uri, jwks_cache_seconds))

    @property
    def issuer(self) -> str:
        return self.metadata.issuer

    def endpoint(self) -> Endpoint:
        return Endpoint(
            auth_url=self.metadata.authorization_endpoint,
            token_url=self.metadata.token_endpoint,
        )

    def verifier(self, client_id: str, leeway: int = 10) -> IDTokenVerifier:
        """Build a verifier that expects ``client_id`` as the audience."""
        return IDTokenVerifier(
            issuer=self.metadata.issuer,
            key_set=self.key_set,
            client_id=client_id,
            algorithms=self.metadata.id_token_signing_alg_values_supported,
            leeway=leeway,
        )


# =============================================================================
# Token Exchange
# =============================================================================

def _decode_token_body(response: httpx.Response) -> Dict[str, Any]:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "text/plain")):
        return dict(parse_qsl(response.text))
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError("token response is not a JSON object")
    return data


async def exchange_code(
    http_client: httpx.AsyncClient,
    config: OAuth2Config,
    code: str,
) -> TokenResponse:
    """
    Exchange an authorization code for tokens.

    Codes are single use, so nothing here retries.

    Raises:
        TokenExchangeError: If the code is empty, the token endpoint is
                            unreachable, rejects the code, or answers without
                            an access token
    """
    if not code:
        raise TokenExchangeError("missing authorization code")

    payload = {
        "grant_type": "authorization_code",
        "code": code,
    }
    if config.redirect_url:
        payload["redirect_uri"] = config.redirect_url

    auth: Optional[Tuple[str, str]] = None
    if config.token_auth_method == "client_secret_post":
        payload["client_id"] = config.client_id
        payload["client_secret"] = config.client_secret
    else:
        auth = (config.client_id, config.client_secret)

    try:
        response = await http_client.post(
            config.endpoint.token_url,
            data=payload,
            auth=auth,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"token request failed: {e}") from e

    try:
        body = _decode_token_body(response)
    except ValueError as e:
        raise TokenExchangeError(
            f"cannot decode token response ({response.status_code}): {e}"
        ) from e

    if not response.is_success:
        error = body.get("error") or "token exchange failed"
        description = body.get("error_description")
        message = f"{response.status_code} {error}"
        if description:
            message = f"{message}: {description}"
        raise TokenExchangeError(message)

    try:
        return TokenResponse.model_validate(body)
    except ValidationError as e:
        raise TokenExchangeError(f"server response missing access_token: {e}") from e


# =============================================================================
# Configuration Provider
# =============================================================================

class OIDCConfigProvider:
    """
    Lazily resolves the provider and OAuth2 configuration exactly once.

    Concurrent first callers wait on the same discovery attempt. Its
    outcome, success or DiscoveryError, is what every caller sees from then
    on; a failed discovery is never retried.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._http = http_client
        self._lock = asyncio.Lock()
        self._config: Optional[OAuth2Config] = None
        self._provider: Optional[Provider] = None
        self._error: Optional[DiscoveryError] = None

    @property
    def ready(self) -> bool:
        return self._provider is not None

    async def get(self) -> Tuple[OAuth2Config, Provider]:
        """
        Return the shared (OAuth2Config, Provider) pair.

        Raises:
            DiscoveryError: If the one discovery attempt failed
        """
        if self._provider is None and self._error is None:
            async with self._lock:
                if self._provider is None and self._error is None:
                    await self._initialize()

        if self._error is not None:
            raise self._error
        return self._config, self._provider

    async def _initialize(self) -> None:
        settings = self._settings
        try:
            provider = await Provider.discover(
                self._http,
                settings.OIDC_ISSUER_URL,
                jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
            )
        except DiscoveryError as e:
            logger.critical("OIDC provider discovery failed: %s", e)
            self._error = e
            return

        self._config = OAuth2Config(
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            endpoint=provider.endpoint(),
            scopes=tuple(settings.scopes_list),
            redirect_url=settings.OIDC_REDIRECT_URI,
            token_auth_method=settings.OIDC_TOKEN_AUTH_METHOD,
        )
        self._provider = provider
