"""
Data Models Module

This module defines Pydantic models for the identity provider metadata,
the OAuth2 client configuration, token endpoint responses and ID token
claims used throughout the login service.
"""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter


# ============================================================================
# Identity Provider Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Subset of the OpenID Connect discovery document used by this service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., min_length=1, description="Issuer identifier")
    authorization_endpoint: str = Field(..., min_length=1)
    token_endpoint: str = Field(..., min_length=1)
    jwks_uri: str = Field(..., min_length=1)
    userinfo_endpoint: Optional[str] = Field(None)
    id_token_signing_alg_values_supported: List[str] = Field(
        default_factory=lambda: ["RS256"],
        description="Algorithms the provider may sign ID tokens with",
    )


class Endpoint(BaseModel):
    """Authorization and token endpoint pair of a provider."""

    model_config = ConfigDict(frozen=True)

    auth_url: str
    token_url: str


# ============================================================================
# OAuth2 Client Configuration
# ============================================================================

class OAuth2Config(BaseModel):
    """
    Immutable OAuth2 client configuration.

    Built once from settings plus the endpoints found during discovery.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    endpoint: Endpoint
    scopes: Tuple[str, ...]
    redirect_url: str
    token_auth_method: str = "client_secret_basic"

    def auth_code_url(self, state: str = "") -> str:
        """
        Build the URL the browser is sent to for the authorization-code flow.

        An empty state is left out of the query entirely.
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
        }
        if self.redirect_url:
            params["redirect_uri"] = self.redirect_url
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        if state:
            params["state"] = state

        separator = "&" if "?" in self.endpoint.auth_url else "?"
        return f"{self.endpoint.auth_url}{separator}{urlencode(sorted(params.items()))}"


# ============================================================================
# Token Models
# ============================================================================

class TokenResponse(BaseModel):
    """Token endpoint response; unknown fields such as id_token are kept."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(..., min_length=1)
    token_type: str = Field(default="Bearer")
    refresh_token: Optional[str] = Field(None)
    expires_in: Optional[int] = Field(None)

    def extra(self, name: str) -> Any:
        """Return a field the model does not declare, or None."""
        return (self.model_extra or {}).get(name)


# Claim values are the JSON tagged union: str, int, float, bool, None,
# nested mappings and lists.
Claims = Dict[str, JsonValue]

claims_adapter: TypeAdapter = TypeAdapter(Claims)


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    provider_ready: bool = Field(..., description="Whether provider discovery has completed")
