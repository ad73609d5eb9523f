"""
Configuration module for the OIDC login service.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider, the OAuth2 client registration, outbound HTTP
behaviour, and logging.

Environment variables are loaded from .env file or system environment.
Every value has a default, so the service starts against a local Keycloak
realm without any configuration at all.
"""

import logging
import re
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


TOKEN_AUTH_METHODS = ("client_secret_basic", "client_secret_post")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # =========================================================================
    # Identity Provider / OAuth2 Client
    # =========================================================================

    OIDC_ISSUER_URL: str = Field(
        default="http://localhost:18080/auth/realms/master",
        description="Issuer URL used for OpenID Connect discovery",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        default="test-app",
        description="OAuth2 client ID (also the expected ID token audience)",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: str = Field(
        default="b4fd4da3-4a87-48bc-8327-ae50bdf2614c",
        description="OAuth2 client secret",
    )

    OIDC_REDIRECT_URI: str = Field(
        default="http://localhost:8080/callback",
        description="Redirect URI registered with the identity provider",
        min_length=1,
    )

    OIDC_SCOPES: str = Field(
        default="openid",
        description="Comma or space separated scopes; must include 'openid'",
    )

    OIDC_TOKEN_AUTH_METHOD: str = Field(
        default="client_secret_basic",
        description="How the client authenticates at the token endpoint",
    )

    OIDC_EAGER_DISCOVERY: bool = Field(
        default=True,
        description="Run provider discovery during startup instead of on first request",
    )

    # =========================================================================
    # Outbound HTTP / Verification
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to discovery, token and JWKS requests",
        gt=0,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider's JWKS in seconds",
        ge=300,
        le=86400,
    )

    CLOCK_SKEW_SECONDS: int = Field(
        default=10,
        description="Leeway applied to exp/nbf/iat checks",
        ge=0,
        le=300,
    )

    # =========================================================================
    # Server / Logging
    # =========================================================================

    SERVER_HOST: str = Field(default="0.0.0.0")

    SERVER_PORT: int = Field(default=8080, ge=1, le=65535)

    LOG_LEVEL: str = Field(default="INFO")

    LOG_JSON: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """
        Parse OIDC_SCOPES into a list, preserving order and dropping duplicates.
        """
        scopes: List[str] = []
        for scope in re.split(r"[,\s]+", self.OIDC_SCOPES):
            if scope and scope not in scopes:
                scopes.append(scope)
        return scopes

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        """
        The OIDC scope is what makes the provider return an ID token.

        Raises:
            ValueError: If 'openid' is not among the scopes
        """
        if "openid" not in re.split(r"[,\s]+", v):
            raise ValueError(f"OIDC_SCOPES must include 'openid', got: {v!r}")
        return v

    @field_validator("OIDC_TOKEN_AUTH_METHOD")
    @classmethod
    def validate_token_auth_method(cls, v: str) -> str:
        if v not in TOKEN_AUTH_METHODS:
            raise ValueError(
                f"OIDC_TOKEN_AUTH_METHOD must be one of {list(TOKEN_AUTH_METHODS)}, got: {v}"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If environment variables are present but invalid.

    Example:
        >>> from oidc_login.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.OIDC_ISSUER_URL)
    """
    return Settings()
