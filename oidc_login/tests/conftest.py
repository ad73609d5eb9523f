"""
Shared fixtures: an RSA test key, ID token minting, and a fake identity
provider served through a mocked httpx.AsyncClient.
"""

import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from unittest.mock import AsyncMock

import httpx
import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from fastapi.testclient import TestClient
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from oidc_login.config import Settings
from oidc_login.main import create_app


ISSUER = "http://idp.test/auth/realms/master"
CLIENT_ID = "test-app"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URI = "http://localhost:8080/callback"
AUTHORIZATION_ENDPOINT = f"{ISSUER}/protocol/openid-connect/auth"
TOKEN_ENDPOINT = f"{ISSUER}/protocol/openid-connect/token"
JWKS_URI = f"{ISSUER}/protocol/openid-connect/certs"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"


# Test RSA key pair generation for mocking JWKS
def generate_test_keys() -> Tuple[str, str]:
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    public_key = private_key.public_key()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    return private_pem.decode(), public_pem.decode()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
TEST_KID = "test-key-id-2024"


def create_mock_id_token(
    sub: str = "test-user-sub-123",
    aud: Any = CLIENT_ID,
    issuer: str = ISSUER,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
    private_key: str = TEST_PRIVATE_KEY,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create an ID token signed with the test private key.

    Passing ``aud=None`` leaves the aud claim out.

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": issuer,
        "sub": sub,
        "aud": aud,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now,
        "email": "user@example.com",
        "email_verified": True,
        "name": "Test User",
    }
    if aud is None:
        del payload["aud"]
    payload.update(extra_claims or {})

    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def create_mock_jwks(kid: str = TEST_KID, public_key: str = TEST_PUBLIC_KEY) -> Dict[str, Any]:
    """
    Create a JWKS document holding the test public key under ``kid``.
    """
    public_key_obj = serialization.load_pem_public_key(
        public_key.encode(),
        backend=default_backend()
    )

    key = json.loads(RSAAlgorithm.to_jwk(public_key_obj))
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"

    return {"keys": [key]}


def create_mock_ec_jwk(kid: str = "ec-key") -> Dict[str, Any]:
    """Create a P-256 public JWK, for key sets that mix key types"""
    private_key = ec.generate_private_key(ec.SECP256R1(), backend=default_backend())

    key = json.loads(ECAlgorithm.to_jwk(private_key.public_key()))
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "ES256"

    return key


def _json_response(method: str, url: str, status_code: int, body: Any) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request(method, url))


class FakeIdentityProvider:
    """
    In-memory identity provider: discovery, single-use codes, JWKS.

    Wire it to an AsyncMock client with ``handle_get``/``handle_post`` as
    side effects.
    """

    def __init__(self, issuer: str = ISSUER):
        self.issuer = issuer
        self.discovery_status = 200
        self.discovery_document: Dict[str, Any] = {
            "issuer": issuer,
            "authorization_endpoint": AUTHORIZATION_ENDPOINT,
            "token_endpoint": TOKEN_ENDPOINT,
            "jwks_uri": JWKS_URI,
            "userinfo_endpoint": f"{issuer}/protocol/openid-connect/userinfo",
            "id_token_signing_alg_values_supported": ["RS256"],
            "response_types_supported": ["code"],
        }
        self.jwks = create_mock_jwks()
        self.codes: Dict[str, Optional[str]] = {}

    def issue_code(self, include_id_token: bool = True, **token_kwargs) -> Tuple[str, Optional[str]]:
        """Register a one-time code; returns (code, id_token)."""
        id_token = create_mock_id_token(**token_kwargs) if include_id_token else None
        code = secrets.token_urlsafe(16)
        self.codes[code] = id_token
        return code, id_token

    def handle_get(self, url: str, **kwargs) -> httpx.Response:
        if url == DISCOVERY_URL:
            return _json_response("GET", url, self.discovery_status, self.discovery_document)
        if url == JWKS_URI:
            return _json_response("GET", url, 200, self.jwks)
        return _json_response("GET", url, 404, {"error": "not_found"})

    def handle_post(self, url: str, data=None, auth=None, **kwargs) -> httpx.Response:
        if url != TOKEN_ENDPOINT:
            return _json_response("POST", url, 404, {"error": "not_found"})

        data = data or {}
        credentials = auth or (data.get("client_id"), data.get("client_secret"))
        if tuple(credentials) != (CLIENT_ID, CLIENT_SECRET):
            return _json_response("POST", url, 401, {"error": "invalid_client"})

        code = data.get("code")
        if code not in self.codes:
            return _json_response(
                "POST", url, 400,
                {"error": "invalid_grant", "error_description": "Code not valid"},
            )
        id_token = self.codes.pop(code)

        body = {
            "access_token": "mock-access-token",
            "token_type": "Bearer",
            "expires_in": 300,
        }
        if id_token is not None:
            body["id_token"] = id_token
        return _json_response("POST", url, 200, body)


@pytest.fixture
def fake_idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def mock_http_client(fake_idp):
    """Mock httpx AsyncClient routed to the fake identity provider"""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.side_effect = fake_idp.handle_get
    client.post.side_effect = fake_idp.handle_post
    return client


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        OIDC_ISSUER_URL=ISSUER,
        OIDC_CLIENT_ID=CLIENT_ID,
        OIDC_CLIENT_SECRET=CLIENT_SECRET,
        OIDC_REDIRECT_URI=REDIRECT_URI,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def app(test_settings, mock_http_client):
    """Create test FastAPI application"""
    return create_app(test_settings, http_client=mock_http_client)


@pytest.fixture
def client(app) -> TestClient:
    """Test client that does not run the lifespan, so discovery is lazy"""
    return TestClient(app, follow_redirects=False)


def discovery_calls(mock_http_client) -> int:
    return sum(1 for call in mock_http_client.get.call_args_list if call.args[0] == DISCOVERY_URL)
