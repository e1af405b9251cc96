"""
Shared fixtures: settings environment, RSA signing keys and a token factory.
"""

import os

# Must be set before src.config is imported
os.environ.setdefault("COGNITO_USER_POOL_ID", "eu-west-1_TestPool")
os.environ.setdefault("COGNITO_CLIENT_ID", "test-client-id")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "1000")

import time
from unittest.mock import AsyncMock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from src.services.jwks_cache import JWKSCache
from src.services.token_service import SessionTokenService
from tests.factories import AUDIENCE, ISSUER, KID, PHONE, public_jwk


@pytest.fixture(scope="session")
def signing_key():
    """RSA key standing in for the user pool's signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def foreign_key():
    """RSA key the user pool does not publish."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks_document(signing_key):
    return {"keys": [public_jwk(signing_key, KID)]}


@pytest.fixture
def base_claims():
    now = int(time.time())
    return {
        "sub": "user-123",
        "iss": ISSUER,
        "aud": AUDIENCE,
        "token_use": "id",
        "iat": now,
        "exp": now + 3600,
        "phone_number": PHONE,
        "phone_number_verified": True,
        "email": "jane@example.com",
        "email_verified": "false",
        "name": "Jane Doe",
        "custom:role": "admin",
        "custom:company": "Wyze",
    }


@pytest.fixture
def make_token(signing_key, base_claims):
    """Factory for RS256 identity tokens; keyword overrides replace claims, None drops one."""
    def _make(key=None, kid=KID, algorithm="RS256", **overrides):
        claims = dict(base_claims)
        for name, value in overrides.items():
            name = name.replace("__", ":")
            if value is None:
                claims.pop(name, None)
            else:
                claims[name] = value
        return jwt.encode(claims, key or signing_key, algorithm=algorithm, headers={"kid": kid})
    return _make


@pytest.fixture
def jwks_fetcher(jwks_document):
    return AsyncMock(return_value=jwks_document)


@pytest.fixture
def jwks_cache(jwks_fetcher):
    return JWKSCache(jwks_url=f"{ISSUER}/.well-known/jwks.json", fetcher=jwks_fetcher)


@pytest.fixture
def token_service(jwks_cache):
    return SessionTokenService(jwks_cache=jwks_cache, issuer=ISSUER, audience=AUDIENCE)
