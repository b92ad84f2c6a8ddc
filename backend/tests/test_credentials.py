"""
Tests for service account credentials: JWT assertions and token caching.
"""

import uuid
from datetime import datetime, timedelta
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from conftest import create_account
from indexnow.core.database.models import ServiceAccount
from indexnow.core.indexing.credentials import (
    JWT_BEARER_GRANT,
    CredentialProvider,
    build_assertion,
)
from indexnow.core.indexing.errors import CredentialError

TOKEN_URI = "https://oauth2.example.test/token"
SCOPE = "https://www.googleapis.com/auth/indexing"


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def key_json(rsa_key):
    pem = rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return {
        "type": "service_account",
        "client_email": "indexer@project.iam.gserviceaccount.com",
        "private_key": pem,
        "private_key_id": "key-1",
        "token_uri": TOKEN_URI,
    }


class TokenEndpoint:
    """MockTransport handler for the OAuth token endpoint."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload or {"access_token": "ya29.test-token", "expires_in": 3600}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        self.requests.append(form)
        return httpx.Response(self.status_code, json=self.payload)


class TestBuildAssertion:

    def test_claims(self, rsa_key, key_json):
        assertion = build_assertion(key_json, SCOPE, now=1_700_000_000)

        claims = jwt.decode(
            assertion,
            rsa_key.public_key(),
            algorithms=["RS256"],
            audience=TOKEN_URI,
            options={"verify_exp": False},
        )
        assert claims["iss"] == key_json["client_email"]
        assert claims["scope"] == SCOPE
        assert claims["exp"] - claims["iat"] == 3600
        assert jwt.get_unverified_header(assertion)["kid"] == "key-1"

    def test_missing_fields(self):
        with pytest.raises(CredentialError):
            build_assertion({"client_email": "x@example.com"}, SCOPE)

    @pytest.mark.parametrize("credentials", ['{"client_email": "x@example.com"}', ["x"], 42])
    def test_key_that_is_not_an_object(self, credentials):
        with pytest.raises(CredentialError, match="JSON object"):
            build_assertion(credentials, SCOPE)

    def test_unusable_private_key(self):
        with pytest.raises(CredentialError):
            build_assertion(
                {"client_email": "x@example.com", "private_key": "not a pem key"}, SCOPE
            )


class TestCredentialProvider:

    @pytest.mark.asyncio
    async def test_exchanges_and_caches_token(self, db, owner_id, rsa_key, key_json):
        endpoint = TokenEndpoint()
        account = await create_account(db, owner_id, credentials=key_json)

        async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
            provider = CredentialProvider(db=db, client=client, scope=SCOPE)
            first = await provider.get_token(account.id)
            second = await provider.get_token(account.id)

        assert first == second == "ya29.test-token"
        assert len(endpoint.requests) == 1
        form = endpoint.requests[0]
        assert form["grant_type"] == [JWT_BEARER_GRANT]
        claims = jwt.decode(
            form["assertion"][0], rsa_key.public_key(), algorithms=["RS256"], audience=TOKEN_URI
        )
        assert claims["scope"] == SCOPE

        async with db.get_session() as session:
            stored = await session.get(ServiceAccount, account.id)
        assert stored.access_token == "ya29.test-token"
        assert stored.access_token_expires_at > datetime.utcnow() + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_refreshes_token_inside_expiry_buffer(self, db, owner_id, rsa_key, key_json):
        endpoint = TokenEndpoint()
        account = await create_account(db, owner_id, credentials=key_json)
        async with db.get_session() as session:
            stored = await session.get(ServiceAccount, account.id)
            stored.access_token = "old-token"
            stored.access_token_expires_at = datetime.utcnow() + timedelta(seconds=120)

        async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
            token = await CredentialProvider(db=db, client=client).get_token(account.id)

        assert token == "ya29.test-token"
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_credentials_yield_none(self, db, owner_id):
        account = await create_account(db, owner_id, credentials=None)

        def handler(request):
            raise AssertionError("token endpoint must not be called")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await CredentialProvider(db=db, client=client).get_token(account.id) is None

    @pytest.mark.asyncio
    async def test_rejected_exchange_yields_none(self, db, owner_id, rsa_key, key_json):
        endpoint = TokenEndpoint(status_code=400, payload={"error": "invalid_grant"})
        account = await create_account(db, owner_id, credentials=key_json)

        async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
            assert await CredentialProvider(db=db, client=client).get_token(account.id) is None

    @pytest.mark.asyncio
    async def test_unknown_account(self, db):
        assert await CredentialProvider(db=db).get_token(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_non_object_stored_key_yields_none(self, db, owner_id):
        account = await create_account(db, owner_id, credentials=["not", "a", "key"])

        def handler(request):
            raise AssertionError("token endpoint must not be called")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await CredentialProvider(db=db, client=client).get_token(account.id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        ["ya29.test-token"],
        "ya29.test-token",
        {"access_token": "ya29.test-token", "expires_in": "soon"},
        {"access_token": "ya29.test-token", "expires_in": None},
        {"access_token": {"value": "ya29.test-token"}},
    ])
    async def test_malformed_token_response_yields_none(self, db, owner_id, key_json, payload):
        endpoint = TokenEndpoint(payload=payload)
        account = await create_account(db, owner_id, credentials=key_json)

        async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
            assert await CredentialProvider(db=db, client=client).get_token(account.id) is None

        assert len(endpoint.requests) == 1
        async with db.get_session() as session:
            stored = await session.get(ServiceAccount, account.id)
        assert stored.access_token is None
