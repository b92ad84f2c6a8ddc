"""
Service account credential provider.

Produces bearer tokens for the indexing API from a service account key
using the OAuth 2.0 JWT bearer grant:

1. Sign an RS256 assertion (iss = client_email, scope = indexing scope,
   aud = token_uri, 1 hour lifetime) with the account's private key.
2. Exchange it at token_uri for an access token.
3. Cache the token on the ServiceAccount row until shortly before expiry.

get_token() never raises: a missing or broken credential yields None and
the caller skips the account.

Usage:
    from indexnow.core.indexing.credentials import CredentialProvider

    provider = CredentialProvider()
    token = await provider.get_token(account_id)
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
import jwt

from ...config import settings
from ..database.models import ServiceAccount
from ..shared.database_service import DatabaseService, database_service
from .errors import CredentialError

logger = logging.getLogger("indexnow.indexing.credentials")

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600


def build_assertion(credentials: Dict[str, Any], scope: str, now: Optional[int] = None) -> str:
    """
    Sign a JWT bearer assertion for a service account key.

    Raises:
        CredentialError: If the key lacks client_email or private_key, or
            the private key cannot be used for RS256
    """
    if not isinstance(credentials, dict):
        raise CredentialError("Service account key must be a JSON object")

    client_email = credentials.get("client_email")
    private_key = credentials.get("private_key")
    if not client_email or not private_key:
        raise CredentialError("Service account key is missing client_email or private_key")

    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": client_email,
        "scope": scope,
        "aud": credentials.get("token_uri") or DEFAULT_TOKEN_URI,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME,
    }
    headers = {}
    if credentials.get("private_key_id"):
        headers["kid"] = credentials["private_key_id"]

    try:
        return jwt.encode(claims, private_key, algorithm="RS256", headers=headers or None)
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise CredentialError(f"Invalid service account private key: {e}") from e


class CredentialProvider:
    """
    Token source for service accounts, backed by the account row cache.

    Attributes:
        db: Database service
        scope: OAuth scope requested
        expiry_buffer: Cached tokens are refreshed this long before expiry
    """

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        client: Optional[httpx.AsyncClient] = None,
        scope: Optional[str] = None,
        expiry_buffer_seconds: Optional[int] = None,
    ):
        self.db = db or database_service
        self._client = client
        self.scope = scope or settings.indexing_scope
        buffer = (
            settings.token_expiry_buffer_seconds
            if expiry_buffer_seconds is None else expiry_buffer_seconds
        )
        self.expiry_buffer = timedelta(seconds=buffer)

    async def get_token(self, account_id: UUID) -> Optional[str]:
        """
        Bearer token for an account, or None if none can be obtained.
        """
        async with self.db.get_session() as session:
            account = await session.get(ServiceAccount, account_id)
            if account is None:
                logger.warning(f"Service account {account_id} not found")
                return None

            now = datetime.utcnow()
            if (
                account.access_token
                and account.access_token_expires_at
                and account.access_token_expires_at - self.expiry_buffer > now
            ):
                return account.access_token

            credentials = account.credentials or {}
            email = account.email

        try:
            token, expires_in = await self._exchange(credentials)
        except CredentialError as e:
            logger.warning(f"No usable token for service account {email}: {e}")
            return None

        async with self.db.get_session() as session:
            account = await session.get(ServiceAccount, account_id)
            if account is not None:
                account.access_token = token
                account.access_token_expires_at = datetime.utcnow() + timedelta(seconds=expires_in)

        logger.info(f"Obtained new access token for service account {email}")
        return token

    async def _exchange(self, credentials: Dict[str, Any]):
        assertion = build_assertion(credentials, self.scope)
        token_uri = credentials.get("token_uri") or DEFAULT_TOKEN_URI
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}

        try:
            if self._client is not None:
                response = await self._client.post(token_uri, data=data)
            else:
                async with httpx.AsyncClient(timeout=settings.indexing_api_timeout) as client:
                    response = await client.post(token_uri, data=data)
        except httpx.HTTPError as e:
            raise CredentialError(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise CredentialError(
                f"Token endpoint returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialError(f"Token endpoint returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise CredentialError("Token endpoint response is not a JSON object")

        token = payload.get("access_token")
        if not token or not isinstance(token, str):
            raise CredentialError("Token endpoint response has no access_token")

        try:
            expires_in = int(payload.get("expires_in", ASSERTION_LIFETIME))
        except (TypeError, ValueError) as e:
            raise CredentialError(f"Token endpoint returned invalid expires_in: {e}") from e
        return token, expires_in
