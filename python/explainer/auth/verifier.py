"""Bearer token verification.

Provides:
- TokenVerifier: Protocol for token verification
- SupabaseJwksVerifier: verifies Supabase-issued JWTs against the project JWKS

Test-only verifiers live in tests/support/test_verifier.py.
"""

import logging
import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from explainer.errors import ApiError, ApiErrorCode

logger = logging.getLogger(__name__)

CLOCK_SKEW_SECONDS = 60
ALLOWED_ALGORITHMS = ["RS256", "ES256"]

# Most specific first: every entry subclasses InvalidTokenError
_DECODE_FAILURES: list[tuple[type[InvalidTokenError], str, str]] = [
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
    (InvalidTokenError, "invalid_token", "Invalid token"),
]


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
            ApiError(E_AUTH_UNAVAILABLE): The key set could not be fetched.
        """
        ...


def require_uuid_sub(payload: dict[str, Any]) -> UUID:
    """Extract the subject claim as a UUID.

    Raises:
        ApiError(E_UNAUTHENTICATED): If sub is missing or not a UUID.
    """
    sub = payload.get("sub")
    if not sub:
        logger.warning("auth_failure", extra={"reason": "missing_sub"})
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: missing sub")
    try:
        return UUID(str(sub))
    except ValueError as e:
        logger.warning("auth_failure", extra={"reason": "invalid_sub"})
        raise ApiError(
            ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: sub is not a valid UUID"
        ) from e


class SupabaseJwksVerifier:
    """Verifies Supabase access tokens.

    Checks the signature via JWKS (RS256 or ES256), exp with 60s of leeway,
    the issuer, the audience list, and that sub is a UUID. An unknown kid
    triggers one JWKS refresh before the token is rejected.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl
        self._jwks_client: PyJWKClient | None = None
        self._jwks_lock = threading.Lock()

    def _client(self, *, refresh: bool = False) -> PyJWKClient:
        with self._jwks_lock:
            if self._jwks_client is None or refresh:
                self._jwks_client = PyJWKClient(
                    self.jwks_url, cache_keys=True, lifespan=self.cache_ttl
                )
            return self._jwks_client

    def _signing_key(self, token: str) -> Any:
        try:
            return self._client().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                raise
        logger.info("Refreshing JWKS due to kid miss")
        try:
            return self._client(refresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", extra={"reason": "kid_not_found"})
            raise ApiError(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: signing key not found"
            ) from e

    def verify(self, token: str) -> dict[str, Any]:
        try:
            signing_key = self._signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", extra={"reason": "jwks_unavailable", "error": str(e)})
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
            ) from e

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except InvalidTokenError as e:
            for exc_type, reason, message in _DECODE_FAILURES:
                if isinstance(e, exc_type):
                    logger.warning("auth_failure", extra={"reason": reason})
                    raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, message) from e
            raise

        require_uuid_sub(payload)
        return payload
