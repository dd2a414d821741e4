"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: bearer token verification on every non-public path
- get_viewer: dependency returning the authenticated viewer
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from explainer.auth.verifier import TokenVerifier
from explainer.errors import ApiError, ApiErrorCode
from explainer.logging import set_user_context
from explainer.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from the JWT sub claim).
        email: Email claim, if the token carries one.
        subscription_tier: Tier of the bootstrapped user row.
    """

    user_id: UUID
    email: str | None = None
    subscription_tier: str = "free"


# Callback(user_id, email) -> subscription tier of the (possibly new) user
BootstrapCallback = Callable[[UUID, str | None], str]


class AuthMiddleware(BaseHTTPMiddleware):
    """Verifies the bearer token and attaches a Viewer to request.state.

    Order of checks:
    1. Skip if public path
    2. Extract the bearer token
    3. Verify it via the TokenVerifier
    4. Bootstrap the user row (first request of a new subject)
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        bootstrap_callback: BootstrapCallback | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = self._extract_bearer_token(request)
        if token is None:
            return self._error(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401
            )

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error(e.code, e.message, e.status_code)

        user_id = UUID(payload["sub"])
        email = payload.get("email")

        tier = "free"
        if self.bootstrap_callback:
            try:
                tier = self.bootstrap_callback(user_id, email)
            except Exception as e:
                logger.exception("Bootstrap failed for user %s: %s", user_id, e)
                return self._error(ApiErrorCode.E_INTERNAL, "Internal server error", 500)

        request.state.viewer = Viewer(user_id=user_id, email=email, subscription_tier=tier)
        set_user_context(str(user_id))
        return await call_next(request)

    @staticmethod
    def _extract_bearer_token(request: Request) -> str | None:
        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header:
            reason = "missing_header"
        elif not auth_header.lower().startswith("bearer ") or not auth_header[7:].strip():
            reason = "invalid_header_format"
        else:
            return auth_header[7:].strip()

        logger.warning(
            "auth_failure", extra={"reason": reason, "request_path": request.url.path}
        )
        return None

    @staticmethod
    def _error(code: ApiErrorCode, message: str, status_code: int) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_response(code, message))


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency for the authenticated viewer.

    Raises:
        ApiError(E_UNAUTHENTICATED): If the middleware did not authenticate the request.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer
