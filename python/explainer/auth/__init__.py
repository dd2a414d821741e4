"""Authentication: token verification and the auth middleware.

Test-only verifiers are in tests/support/test_verifier.py.
"""

from explainer.auth.middleware import AuthMiddleware, Viewer, get_viewer
from explainer.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "SupabaseJwksVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
