"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid
- Request ID normalization (UUID lowercase)
- Request ID replacement when invalid
- Request ID presence on auth failures and in error bodies
"""

from uuid import UUID, uuid4

import pytest

from explainer.middleware.request_id import resolve_request_id
from tests.helpers import auth_headers


@pytest.fixture
def headers(user):
    return auth_headers(user.id)


class TestRequestIdMiddleware:
    """Tests for X-Request-ID middleware."""

    def test_request_id_generated_when_missing(self, client, headers):
        response = client.get("/me", headers=headers)

        assert response.status_code == 200
        UUID(response.headers["X-Request-ID"])

    def test_request_id_preserved_when_valid(self, client, headers):
        response = client.get("/me", headers={**headers, "X-Request-ID": "abc_def-123"})

        assert response.headers["X-Request-ID"] == "abc_def-123"

    def test_request_id_uuid_normalized_to_lowercase(self, client, headers):
        response = client.get(
            "/me",
            headers={**headers, "X-Request-ID": "550E8400-E29B-41D4-A716-446655440000"},
        )

        assert response.headers["X-Request-ID"] == "550e8400-e29b-41d4-a716-446655440000"

    def test_request_id_replaced_when_invalid(self, client, headers):
        response = client.get("/me", headers={**headers, "X-Request-ID": "bad id with spaces"})

        new_id = response.headers["X-Request-ID"]
        assert new_id != "bad id with spaces"
        UUID(new_id)

    def test_request_id_present_on_auth_failure(self, client):
        response = client.get("/me")

        assert response.status_code == 401
        assert "X-Request-ID" in response.headers

    def test_error_response_includes_request_id_in_body(self, client, headers):
        response = client.get(f"/explanations/{uuid4()}", headers=headers)

        assert response.status_code == 404
        data = response.json()
        assert data["error"]["request_id"] == response.headers["X-Request-ID"]

    def test_public_path_gets_request_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "probe.1"})

        assert response.headers["X-Request-ID"] == "probe.1"


class TestResolveRequestId:
    @pytest.mark.parametrize(
        "incoming",
        ["request.id.with.dots", "request_id_with_underscores", "request-id", "a" * 128],
    )
    def test_valid_ids_pass_through(self, incoming):
        assert resolve_request_id(incoming) == incoming

    @pytest.mark.parametrize("incoming", [None, "", "a" * 129, "has space", "semi;colon"])
    def test_invalid_ids_are_replaced(self, incoming):
        resolved = resolve_request_id(incoming)

        assert resolved != incoming
        UUID(resolved)
