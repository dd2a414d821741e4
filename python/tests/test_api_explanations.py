"""HTTP tests for the explanation, chat, viewer and upload routes.

Requests go through the full middleware stack (request id, auth, bootstrap)
against an app wired to the in-memory database and the fakes in conftest.
"""

import base64
from datetime import timedelta
from uuid import uuid4

import pytest

from explainer.db.models import utcnow
from explainer.services.image_processing import MAX_IMAGE_BYTES
from explainer.services.llm.errors import LLMError, LLMErrorClass
from tests.helpers import auth_headers, create_explanation_row, create_user
from tests.image_fixtures import OTHER_JPEG, TEXT_CONTENT, VALID_JPEG, VALID_PNG


def data_url(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def headers(user):
    return auth_headers(user.id)


def create(client, headers, image: bytes = VALID_JPEG, **body):
    return client.post(
        "/explanations", json={"image": data_url(image), **body}, headers=headers
    )


# =============================================================================
# Creation
# =============================================================================


class TestCreateExplanation:
    def test_json_creation_returns_201(self, client, headers):
        response = create(client, headers, prompt="What is this?", language="es")

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["explanation"] == "A red bicycle leaning against a brick wall."
        assert data["category"] == "identification"
        assert data["tags"] == ["bicycle", "red", "wall"]
        assert data["language"] == "es"
        assert data["prompt"] == "What is this?"
        assert data["image_url"].startswith("https://fake-storage.test/")
        assert "X-Request-ID" in response.headers

    def test_duplicate_returns_200_with_same_row(self, client, headers, provider):
        first = create(client, headers)
        second = create(client, headers)

        assert second.status_code == 200
        assert second.json()["data"]["id"] == first.json()["data"]["id"]
        assert len(provider.analyze_calls) == 1

    def test_multipart_upload(self, client, headers):
        response = client.post(
            "/explanations/upload",
            files={"image": ("photo.png", VALID_PNG, "image/png")},
            data={"prompt": "Explain", "is_developer_mode": "true", "language": "de"},
            headers=headers,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["is_developer_mode"] is True
        assert data["language"] == "de"

    def test_multipart_rejects_unsupported_language(self, client, headers):
        response = client.post(
            "/explanations/upload",
            files={"image": ("photo.jpg", VALID_JPEG, "image/jpeg")},
            data={"language": "xx"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_multipart_rejects_oversized_file(self, client, headers, provider):
        response = client.post(
            "/explanations/upload",
            files={"image": ("big.jpg", b"\xff" * (MAX_IMAGE_BYTES + 1), "image/jpeg")},
            headers=headers,
        )

        assert response.status_code == 413
        assert response.json()["error"]["code"] == "E_IMAGE_TOO_LARGE"
        assert provider.analyze_calls == []

    def test_non_data_url_is_invalid_request(self, client, headers):
        response = client.post(
            "/explanations", json={"image": "https://example.com/a.jpg"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_undecodable_image_is_invalid_image(self, client, headers):
        response = create(client, headers, image=TEXT_CONTENT)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_IMAGE"

    def test_prompt_length_is_bounded(self, client, headers):
        response = create(client, headers, prompt="x" * 501)

        assert response.status_code == 400

    def test_quota_exceeded_carries_reset_time(self, client, db_session):
        user = create_user(
            db_session, daily_usage_count=10, daily_usage_reset_at=utcnow() + timedelta(hours=5)
        )

        response = create(client, auth_headers(user.id))

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "E_QUOTA_EXCEEDED"
        assert error["limit"] == 10
        assert error["tier"] == "free"
        assert error["reset_at"]
        assert response.headers["X-Quota-Reset"] == error["reset_at"]
        assert error["request_id"] == response.headers["X-Request-ID"]

    def test_analysis_failure_is_503(self, client, headers, provider):
        provider.script_analyze(LLMError(LLMErrorClass.PROVIDER_DOWN, "down"))

        response = create(client, headers)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "E_ANALYSIS_FAILED"

    def test_upload_failure_is_502(self, client, headers, store):
        store.fail_uploads = True

        response = create(client, headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "E_UPLOAD_FAILED"


# =============================================================================
# Read / mutate
# =============================================================================


class TestReadAndMutate:
    def test_list_paginates_newest_first(self, client, headers, db_session, user):
        start = utcnow() - timedelta(hours=1)
        for i in range(3):
            create_explanation_row(
                db_session, user.id, text=f"e{i}", created_at=start + timedelta(minutes=i)
            )

        response = client.get("/explanations?page=1&limit=2", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["explanation"] for item in data["items"]] == ["e2", "e1"]
        assert data["total"] == 3
        assert data["total_pages"] == 2

    def test_list_search(self, client, headers, db_session, user):
        create_explanation_row(db_session, user.id, text="Mitochondria diagram", tags=["biology"])
        create_explanation_row(db_session, user.id, text="A bicycle")

        response = client.get("/explanations?search=BIOLOGY", headers=headers)

        assert [i["explanation"] for i in response.json()["data"]["items"]] == [
            "Mitochondria diagram"
        ]

    def test_list_rejects_page_zero(self, client, headers):
        response = client.get("/explanations?page=0", headers=headers)

        assert response.status_code == 400

    def test_get_counts_view(self, client, headers, db_session, user):
        row = create_explanation_row(db_session, user.id)

        client.get(f"/explanations/{row.id}", headers=headers)
        response = client.get(f"/explanations/{row.id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["view_count"] == 2

    def test_foreign_explanation_is_404(self, client, headers, db_session):
        row = create_explanation_row(db_session, create_user(db_session).id)

        response = client.get(f"/explanations/{row.id}", headers=headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_EXPLANATION_NOT_FOUND"

    def test_malformed_id_is_400(self, client, headers):
        response = client.get("/explanations/not-a-uuid", headers=headers)

        assert response.status_code == 400

    def test_favorite_toggle(self, client, headers, db_session, user):
        row = create_explanation_row(db_session, user.id)

        first = client.post(f"/explanations/{row.id}/favorite", headers=headers)
        second = client.post(f"/explanations/{row.id}/favorite", headers=headers)

        assert first.json() == {"data": {"is_favorite": True}}
        assert second.json() == {"data": {"is_favorite": False}}

    def test_delete_then_404(self, client, headers, db_session, user):
        row = create_explanation_row(db_session, user.id)

        deleted = client.delete(f"/explanations/{row.id}", headers=headers)
        again = client.delete(f"/explanations/{row.id}", headers=headers)
        fetched = client.get(f"/explanations/{row.id}", headers=headers)

        assert deleted.status_code == 204
        assert again.status_code == 404
        assert fetched.status_code == 404


# =============================================================================
# Chat
# =============================================================================


class TestMessages:
    def test_send_list_clear(self, client, headers, db_session, user):
        row = create_explanation_row(db_session, user.id)

        sent = client.post(
            f"/explanations/{row.id}/messages", json={"content": "Brand?"}, headers=headers
        )
        listed = client.get(f"/explanations/{row.id}/messages", headers=headers)
        cleared = client.delete(f"/explanations/{row.id}/messages", headers=headers)
        after = client.get(f"/explanations/{row.id}/messages", headers=headers)

        assert sent.status_code == 201
        exchange = sent.json()["data"]
        assert exchange["user_message"]["content"] == "Brand?"
        assert exchange["assistant_message"]["role"] == "assistant"
        assert [m["seq"] for m in listed.json()["data"]["items"]] == [1, 2]
        assert cleared.status_code == 204
        assert after.json()["data"]["total"] == 0

    @pytest.mark.parametrize("content", ["", "   ", "x" * 1001])
    def test_message_bounds(self, client, headers, db_session, user, content):
        row = create_explanation_row(db_session, user.id)

        response = client.post(
            f"/explanations/{row.id}/messages", json={"content": content}, headers=headers
        )

        assert response.status_code == 400

    def test_chat_on_unknown_explanation(self, client, headers):
        response = client.post(
            f"/explanations/{uuid4()}/messages", json={"content": "hi"}, headers=headers
        )

        assert response.status_code == 404


# =============================================================================
# Viewer and uploads
# =============================================================================


class TestViewer:
    def test_me(self, client, headers, user):
        response = client.get("/me", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == str(user.id)
        assert data["subscription_tier"] == "free"

    def test_usage_after_creation(self, client, headers):
        create(client, headers)
        create(client, headers, image=OTHER_JPEG)

        data = client.get("/me/usage", headers=headers).json()["data"]

        assert data["daily_count"] == 2
        assert data["daily_limit"] == 10
        assert data["remaining"] == 8
        assert data["reset_at"] is not None

    def test_sign_upload(self, client, headers, user):
        response = client.post("/uploads/sign", json={}, headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["path"].startswith(f"{user.id}/")
        assert data["token"].startswith("fake-token-")
        assert data["expires_in"] == 300

    def test_sign_upload_rejects_non_image_type(self, client, headers):
        response = client.post(
            "/uploads/sign", json={"content_type": "application/pdf"}, headers=headers
        )

        assert response.status_code == 400


class TestAuthRequired:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/explanations"),
            ("post", "/explanations"),
            ("get", "/me"),
            ("get", "/me/usage"),
            ("post", "/uploads/sign"),
        ],
    )
    def test_missing_token_is_401(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"
