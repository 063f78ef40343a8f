"""Tests for the HTTP API."""

import json
import time
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import httpx
import stripe
from fastapi.testclient import TestClient

from ugc_engine.domain.enums import VideoStatus
from ugc_engine.services.credits import CreditLedger

GENERATE_BODY: dict[str, Any] = {
    "product_data": {
        "url": "https://shop.example.com/products/glow-serum",
        "title": "Glow Serum 30ml",
        "description": "Vitamin C serum for daily use.",
        "images": ["https://cdn.example.com/glow-serum/front.jpg"],
    },
    "video_style": "PRODUCT_SHOWCASE",
    "options": {"tone": "casual", "target_duration": 20},
}


def _headers(user_id: UUID) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def _generate(client: TestClient, user_id: UUID) -> str:
    response = client.post(
        "/api/v1/videos/generate-script", json=GENERATE_BODY, headers=_headers(user_id)
    )
    assert response.status_code == 201, response.text
    return response.json()["video_id"]


class TestAuthentication:
    """Tests for caller identity."""

    def test_missing_user_header(self, api_client: TestClient) -> None:
        """Requests without an identity are 401 with the error envelope."""
        response = api_client.get("/api/v1/credits/balance")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "UNAUTHORIZED", "message": "Authentication required"},
        }

    def test_malformed_user_header(self, api_client: TestClient) -> None:
        """A non-UUID identity is rejected."""
        response = api_client.get("/api/v1/credits/balance", headers={"X-User-Id": "bob"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid user id"


class TestVideoEndpoints:
    """Tests for the video endpoints."""

    def test_generate_script(
        self, api_client: TestClient, make_user: Any, ledger: CreditLedger
    ) -> None:
        """Generating a script returns the script and charges one credit."""
        user_id = make_user(credits=5)

        response = api_client.post(
            "/api/v1/videos/generate-script", json=GENERATE_BODY, headers=_headers(user_id)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["script"]
        assert data["estimated_duration"] == 20
        assert len(data["scenes"]) == 3
        assert ledger.get_balance(user_id) == 4

    def test_generate_script_validation(self, api_client: TestClient, make_user: Any) -> None:
        """Bad product data is a 422 envelope."""
        body = {**GENERATE_BODY, "product_data": {**GENERATE_BODY["product_data"], "images": []}}

        response = api_client.post(
            "/api/v1/videos/generate-script", json=body, headers=_headers(make_user())
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]

    def test_generate_script_insufficient_credits(
        self, api_client: TestClient, make_user: Any
    ) -> None:
        """No credits is a 402."""
        response = api_client.post(
            "/api/v1/videos/generate-script",
            json=GENERATE_BODY,
            headers=_headers(make_user(credits=0)),
        )

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_CREDITS"
        assert error["message"] == "Insufficient credits. You have 0 credits, but need 1."

    def test_edit_confirm_get(
        self, api_client: TestClient, make_user: Any, celery_mock: MagicMock
    ) -> None:
        """Edit then confirm queues the edited script."""
        user_id = make_user(credits=5)
        video_id = _generate(api_client, user_id)

        edited = api_client.put(
            f"/api/v1/videos/{video_id}/script",
            json={"script": "Hand written."},
            headers=_headers(user_id),
        )
        confirmed = api_client.post(f"/api/v1/videos/{video_id}/confirm", headers=_headers(user_id))
        fetched = api_client.get(f"/api/v1/videos/{video_id}", headers=_headers(user_id))

        assert edited.json()["edited_script"] == "Hand written."
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == VideoStatus.QUEUED.value
        assert fetched.json()["final_script"] == "Hand written."
        celery_mock.send_task.assert_called_once()

    def test_confirm_twice(self, api_client: TestClient, make_user: Any) -> None:
        """A second confirm is a 400 INVALID_VIDEO_STATUS."""
        user_id = make_user(credits=5)
        video_id = _generate(api_client, user_id)
        api_client.post(f"/api/v1/videos/{video_id}/confirm", headers=_headers(user_id))

        response = api_client.post(f"/api/v1/videos/{video_id}/confirm", headers=_headers(user_id))

        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": "INVALID_VIDEO_STATUS",
            "message": "Can only confirm generation when status is SCRIPT_READY",
        }

    def test_other_users_video(self, api_client: TestClient, make_user: Any) -> None:
        """Another user's video is 403."""
        video_id = _generate(api_client, make_user(credits=5))

        response = api_client.get(f"/api/v1/videos/{video_id}", headers=_headers(make_user()))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_video(self, api_client: TestClient, make_user: Any) -> None:
        """An unknown id is 404."""
        response = api_client.get(f"/api/v1/videos/{uuid4()}", headers=_headers(make_user()))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "VIDEO_NOT_FOUND"

    def test_cancel(self, api_client: TestClient, make_user: Any, ledger: CreditLedger) -> None:
        """Cancel returns 204 and refunds."""
        user_id = make_user(credits=5)
        video_id = _generate(api_client, user_id)

        response = api_client.delete(f"/api/v1/videos/{video_id}", headers=_headers(user_id))

        assert response.status_code == 204
        assert ledger.get_balance(user_id) == 5

    def test_retry_non_failed(self, api_client: TestClient, make_user: Any) -> None:
        """Retrying a video that has not failed is a 400."""
        user_id = make_user(credits=5)
        video_id = _generate(api_client, user_id)

        response = api_client.post(f"/api/v1/videos/{video_id}/retry", headers=_headers(user_id))

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Can only retry failed videos"

    def test_download_not_ready(self, api_client: TestClient, make_user: Any) -> None:
        """Downloads before completion are a 400."""
        user_id = make_user(credits=5)
        video_id = _generate(api_client, user_id)

        response = api_client.get(f"/api/v1/videos/{video_id}/download", headers=_headers(user_id))

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Video is not ready for download"

    def test_list_pagination(self, api_client: TestClient, make_user: Any) -> None:
        """Listing pages through the caller's videos."""
        user_id = make_user(credits=5)
        for _ in range(3):
            _generate(api_client, user_id)

        response = api_client.get(
            "/api/v1/videos", params={"page": 2, "limit": 2}, headers=_headers(user_id)
        )
        filtered = api_client.get(
            "/api/v1/videos", params={"status": "QUEUED"}, headers=_headers(user_id)
        )

        data = response.json()
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert len(data["videos"]) == 1
        assert filtered.json()["total"] == 0


class TestCreditEndpoints:
    """Tests for the credit endpoints."""

    def test_balance_and_history(self, api_client: TestClient, make_user: Any) -> None:
        """History lists the signup bonus and the script debit."""
        user_id = make_user(credits=5)
        _generate(api_client, user_id)

        balance = api_client.get("/api/v1/credits/balance", headers=_headers(user_id))
        history = api_client.get("/api/v1/credits/history", headers=_headers(user_id))

        assert balance.json() == {"balance": 4}
        data = history.json()
        assert data["total"] == 2
        assert {row["type"] for row in data["transactions"]} == {"BONUS", "CONSUMPTION"}


class TestStripeWebhook:
    """Tests for the Stripe webhook endpoint."""

    def _post(self, client: TestClient, event: dict[str, Any]) -> httpx.Response:
        payload = json.dumps(event).encode()
        timestamp = int(time.time())
        signature = stripe.WebhookSignature._compute_signature(
            f"{timestamp}.{payload.decode()}", "whsec_test_secret"
        )
        return client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={
                "Stripe-Signature": f"t={timestamp},v1={signature}",
                "Content-Type": "application/json",
            },
        )

    def test_checkout_credits_once(
        self, api_client: TestClient, make_user: Any, ledger: CreditLedger
    ) -> None:
        """A delivered checkout credits the user; a redelivery does not."""
        user_id = make_user(credits=0)
        event = {
            "id": "evt_api_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_api_1",
                    "mode": "payment",
                    "metadata": {"userId": str(user_id), "credits": "10"},
                }
            },
        }

        first = self._post(api_client, event)
        second = self._post(api_client, event)

        assert first.json() == {"received": True, "duplicate": False}
        assert second.json() == {"received": True, "duplicate": True}
        assert ledger.get_balance(user_id) == 10

    def test_ignored_event(self, api_client: TestClient) -> None:
        """Events that move no credits are acknowledged."""
        response = self._post(
            api_client, {"id": "evt_api_2", "object": "event", "type": "customer.created"}
        )

        assert response.json() == {"received": True, "ignored": True}

    def test_bad_signature(self, api_client: TestClient) -> None:
        """Unsigned bodies are a 400 INVALID_WEBHOOK."""
        response = api_client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_WEBHOOK"


class TestMedia:
    """Tests for signed local media downloads."""

    def test_signed_download(self, test_client: TestClient) -> None:
        """A valid signature serves the file; a forged one is 403."""
        from ugc_engine.api.routes.media import get_local_store

        store = get_local_store()
        path = store.path_for("ugc-videos/video_test")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"mp4")
        url = httpx.URL(store.signed_url("ugc-videos/video_test", 60))

        ok = test_client.get(
            "/media/ugc-videos/video_test.mp4",
            params={"expires": url.params["expires"], "signature": url.params["signature"]},
        )
        forged = test_client.get(
            "/media/ugc-videos/video_test.mp4",
            params={"expires": url.params["expires"], "signature": "forged"},
        )

        assert ok.status_code == 200
        assert ok.content == b"mp4"
        assert forged.status_code == 403
