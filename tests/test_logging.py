"""Tests for logging helpers."""

import structlog
from fastapi.testclient import TestClient

from ugc_engine.logging import REDACTED, log_context, redact_secrets


class TestRedaction:
    """Tests for the secret-masking processor."""

    def test_sensitive_keys_are_masked(self) -> None:
        """Credentials are replaced while ordinary fields pass through."""
        event = {"event": "kie_request", "api_key": "sk-123", "Signature": "v1=abc", "video_id": "v"}

        result = redact_secrets(None, "info", event)

        assert result["api_key"] == REDACTED
        assert result["Signature"] == REDACTED
        assert result["video_id"] == "v"


class TestLogContext:
    """Tests for contextual log binding."""

    def test_values_bound_inside_block_only(self) -> None:
        """Bound values disappear when the block exits."""
        with log_context(task_id="video-1-attempt-0", attempt=0):
            inside = structlog.contextvars.get_contextvars()
        outside = structlog.contextvars.get_contextvars()

        assert inside["task_id"] == "video-1-attempt-0"
        assert "task_id" not in outside

    def test_nested_blocks_restore_outer_values(self) -> None:
        """An inner binding does not clobber the outer one after it exits."""
        with log_context(request_id="outer"):
            with log_context(request_id="inner"):
                assert structlog.contextvars.get_contextvars()["request_id"] == "inner"
            assert structlog.contextvars.get_contextvars()["request_id"] == "outer"

    def test_request_id_header(self, test_client: TestClient) -> None:
        """Responses echo a supplied request id or mint one."""
        supplied = test_client.get("/health/live", headers={"X-Request-Id": "req-42"})
        minted = test_client.get("/health/live")

        assert supplied.headers["X-Request-Id"] == "req-42"
        assert len(minted.headers["X-Request-Id"]) == 32
