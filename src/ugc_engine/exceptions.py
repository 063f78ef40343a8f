"""Exception hierarchy for the video engine.

Every error a caller can see derives from UGCEngineError and carries a
stable ``code`` plus the HTTP status it maps to. Render and queue faults
that only the worker sees live at the bottom of the module.
"""

from uuid import UUID


class UGCEngineError(Exception):
    """Base exception for all domain errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InsufficientCreditsError(UGCEngineError):
    """Raised when a user's balance cannot cover a debit."""

    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient credits. You have {balance} credits, but need {required}."
        )


class AuthenticationError(UGCEngineError):
    """Raised when a request carries no caller identity."""

    code = "UNAUTHORIZED"
    status_code = 401


class UserNotFoundError(UGCEngineError):
    """Raised when a referenced user does not exist."""

    code = "USER_NOT_FOUND"
    status_code = 404

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class LedgerInvariantError(UGCEngineError):
    """Raised when stored balance disagrees with the ledger arithmetic."""

    code = "LEDGER_INVARIANT_VIOLATION"
    status_code = 500

    def __init__(self, user_id: UUID, expected: int, actual: int) -> None:
        self.user_id = user_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Ledger invariant violated for user {user_id}: "
            f"expected balance {expected}, found {actual}"
        )


class TransactionNotFoundError(UGCEngineError):
    """Raised when a pending purchase reference is unknown."""

    code = "TRANSACTION_NOT_FOUND"
    status_code = 404

    def __init__(self, external_reference: str) -> None:
        self.external_reference = external_reference
        super().__init__(f"No purchase recorded for reference {external_reference}")


class VideoNotFoundError(UGCEngineError):
    """Raised when a video does not exist."""

    code = "VIDEO_NOT_FOUND"
    status_code = 404

    def __init__(self, video_id: UUID) -> None:
        self.video_id = video_id
        super().__init__("Video not found")


class AccessDeniedError(UGCEngineError):
    """Raised when a user touches a video they do not own."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, video_id: UUID) -> None:
        self.video_id = video_id
        super().__init__("Access denied")


class InvalidVideoStatusError(UGCEngineError):
    """Raised when an operation is not legal from the video's current status."""

    code = "INVALID_VIDEO_STATUS"
    status_code = 400

    def __init__(self, current_status: str, message: str) -> None:
        self.current_status = current_status
        super().__init__(message)


class NoScriptAvailableError(UGCEngineError):
    """Raised when confirm or retry finds no script to render."""

    code = "NO_SCRIPT_AVAILABLE"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("No script available")


class DownloadNotAvailableError(UGCEngineError):
    """Raised when a completed video has no download URL recorded."""

    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Download URL not available")


class DownloadExpiredError(UGCEngineError):
    """Raised when the signed download URL has passed its expiry."""

    code = "DOWNLOAD_EXPIRED"
    status_code = 410

    def __init__(self) -> None:
        super().__init__("Download link has expired")


class ScriptGenerationError(UGCEngineError):
    """Raised when the script source fails. No credit is charged."""

    code = "SCRIPT_GENERATION_FAILED"
    status_code = 502


class ServiceUnavailableError(UGCEngineError):
    """Raised when a required backend (queue, provider) is unreachable."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class WebhookVerificationError(UGCEngineError):
    """Raised when a payment webhook signature does not verify."""

    code = "INVALID_WEBHOOK"
    status_code = 400


class InvalidTransitionError(UGCEngineError):
    """Raised when a status write is not in the transition table."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal status transition {from_status} -> {to_status}")


# =============================================================================
# Worker-side errors
# =============================================================================


class RenderError(UGCEngineError):
    """Base for render pipeline failures recorded on the video."""

    code = "VIDEO_GENERATION_FAILED"
    status_code = 502


class RenderFailedError(RenderError):
    """Raised when the render provider reports a terminal failure."""


class RenderTimeoutError(RenderError):
    """Raised when polling is exhausted without a terminal provider state."""

    code = "VIDEO_GENERATION_TIMEOUT"

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Video generation timed out after {attempts} status checks")


class JobNotReadyError(Exception):
    """Raised when a job arrives before its enqueueing transaction committed.

    This is an infrastructure condition; the queue redelivers with backoff.
    """

    def __init__(self, video_id: UUID, attempt: int) -> None:
        self.video_id = video_id
        self.attempt = attempt
        super().__init__(f"Video {video_id} attempt {attempt} not yet committed")


class RenderDeferredError(Exception):
    """Raised when the cluster-wide render start window is full.

    Nothing has been submitted; the queue redelivers after ``retry_after``.
    """

    def __init__(self, video_id: UUID, attempt: int, retry_after: float) -> None:
        self.video_id = video_id
        self.attempt = attempt
        self.retry_after = retry_after
        super().__init__(
            f"Video {video_id} attempt {attempt} deferred {retry_after:.1f}s by render start limit"
        )
