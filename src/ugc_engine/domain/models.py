"""Domain models - pure Python classes independent of database."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from ugc_engine.domain.enums import ScriptTone, TransactionType, VideoStyle


@dataclass
class ScriptOptions:
    """Knobs passed to the script source alongside product data."""

    tone: ScriptTone = ScriptTone.EXCITED
    target_duration: int = 15
    include_call_to_action: bool = True
    highlight_features: list[str] = field(default_factory=list)


@dataclass
class LedgerEntry:
    """Outcome of a credit ledger write."""

    transaction_id: UUID
    user_id: UUID
    type: TransactionType
    amount: int
    balance_after: int
    replayed: bool = False

    @property
    def new_balance(self) -> int:
        return self.balance_after


@dataclass
class DownloadLink:
    """A signed, expiring download URL for a completed video."""

    url: str
    expires_at: datetime | None = None


def job_id_for(video_id: UUID, attempt: int) -> str:
    """Deterministic queue job id for one render attempt of a video."""
    return f"video-{video_id}-attempt-{attempt}"


@dataclass
class RenderJob:
    """Queue payload for one render attempt."""

    video_id: UUID
    script: str
    style: VideoStyle
    duration: int
    attempt: int = 0
    product_image_url: str | None = None

    @property
    def job_id(self) -> str:
        return job_id_for(self.video_id, self.attempt)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON message body."""
        payload: dict[str, Any] = {
            "video_id": str(self.video_id),
            "script": self.script,
            "style": str(self.style),
            "duration": self.duration,
            "attempt": self.attempt,
        }
        if self.product_image_url:
            payload["product_image_url"] = self.product_image_url
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RenderJob":
        """Parse a JSON message body."""
        return cls(
            video_id=UUID(str(payload["video_id"])),
            script=payload["script"],
            style=VideoStyle(payload["style"]),
            duration=int(payload["duration"]),
            attempt=int(payload.get("attempt", 0)),
            product_image_url=payload.get("product_image_url"),
        )


@dataclass
class RenderSuccess:
    """Render attempt reached COMPLETED."""

    video_id: UUID
    attempt: int
    public_id: str
    download_url: str
    thumbnail_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "video_id": str(self.video_id),
            "attempt": self.attempt,
            "public_id": self.public_id,
            "download_url": self.download_url,
            "thumbnail_url": self.thumbnail_url,
        }


@dataclass
class RenderFailure:
    """Render attempt ended FAILED. The credit was refunded if ``refunded``."""

    video_id: UUID
    attempt: int
    error_code: str
    error_message: str
    refunded: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "video_id": str(self.video_id),
            "attempt": self.attempt,
            "error_code": self.error_code,
            "error": self.error_message,
            "refunded": self.refunded,
        }


@dataclass
class RenderSkipped:
    """Delivery was stale or duplicate; nothing was done."""

    video_id: UUID
    attempt: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "skipped": True,
            "video_id": str(self.video_id),
            "attempt": self.attempt,
            "reason": self.reason,
        }


RenderResult = RenderSuccess | RenderFailure | RenderSkipped
