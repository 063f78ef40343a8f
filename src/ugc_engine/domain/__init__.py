"""Domain models and business logic."""

from ugc_engine.domain.enums import (
    PaymentEventType,
    RenderState,
    ScriptTone,
    TransactionStatus,
    TransactionType,
    VideoStatus,
    VideoStyle,
)
from ugc_engine.domain.models import (
    DownloadLink,
    LedgerEntry,
    RenderFailure,
    RenderJob,
    RenderResult,
    RenderSkipped,
    RenderSuccess,
    ScriptOptions,
    job_id_for,
)

__all__ = [
    "DownloadLink",
    "LedgerEntry",
    "PaymentEventType",
    "RenderFailure",
    "RenderJob",
    "RenderResult",
    "RenderSkipped",
    "RenderState",
    "RenderSuccess",
    "ScriptOptions",
    "ScriptTone",
    "TransactionStatus",
    "TransactionType",
    "VideoStatus",
    "VideoStyle",
    "job_id_for",
]
