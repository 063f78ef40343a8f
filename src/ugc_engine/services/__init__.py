"""Application services."""

from ugc_engine.services.credits import CreditLedger, LedgerAudit
from ugc_engine.services.video_store import VideoStore

__all__ = [
    "CreditLedger",
    "LedgerAudit",
    "VideoStore",
]
