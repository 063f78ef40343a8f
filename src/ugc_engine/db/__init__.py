"""Database layer."""

from ugc_engine.db.models import (
    Base,
    CreditTransactionModel,
    UserModel,
    VideoModel,
    WebhookEventModel,
)
from ugc_engine.db.session import get_session_context, init_db, session_scope

__all__ = [
    "Base",
    "get_session_context",
    "init_db",
    "session_scope",
    # Models
    "CreditTransactionModel",
    "UserModel",
    "VideoModel",
    "WebhookEventModel",
]
