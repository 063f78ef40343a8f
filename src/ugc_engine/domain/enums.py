"""Domain enumerations."""

from enum import StrEnum


class VideoStatus(StrEnum):
    """Lifecycle status of a video record."""

    PENDING_SCRIPT = "PENDING_SCRIPT"
    SCRIPT_READY = "SCRIPT_READY"
    QUEUED = "QUEUED"
    GENERATING = "GENERATING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class VideoStyle(StrEnum):
    """Visual style of the rendered video."""

    PRODUCT_SHOWCASE = "PRODUCT_SHOWCASE"
    TALKING_HEAD = "TALKING_HEAD"
    LIFESTYLE = "LIFESTYLE"


class ScriptTone(StrEnum):
    """Voice of the generated script."""

    EXCITED = "excited"
    CASUAL = "casual"
    PROFESSIONAL = "professional"
    FUNNY = "funny"


class TransactionType(StrEnum):
    """Kind of credit ledger entry."""

    PURCHASE = "PURCHASE"
    CONSUMPTION = "CONSUMPTION"
    REFUND = "REFUND"
    BONUS = "BONUS"
    ADJUSTMENT = "ADJUSTMENT"
    SUBSCRIPTION_CREDIT = "SUBSCRIPTION_CREDIT"
    SUBSCRIPTION_BONUS = "SUBSCRIPTION_BONUS"


class TransactionStatus(StrEnum):
    """Settlement status of a ledger entry."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class RenderState(StrEnum):
    """Normalized render provider job state."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentEventType(StrEnum):
    """Payment events that move credits."""

    PURCHASE_COMPLETED = "purchase_completed"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    REFUND_ISSUED = "refund_issued"
