"""SQLAlchemy ORM models."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    false,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ugc_engine.domain.enums import TransactionStatus, VideoStatus, VideoStyle


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserModel(Base):
    """Account holder with a denormalized credit balance."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance_non_negative"),
    )

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credit_balance: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow
    )

    # Relationships
    videos: Mapped[list["VideoModel"]] = relationship(
        "VideoModel", back_populates="user", cascade="all, delete-orphan"
    )
    transactions: Mapped[list["CreditTransactionModel"]] = relationship(
        "CreditTransactionModel", back_populates="user", cascade="all, delete-orphan"
    )


class CreditTransactionModel(Base):
    """Immutable credit ledger row."""

    __tablename__ = "credit_transactions"
    __table_args__ = (Index("ix_credit_transactions_user_created", "user_id", "created_at"),)

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[PyUUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TransactionStatus.COMPLETED.value,
        server_default=TransactionStatus.COMPLETED.value,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    video_id: Mapped[PyUUID | None] = mapped_column(
        Uuid, ForeignKey("videos.id", ondelete="SET NULL"), nullable=True, index=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    external_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    user: Mapped["UserModel"] = relationship("UserModel", back_populates="transactions")


class VideoModel(Base):
    """One generation request and its attempt chain (retries reuse the row)."""

    __tablename__ = "videos"
    __table_args__ = (Index("ix_videos_user_created", "user_id", "created_at"),)

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[PyUUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=VideoStatus.PENDING_SCRIPT.value,
        server_default=VideoStatus.PENDING_SCRIPT.value,
        index=True,
    )

    # Product snapshot
    product_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    product_title: Mapped[str] = mapped_column(String(500), nullable=False)
    product_url: Mapped[str] = mapped_column(Text, nullable=False)
    product_images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Script
    generated_script: Mapped[str | None] = mapped_column(Text, nullable=True)
    edited_script: Mapped[str | None] = mapped_column(Text, nullable=True)
    final_script: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_scenes: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    video_style: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=VideoStyle.PRODUCT_SHOWCASE.value,
        server_default=VideoStyle.PRODUCT_SHOWCASE.value,
    )

    # Render
    sora_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    video_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Delivery
    cloudinary_public_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cloudinary_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Failure info
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Accounting
    credits_used: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    script_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    generation_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow
    )

    # Relationships
    user: Mapped["UserModel"] = relationship("UserModel", back_populates="videos")


class WebhookEventModel(Base):
    """Processed payment webhook, keyed by the provider's event id."""

    __tablename__ = "webhook_events"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
