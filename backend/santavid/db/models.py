"""SQLAlchemy 2.0 ORM models for the order pipeline."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite's CURRENT_TIMESTAMP stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Order(Base):
    """One customer purchase and its generation pipeline state.

    `status` is the single source of truth for pipeline progress. All writes
    to it go through santavid.services.order_service as compare-and-set
    updates keyed by id.
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "(final_video_url IS NOT NULL) = (status = 'complete')",
            name="ck_orders_final_video_iff_complete",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="pending_payment", index=True)
    child_count: Mapped[int] = mapped_column(Integer, default=1)
    custom_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    generated_script: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    keyframe_urls: Mapped[list] = mapped_column(JSON, default=list)
    final_video_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    generation_progress: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount_paid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    children: Mapped[list["Child"]] = relationship(
        back_populates="order",
        order_by="Child.sequence_number",
        cascade="all, delete-orphan",
    )


class Child(Base):
    """Input data for script and prompt generation. Immutable once created."""
    __tablename__ = "children"
    __table_args__ = (
        UniqueConstraint("order_id", "sequence_number", name="uq_children_order_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100))
    age: Mapped[int] = mapped_column(Integer)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    good_behavior: Mapped[str] = mapped_column(Text)
    thing_to_improve: Mapped[str] = mapped_column(Text)
    thing_to_learn: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())

    order: Mapped[Order] = relationship(back_populates="children")


class SceneOperation(Base):
    """One scene's video-generation job.

    States: pending -> running -> complete | failed. A timeout is a failed
    entry with error_code 'timeout'. Rows are created once per scene at
    kickoff and only refreshed by poll cycles afterwards.
    """
    __tablename__ = "scene_operations"
    __table_args__ = (
        UniqueConstraint("order_id", "scene_number", name="uq_scene_operations_order_scene"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), index=True
    )
    scene_number: Mapped[int] = mapped_column(Integer)
    external_handle: Mapped[str] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), default="pending")
    video_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    poll_count: Mapped[int] = mapped_column(Integer, default=0)
    last_polled_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)


class PipelineRun(Base):
    """Execution metrics for one orchestrator invocation."""
    __tablename__ = "pipeline_runs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), index=True
    )
    trigger: Mapped[str] = mapped_column(String(50), default="manual")
    started_at: Mapped[datetime] = mapped_column(default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    total_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    log: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
