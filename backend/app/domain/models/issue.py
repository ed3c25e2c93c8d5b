import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base, JSONType


class IssueStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    RETRYING = "retrying"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    CANCELED = "canceled"
    ERROR = "error"


class Issue(Base):
    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("magazine_id", "slug", name="uq_issues_magazine_slug"),
        CheckConstraint(
            "status IN ('pending', 'ready', 'retrying', 'scheduled', 'published', 'canceled', 'error')",
            name="ck_issues_status_values",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    magazine_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("magazines.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slug: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=IssueStatus.PENDING.value)
    cover_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sprites: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
