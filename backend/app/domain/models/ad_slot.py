import uuid

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base


class AdSlot(Base):
    __tablename__ = "ad_slots"
    __table_args__ = (UniqueConstraint("issue_id", "slot_key", name="uq_ad_slots_issue_slot_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    issue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_key: Mapped[str] = mapped_column(String(64), nullable=False)
    creative_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    target_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sponsor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tracking_code: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
