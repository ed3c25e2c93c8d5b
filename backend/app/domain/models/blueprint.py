import uuid

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base, JSONType


class Blueprint(Base):
    __tablename__ = "blueprints"
    __table_args__ = (UniqueConstraint("magazine_id", name="uq_blueprints_magazine_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    magazine_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("magazines.id", ondelete="CASCADE"), nullable=False
    )
    structure: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    voice: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    niche: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    sources: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    cadence: Mapped[str] = mapped_column(String(32), nullable=False, default="monthly")
    approval_mode: Mapped[str] = mapped_column(String(32), nullable=False, default="semi_auto")
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
