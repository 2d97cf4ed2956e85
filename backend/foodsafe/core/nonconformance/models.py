import uuid
from datetime import datetime
from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from foodsafe.db.base import Base, RecordMixin


class NonConformance(Base, RecordMixin):
    """
    NC – a logged deviation, usually with product placed on hold.
    status flow: On Hold -> (Under Review -> Resolved/Rejected/Disposed | Released) -> Closed
    capa_id: forward link set once a CAPA is generated or linked.
    """
    __tablename__ = "non_conformances"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="On Hold")
    risk_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    quantity_on_hold: Mapped[float | None] = mapped_column(Float, nullable=True)
    units: Mapped[str | None] = mapped_column(String(30), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    capa_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("capas.id", ondelete="SET NULL"), nullable=True, index=True)
    reviewer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_non_conformances_status_changed", "status", "status_changed_at"),)
