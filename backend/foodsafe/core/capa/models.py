import uuid
from datetime import datetime
from sqlalchemy import Boolean, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from foodsafe.db.base import Base, RecordMixin


class Capa(Base, RecordMixin):
    """
    CAPA – Corrective And Preventive Action.
    status flow: Open -> In Progress -> Closed -> Pending Verification
    Overdue is written by the automation scheduler only; status_before_overdue
    keeps the Open / In Progress status it was raised from.
    source/source_id: the non-conformance or complaint it was generated from.
    """
    __tablename__ = "capas"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Open")
    status_before_overdue: Mapped[str | None] = mapped_column(String(50), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="Medium")
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    source_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrective_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    preventive_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    automatically_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    effectiveness_review_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    effectiveness_rating: Mapped[str | None] = mapped_column(String(50), nullable=True)
    effectiveness_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effectiveness_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        # One generated CAPA per source record; makes generation retry-safe.
        Index("uq_capas_source", "source", "source_id", unique=True, postgresql_where=text("source_id IS NOT NULL")),
        Index("ix_capas_status_due_date", "status", "due_date"),
    )
