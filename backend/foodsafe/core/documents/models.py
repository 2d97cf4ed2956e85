import uuid
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from foodsafe.db.base import Base, RecordMixin, TimestampMixin


class Document(Base, RecordMixin):
    """
    Controlled document.
    status flow: Draft -> Pending_Approval -> Approved -> Published -> Archived
                 Rejected -> Draft (rework), Published -> Expired (automation)
    checkout_status: Available | Checked_Out, orthogonal to status.
    While checked out the primary status is frozen.
    """
    __tablename__ = "documents"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="Other")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Draft")
    checkout_status: Mapped[str] = mapped_column(String(50), nullable=False, default="Available")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    checked_out_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DocumentVersion(Base, TimestampMixin):
    """
    One row per check-in. Immutable.
    """
    __tablename__ = "document_versions"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_no: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    checked_in_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (UniqueConstraint("document_id", "version_no", name="uq_document_versions_doc_version"),)
