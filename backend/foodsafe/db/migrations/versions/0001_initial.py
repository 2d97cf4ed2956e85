"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""
from typing import Sequence, Union
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _record_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("assigned_to", sa.String(255), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "capas",
        *_record_columns(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="Open"),
        sa.Column("status_before_overdue", sa.String(50), nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="Medium"),
        sa.Column("source", sa.String(50), nullable=False, server_default="other"),
        sa.Column("source_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("root_cause", sa.Text, nullable=True),
        sa.Column("corrective_action", sa.Text, nullable=True),
        sa.Column("preventive_action", sa.Text, nullable=True),
        sa.Column("automatically_generated", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effectiveness_review_due", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effectiveness_rating", sa.String(50), nullable=True),
        sa.Column("effectiveness_verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("effectiveness_notes", sa.Text, nullable=True),
        sa.Column("verification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_capas_source", "capas", ["source", "source_id"],
        unique=True, postgresql_where=sa.text("source_id IS NOT NULL"),
    )
    op.create_index("ix_capas_status_due_date", "capas", ["status", "due_date"])

    op.create_table(
        "non_conformances",
        *_record_columns(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("item_name", sa.String(255), nullable=True),
        sa.Column("item_category", sa.String(100), nullable=True),
        sa.Column("reason_category", sa.String(100), nullable=True),
        sa.Column("reason_details", sa.Text, nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="On Hold"),
        sa.Column("risk_level", sa.String(20), nullable=True),
        sa.Column("priority", sa.String(20), nullable=True),
        sa.Column("quantity", sa.Float, nullable=True),
        sa.Column("quantity_on_hold", sa.Float, nullable=True),
        sa.Column("units", sa.String(30), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("capa_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reviewer", sa.String(255), nullable=True),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_details", sa.Text, nullable=True),
        sa.ForeignKeyConstraint(["capa_id"], ["capas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_non_conformances_capa_id", "non_conformances", ["capa_id"])
    op.create_index("ix_non_conformances_status_changed", "non_conformances", ["status", "status_changed_at"])

    op.create_table(
        "complaints",
        *_record_columns(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="Other"),
        sa.Column("status", sa.String(50), nullable=False, server_default="New"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="Medium"),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_contact", sa.String(255), nullable=True),
        sa.Column("product_involved", sa.String(255), nullable=True),
        sa.Column("lot_number", sa.String(100), nullable=True),
        sa.Column("reported_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("resolution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("capa_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["capa_id"], ["capas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_complaints_capa_id", "complaints", ["capa_id"])

    op.create_table(
        "documents",
        *_record_columns(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(100), nullable=False, server_default="Other"),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="Draft"),
        sa.Column("checkout_status", sa.String(50), nullable=False, server_default="Available"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("checked_out_by", sa.String(255), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "document_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("version_no", sa.Integer, nullable=False),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("change_summary", sa.Text, nullable=True),
        sa.Column("checked_in_by", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "version_no", name="uq_document_versions_doc_version"),
    )
    op.create_index("ix_document_versions_document_id", "document_versions", ["document_id"])

    op.create_table(
        "activities",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("action_type", sa.String(100), nullable=False),
        sa.Column("action_description", sa.Text, nullable=False),
        sa.Column("performed_by", sa.String(255), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("old_status", sa.String(50), nullable=True),
        sa.Column("new_status", sa.String(50), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("dedupe_key", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index("ix_activities_record_performed", "activities", ["record_id", "performed_at"])

    # Activities are an audit trail: refuse UPDATE and DELETE at the database.
    op.execute("""
        CREATE OR REPLACE FUNCTION activities_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'activities is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_activities_append_only
        BEFORE UPDATE OR DELETE ON activities
        FOR EACH ROW EXECUTE FUNCTION activities_append_only()
    """)

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("kind", sa.String(50), nullable=False, server_default="info"),
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.execute("DROP TRIGGER IF EXISTS trg_activities_append_only ON activities")
    op.execute("DROP FUNCTION IF EXISTS activities_append_only()")
    op.drop_table("activities")
    op.drop_table("document_versions")
    op.drop_table("documents")
    op.drop_table("complaints")
    op.drop_table("non_conformances")
    op.drop_table("capas")
