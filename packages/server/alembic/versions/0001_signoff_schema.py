"""Sign-off schema: users, evidence, magic links, edit requests, audit events.

Revision ID: 0001_signoff_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_signoff_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Tables
    # -----------------------------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="Trainee"),
        sa.Column("gmc_number", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_users_email", "users", ["email"], unique=True)
    op.create_index("idx_users_gmc", "users", ["gmc_number"])

    op.create_table(
        "evidence",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="Draft"),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("supervisor_name", sa.Text(), nullable=True),
        sa.Column("supervisor_email", sa.Text(), nullable=True),
        sa.Column("supervisor_gmc", sa.Text(), nullable=True),
        sa.Column("supervisor_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signed_off_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_signed_off_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signed_off_by", sa.Text(), nullable=True),
        sa.Column("unlocked_fields", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('Draft', 'Submitted', 'COMPLETE')", name="evidence_status_valid"),
    )
    op.create_index("idx_evidence_owner", "evidence", ["owner_id"])
    op.create_index("idx_evidence_status", "evidence", ["status"])
    op.create_index("idx_evidence_supervisor_gmc", "evidence", ["supervisor_gmc"])

    op.create_table(
        "magic_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("token", sa.Text(), nullable=False, unique=True),
        sa.Column("evidence_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("evidence.id"), nullable=False),
        sa.Column("recipient_email", sa.Text(), nullable=False),
        sa.Column("recipient_gmc", sa.Text(), nullable=True),
        sa.Column("form_type", sa.Text(), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("expires_at > created_at", name="magic_links_expiry_after_creation"),
    )
    op.create_index("idx_magic_links_token", "magic_links", ["token"], unique=True)
    op.create_index("idx_magic_links_evidence", "magic_links", ["evidence_id"])

    op.create_table(
        "edit_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("evidence_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("evidence.id"), nullable=False),
        sa.Column("trainee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("requested_fields", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("unlocked_fields", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("idx_edit_requests_evidence", "edit_requests", ["evidence_id"])
    # At most one pending request per record
    op.create_index(
        "idx_edit_requests_one_pending",
        "edit_requests",
        ["evidence_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "evidence_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("evidence_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("evidence.id"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_type", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_evidence_events_evidence", "evidence_events", ["evidence_id", "timestamp"])

    # -----------------------------------------------------------------------
    # 2. Immutability triggers
    # -----------------------------------------------------------------------

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_event_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Evidence events are immutable. UPDATE and DELETE are not permitted.';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER evidence_events_immutable
        BEFORE UPDATE OR DELETE ON evidence_events
        FOR EACH ROW EXECUTE FUNCTION prevent_event_mutation()
    """)

    # Links are kept for audit; they are marked used, never removed.
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_link_delete()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Magic links are retained for audit. DELETE is not permitted.';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER magic_links_no_delete
        BEFORE DELETE ON magic_links
        FOR EACH ROW EXECUTE FUNCTION prevent_link_delete()
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS magic_links_no_delete ON magic_links")
    op.execute("DROP FUNCTION IF EXISTS prevent_link_delete()")
    op.execute("DROP TRIGGER IF EXISTS evidence_events_immutable ON evidence_events")
    op.execute("DROP FUNCTION IF EXISTS prevent_event_mutation()")

    op.drop_table("evidence_events")
    op.drop_table("edit_requests")
    op.drop_table("magic_links")
    op.drop_table("evidence")
    op.drop_table("users")
