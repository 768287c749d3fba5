"""create users and consultations

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="client"),
        sa.Column("organization", sa.String(length=200), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "consultations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("organization", sa.String(length=200), nullable=True),
        sa.Column("service", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="website"),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_consultations_email_created_at", "consultations", ["email", "created_at"], unique=False)
    op.create_index("ix_consultations_status_created_at", "consultations", ["status", "created_at"], unique=False)
    op.create_index("ix_consultations_service_status", "consultations", ["service", "status"], unique=False)
    op.create_index("ix_consultations_priority", "consultations", ["priority"], unique=False)
    op.create_index("ix_consultations_assigned_to", "consultations", ["assigned_to"], unique=False)
    op.create_index("ix_consultations_created_at", "consultations", ["created_at"], unique=False)

    op.create_table(
        "consultation_notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("consultation_id", sa.Uuid(), nullable=False),
        sa.Column("text", sa.String(length=1000), nullable=False),
        sa.Column("author_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["consultation_id"], ["consultations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_consultation_notes_consultation_id",
        "consultation_notes",
        ["consultation_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_consultation_notes_consultation_id", table_name="consultation_notes")
    op.drop_table("consultation_notes")

    op.drop_index("ix_consultations_created_at", table_name="consultations")
    op.drop_index("ix_consultations_assigned_to", table_name="consultations")
    op.drop_index("ix_consultations_priority", table_name="consultations")
    op.drop_index("ix_consultations_service_status", table_name="consultations")
    op.drop_index("ix_consultations_status_created_at", table_name="consultations")
    op.drop_index("ix_consultations_email_created_at", table_name="consultations")
    op.drop_table("consultations")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
