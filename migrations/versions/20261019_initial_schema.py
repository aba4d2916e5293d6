"""Create accounts, loan_products, loan_applications and audit_logs

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="borrower"),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("photo_url", sa.String(length=1024), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
        sa.CheckConstraint("role IN ('borrower', 'manager', 'admin')", name="ck_accounts_role"),
    )

    op.create_table(
        "loan_products",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("interest_rate", sa.Numeric(10, 4), nullable=True),
        sa.Column("max_limit", sa.Numeric(18, 2), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("terms", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("interest_rate IS NULL OR interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        sa.CheckConstraint("max_limit IS NULL OR max_limit >= 0", name="ck_loan_product_limit_nonneg"),
    )
    op.create_index("ix_loan_products_category", "loan_products", ["category"])
    op.create_index("ix_loan_products_created_at", "loan_products", ["created_at"])

    op.create_table(
        "loan_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_email", sa.String(length=255), nullable=False),
        sa.Column(
            "loan_product_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_products.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("applied_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decision_note", sa.Text(), nullable=True),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_loan_app_status"),
        sa.CheckConstraint("(status = 'pending') = (decided_at IS NULL)", name="ck_loan_app_decided_at"),
    )
    op.create_index("ix_loan_applications_loan_product_id", "loan_applications", ["loan_product_id"])
    op.create_index("ix_loan_app_owner_applied", "loan_applications", ["owner_email", "applied_at"])
    op.create_index("ix_loan_app_status_applied", "loan_applications", ["status", "applied_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("summary", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_email", "audit_logs", ["actor_email"])
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_email", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_loan_app_status_applied", table_name="loan_applications")
    op.drop_index("ix_loan_app_owner_applied", table_name="loan_applications")
    op.drop_index("ix_loan_applications_loan_product_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_loan_products_created_at", table_name="loan_products")
    op.drop_index("ix_loan_products_category", table_name="loan_products")
    op.drop_table("loan_products")
    op.drop_table("accounts")
