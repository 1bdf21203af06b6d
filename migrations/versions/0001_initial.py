"""audit providers, reports, downloads, processes

Revision ID: 0001_initial
Revises:
Create Date: 2025-03-01 12:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

PK = sa.BigInteger().with_variant(sa.Integer, "sqlite")
JOB_STATUS_CHECK = "status IN ('pending', 'in_progress', 'completed', 'failed')"


def _lifecycle_columns() -> list[sa.Column]:
    return [
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "audit_providers",
        sa.Column("id", PK, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_providers"),
        sa.UniqueConstraint("name", name="uq_audit_providers_name"),
        sa.UniqueConstraint("slug", name="uq_audit_providers_slug"),
    )

    op.create_table(
        "audit_reports",
        sa.Column("id", PK, nullable=False),
        sa.Column("provider_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("details_page_url", sa.Text(), nullable=True),
        sa.Column("source_download_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_reports"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["audit_providers.id"],
            name="fk_audit_reports_provider_id_audit_providers",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("idx_audit_reports_provider_id", "audit_reports", ["provider_id"])

    op.create_table(
        "downloads",
        sa.Column("id", PK, nullable=False),
        sa.Column("report_id", sa.BigInteger(), nullable=False),
        sa.Column("storage_path", sa.String(500), nullable=True),
        sa.Column("file_hash", sa.String(64), nullable=True),
        sa.Column("file_extension", sa.String(10), nullable=True),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_downloads"),
        sa.ForeignKeyConstraint(
            ["report_id"], ["audit_reports.id"],
            name="fk_downloads_report_id_audit_reports",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("report_id", name="uq_downloads_report_id"),
        sa.CheckConstraint(JOB_STATUS_CHECK, name="ck_downloads_status"),
        sa.CheckConstraint("attempt_count >= 0", name="ck_downloads_attempt_count"),
    )
    op.create_index("idx_downloads_status", "downloads", ["status"])
    op.create_index("idx_downloads_failed_retry", "downloads", ["status", "attempt_count"])

    op.create_table(
        "processes",
        sa.Column("id", PK, nullable=False),
        sa.Column("download_id", sa.BigInteger(), nullable=False),
        sa.Column("processor_version", sa.String(50), nullable=True),
        sa.Column("extract_announced_at", sa.DateTime(timezone=True), nullable=True),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_processes"),
        sa.ForeignKeyConstraint(
            ["download_id"], ["downloads.id"],
            name="fk_processes_download_id_downloads",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("download_id", name="uq_processes_download_id"),
        sa.CheckConstraint(JOB_STATUS_CHECK, name="ck_processes_status"),
        sa.CheckConstraint("attempt_count >= 0", name="ck_processes_attempt_count"),
    )
    op.create_index("idx_processes_status", "processes", ["status"])
    op.create_index("idx_processes_pending_created", "processes", ["status", "created_at"])
    op.create_index("idx_processes_unannounced", "processes", ["status", "extract_announced_at"])


def downgrade() -> None:
    op.drop_index("idx_processes_unannounced", table_name="processes")
    op.drop_index("idx_processes_pending_created", table_name="processes")
    op.drop_index("idx_processes_status", table_name="processes")
    op.drop_table("processes")

    op.drop_index("idx_downloads_failed_retry", table_name="downloads")
    op.drop_index("idx_downloads_status", table_name="downloads")
    op.drop_table("downloads")

    op.drop_index("idx_audit_reports_provider_id", table_name="audit_reports")
    op.drop_table("audit_reports")

    op.drop_table("audit_providers")
