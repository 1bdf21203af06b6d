from sqlalchemy import (
    Column, String, Boolean,
    DateTime, BigInteger, ForeignKey,
    Text, Integer,
    CheckConstraint, Index, text as sa_text,
)
from sqlalchemy.sql import func

from src.docflow.infra.db import Base

# BIGSERIAL в Postgres, INTEGER PRIMARY KEY (rowid) в SQLite
PK = BigInteger().with_variant(Integer, "sqlite")

JOB_STATUS_CHECK = "status IN ('pending', 'in_progress', 'completed', 'failed')"


class AuditProviderORM(Base):
    __tablename__ = "audit_providers"

    id = Column(PK, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    slug = Column(String(100), nullable=False, unique=True)
    website_url = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=sa_text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AuditReportORM(Base):
    __tablename__ = "audit_reports"

    id = Column(PK, primary_key=True, autoincrement=True)
    provider_id = Column(
        BigInteger,
        ForeignKey("audit_providers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    title = Column(String(500), nullable=False)
    details_page_url = Column(Text, nullable=True)
    source_download_url = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_audit_reports_provider_id", "provider_id"),
    )


class DownloadORM(Base):
    """
    Загрузка файла отчёта. Одна на отчёт.
    """
    __tablename__ = "downloads"

    id = Column(PK, primary_key=True, autoincrement=True)
    report_id = Column(
        BigInteger,
        ForeignKey("audit_reports.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # результат, заполнен только в completed
    storage_path = Column(String(500), nullable=True)
    file_hash = Column(String(64), nullable=True)
    file_extension = Column(String(10), nullable=True)

    status = Column(String(20), nullable=False, server_default="pending")
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(JOB_STATUS_CHECK, name="status"),
        CheckConstraint("attempt_count >= 0", name="attempt_count"),
        Index("idx_downloads_status", "status"),
        Index("idx_downloads_failed_retry", "status", "attempt_count"),
    )


class ProcessORM(Base):
    __tablename__ = "processes"

    id = Column(PK, primary_key=True, autoincrement=True)
    download_id = Column(
        BigInteger,
        ForeignKey("downloads.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    processor_version = Column(String(50), nullable=True)
    extract_announced_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(20), nullable=False, server_default="pending")
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(JOB_STATUS_CHECK, name="status"),
        CheckConstraint("attempt_count >= 0", name="attempt_count"),
        Index("idx_processes_status", "status"),
        # reconcile: давно созданные pending
        Index("idx_processes_pending_created", "status", "created_at"),
        # reconcile: завершённые без подтверждённого анонса extract
        Index("idx_processes_unannounced", "status", "extract_announced_at"),
    )
