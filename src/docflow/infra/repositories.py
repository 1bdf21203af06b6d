from __future__ import annotations

from typing import Any, Optional
from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import update

from src.docflow.infra.models import (
    AuditProviderORM, AuditReportORM,
    DownloadORM, ProcessORM,
)

from src.docflow.domain.enums import JobStatus
from src.docflow.domain.errors import ConcurrentUpdateError
from src.docflow.domain.entities.job import Job, utcnow
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.entities.process_job import ProcessJob
from src.docflow.domain.entities.audit_report import AuditReport, AuditProvider


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite отдаёт naive datetime
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# mappers ORM -> Domain
def _lifecycle(row: Any) -> dict[str, Any]:
    status = JobStatus(str(row.status))
    attempts = int(row.attempt_count or 0)
    return dict(
        id=int(row.id),
        status=status,
        attempt_count=attempts,
        error_message=row.error_message,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        updated_at=_aware(row.updated_at),
        persisted_status=status,
        persisted_attempts=attempts,
    )


def _download_dom(d: DownloadORM) -> DownloadJob:
    return DownloadJob(
        parent_id=int(d.report_id),
        storage_path=d.storage_path,
        file_hash=d.file_hash,
        file_extension=d.file_extension,
        **_lifecycle(d),
    )


def _process_dom(p: ProcessORM) -> ProcessJob:
    return ProcessJob(
        parent_id=int(p.download_id),
        processor_version=p.processor_version,
        extract_announced_at=_aware(p.extract_announced_at),
        **_lifecycle(p),
    )


def _report_dom(r: AuditReportORM) -> AuditReport:
    return AuditReport(
        id=int(r.id),
        provider_id=int(r.provider_id),
        title=str(r.title),
        source_download_url=str(r.source_download_url),
        details_page_url=r.details_page_url,
        created_at=_aware(r.created_at),
    )


def _provider_dom(p: AuditProviderORM) -> AuditProvider:
    return AuditProvider(
        id=int(p.id),
        name=str(p.name),
        slug=str(p.slug),
        is_active=bool(p.is_active),
    )


def _lifecycle_values(job: Job) -> dict[str, Any]:
    return {
        "status": job.status.value,
        "attempt_count": job.attempt_count,
        "error_message": job.error_message,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "updated_at": job.updated_at or utcnow(),
    }


def _compare_and_write(db: Session, orm: Any, job: Job, values: dict[str, Any]) -> None:
    """
    UPDATE ... WHERE id = :id AND status = :persisted_status AND attempt_count = :persisted_attempts.
    0 строк - строку уже изменил кто-то другой.
    """
    stmt = update(orm).where(orm.id == job.id)
    if job.persisted_status is not None:
        stmt = stmt.where(
            orm.status == job.persisted_status.value,
            orm.attempt_count == job.persisted_attempts,
        )
    res = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if res.rowcount != 1:
        raise ConcurrentUpdateError(
            f"{job.stage} job {job.id} was modified concurrently "
            f"(expected status={job.persisted_status}, attempts={job.persisted_attempts})"
        )
    job.persisted_status = job.status
    job.persisted_attempts = job.attempt_count


# repos
class SqlDownloadJobRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, job_id: int) -> Optional[DownloadJob]:
        d = self.db.get(DownloadORM, job_id, populate_existing=True)
        return _download_dom(d) if d else None

    def create(self, job: DownloadJob) -> DownloadJob:
        d = DownloadORM(
            report_id=job.parent_id,
            status=job.status.value,
            attempt_count=job.attempt_count,
            created_at=job.created_at or utcnow(),
            updated_at=job.updated_at or utcnow(),
        )
        self.db.add(d)
        self.db.flush()
        return _download_dom(d)

    def update(self, job: DownloadJob) -> None:
        values = _lifecycle_values(job)
        values.update(
            storage_path=job.storage_path,
            file_hash=job.file_hash,
            file_extension=job.file_extension,
        )
        _compare_and_write(self.db, DownloadORM, job, values)

    def list_by_status(self, status: JobStatus, limit: int = 100) -> list[DownloadJob]:
        rows = (
            self.db.query(DownloadORM)
            .filter(DownloadORM.status == status.value)
            .order_by(DownloadORM.created_at.asc(), DownloadORM.id.asc())
            .limit(limit)
            .all()
        )
        return [_download_dom(d) for d in rows]


class SqlProcessJobRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, job_id: int) -> Optional[ProcessJob]:
        p = self.db.get(ProcessORM, job_id, populate_existing=True)
        return _process_dom(p) if p else None

    def get_by_download(self, download_id: int) -> Optional[ProcessJob]:
        p = self.db.query(ProcessORM).filter(ProcessORM.download_id == download_id).first()
        return _process_dom(p) if p else None

    def create(self, job: ProcessJob) -> ProcessJob:
        p = ProcessORM(
            download_id=job.parent_id,
            status=job.status.value,
            attempt_count=job.attempt_count,
            created_at=job.created_at or utcnow(),
            updated_at=job.updated_at or utcnow(),
        )
        self.db.add(p)
        self.db.flush()
        return _process_dom(p)

    def update(self, job: ProcessJob) -> None:
        values = _lifecycle_values(job)
        values.update(
            processor_version=job.processor_version,
            extract_announced_at=job.extract_announced_at,
        )
        _compare_and_write(self.db, ProcessORM, job, values)

    def list_by_status(self, status: JobStatus, limit: int = 100) -> list[ProcessJob]:
        rows = (
            self.db.query(ProcessORM)
            .filter(ProcessORM.status == status.value)
            .order_by(ProcessORM.created_at.asc(), ProcessORM.id.asc())
            .limit(limit)
            .all()
        )
        return [_process_dom(p) for p in rows]

    def list_stale_pending(self, created_before: datetime, limit: int = 100) -> list[ProcessJob]:
        """
        Pending-задачи, которые ни разу не стартовали - вероятно, потерян анонс.
        """
        rows = (
            self.db.query(ProcessORM)
            .filter(
                ProcessORM.status == JobStatus.PENDING.value,
                ProcessORM.attempt_count == 0,
                ProcessORM.created_at < created_before,
            )
            .order_by(ProcessORM.created_at.asc())
            .limit(limit)
            .all()
        )
        return [_process_dom(p) for p in rows]

    def list_unannounced_completed(self, completed_before: datetime, limit: int = 100) -> list[ProcessJob]:
        """
        Завершённые задачи без подтверждённой публикации extract.requested.
        """
        rows = (
            self.db.query(ProcessORM)
            .filter(
                ProcessORM.status == JobStatus.COMPLETED.value,
                ProcessORM.extract_announced_at.is_(None),
                ProcessORM.completed_at < completed_before,
            )
            .order_by(ProcessORM.completed_at.asc())
            .limit(limit)
            .all()
        )
        return [_process_dom(p) for p in rows]


class SqlAuditReportRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, report_id: int) -> Optional[AuditReport]:
        r = self.db.get(AuditReportORM, report_id)
        return _report_dom(r) if r else None


class SqlAuditProviderRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, provider_id: int) -> Optional[AuditProvider]:
        p = self.db.get(AuditProviderORM, provider_id)
        return _provider_dom(p) if p else None
