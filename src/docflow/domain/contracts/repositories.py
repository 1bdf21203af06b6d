from datetime import datetime
from typing import Optional, Protocol

from src.docflow.domain.enums import JobStatus
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.entities.process_job import ProcessJob
from src.docflow.domain.entities.audit_report import AuditReport, AuditProvider


class DownloadJobRepo(Protocol):
    def get(self, job_id: int) -> Optional[DownloadJob]: ...
    def create(self, job: DownloadJob) -> DownloadJob: ...
    def update(self, job: DownloadJob) -> None: ...
    def list_by_status(self, status: JobStatus, limit: int = 100) -> list[DownloadJob]: ...


class ProcessJobRepo(Protocol):
    def get(self, job_id: int) -> Optional[ProcessJob]: ...
    def get_by_download(self, download_id: int) -> Optional[ProcessJob]: ...
    def create(self, job: ProcessJob) -> ProcessJob: ...
    def update(self, job: ProcessJob) -> None: ...
    def list_by_status(self, status: JobStatus, limit: int = 100) -> list[ProcessJob]: ...
    def list_stale_pending(self, created_before: datetime, limit: int = 100) -> list[ProcessJob]: ...
    def list_unannounced_completed(self, completed_before: datetime, limit: int = 100) -> list[ProcessJob]: ...


class AuditReportRepo(Protocol):
    def get(self, report_id: int) -> Optional[AuditReport]: ...


class AuditProviderRepo(Protocol):
    def get(self, provider_id: int) -> Optional[AuditProvider]: ...
