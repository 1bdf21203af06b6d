from typing import Protocol
from src.docflow.domain.contracts.repositories import (
    DownloadJobRepo, ProcessJobRepo,
    AuditReportRepo, AuditProviderRepo,
)

class UoW(Protocol):
    downloads: DownloadJobRepo
    processes: ProcessJobRepo
    reports: AuditReportRepo
    providers: AuditProviderRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def close(self) -> None: ...
