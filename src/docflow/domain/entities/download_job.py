from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.docflow.domain.entities.job import Job
from src.docflow.domain.enums import Stage


@dataclass
class DownloadJob(Job):
    stage = Stage.DOWNLOAD
    result_fields = ("storage_path", "file_hash", "file_extension")

    storage_path: Optional[str] = None
    file_hash: Optional[str] = None
    file_extension: Optional[str] = None

    @property
    def report_id(self) -> int:
        return self.parent_id

    def complete(self, storage_path: str, file_hash: str, file_extension: str) -> None:
        self._complete(
            storage_path=storage_path,
            file_hash=file_hash,
            file_extension=file_extension,
        )
