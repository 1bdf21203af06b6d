from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from src.docflow.domain.entities.job import Job, DEFAULT_MAX_ATTEMPTS, utcnow
from src.docflow.domain.enums import Stage


@dataclass
class ProcessJob(Job):
    stage = Stage.PROCESS
    result_fields = ("processor_version",)

    processor_version: Optional[str] = None
    # подтверждение публикации extract.requested; None - анонс мог потеряться
    extract_announced_at: Optional[datetime] = None

    @property
    def download_id(self) -> int:
        return self.parent_id

    @classmethod
    def new(cls, download_id: int, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> ProcessJob:
        # id назначает репозиторий при create()
        return cls(id=0, parent_id=download_id, max_attempts=max_attempts)

    def complete(self, processor_version: str) -> None:
        self._complete(processor_version=processor_version)

    def is_extract_announced(self) -> bool:
        return self.extract_announced_at is not None

    def mark_extract_announced(self) -> None:
        self.extract_announced_at = utcnow()
