from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import ClassVar, Optional

from src.docflow.domain.enums import JobStatus, Stage
from src.docflow.domain.errors import (
    AlreadyCompleted,
    AlreadyInProgress,
    InvalidStateTransition,
    MaxAttemptsExceeded,
    NotInProgress,
    ResultValidationError,
)

DEFAULT_MAX_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """
    Единица работы конвейера: PENDING -> IN_PROGRESS -> COMPLETED | FAILED.
    FAILED -> IN_PROGRESS разрешён, пока остаются попытки.

    Все проверки - чистые функции от текущего состояния, поэтому их можно
    вызывать заранее, до записи перехода в репозиторий.
    """
    stage: ClassVar[Stage]
    result_fields: ClassVar[tuple[str, ...]] = ()

    id: int
    parent_id: int
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # not persisted
    max_attempts: int = field(default=DEFAULT_MAX_ATTEMPTS, repr=False, compare=False)
    # состояние строки на момент чтения, для compare-and-write
    persisted_status: Optional[JobStatus] = field(default=None, repr=False, compare=False)
    persisted_attempts: Optional[int] = field(default=None, repr=False, compare=False)

    # transitions
    def can_start(self) -> bool:
        return self.status == JobStatus.PENDING or (
            self.status == JobStatus.FAILED and self.attempt_count < self.max_attempts
        )

    def start(self) -> None:
        if self.status == JobStatus.COMPLETED:
            raise AlreadyCompleted(f"{self.stage} job {self.id} already completed")
        if self.status == JobStatus.IN_PROGRESS:
            raise AlreadyInProgress(f"{self.stage} job {self.id} already in progress")
        if self.attempt_count >= self.max_attempts:
            raise MaxAttemptsExceeded(
                f"{self.stage} job {self.id} exceeded maximum attempts: {self.attempt_count}"
            )

        now = utcnow()
        self.status = JobStatus.IN_PROGRESS
        self.started_at = now
        self.attempt_count += 1
        self.error_message = None
        self.updated_at = now

    def _complete(self, **results: Optional[str]) -> None:
        if self.status != JobStatus.IN_PROGRESS:
            raise InvalidStateTransition(
                f"cannot complete {self.stage} job {self.id} in status {self.status}"
            )
        for name in self.result_fields:
            if not results.get(name):
                raise ResultValidationError(f"{name} cannot be empty")

        now = utcnow()
        self.status = JobStatus.COMPLETED
        for name in self.result_fields:
            setattr(self, name, results[name])
        self.completed_at = now
        self.updated_at = now
        self.error_message = None

    def fail(self, message: str) -> None:
        if self.status == JobStatus.COMPLETED:
            raise AlreadyCompleted(f"{self.stage} job {self.id} already completed")
        if self.status != JobStatus.IN_PROGRESS:
            raise NotInProgress(f"{self.stage} job {self.id} is not in progress")

        self.status = JobStatus.FAILED
        self.error_message = message or "unknown error"
        self.updated_at = utcnow()

    # queries
    def is_completed(self) -> bool:
        return self.status == JobStatus.COMPLETED

    def is_in_progress(self) -> bool:
        return self.status == JobStatus.IN_PROGRESS

    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED

    def should_retry(self) -> bool:
        return self.status == JobStatus.FAILED and self.attempt_count < self.max_attempts

    def has_exceeded_max_attempts(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempt_count, 0)

    def duration(self) -> Optional[timedelta]:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def results(self) -> dict[str, Optional[str]]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name in self.result_fields}
