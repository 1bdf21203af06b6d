from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import anyio

from src.docflow.domain.contracts.ports import Publisher
from src.docflow.domain.contracts.uow import UoW
from src.docflow.domain.entities.job import Job
from src.docflow.domain.enums import OutcomeCode, Stage
from src.docflow.domain.errors import (
    AlreadyInProgress,
    ConcurrentUpdateError,
    CriticalInconsistency,
    DomainError,
    InvalidStateTransition,
    JobNotFound,
    MaxAttemptsExceeded,
    StepFailed,
)
from src.docflow.domain.services.backoff import retry_async
from src.docflow.domain.value_objects import RetryPolicy, StepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Announcement:
    """Сообщение о задаче следующей стадии."""
    queue: str
    message: dict[str, Any]
    job_id: Optional[int] = None


class StageHandler(Protocol):
    stage: Stage
    failure_code: OutcomeCode

    def jobs(self, uow: UoW) -> Any: ...

    async def perform(self, uow: UoW, job: Job) -> dict[str, str]: ...

    def prepare_next(self, uow: UoW, job: Job) -> Optional[Announcement]: ...

    def confirm_announced(self, uow: UoW, job: Job) -> None: ...


class StepExecutor:
    """
    Один шаг конвейера для одной задачи:
    load -> guard -> claim (start + commit) -> side effect -> complete | fail -> publish.

    Каждый переход записывается в репозиторий до следующего необратимого действия.
    Ошибки состояния поднимаются как есть, ошибки побочного эффекта - как StepFailed,
    потерянный результат побочного эффекта - как CriticalInconsistency.
    """

    def __init__(
        self,
        stage: StageHandler,
        uow_factory: Callable[[], UoW],
        publisher: Publisher,
        publish_policy: RetryPolicy = RetryPolicy(),
        max_attempts: Optional[int] = None,
    ):
        self.stage = stage
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.publish_policy = publish_policy
        self.max_attempts = max_attempts

    async def execute(self, job_id: int) -> StepResult:
        uow = self.uow_factory()
        try:
            return await self._execute(uow, job_id)
        finally:
            uow.close()

    async def _execute(self, uow: UoW, job_id: int) -> StepResult:
        stage = self.stage.stage
        repo = self.stage.jobs(uow)

        # 1. load
        job = repo.get(job_id)
        if job is None:
            logger.error("%s job %s not found", stage, job_id)
            raise JobNotFound(f"{stage} job {job_id} not found")
        if self.max_attempts is not None:
            job.max_attempts = self.max_attempts

        # 2. duplicate delivery of a finished job
        if job.is_completed():
            logger.info("%s job %s already completed, skipping", stage, job_id)
            return StepResult(job_id=job_id, skipped=True)

        # 3. guards, no mutation
        if not job.can_start():
            if job.is_in_progress():
                raise AlreadyInProgress(f"{stage} job {job_id} already in progress")
            if job.has_exceeded_max_attempts():
                logger.error(
                    "%s job %s exceeded max attempts (%s), giving up",
                    stage, job_id, job.attempt_count,
                )
                raise MaxAttemptsExceeded(
                    f"{stage} job {job_id} exceeded maximum attempts: {job.attempt_count}"
                )
            raise InvalidStateTransition(f"cannot start {stage} job {job_id} in status {job.status}")

        # 4. claim
        job.start()
        try:
            repo.update(job)
            uow.commit()
        except ConcurrentUpdateError:
            uow.rollback()
            logger.info("%s job %s claimed by another worker", stage, job_id)
            raise
        except Exception as e:
            uow.rollback()
            raise StepFailed(
                f"failed to claim {stage} job {job_id}: {e}",
                code=self.stage.failure_code,
            ) from e

        logger.info("%s job %s started, attempt %s/%s", stage, job_id, job.attempt_count, job.max_attempts)

        # 5-6. resolve + side effect
        try:
            results = await self.stage.perform(uow, job)
            job.complete(**results)
        except anyio.get_cancelled_exc_class():
            # синхронная запись, отмена её не прерывает
            with anyio.CancelScope(shield=True):
                self._record_failure(uow, repo, job, f"{stage} cancelled")
            raise
        except Exception as e:
            # 7. fail-and-persist
            raise self._fail(uow, repo, job, e) from e

        # 8. complete + next stage record, одной транзакцией
        try:
            announcement = self.stage.prepare_next(uow, job)
            repo.update(job)
            uow.commit()
        except Exception as e:
            uow.rollback()
            logger.critical(
                "critical: %s job %s side effect done but completion not recorded: %s (results=%s)",
                stage, job_id, e, job.results(),
            )
            raise CriticalInconsistency(
                f"critical: {stage} job {job_id} side effect done but completion not recorded: {e}"
            ) from e

        logger.info("%s job %s completed", stage, job_id)

        # 9. announce
        published = True
        if announcement is not None:
            published = await self._announce(job, announcement)
            if published:
                self._confirm_announced(uow, job)

        return StepResult(
            job_id=job_id,
            published=published,
            next_job_id=announcement.job_id if announcement else None,
        )

    def _fail(self, uow: UoW, repo: Any, job: Job, cause: Exception) -> DomainError:
        stage = self.stage.stage
        message = f"{stage} failed: {cause}"
        logger.error("%s job %s attempt %s failed: %s", stage, job.id, job.attempt_count, cause)

        critical = self._record_failure(uow, repo, job, message)
        if critical is not None:
            return critical

        retryable = getattr(cause, "retryable", True) and job.should_retry()
        if job.should_retry():
            logger.info("%s job %s failed but retryable, %s attempts left", stage, job.id, job.attempts_remaining())
        else:
            logger.error("%s job %s permanently failed after %s attempts", stage, job.id, job.attempt_count)
        return StepFailed(message, code=self.stage.failure_code, retryable=retryable)

    def _record_failure(self, uow: UoW, repo: Any, job: Job, message: str) -> Optional[CriticalInconsistency]:
        # без этой записи задача навсегда останется IN_PROGRESS
        try:
            job.fail(message)
            repo.update(job)
            uow.commit()
        except Exception as e:
            uow.rollback()
            logger.critical(
                "critical: %s job %s failure not recorded, job left in progress: %s",
                self.stage.stage, job.id, e,
            )
            return CriticalInconsistency(
                f"critical: {self.stage.stage} job {job.id} failure not recorded: {e}"
            )
        return None

    def _confirm_announced(self, uow: UoW, job: Job) -> None:
        # без отметки reconcile повторит анонс
        try:
            self.stage.confirm_announced(uow, job)
            uow.commit()
        except Exception as e:
            uow.rollback()
            logger.warning(
                "%s job %s announced but confirmation not recorded: %s",
                self.stage.stage, job.id, e,
            )

    async def _announce(self, job: Job, announcement: Announcement) -> bool:
        """
        Публикация с повторами по publish_policy. Завершение не откатывается:
        неопубликованную задачу подберёт reconcile.
        """
        async def _publish() -> None:
            await self.publisher.publish(announcement.queue, announcement.message)

        try:
            await retry_async(
                _publish,
                self.publish_policy,
                describe=f"publish to {announcement.queue}",
            )
        except Exception as e:
            logger.critical(
                "%s job %s completed but announcement to %s failed, left for reconciliation: %s",
                self.stage.stage, job.id, announcement.queue, e,
            )
            return False
        return True
