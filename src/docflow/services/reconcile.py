import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from src.docflow.domain.contracts.ports import Publisher
from src.docflow.domain.contracts.uow import UoW
from src.docflow.domain.entities.process_job import ProcessJob
from src.docflow.domain.enums import EventType, JobStatus
from src.docflow.domain.errors import ConcurrentUpdateError
from src.docflow.services.envelope import build_message
from src.docflow.services.stages import extract_message

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    announced: int = 0
    failed: int = 0


class Reconciler:
    """
    Повторно анонсирует задачи, сообщение о которых могло потеряться:
    - process jobs, созданные давно и ни разу не стартовавшие;
    - completed process jobs без подтверждённого анонса extract;
    - failed jobs, у которых ещё остались попытки.
    Повторный анонс безопасен: дубль отсечёт claim.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UoW],
        publisher: Publisher,
        download_queue: str,
        process_queue: str,
        extract_queue: str,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.download_queue = download_queue
        self.process_queue = process_queue
        self.extract_queue = extract_queue
        self.max_attempts = max_attempts
        self._clock = clock

    async def announce_pending_downloads(self, limit: int = 100) -> ReconcileReport:
        report = ReconcileReport()
        uow = self.uow_factory()
        try:
            jobs = uow.downloads.list_by_status(JobStatus.PENDING, limit=limit)
        finally:
            uow.close()

        for job in jobs:
            await self._publish(
                report, self.download_queue,
                build_message(EventType.DOWNLOAD_REQUESTED, download_id=job.id),
            )
        return report

    async def sweep(self, older_than: timedelta, limit: int = 100) -> ReconcileReport:
        report = ReconcileReport()
        cutoff = self._clock() - older_than
        uow = self.uow_factory()
        try:
            stale = uow.processes.list_stale_pending(cutoff, limit=limit)
            failed_downloads = uow.downloads.list_by_status(JobStatus.FAILED, limit=limit)
            failed_processes = uow.processes.list_by_status(JobStatus.FAILED, limit=limit)
            unannounced = [
                (job, extract_message(job, uow.downloads.get(job.download_id)))
                for job in uow.processes.list_unannounced_completed(cutoff, limit=limit)
            ]
        finally:
            uow.close()

        for job in stale:
            await self._publish(
                report, self.process_queue,
                build_message(EventType.PROCESS_REQUESTED, process_id=job.id),
            )

        for job, message in unannounced:
            if await self._publish(report, self.extract_queue, message):
                self._confirm_extract_announced(job)

        for job in failed_downloads:
            job.max_attempts = self.max_attempts
            if job.should_retry():
                await self._publish(
                    report, self.download_queue,
                    build_message(EventType.DOWNLOAD_RETRY, download_id=job.id),
                )

        for job in failed_processes:
            job.max_attempts = self.max_attempts
            if job.should_retry():
                await self._publish(
                    report, self.process_queue,
                    build_message(EventType.PROCESS_RETRY, process_id=job.id),
                )

        logger.info("reconcile sweep: announced=%s failed=%s", report.announced, report.failed)
        return report

    async def _publish(self, report: ReconcileReport, queue: str, message: dict) -> bool:
        try:
            await self.publisher.publish(queue, message)
        except Exception as e:
            report.failed += 1
            logger.error("failed to announce %s to %s: %s", message.get("event_type"), queue, e)
            return False
        report.announced += 1
        return True

    def _confirm_extract_announced(self, job: ProcessJob) -> None:
        uow = self.uow_factory()
        try:
            job.mark_extract_announced()
            uow.processes.update(job)
            uow.commit()
        except ConcurrentUpdateError:
            uow.rollback()
            logger.info("process job %s changed during sweep, confirmation skipped", job.id)
        except Exception as e:
            uow.rollback()
            logger.warning("process job %s announced but confirmation not recorded: %s", job.id, e)
        finally:
            uow.close()
