import logging
from typing import Optional

from src.docflow.domain.contracts.ports import Downloader, ObjectStore
from src.docflow.domain.contracts.uow import UoW
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.entities.process_job import ProcessJob
from src.docflow.domain.enums import EventType, OutcomeCode, Stage
from src.docflow.domain.errors import StepFailed
from src.docflow.domain.services.storage_path import determine_extension, generate_path, sha256_hex
from src.docflow.domain.value_objects import ObjectMetadata
from src.docflow.services.envelope import build_message
from src.docflow.services.pipeline import Announcement

logger = logging.getLogger(__name__)


class DownloadStage:
    """
    download: отчёт -> провайдер -> скачивание -> object store.
    По завершении создаёт ProcessJob и анонсирует его в очередь process.
    """
    stage = Stage.DOWNLOAD
    failure_code = OutcomeCode.DOWNLOAD_FAILED

    def __init__(self, downloader: Downloader, store: ObjectStore, process_queue: str):
        self.downloader = downloader
        self.store = store
        self.process_queue = process_queue

    def jobs(self, uow: UoW):
        return uow.downloads

    async def perform(self, uow: UoW, job: DownloadJob) -> dict[str, str]:
        report = uow.reports.get(job.report_id)
        if report is None:
            raise StepFailed(f"audit report {job.report_id} not found", retryable=False)

        provider = uow.providers.get(report.provider_id)
        if provider is None:
            raise StepFailed(f"audit provider {report.provider_id} not found", retryable=False)

        logger.info("download job %s: fetching %s", job.id, report.source_download_url)
        result = await self.downloader.fetch(report.source_download_url)

        extension = determine_extension(result.url, result.content_type)
        file_hash = sha256_hex(result.content)
        key = generate_path(provider.slug, report.id, report.title, extension)

        logger.info("download job %s: storing %s (%s bytes)", job.id, key, result.size)
        await self.store.put(
            key,
            result.content,
            ObjectMetadata(
                content_type=result.content_type,
                user_metadata={
                    "report_id": str(report.id),
                    "provider": provider.slug,
                    "file_hash": file_hash,
                },
            ),
        )
        return {"storage_path": key, "file_hash": file_hash, "file_extension": extension}

    def prepare_next(self, uow: UoW, job: DownloadJob) -> Optional[Announcement]:
        process = uow.processes.get_by_download(job.id)
        if process is None:
            process = uow.processes.create(ProcessJob.new(job.id, max_attempts=job.max_attempts))
        return Announcement(
            queue=self.process_queue,
            job_id=process.id,
            message=build_message(EventType.PROCESS_REQUESTED, process_id=process.id),
        )

    def confirm_announced(self, uow: UoW, job: DownloadJob) -> None:
        # потерянный анонс виден по pending ProcessJob без попыток
        return None


class ProcessStage:
    """
    process: проверяет сохранённый файл по file_hash и передаёт его в extract.
    """
    stage = Stage.PROCESS
    failure_code = OutcomeCode.PROCESSING_ERROR

    def __init__(self, store: ObjectStore, extract_queue: str, processor_version: str):
        self.store = store
        self.extract_queue = extract_queue
        self.processor_version = processor_version

    def jobs(self, uow: UoW):
        return uow.processes

    async def perform(self, uow: UoW, job: ProcessJob) -> dict[str, str]:
        download = uow.downloads.get(job.download_id)
        if download is None:
            raise StepFailed(f"download {job.download_id} not found", retryable=False)
        if not download.is_completed() or not download.storage_path:
            raise StepFailed(f"download {job.download_id} is not completed ({download.status})")

        content = await self.store.get(download.storage_path)
        actual = sha256_hex(content)
        if actual != download.file_hash:
            raise StepFailed(
                f"checksum mismatch for {download.storage_path}: expected {download.file_hash}, got {actual}"
            )
        return {"processor_version": self.processor_version}

    def prepare_next(self, uow: UoW, job: ProcessJob) -> Optional[Announcement]:
        return Announcement(
            queue=self.extract_queue,
            message=extract_message(job, uow.downloads.get(job.download_id)),
        )

    def confirm_announced(self, uow: UoW, job: ProcessJob) -> None:
        job.mark_extract_announced()
        uow.processes.update(job)


def extract_message(job: ProcessJob, download: Optional[DownloadJob]) -> dict:
    return build_message(
        EventType.EXTRACT_REQUESTED,
        process_id=job.id,
        download_id=job.download_id,
        storage_path=download.storage_path if download else None,
        file_extension=download.file_extension if download else None,
    )
