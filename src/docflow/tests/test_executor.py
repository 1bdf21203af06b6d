import anyio
import pytest

from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.entities.process_job import ProcessJob
from src.docflow.domain.enums import JobStatus
from src.docflow.domain.errors import (
    AlreadyInProgress,
    CriticalInconsistency,
    JobNotFound,
    MaxAttemptsExceeded,
    StepFailed,
)
from src.docflow.domain.services.storage_path import sha256_hex
from src.docflow.domain.value_objects import Delivery, ObjectMetadata
from src.docflow.services.pipeline import StepExecutor
from src.docflow.services.stages import DownloadStage

from src.docflow.tests.fakes import FAST_POLICY, PDF_BYTES, RecordingPublisher, ScriptedDownloader, download_error


@pytest.mark.anyio
async def test_happy_path_completes_and_publishes_once(executor, state, publisher, store):
    result = await executor.execute(42)

    job = state.downloads[42]
    assert job.status == JobStatus.COMPLETED
    assert job.attempt_count == 1
    assert job.started_at is not None
    assert job.completed_at is not None
    assert job.storage_path == "trailofbits/10_uniswap_v4_core_review.pdf"
    assert job.file_hash == sha256_hex(PDF_BYTES)
    assert job.file_extension == "pdf"

    assert job.storage_path in store.objects
    assert len(publisher.published) == 1
    queue, message = publisher.published[0]
    assert queue == "process-queue"
    assert message["event_type"] == "process.requested"
    assert message["process_id"] == result.next_job_id

    process = state.processes[result.next_job_id]
    assert process.status == JobStatus.PENDING
    assert process.download_id == 42
    assert result.published is True
    assert state.closed == 1


@pytest.mark.anyio
async def test_fails_twice_then_succeeds(state, store, publisher, uow_factory):
    downloader = ScriptedDownloader(download_error("timeout 1"), download_error("timeout 2"))
    executor = StepExecutor(
        DownloadStage(downloader, store, process_queue="process-queue"),
        uow_factory, publisher, publish_policy=FAST_POLICY, max_attempts=3,
    )

    for expected_attempt in (1, 2):
        with pytest.raises(StepFailed) as exc:
            await executor.execute(42)
        assert exc.value.retryable is True
        job = state.downloads[42]
        assert job.status == JobStatus.FAILED
        assert job.attempt_count == expected_attempt
        assert f"timeout {expected_attempt}" in job.error_message

    await executor.execute(42)

    job = state.downloads[42]
    assert job.status == JobStatus.COMPLETED
    assert job.attempt_count == 3
    assert job.error_message is None
    assert [h[2] for h in state.history if h[0] == 42] == [1, 1, 2, 2, 3, 3]
    assert len(publisher.published) == 1


@pytest.mark.anyio
async def test_last_attempt_failure_is_not_retryable(state, store, publisher, uow_factory):
    state.downloads[42] = DownloadJob(id=42, parent_id=10, status=JobStatus.FAILED, attempt_count=2)
    executor = StepExecutor(
        DownloadStage(ScriptedDownloader(download_error()), store, process_queue="q"),
        uow_factory, publisher, publish_policy=FAST_POLICY, max_attempts=3,
    )

    with pytest.raises(StepFailed) as exc:
        await executor.execute(42)

    assert exc.value.retryable is False
    assert state.downloads[42].attempt_count == 3
    assert state.downloads[42].status == JobStatus.FAILED

    with pytest.raises(MaxAttemptsExceeded):
        await executor.execute(42)
    assert state.downloads[42].attempt_count == 3


@pytest.mark.anyio
async def test_completed_job_is_skipped_without_changes(executor, state, publisher, downloader):
    await executor.execute(42)
    before = state.downloads[42]
    updates = state.update_calls

    result = await executor.execute(42)

    assert result.skipped is True
    after = state.downloads[42]
    assert after.updated_at == before.updated_at
    assert after.storage_path == before.storage_path
    assert state.update_calls == updates
    assert len(downloader.calls) == 1
    assert len(publisher.published) == 1


@pytest.mark.anyio
async def test_in_progress_job_is_rejected_without_side_effect(executor, state, downloader):
    state.downloads[42] = DownloadJob(id=42, parent_id=10, status=JobStatus.IN_PROGRESS, attempt_count=1)

    with pytest.raises(AlreadyInProgress):
        await executor.execute(42)

    assert downloader.calls == []
    assert state.update_calls == 0


@pytest.mark.anyio
async def test_missing_job(executor):
    with pytest.raises(JobNotFound):
        await executor.execute(999)


@pytest.mark.anyio
async def test_lost_claim_race_does_not_run_side_effect(executor, state, downloader):
    # другой воркер успел записать claim между чтением и записью
    original_get = executor.stage.jobs

    def jobs(uow):
        repo = original_get(uow)
        real_get = repo.get

        def racing_get(job_id):
            job = real_get(job_id)
            state.downloads[job_id] = DownloadJob(
                id=job_id, parent_id=10, status=JobStatus.IN_PROGRESS, attempt_count=1,
            )
            return job

        repo.get = racing_get
        return repo

    executor.stage.jobs = jobs

    with pytest.raises(AlreadyInProgress):
        await executor.execute(42)
    assert downloader.calls == []
    assert state.rollbacks == 1


@pytest.mark.anyio
async def test_failure_not_persisted_is_critical(executor, state, store):
    store.fail_put = OSError("disk full")
    state.fail_update = lambda job: job.status == JobStatus.FAILED

    with pytest.raises(CriticalInconsistency) as exc:
        await executor.execute(42)

    assert exc.value.retryable is False
    # строка осталась IN_PROGRESS (zombie), о чём сообщено как о critical
    assert state.downloads[42].status == JobStatus.IN_PROGRESS


@pytest.mark.anyio
async def test_completion_not_persisted_is_critical(executor, state, store, publisher):
    state.fail_update = lambda job: job.status == JobStatus.COMPLETED

    with pytest.raises(CriticalInconsistency):
        await executor.execute(42)

    assert store.put_calls == 1
    assert publisher.published == []


@pytest.mark.anyio
async def test_publish_retried_then_succeeds(state, uow_factory, download_stage):
    publisher = RecordingPublisher(failures=2)
    executor = StepExecutor(download_stage, uow_factory, publisher, publish_policy=FAST_POLICY)

    result = await executor.execute(42)

    assert result.published is True
    assert publisher.attempts == 3
    assert len(publisher.published) == 1


@pytest.mark.anyio
async def test_publish_failure_keeps_completion(state, uow_factory, download_stage):
    publisher = RecordingPublisher(failures=10)
    executor = StepExecutor(download_stage, uow_factory, publisher, publish_policy=FAST_POLICY)

    result = await executor.execute(42)

    assert result.published is False
    assert publisher.attempts == FAST_POLICY.max_attempts
    assert state.downloads[42].status == JobStatus.COMPLETED
    # следующая задача уже записана, её подберёт reconcile
    assert state.processes[result.next_job_id].status == JobStatus.PENDING


@pytest.mark.anyio
async def test_cancellation_after_claim_persists_failure(state, uow_factory, store, publisher):
    class HangingDownloader:
        async def fetch(self, url):
            await anyio.sleep_forever()

    executor = StepExecutor(
        DownloadStage(HangingDownloader(), store, process_queue="q"),
        uow_factory, publisher, publish_policy=FAST_POLICY,
    )

    with anyio.move_on_after(0.05):
        await executor.execute(42)

    job = state.downloads[42]
    assert job.status == JobStatus.FAILED
    assert job.attempt_count == 1
    assert "cancelled" in job.error_message


@pytest.mark.anyio
async def test_process_stage_verifies_checksum(state, store, publisher, uow_factory, process_stage):
    await store.put("trailofbits/10_x.pdf", PDF_BYTES, ObjectMetadata("application/pdf"))
    state.downloads[42] = DownloadJob(
        id=42, parent_id=10, status=JobStatus.COMPLETED, attempt_count=1,
        storage_path="trailofbits/10_x.pdf", file_hash=sha256_hex(PDF_BYTES), file_extension="pdf",
    )
    state.processes[7] = ProcessJob(id=7, parent_id=42)
    executor = StepExecutor(process_stage, uow_factory, publisher, publish_policy=FAST_POLICY)

    await executor.execute(7)

    assert state.processes[7].status == JobStatus.COMPLETED
    assert state.processes[7].processor_version == "v1.2.0"
    queue, message = publisher.published[0]
    assert queue == "extract-queue"
    assert message["event_type"] == "extract.requested"
    assert message["storage_path"] == "trailofbits/10_x.pdf"
    assert message["download_id"] == 42
    assert state.processes[7].is_extract_announced()


@pytest.mark.anyio
async def test_process_stage_checksum_mismatch_fails(state, store, publisher, uow_factory, process_stage):
    await store.put("trailofbits/10_x.pdf", b"tampered", ObjectMetadata("application/pdf"))
    state.downloads[42] = DownloadJob(
        id=42, parent_id=10, status=JobStatus.COMPLETED, attempt_count=1,
        storage_path="trailofbits/10_x.pdf", file_hash=sha256_hex(PDF_BYTES), file_extension="pdf",
    )
    state.processes[7] = ProcessJob(id=7, parent_id=42)
    executor = StepExecutor(process_stage, uow_factory, publisher, publish_policy=FAST_POLICY)

    with pytest.raises(StepFailed):
        await executor.execute(7)

    assert state.processes[7].status == JobStatus.FAILED
    assert "checksum mismatch" in state.processes[7].error_message
    assert publisher.published == []


@pytest.mark.anyio
async def test_service_reports_duplicate_as_success(service, state, make_body):
    await service.handle(Delivery(message_id="m1", body=make_body()))
    outcome = await service.handle(Delivery(message_id="m2", body=make_body(event_id="e2")))

    assert outcome.success is True
    assert state.downloads[42].attempt_count == 1
