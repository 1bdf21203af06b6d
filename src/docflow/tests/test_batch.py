from datetime import datetime, timezone

import anyio
import pytest

from src.docflow.domain.entities.audit_report import AuditReport
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.enums import JobStatus
from src.docflow.domain.services.guard import FreshnessGuard
from src.docflow.domain.value_objects import Delivery, DownloadResult
from src.docflow.services.consumer import BatchConsumer, BatchFailed, ConsumptionService
from src.docflow.services.pipeline import StepExecutor
from src.docflow.services.stages import DownloadStage

from src.docflow.tests.fakes import FAST_POLICY, PDF_BYTES, download_error


class UrlDownloader:
    def __init__(self, failing: set[str]):
        self.failing = failing
        self.calls: list[str] = []

    async def fetch(self, url: str) -> DownloadResult:
        self.calls.append(url)
        if url in self.failing:
            raise download_error(f"503 from {url}")
        return DownloadResult(content=PDF_BYTES, content_type="application/pdf", url=url)


@pytest.fixture
def five_jobs(state):
    for i in range(1, 6):
        state.reports[100 + i] = AuditReport(
            id=100 + i, provider_id=1, title=f"Report {i}",
            source_download_url=f"https://example.org/{i}.pdf",
        )
        state.downloads[i] = DownloadJob(id=i, parent_id=100 + i)
    return state


def _service(uow_factory, store, publisher, failing: set[int]) -> tuple[ConsumptionService, UrlDownloader]:
    downloader = UrlDownloader({f"https://example.org/{i}.pdf" for i in failing})
    executor = StepExecutor(
        DownloadStage(downloader, store, process_queue="process-queue"),
        uow_factory, publisher, publish_policy=FAST_POLICY,
    )
    return ConsumptionService(executor, FreshnessGuard()), downloader


def _deliveries() -> list[Delivery]:
    now = datetime.now(timezone.utc).isoformat()
    return [
        Delivery(
            message_id=str(i),
            body={"event_id": f"e{i}", "event_type": "download.requested", "download_id": i, "timestamp": now},
        )
        for i in range(1, 6)
    ]


@pytest.mark.anyio
async def test_partial_failure_reports_failed_items(five_jobs, uow_factory, store, publisher):
    service, _ = _service(uow_factory, store, publisher, failing={2, 4})

    outcome = await BatchConsumer(service, partial_failure=True).process_batch(_deliveries())

    assert outcome.total_count == 5
    assert outcome.success_count == 3
    assert outcome.failure_count == 2
    assert outcome.failed_item_ids == ["2", "4"]
    assert outcome.to_response() == {
        "batchItemFailures": [{"itemIdentifier": "2"}, {"itemIdentifier": "4"}]
    }
    assert five_jobs.downloads[2].status == JobStatus.FAILED
    assert five_jobs.downloads[5].status == JobStatus.COMPLETED
    assert len(publisher.published) == 3


@pytest.mark.anyio
async def test_partial_failure_with_concurrency(five_jobs, uow_factory, store, publisher):
    service, _ = _service(uow_factory, store, publisher, failing={2, 4})

    outcome = await BatchConsumer(service, partial_failure=True, concurrency=3).process_batch(_deliveries())

    assert outcome.success_count == 3
    assert sorted(outcome.failed_item_ids) == ["2", "4"]


@pytest.mark.anyio
async def test_all_or_nothing_aborts_on_first_failure(five_jobs, uow_factory, store, publisher):
    service, downloader = _service(uow_factory, store, publisher, failing={2, 4})

    with pytest.raises(BatchFailed) as exc:
        await BatchConsumer(service, partial_failure=False).process_batch(_deliveries())

    assert exc.value.item_id == "2"
    assert exc.value.batch.success_count == 1
    assert exc.value.batch.failed_item_ids == ["2"]
    # первый элемент не откатывается, остальные не трогаются
    assert five_jobs.downloads[1].status == JobStatus.COMPLETED
    assert five_jobs.downloads[3].status == JobStatus.PENDING
    assert len(downloader.calls) == 2


@pytest.mark.anyio
async def test_unparsable_item_counts_as_failure(five_jobs, uow_factory, store, publisher):
    service, _ = _service(uow_factory, store, publisher, failing=set())
    deliveries = _deliveries()[:2] + [Delivery(message_id="bad", body="{not json")]

    outcome = await BatchConsumer(service).process_batch(deliveries)

    assert outcome.success_count == 2
    assert outcome.failed_item_ids == ["bad"]


@pytest.mark.anyio
async def test_empty_batch(service):
    outcome = await BatchConsumer(service).process_batch([])

    assert outcome.total_count == 0
    assert outcome.to_response() == {"batchItemFailures": []}


@pytest.mark.anyio
@pytest.mark.parametrize("concurrency", [1, 3])
@pytest.mark.parametrize("timestamp", [1e20, float("inf")])
async def test_out_of_range_timestamp_fails_only_its_item(five_jobs, uow_factory, store, publisher, concurrency, timestamp):
    service, _ = _service(uow_factory, store, publisher, failing=set())
    bad = Delivery(
        message_id="bad",
        body={"event_id": "e-bad", "download_id": 1, "timestamp": timestamp},
    )
    deliveries = [bad] + _deliveries()[1:3]

    outcome = await BatchConsumer(service, concurrency=concurrency).process_batch(deliveries)

    assert outcome.failed_item_ids == ["bad"]
    assert outcome.success_count == 2
    assert five_jobs.downloads[1].status == JobStatus.PENDING


class SlowDownloader(UrlDownloader):
    async def fetch(self, url: str) -> DownloadResult:
        self.calls.append(url)
        # держит claim, пока второй элемент батча читает задачу
        await anyio.sleep(0.05)
        return DownloadResult(content=PDF_BYTES, content_type="application/pdf", url=url)


@pytest.mark.anyio
async def test_duplicate_deliveries_in_parallel_batch(five_jobs, uow_factory, store, publisher):
    downloader = SlowDownloader(set())
    executor = StepExecutor(
        DownloadStage(downloader, store, process_queue="process-queue"),
        uow_factory, publisher, publish_policy=FAST_POLICY,
    )
    service = ConsumptionService(executor, FreshnessGuard())
    first = _deliveries()[0]
    duplicate = Delivery(message_id="1-dup", body={**first.body, "event_id": "e1-dup"})

    outcome = await BatchConsumer(service, concurrency=2).process_batch([first, duplicate])

    assert outcome.success_count == 2
    assert outcome.failed_item_ids == []
    assert len(downloader.calls) == 1
    assert store.put_calls == 1
    assert len(publisher.published) == 1
    assert five_jobs.downloads[1].attempt_count == 1
    assert five_jobs.downloads[1].status == JobStatus.COMPLETED
