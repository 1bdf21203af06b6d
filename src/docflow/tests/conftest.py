from datetime import datetime, timezone
from typing import Any

import pytest

from src.docflow.domain.entities.audit_report import AuditProvider, AuditReport
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.domain.services.guard import FreshnessGuard
from src.docflow.services.consumer import ConsumptionService
from src.docflow.services.pipeline import StepExecutor
from src.docflow.services.stages import DownloadStage, ProcessStage

from src.docflow.tests.fakes import (
    FAST_POLICY,
    MemoryState,
    MemoryStore,
    MemoryUoW,
    RecordingPublisher,
    ScriptedDownloader,
)

@pytest.fixture
def anyio_backend():
    return "asyncio"

@pytest.fixture
def state() -> MemoryState:
    s = MemoryState()
    s.providers[1] = AuditProvider(id=1, name="Trail of Bits", slug="trailofbits")
    s.reports[10] = AuditReport(
        id=10,
        provider_id=1,
        title="Uniswap V4 Core Review",
        source_download_url="https://example.org/report.pdf",
    )
    s.downloads[42] = DownloadJob(id=42, parent_id=10, created_at=datetime.now(timezone.utc))
    return s

@pytest.fixture
def uow_factory(state):
    return lambda: MemoryUoW(state)

@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()

@pytest.fixture
def downloader() -> ScriptedDownloader:
    return ScriptedDownloader()

@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()

@pytest.fixture
def download_stage(downloader, store) -> DownloadStage:
    return DownloadStage(downloader, store, process_queue="process-queue")

@pytest.fixture
def process_stage(store) -> ProcessStage:
    return ProcessStage(store, extract_queue="extract-queue", processor_version="v1.2.0")

@pytest.fixture
def executor(download_stage, uow_factory, publisher) -> StepExecutor:
    return StepExecutor(download_stage, uow_factory, publisher, publish_policy=FAST_POLICY, max_attempts=3)

@pytest.fixture
def service(executor) -> ConsumptionService:
    return ConsumptionService(executor, FreshnessGuard())

@pytest.fixture
def make_body():
    def _make(job_id: int = 42, event_id: str = "e1", timestamp: Any = None, key: str = "download_id") -> dict:
        if timestamp is None:
            timestamp = datetime.now(timezone.utc).isoformat()
        return {
            "event_id": event_id,
            "event_type": "download.requested",
            key: job_id,
            "timestamp": timestamp,
        }

    return _make
