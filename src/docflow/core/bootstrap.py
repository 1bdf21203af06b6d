"""
Явная сборка зависимостей: всё создаётся один раз при старте процесса
и передаётся по ссылке. Глобальных провайдеров нет.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from faststream.rabbit import RabbitBroker
from sqlalchemy.engine import Engine

from src.docflow.core.settings import Settings
from src.docflow.domain.contracts.ports import Downloader, ObjectStore, Publisher
from src.docflow.domain.contracts.uow import UoW
from src.docflow.domain.enums import Stage
from src.docflow.domain.services.guard import FreshnessGuard
from src.docflow.infra.db import make_engine, make_session_factory
from src.docflow.infra.downloader import HttpDownloader
from src.docflow.infra.mq import RabbitPublisher, make_broker
from src.docflow.infra.storage import FilesystemObjectStore
from src.docflow.infra.uow import make_uow_factory
from src.docflow.services.consumer import BatchConsumer, ConsumptionService, SingleDeliveryConsumer
from src.docflow.services.pipeline import StepExecutor
from src.docflow.services.reconcile import Reconciler
from src.docflow.services.stages import DownloadStage, ProcessStage


@dataclass
class Pipeline:
    services: dict[Stage, ConsumptionService]
    reconciler: Reconciler
    settings: Settings

    def batch(self, stage: Stage) -> BatchConsumer:
        return BatchConsumer(
            self.services[Stage(stage)],
            partial_failure=self.settings.PARTIAL_BATCH_FAILURE,
            concurrency=self.settings.BATCH_CONCURRENCY,
        )

    def single(self, stage: Stage) -> SingleDeliveryConsumer:
        return SingleDeliveryConsumer(self.services[Stage(stage)])


def build_pipeline(
    settings: Settings,
    uow_factory: Callable[[], UoW],
    store: ObjectStore,
    downloader: Downloader,
    publisher: Publisher,
) -> Pipeline:
    policy = settings.retry_policy()
    guard = FreshnessGuard(max_age=settings.max_message_age())

    stages = {
        Stage.DOWNLOAD: DownloadStage(downloader, store, process_queue=settings.PROCESS_QUEUE),
        Stage.PROCESS: ProcessStage(
            store,
            extract_queue=settings.EXTRACT_QUEUE,
            processor_version=settings.PROCESSOR_VERSION,
        ),
    }
    services = {
        stage: ConsumptionService(
            StepExecutor(
                handler,
                uow_factory,
                publisher,
                publish_policy=policy,
                max_attempts=settings.MAX_ATTEMPTS,
            ),
            guard,
            step_timeout=settings.STEP_TIMEOUT or None,
        )
        for stage, handler in stages.items()
    }
    reconciler = Reconciler(
        uow_factory,
        publisher,
        download_queue=settings.DOWNLOAD_QUEUE,
        process_queue=settings.PROCESS_QUEUE,
        extract_queue=settings.EXTRACT_QUEUE,
        max_attempts=settings.MAX_ATTEMPTS,
    )
    return Pipeline(services=services, reconciler=reconciler, settings=settings)


@dataclass
class Container:
    settings: Settings
    broker: RabbitBroker
    pipeline: Pipeline
    engine: Engine
    downloader: HttpDownloader

    async def aclose(self) -> None:
        await self.downloader.aclose()
        self.engine.dispose()


def build_container(settings: Settings, broker: Optional[RabbitBroker] = None) -> Container:
    """
    Реальная инфраструктура: Postgres/SQLite, каталог хранилища, httpx, RabbitMQ.
    Брокер подключает вызывающий (worker / lifespan FastAPI).
    """
    engine = make_engine(settings.DATABASE_URL, pool_size=settings.DB_POOL_SIZE)
    session_factory = make_session_factory(engine)

    broker = broker or make_broker(settings.RABBIT_URL, prefetch_count=settings.PREFETCH_COUNT)
    downloader = HttpDownloader(
        client=httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, follow_redirects=True),
        policy=settings.retry_policy(),
        user_agent=settings.HTTP_USER_AGENT,
        max_file_size=settings.MAX_FILE_SIZE,
    )
    pipeline = build_pipeline(
        settings,
        uow_factory=make_uow_factory(session_factory),
        store=FilesystemObjectStore(settings.STORAGE_ROOT),
        downloader=downloader,
        publisher=RabbitPublisher(broker),
    )
    return Container(
        settings=settings,
        broker=broker,
        pipeline=pipeline,
        engine=engine,
        downloader=downloader,
    )
