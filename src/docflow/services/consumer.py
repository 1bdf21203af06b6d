from __future__ import annotations

import logging
from typing import Optional, Sequence

import anyio

from src.docflow.domain.enums import OutcomeCode
from src.docflow.domain.errors import (
    AlreadyCompleted,
    AlreadyInProgress,
    CriticalInconsistency,
    DomainError,
    InvalidPayload,
    MaxAttemptsExceeded,
    RequestValidationError,
)
from src.docflow.domain.services.guard import FreshnessGuard
from src.docflow.domain.value_objects import Ack, BatchOutcome, Delivery, Outcome
from src.docflow.services.envelope import parse_delivery
from src.docflow.services.pipeline import StepExecutor

logger = logging.getLogger(__name__)


class BatchFailed(Exception):
    """Режим all-or-nothing: первая ошибка прерывает батч."""

    def __init__(self, item_id: str, outcome: Outcome, batch: BatchOutcome):
        super().__init__(
            f"batch processing failed at message {item_id}: {outcome.code}: {outcome.message}"
        )
        self.item_id = item_id
        self.outcome = outcome
        self.batch = batch


class ConsumptionService:
    """
    parse -> guard -> execute для одной доставки.
    Переводит исключения в Outcome; решение об ack принимает движок выше.
    """

    def __init__(
        self,
        executor: StepExecutor,
        guard: FreshnessGuard,
        step_timeout: Optional[float] = None,
    ):
        self.executor = executor
        self.guard = guard
        self.step_timeout = step_timeout

    async def handle(self, delivery: Delivery) -> Outcome:
        try:
            req = parse_delivery(delivery)
        except InvalidPayload as e:
            logger.warning("invalid payload in message %s: %s", delivery.message_id, e)
            return Outcome.error(e.code, e.message, retryable=False)

        try:
            self.guard.validate(req)
        except RequestValidationError as e:
            logger.warning(
                "rejected request event_id=%s job_id=%s event_type=%s: %s",
                req.event_id, req.job_id, req.event_type, e,
            )
            return Outcome.error(e.code, e.message, retryable=False)

        logger.info(
            "processing event_id=%s job_id=%s event_type=%s",
            req.event_id, req.job_id, req.event_type,
        )

        try:
            with anyio.fail_after(self.step_timeout):
                result = await self.executor.execute(req.job_id)

        except (AlreadyInProgress, AlreadyCompleted) as e:
            logger.info("event_id=%s job_id=%s: duplicate delivery, %s", req.event_id, req.job_id, e)
            return Outcome.ok(message=e.message)

        except MaxAttemptsExceeded as e:
            logger.error("event_id=%s job_id=%s: %s", req.event_id, req.job_id, e)
            return Outcome.error(e.code, e.message, retryable=False)

        except CriticalInconsistency as e:
            logger.critical("event_id=%s job_id=%s: %s", req.event_id, req.job_id, e)
            return Outcome.error(e.code, e.message, retryable=False)

        except DomainError as e:
            logger.error("event_id=%s job_id=%s failed: %s", req.event_id, req.job_id, e)
            return Outcome.error(e.code, e.message, e.retryable)

        except TimeoutError:
            logger.error(
                "event_id=%s job_id=%s: step timed out after %ss",
                req.event_id, req.job_id, self.step_timeout,
            )
            return Outcome.error(OutcomeCode.PROCESSING_ERROR, "step timed out", retryable=True)

        except Exception as e:
            logger.exception("event_id=%s job_id=%s: unexpected error", req.event_id, req.job_id)
            return Outcome.error(OutcomeCode.PROCESSING_ERROR, str(e), retryable=True)

        if result.skipped:
            return Outcome.ok(message="already completed")
        return Outcome.ok(published=result.published)


class BatchConsumer:
    """
    Батч доставок (serverless batch event). Элементы - независимые домены отказа.

    partial_failure=True: возвращает id упавших элементов, ошибки наружу нет.
    partial_failure=False: первая ошибка поднимается как BatchFailed, уже
    обработанные элементы не откатываются.
    """

    def __init__(self, service: ConsumptionService, partial_failure: bool = True, concurrency: int = 1):
        self.service = service
        self.partial_failure = partial_failure
        self.concurrency = max(1, concurrency)

    async def process_batch(self, deliveries: Sequence[Delivery]) -> BatchOutcome:
        batch = BatchOutcome(total_count=len(deliveries))
        logger.info(
            "processing batch of %s messages (partial_failure=%s)",
            batch.total_count, self.partial_failure,
        )

        if self.partial_failure and self.concurrency > 1:
            outcomes = await self._run_parallel(deliveries)
        else:
            outcomes = []
            for i, delivery in enumerate(deliveries):
                logger.info("processing message %s (%s/%s)", delivery.message_id, i + 1, batch.total_count)
                outcome = await self.service.handle(delivery)
                outcomes.append(outcome)
                if not outcome.success and not self.partial_failure:
                    self._record(batch, deliveries[: i + 1], outcomes)
                    logger.error("batch aborted at message %s: %s", delivery.message_id, outcome.message)
                    raise BatchFailed(delivery.message_id, outcome, batch)

        self._record(batch, deliveries, outcomes)
        logger.info(
            "batch complete: total=%s success=%s failure=%s",
            batch.total_count, batch.success_count, batch.failure_count,
        )
        return batch

    async def _run_parallel(self, deliveries: Sequence[Delivery]) -> list[Outcome]:
        outcomes: list[Optional[Outcome]] = [None] * len(deliveries)
        limiter = anyio.CapacityLimiter(self.concurrency)

        async def _one(i: int, delivery: Delivery) -> None:
            async with limiter:
                outcomes[i] = await self.service.handle(delivery)

        async with anyio.create_task_group() as tg:
            for i, delivery in enumerate(deliveries):
                tg.start_soon(_one, i, delivery)
        return outcomes

    @staticmethod
    def _record(batch: BatchOutcome, deliveries: Sequence[Delivery], outcomes: Sequence[Outcome]) -> None:
        for delivery, outcome in zip(deliveries, outcomes):
            if outcome.success:
                batch.success_count += 1
            else:
                batch.failure_count += 1
                batch.failed_item_ids.append(delivery.message_id)


class SingleDeliveryConsumer:
    """
    Одно сообщение постоянного соединения:
    успех -> ack; ошибка -> nack с requeue один раз, на повторной доставке -
    nack без requeue (дальше dead-letter routing брокера).
    """

    def __init__(self, service: ConsumptionService):
        self.service = service

    async def process_one(self, delivery: Delivery) -> Ack:
        outcome = await self.service.handle(delivery)
        if outcome.success:
            return Ack.acknowledge()

        requeue = not delivery.redelivered
        logger.error(
            "message %s failed (%s: %s), requeue=%s",
            delivery.message_id, outcome.code, outcome.message, requeue,
        )
        return Ack.negative(requeue=requeue)
