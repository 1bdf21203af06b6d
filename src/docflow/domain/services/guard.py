from datetime import datetime, timedelta, timezone
from typing import Callable

from src.docflow.domain.errors import RequestValidationError
from src.docflow.domain.value_objects import InboundRequest

DEFAULT_MAX_MESSAGE_AGE = timedelta(hours=24)


class FreshnessGuard:
    """
    Отсекает заведомо некорректные и просроченные сообщения до любого
    обращения к репозиторию. Дубликаты здесь не ищутся: их отсекает
    Job.can_start() / start().
    """

    def __init__(
        self,
        max_age: timedelta = DEFAULT_MAX_MESSAGE_AGE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.max_age = max_age
        self._clock = clock

    def validate(self, req: InboundRequest) -> None:
        if not req.event_id:
            raise RequestValidationError("event_id is required")
        if req.job_id <= 0:
            raise RequestValidationError(f"invalid job id: {req.job_id}")
        if req.timestamp is None:
            raise RequestValidationError("timestamp is required")

        age = self._clock() - req.timestamp
        if age > self.max_age:
            raise RequestValidationError(
                f"request timestamp is too old: {req.timestamp.isoformat()}"
            )
