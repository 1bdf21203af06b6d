from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from src.docflow.domain.enums import AckAction, OutcomeCode


@dataclass(frozen=True)
class InboundRequest:
    """Каноническое сообщение стадии: строится адаптером, не изменяется."""
    event_id: str
    event_type: str
    job_id: int
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class Delivery:
    """Сырая доставка от транспорта (элемент батча или одно сообщение)."""
    message_id: str
    body: Union[bytes, str, dict[str, Any]]
    redelivered: bool = False
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Outcome:
    success: bool
    code: Optional[OutcomeCode] = None
    message: str = ""
    retryable: bool = False
    published: bool = True

    @classmethod
    def ok(cls, message: str = "", published: bool = True) -> "Outcome":
        return cls(success=True, message=message, published=published)

    @classmethod
    def error(cls, code: OutcomeCode, message: str, retryable: bool) -> "Outcome":
        return cls(success=False, code=code, message=message, retryable=retryable)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "error": None}
        return {
            "success": False,
            "error": {
                "code": str(self.code),
                "message": self.message,
                "retryable": self.retryable,
            },
        }


@dataclass(frozen=True)
class Ack:
    action: AckAction

    @property
    def requeue(self) -> bool:
        return self.action == AckAction.NACK_REQUEUE

    @classmethod
    def acknowledge(cls) -> "Ack":
        return cls(AckAction.ACK)

    @classmethod
    def negative(cls, requeue: bool) -> "Ack":
        return cls(AckAction.NACK_REQUEUE if requeue else AckAction.NACK_DROP)


@dataclass
class BatchOutcome:
    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    failed_item_ids: list[str] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        # формат partial batch response (SQS)
        return {"batchItemFailures": [{"itemIdentifier": i} for i in self.failed_item_ids]}


@dataclass(frozen=True)
class StepResult:
    job_id: int
    skipped: bool = False
    published: bool = True
    next_job_id: Optional[int] = None


@dataclass(frozen=True)
class DownloadResult:
    content: bytes
    content_type: str
    url: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class ObjectMetadata:
    content_type: str = "application/octet-stream"
    user_metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.1
    max_backoff: float = 10.0
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.multiplier < 1.0:
            raise ValueError("backoff multiplier must be >= 1.0")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff must be non-negative")
