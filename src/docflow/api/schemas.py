from typing import Any, Optional

from pydantic import BaseModel, Field


# Batch event (SQS-shaped)
class BatchRecord(BaseModel):
    messageId: str
    body: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    messageAttributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def redelivered(self) -> bool:
        try:
            return int(self.attributes.get("ApproximateReceiveCount", 1)) > 1
        except (TypeError, ValueError):
            return False


class BatchEvent(BaseModel):
    Records: list[BatchRecord]


class BatchItemFailure(BaseModel):
    itemIdentifier: str


class BatchResponse(BaseModel):
    batchItemFailures: list[BatchItemFailure] = Field(default_factory=list)


# Direct invocation
class ErrorInfo(BaseModel):
    code: str
    message: str
    retryable: bool


class InvokeResponse(BaseModel):
    success: bool
    error: Optional[ErrorInfo] = None
