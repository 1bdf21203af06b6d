from __future__ import annotations

from typing import Optional

from src.docflow.domain.enums import OutcomeCode


class DomainError(Exception):
    """
    Базовая ошибка домена.
    code и retryable определяют, что увидит транспорт.
    """
    code: OutcomeCode = OutcomeCode.PROCESSING_ERROR
    retryable: bool = True

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[OutcomeCode] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable

    @property
    def message(self) -> str:
        return str(self)


# state machine
class StateTransitionError(DomainError):
    code = OutcomeCode.INVALID_STATE
    retryable = False


class AlreadyCompleted(StateTransitionError):
    """job already completed"""


class AlreadyInProgress(StateTransitionError):
    """job already in progress"""


class NotInProgress(StateTransitionError):
    """job is not in progress"""


class InvalidStateTransition(StateTransitionError):
    """invalid job state transition"""


class MaxAttemptsExceeded(StateTransitionError):
    """maximum job attempts exceeded"""
    code = OutcomeCode.MAX_ATTEMPTS_EXCEEDED


class ConcurrentUpdateError(AlreadyInProgress):
    """job row was changed by another worker"""


class ResultValidationError(DomainError):
    """required result field is empty"""
    retryable = False


# inbound
class InvalidPayload(DomainError):
    """failed to parse inbound request"""
    code = OutcomeCode.INVALID_PAYLOAD
    retryable = False


class RequestValidationError(DomainError):
    """inbound request rejected"""
    code = OutcomeCode.VALIDATION_ERROR
    retryable = False


class JobNotFound(DomainError):
    """job not found"""
    code = OutcomeCode.JOB_NOT_FOUND
    retryable = False


# pipeline
class StepFailed(DomainError):
    """pipeline step failed"""


class CriticalInconsistency(DomainError):
    """critical: side effect outcome unrecorded"""
    code = OutcomeCode.CRITICAL_INCONSISTENCY
    retryable = False


# collaborators
class DownloadError(DomainError):
    code = OutcomeCode.DOWNLOAD_FAILED

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message, retryable=retryable)
        self.url = url
        self.status_code = status_code


class StorageError(DomainError):
    """object storage operation failed"""


class PublishError(DomainError):
    """failed to publish message"""
