from enum import StrEnum

class JobStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

class Stage(StrEnum):
    DOWNLOAD = "download"
    PROCESS = "process"
    EXTRACT = "extract"

class EventType(StrEnum):
    DOWNLOAD_REQUESTED = "download.requested"
    DOWNLOAD_RETRY = "download.retry"
    PROCESS_REQUESTED = "process.requested"
    PROCESS_RETRY = "process.retry"
    EXTRACT_REQUESTED = "extract.requested"

class OutcomeCode(StrEnum):
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    INVALID_STATE = "INVALID_STATE"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    CRITICAL_INCONSISTENCY = "CRITICAL_INCONSISTENCY"

class AckAction(StrEnum):
    ACK = "ack"
    NACK_REQUEUE = "nack_requeue"
    NACK_DROP = "nack_drop"
