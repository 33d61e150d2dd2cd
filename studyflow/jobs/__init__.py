from .models import Job, JobType, JobStatus, JOB_PAYLOAD_MODELS
from .job_queue import (
    JobQueue,
    JobQueueError,
    JobValidationError,
    InvalidJobType,
    InvalidJobPayload,
    ConcurrencyViolation,
    JobStoreError,
)
from .handlers import JobHandlers, JobHandlerError
from .worker import JobWorker

__all__ = [
    'Job',
    'JobType',
    'JobStatus',
    'JOB_PAYLOAD_MODELS',
    'JobQueue',
    'JobQueueError',
    'JobValidationError',
    'InvalidJobType',
    'InvalidJobPayload',
    'ConcurrencyViolation',
    'JobStoreError',
    'JobHandlers',
    'JobHandlerError',
    'JobWorker',
]
