import itertools
import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis
from pydantic import ValidationError

from studyflow.utils import get_logger, connect_redis, log_job_transition
from .models import Job, JobStatus, JobType, JOB_PAYLOAD_MODELS

LOG = get_logger()

PENDING_KEY = 'jobs:pending'

# set KEYS[1] to ARGV[2] only if it currently holds ARGV[1]
_CAS_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2])
    return 1
end
return 0
"""

# pop pending ids oldest first until one whose status key still reads ARGV[1]; swap it to ARGV[2]
_CLAIM_SCRIPT = """
while true do
    local popped = redis.call('ZPOPMIN', KEYS[1])
    if #popped == 0 then
        return false
    end
    local status_key = ARGV[3] .. popped[1] .. ARGV[4]
    if redis.call('GET', status_key) == ARGV[1] then
        redis.call('SET', status_key, ARGV[2])
        return popped[1]
    end
end
"""


class JobQueueError(Exception):
    pass


class JobValidationError(JobQueueError):
    pass


class InvalidJobType(JobValidationError):
    pass


class InvalidJobPayload(JobValidationError):
    pass


class ConcurrencyViolation(JobQueueError):
    pass


class JobStoreError(JobQueueError):
    pass


class JobQueue:
    """Durable job records with a pending -> running -> completed|failed lifecycle.

    The pending -> running claim is a single conditional transition, so concurrent workers
    never claim the same job. Jobs are never deleted.
    """

    _instance = None

    def __init__(self, client=None):
        self._client = client if client is not None else connect_redis()
        self._cas = self._client.register_script(_CAS_SCRIPT) if self._client is not None else None
        self._claim = self._client.register_script(_CLAIM_SCRIPT) if self._client is not None else None
        self._jobs: Dict[str, Job] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()
        LOG.info('JobQueue initialized', extra={'backend': 'redis' if self._client else 'memory'})

    @classmethod
    def get_instance(cls) -> 'JobQueue':
        if cls._instance is None:
            cls._instance = JobQueue()
        return cls._instance

    def _key(self, job_id: str) -> str:
        return f'job:{job_id}'

    def _status_key(self, job_id: str) -> str:
        return f'job:{job_id}:status'

    # persistence

    def _save(self, job: Job):
        job.updated_at = datetime.now(timezone.utc)
        if self._client is None:
            with self._lock:
                self._jobs[job.id] = job.model_copy(deep=True)
            return
        try:
            self._client.set(self._key(job.id), json.dumps(job.to_wire()))
        except redis.RedisError as e:
            LOG.error('job_save_failed', extra={'job_id': job.id, 'error': str(e)})
            raise JobStoreError(f'Failed to persist job {job.id}') from e

    def _load(self, job_id: str) -> Optional[Job]:
        if self._client is None:
            with self._lock:
                job = self._jobs.get(job_id)
                return job.model_copy(deep=True) if job else None
        try:
            raw = self._client.get(self._key(job_id))
            status = self._client.get(self._status_key(job_id))
        except redis.RedisError as e:
            LOG.error('job_load_failed', extra={'job_id': job_id, 'error': str(e)})
            raise JobStoreError(f'Failed to load job {job_id}') from e
        if not raw:
            return None
        job = Job.model_validate(json.loads(raw))
        # the status key is authoritative
        if status:
            job.status = JobStatus(status)
        return job

    def _transition(self, job_id: str, expected: JobStatus, target: JobStatus):
        """Compare-and-swap the job status; raises ConcurrencyViolation on mismatch."""
        if self._client is None:
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None or job.status != expected:
                    actual = job.status.value if job else None
                    raise ConcurrencyViolation(f'Job {job_id} is {actual}, expected {expected.value}')
                job.status = target
            return
        try:
            swapped = self._cas(keys=[self._status_key(job_id)], args=[expected.value, target.value])
        except redis.RedisError as e:
            LOG.error('job_transition_failed', extra={'job_id': job_id, 'error': str(e)})
            raise JobStoreError(f'Failed to transition job {job_id}') from e
        if not int(swapped):
            raise ConcurrencyViolation(f'Job {job_id} is not {expected.value}')

    # public contract

    def enqueue(self, job_type: str, payload: Optional[Dict[str, Any]], owner_id: str) -> Job:
        try:
            jtype = JobType(job_type)
        except ValueError:
            raise InvalidJobType(f'Unknown job type: {job_type}')
        if payload is None or not isinstance(payload, dict):
            raise InvalidJobPayload('payload must be a JSON object')
        if not owner_id:
            raise JobValidationError('ownerId is required')
        try:
            typed = JOB_PAYLOAD_MODELS[jtype].model_validate(payload)
        except ValidationError as e:
            raise InvalidJobPayload(f'Invalid {jtype.value} payload: {e.errors(include_url=False)}') from e

        job = Job(type=jtype, payload=typed.model_dump(mode='json', by_alias=True), owner_id=owner_id)
        if self._client is None:
            with self._lock:
                self._jobs[job.id] = job.model_copy(deep=True)
                self._sequence[job.id] = next(self._counter)
        else:
            try:
                self._client.set(self._key(job.id), json.dumps(job.to_wire()))
                self._client.set(self._status_key(job.id), JobStatus.PENDING.value)
                self._client.zadd(PENDING_KEY, {job.id: time.time()})
            except redis.RedisError as e:
                LOG.error('job_enqueue_failed', extra={'job_type': jtype.value, 'error': str(e)})
                raise JobStoreError('Failed to enqueue job') from e

        log_job_transition(job.id, jtype.value, None, JobStatus.PENDING.value, owner_id=owner_id)
        return job

    def claim_next(self) -> Optional[Job]:
        """Atomically move the oldest pending job to running and return it."""
        if self._client is None:
            with self._lock:
                pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
                if not pending:
                    return None
                job = min(pending, key=lambda j: self._sequence.get(j.id, 0))
                job.status = JobStatus.RUNNING
                job.started_at = datetime.now(timezone.utc)
                job.updated_at = job.started_at
                claimed = job.model_copy(deep=True)
            log_job_transition(claimed.id, claimed.type.value, JobStatus.PENDING.value, JobStatus.RUNNING.value, owner_id=claimed.owner_id)
            return claimed

        while True:
            # pop and status swap run as one script so a claimed id is never left pending off the set
            try:
                job_id = self._claim(keys=[PENDING_KEY], args=[JobStatus.PENDING.value, JobStatus.RUNNING.value, 'job:', ':status'])
            except redis.RedisError as e:
                LOG.error('job_claim_failed', extra={'error': str(e)})
                raise JobStoreError('Failed to claim job') from e
            if not job_id:
                return None
            if isinstance(job_id, bytes):
                job_id = job_id.decode()
            job = self._load(job_id)
            if job is None:
                LOG.warning('job_record_missing', extra={'job_id': job_id})
                continue
            job.started_at = datetime.now(timezone.utc)
            self._save(job)
            log_job_transition(job.id, job.type.value, JobStatus.PENDING.value, JobStatus.RUNNING.value, owner_id=job.owner_id)
            return job

    def _finish(self, job_id: str, target: JobStatus, result: Any = None, error: Optional[str] = None) -> Optional[Job]:
        try:
            self._transition(job_id, JobStatus.RUNNING, target)
        except ConcurrencyViolation as e:
            LOG.warning('job_transition_rejected', extra={'job_id': job_id, 'to_status': target.value, 'error': str(e)})
            return None
        job = self._load(job_id)
        job.status = target
        job.completed_at = datetime.now(timezone.utc)
        if target == JobStatus.COMPLETED:
            job.result = result
            job.error = None
        else:
            job.error = error
        self._save(job)
        log_job_transition(job.id, job.type.value, JobStatus.RUNNING.value, target.value, owner_id=job.owner_id)
        return job

    def complete(self, job_id: str, result: Any) -> Optional[Job]:
        return self._finish(job_id, JobStatus.COMPLETED, result=result)

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        return self._finish(job_id, JobStatus.FAILED, error=error)

    def get_job(self, job_id: str, owner_id: Optional[str] = None) -> Optional[Job]:
        job = self._load(job_id)
        if job is None or (owner_id is not None and job.owner_id != owner_id):
            return None
        return job

    def set_partial_result(self, job_id: str, text: str) -> bool:
        """Store streamed text on a running job; ignored once the job has left running."""
        job = self._load(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        job.partial_result = text
        if self._client is None:
            with self._lock:
                current = self._jobs.get(job_id)
                if current is None or current.status != JobStatus.RUNNING:
                    return False
                current.partial_result = text
                current.updated_at = datetime.now(timezone.utc)
            return True
        self._save(job)
        return True
