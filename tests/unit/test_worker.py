import pytest

from studyflow.jobs import JobHandlers, JobStatus, JobWorker
from studyflow.jobs import worker as worker_mod
from studyflow.jobs.handlers import JOB_ERROR_MAX_LENGTH

pytestmark = pytest.mark.unit


class StubHandlers:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.seen = []

    def dispatch(self, job):
        self.seen.append(job.id)
        if self.error is not None:
            raise self.error
        return self.result


def test_no_pending_jobs(queue):
    assert JobWorker(queue, StubHandlers()).run_once() == {'message': 'no pending jobs'}


def test_successful_job_is_completed(queue):
    job = queue.enqueue('embed', {'inputs': ['a']}, 'u1')
    handlers = StubHandlers(result={'embeddings': [[1.0]]})
    outcome = JobWorker(queue, handlers).run_once()
    assert outcome == {'message': 'job processed', 'id': job.id}
    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == {'embeddings': [[1.0]]}


def test_each_tick_runs_at_most_one_job(queue):
    first = queue.enqueue('embed', {'inputs': ['a']}, 'u1')
    second = queue.enqueue('embed', {'inputs': ['b']}, 'u1')
    handlers = StubHandlers(result={})
    JobWorker(queue, handlers).run_once()
    assert handlers.seen == [first.id]
    assert queue.get_job(second.id).status == JobStatus.PENDING


def test_handler_error_fails_job_with_truncated_message(queue):
    job = queue.enqueue('embed', {'inputs': ['a']}, 'u1')
    outcome = JobWorker(queue, StubHandlers(error=RuntimeError('x' * 2000))).run_once()
    assert outcome['message'] == 'job failed'
    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert len(stored.error) == JOB_ERROR_MAX_LENGTH


def test_error_without_message_uses_class_name(queue):
    job = queue.enqueue('embed', {'inputs': ['a']}, 'u1')
    JobWorker(queue, StubHandlers(error=KeyError())).run_once()
    assert queue.get_job(job.id).error == 'KeyError'


def test_cli_exit_codes(queue, monkeypatch):
    assert worker_mod.main([]) == 0

    queue.enqueue('embed', {'inputs': ['a']}, 'u1')

    def explode(self, job):
        raise RuntimeError('handler crashed')

    monkeypatch.setattr(JobHandlers, 'dispatch', explode)
    assert worker_mod.main([]) == 1
