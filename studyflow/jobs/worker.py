"""Scheduled job worker.

Each invocation claims and runs at most one job. Run it from cron or a scheduler, or with
--loop to poll every WORKER_POLL_INTERVAL seconds.
"""
import argparse
import os
import sys
import time
import uuid
from typing import Any, Dict, Optional

from studyflow.utils import get_logger, set_request_context
from .handlers import JobHandlers, JOB_ERROR_MAX_LENGTH
from .job_queue import JobQueue

LOG = get_logger()

WORKER_POLL_INTERVAL = float(os.getenv('WORKER_POLL_INTERVAL', '60'))


class JobWorker:
    def __init__(self, queue: Optional[JobQueue] = None, handlers: Optional[JobHandlers] = None):
        self.queue = queue or JobQueue.get_instance()
        self.handlers = handlers or JobHandlers(queue=self.queue)

    def run_once(self) -> Dict[str, Any]:
        job = self.queue.claim_next()
        if job is None:
            LOG.info('no_pending_jobs')
            return {'message': 'no pending jobs'}

        set_request_context(request_id=str(uuid.uuid4()), user_id=job.owner_id, job_id=job.id)
        start = time.time()
        LOG.info('job_started', extra={'job_id': job.id, 'job_type': job.type.value})
        try:
            result = self.handlers.dispatch(job)
        except Exception as e:
            # any pipeline failure ends the job, never the worker
            error = (str(e) or e.__class__.__name__)[:JOB_ERROR_MAX_LENGTH]
            LOG.exception('job_failed', extra={'job_id': job.id, 'job_type': job.type.value, 'error': error})
            self.queue.fail(job.id, error)
            return {'message': 'job failed', 'id': job.id, 'error': error}

        self.queue.complete(job.id, result)
        LOG.info('job_completed', extra={'job_id': job.id, 'job_type': job.type.value, 'duration_ms': int((time.time() - start) * 1000)})
        return {'message': 'job processed', 'id': job.id}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Process pending studyflow jobs (at most one per tick).')
    parser.add_argument('--loop', action='store_true', help='keep polling instead of exiting after one tick')
    parser.add_argument('--interval', type=float, default=WORKER_POLL_INTERVAL, help='seconds between ticks in --loop mode')
    args = parser.parse_args(argv)

    worker = JobWorker()
    if not args.loop:
        outcome = worker.run_once()
        return 1 if outcome.get('error') else 0

    LOG.info('worker_loop_started', extra={'interval': args.interval})
    try:
        while True:
            worker.run_once()
            time.sleep(max(0.0, args.interval))
    except KeyboardInterrupt:
        LOG.info('worker_loop_stopped')
    return 0


if __name__ == '__main__':
    sys.exit(main())
