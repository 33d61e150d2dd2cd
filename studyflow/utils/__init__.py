"""Utility subpackage: structured logging and the shared Redis connection."""

from .logger import (
    get_logger,
    log_request,
    log_llm_call,
    set_request_context,
    get_request_context,
    log_job_transition,
    log_plan_generation,
    log_grading_pass,
)
from .redis_client import connect_redis

__all__ = [
    'get_logger',
    'log_request',
    'log_llm_call',
    'set_request_context',
    'get_request_context',
    'log_job_transition',
    'log_plan_generation',
    'log_grading_pass',
    'connect_redis',
]
