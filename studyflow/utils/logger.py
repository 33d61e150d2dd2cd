import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None, job_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id, 'job_id': job_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    # explicit extra= values win over the ambient context
    for key in ('request_id', 'user_id', 'job_id'):
        if getattr(record, key, None) is None:
            setattr(record, key, ctx.get(key))
    return True


def get_logger(name: str = 'studyflow'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # empty LOG_FILE_PATH disables the rotating file handlers
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(job_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if LOG_FILE_PATH:
        log_path = pathlib.Path(LOG_FILE_PATH)
        if not log_path.is_absolute():
            log_path = pathlib.Path(os.getcwd()) / log_path
        log_path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        combined.setFormatter(fmt)
        logger.addHandler(combined)

        errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(fmt)
        logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_llm_call(request_id: str, model: str, prompt_tokens: int, completion_tokens: int, duration_ms: float, cost: float = None, feature: str = None):
    logger = get_logger()
    logger.info('llm_call', extra={'request_id': request_id, 'model': model, 'prompt_tokens': prompt_tokens, 'completion_tokens': completion_tokens, 'duration_ms': duration_ms, 'cost': cost, 'feature': feature})


def log_job_transition(job_id: str, job_type: str, from_status: str, to_status: str, owner_id: str = None):
    logger = get_logger()
    logger.info('job_transition', extra={
        'job_id': job_id,
        'job_type': job_type,
        'from_status': from_status,
        'to_status': to_status,
        'owner_id': owner_id,
    })


def log_plan_generation(job_id: str, chunk_count: int, entry_count: int, fallback_chunks: list, duration_ms: float):
    logger = get_logger()
    logger.info('plan_generation', extra={
        'job_id': job_id,
        'chunk_count': chunk_count,
        'entry_count': entry_count,
        'fallback_chunks': fallback_chunks,
        'duration_ms': duration_ms,
    })


def log_grading_pass(exam_id: str, graded_count: int, reviews_recorded: int, average_score: float, duration_ms: float):
    logger = get_logger()
    logger.info('grading_pass', extra={
        'exam_id': exam_id,
        'graded_count': graded_count,
        'reviews_recorded': reviews_recorded,
        'average_score': average_score,
        'duration_ms': duration_ms,
    })
