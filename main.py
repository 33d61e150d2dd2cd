import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import Field
from pydantic_settings import BaseSettings

from studyflow.jobs import (
    JobQueue,
    JobWorker,
    JobValidationError,
    JobStoreError,
    JobQueueError,
)
from studyflow.jobs.models import ChatPayload, JobType
from studyflow.mastery import ReviewService, get_items_due_for_review, select_daily_quiz_items
from studyflow.semantic import LLMGateway, ConfigurationError, UpstreamError, UpstreamTimeout, LLMGatewayError, truncate_to_token_limit
from studyflow.semantic.prompts import build_tutor_system_prompt
from studyflow.storage import (
    InvalidExamTransition,
    NotFoundError,
    PracticeExam,
    PracticeExamStatus,
    ResponseQuality,
    StoreError,
    StudyStore,
)
from studyflow.storage.models import CamelModel
from studyflow.utils import get_logger, set_request_context, log_request, connect_redis

LOG = get_logger()

CHAT_CONTEXT_MAX_TOKENS = int(os.getenv('CHAT_CONTEXT_MAX_TOKENS', '500000'))
DAILY_QUIZ_DEFAULT_LIMIT = int(os.getenv('DAILY_QUIZ_DEFAULT_LIMIT', '8'))


class Settings(BaseSettings):
    HOST: str = '0.0.0.0'
    PORT: int = 8000
    ENVIRONMENT: str = 'development'
    LOG_LEVEL: str = 'INFO'
    CORS_ORIGIN: str = '*'
    SHUTDOWN_TIMEOUT_MS: int = 15000
    REDIS_REQUIRED_FOR_READY: bool = False
    OPENAI_REQUIRED_FOR_READY: bool = False


settings = Settings()

app = FastAPI(title='Studyflow Service', version='1.0.0', description='Study plan generation jobs and spaced review scheduling')

origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    # prefer incoming X-Request-ID header for cross-service tracing
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id, user_id=request.headers.get('x-user-id'))
    start = time.time()
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('unhandled_request_error', extra={'path': request.url.path})
        return JSONResponse(status_code=500, content={'success': False, 'error': 'Internal server error', 'details': None, 'request_id': request_id})
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, ip=request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


def _error(status_code: int, error: str, request_id: str, details: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': error, 'details': details, 'request_id': request_id})


def _unauthorized(request_id: str) -> JSONResponse:
    return _error(401, 'Missing caller identity', request_id, 'X-User-Id header is required')


def _owner_id(request: Request) -> Optional[str]:
    owner = (request.headers.get('x-user-id') or '').strip()
    return owner or None


def _service_error(e: Exception, request_id: str) -> JSONResponse:
    if isinstance(e, NotFoundError):
        return _error(404, 'Not found', request_id, str(e))
    if isinstance(e, (JobValidationError, InvalidExamTransition)):
        return _error(400, 'Invalid request', request_id, str(e))
    if isinstance(e, ConfigurationError):
        return _error(500, 'LLM not configured', request_id, str(e))
    if isinstance(e, UpstreamTimeout):
        return _error(504, 'LLM request timeout', request_id, str(e))
    if isinstance(e, UpstreamError):
        return _error(502, 'LLM API error', request_id, str(e))
    LOG.error('storage_error', extra={'error': str(e)})
    return _error(500, 'Storage failure', request_id, str(e))


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat(), 'service': 'studyflow'}


def _check_redis():
    return 'ok' if connect_redis() is not None else 'error: redis unavailable'


def _check_openai():
    key = os.getenv('OPENAI_API_KEY')
    if not key:
        if settings.OPENAI_REQUIRED_FOR_READY:
            return 'error: no openai key'
        return 'warn: no openai key'
    try:
        resp = requests.get('https://api.openai.com/v1/models', headers={'Authorization': f'Bearer {key}'}, timeout=5)
    except requests.RequestException as e:
        return f'error: {str(e)}'
    if resp.status_code == 200:
        return 'ok'
    return f'error: openai status {resp.status_code}'


@app.get('/ready')
def ready():
    services = {'redis': _check_redis(), 'openai': _check_openai()}
    ready_ok = True
    if settings.REDIS_REQUIRED_FOR_READY and services['redis'].startswith('error'):
        ready_ok = False
    if settings.OPENAI_REQUIRED_FOR_READY and services['openai'].startswith('error'):
        ready_ok = False
    return JSONResponse(status_code=200 if ready_ok else 503, content={'status': 'ready' if ready_ok else 'not ready', 'services': services})


class EnqueueJobRequest(CamelModel):
    # validated by JobQueue.enqueue
    type: Any = None
    payload: Any = None


class CreatePracticeExamRequest(CamelModel):
    lecture_id: str
    question_count: int = Field(5, ge=1, le=20)
    language: str = 'en'
    category: Optional[str] = None
    exam_text: Optional[str] = None
    worksheet_text: Optional[str] = None


class ExamAnswer(CamelModel):
    answer_text: Optional[str] = None
    answer_image_data_url: Optional[str] = None


class GradeExamRequest(CamelModel):
    answers: Dict[str, ExamAnswer] = {}
    language: Optional[str] = None


class RecordReviewRequest(CamelModel):
    response_quality: ResponseQuality
    score: Optional[float] = Field(None, ge=0, le=100)
    reviewed_at: Optional[datetime] = None


@app.post('/jobs', status_code=201)
def enqueue_job(req: EnqueueJobRequest, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        job = JobQueue.get_instance().enqueue(req.type, req.payload, owner_id)
    except JobQueueError as e:
        return _service_error(e, request_id)
    return {'jobId': job.id}


@app.get('/jobs/{job_id}')
def get_job(job_id: str, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        job = JobQueue.get_instance().get_job(job_id, owner_id=owner_id)
    except JobStoreError as e:
        return _service_error(e, request_id)
    if job is None:
        return _error(404, 'Job not found', request_id, job_id)
    return job.to_wire()


@app.post('/jobs/process')
def process_job(request: Request):
    """Scheduled invocation target: runs at most one pending job."""
    request_id = request.state.request_id
    try:
        outcome = JobWorker().run_once()
    except JobStoreError as e:
        return _service_error(e, request_id)
    if outcome.get('error'):
        return JSONResponse(status_code=500, content={'success': False, 'error': 'Job failed', 'details': outcome['error'], 'job_id': outcome['id'], 'request_id': request_id})
    return outcome


@app.post('/chat/stream')
def chat_stream(req: ChatPayload, request: Request):
    request_id = request.state.request_id
    if not _owner_id(request):
        return _unauthorized(request_id)
    context = truncate_to_token_limit(req.material_context or '', CHAT_CONTEXT_MAX_TOKENS)
    messages = [{'role': 'system', 'content': build_tutor_system_prompt(context, req.language)}]
    messages.extend({'role': m.role, 'content': m.content} for m in req.messages)
    try:
        stream = LLMGateway.get_instance().generate_stream(messages, feature='chat', request_id=request_id)
    except LLMGatewayError as e:
        return _service_error(e, request_id)

    def deltas():
        try:
            for delta in stream:
                yield delta
        except UpstreamError as e:
            # text already sent stays valid; the stream just ends
            LOG.warning('chat_stream_interrupted', extra={'error': str(e)})
        finally:
            stream.close()

    return StreamingResponse(deltas(), media_type='text/plain; charset=utf-8', headers={'X-Request-ID': request_id})


@app.post('/practice-exams', status_code=201)
def create_practice_exam(req: CreatePracticeExamRequest, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    store = StudyStore.get_instance()
    try:
        exam = store.create_practice_exam(PracticeExam(lecture_id=req.lecture_id, owner_id=owner_id, question_count=req.question_count, category=req.category, language=req.language))
    except StoreError as e:
        return _service_error(e, request_id)

    payload = req.to_wire()
    payload['practiceExamId'] = exam.id
    try:
        job = JobQueue.get_instance().enqueue(JobType.PRACTICE_EXAM.value, payload, owner_id)
    except JobQueueError as e:
        try:
            store.update_practice_exam(exam.id, PracticeExamStatus.FAILED, error=str(e)[:500])
        except StoreError:
            LOG.warning('practice_exam_fail_mark_failed', extra={'exam_id': exam.id})
        return _service_error(e, request_id)

    try:
        store.update_practice_exam(exam.id, job_id=job.id)
    except StoreError as e:
        return _service_error(e, request_id)
    return {'practiceExamId': exam.id, 'jobId': job.id}


@app.get('/practice-exams/{exam_id}')
def get_practice_exam(exam_id: str, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    store = StudyStore.get_instance()
    try:
        exam = store.get_practice_exam(exam_id, owner_id=owner_id)
        if exam is None:
            return _error(404, 'Practice exam not found', request_id, exam_id)
        questions = store.list_exam_questions(exam_id)
        responses = store.list_exam_responses(exam_id)
    except StoreError as e:
        return _service_error(e, request_id)
    return {
        'exam': exam.to_wire(),
        'questions': [q.to_wire() for q in questions],
        'responses': [r.to_wire() for r in responses],
    }


@app.post('/practice-exams/{exam_id}/grade')
def grade_practice_exam(exam_id: str, req: GradeExamRequest, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    answers = {qid: a.model_dump(by_alias=True) for qid, a in req.answers.items()}
    try:
        return ReviewService().grade_practice_exam(exam_id, owner_id, answers, language=req.language)
    except (StoreError, LLMGatewayError) as e:
        return _service_error(e, request_id)


@app.get('/lectures/{lecture_id}/study-plan')
def get_study_plan(lecture_id: str, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        entries = StudyStore.get_instance().list_plan_entries(lecture_id, owner_id=owner_id)
    except StoreError as e:
        return _service_error(e, request_id)
    return {'lectureId': lecture_id, 'entries': [e.to_wire() for e in entries]}


@app.get('/lectures/{lecture_id}/review/due')
def get_due_reviews(lecture_id: str, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        entries = StudyStore.get_instance().list_plan_entries(lecture_id, owner_id=owner_id)
    except StoreError as e:
        return _service_error(e, request_id)
    return {'lectureId': lecture_id, 'entries': [e.to_wire() for e in get_items_due_for_review(entries)]}


@app.get('/lectures/{lecture_id}/review/daily')
def get_daily_quiz(lecture_id: str, request: Request, limit: int = DAILY_QUIZ_DEFAULT_LIMIT):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        entries = StudyStore.get_instance().list_plan_entries(lecture_id, owner_id=owner_id)
    except StoreError as e:
        return _service_error(e, request_id)
    return {'lectureId': lecture_id, 'entries': [e.to_wire() for e in select_daily_quiz_items(entries, limit)]}


@app.post('/study-plan/entries/{entry_id}/reviews', status_code=201)
def record_review(entry_id: str, req: RecordReviewRequest, request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        entry = ReviewService().record_review(entry_id, owner_id, req.response_quality, score=req.score, reviewed_at=req.reviewed_at)
    except StoreError as e:
        return _service_error(e, request_id)
    return entry.to_wire()


@app.get('/streak')
def get_streak(request: Request):
    request_id = request.state.request_id
    owner_id = _owner_id(request)
    if not owner_id:
        return _unauthorized(request_id)
    try:
        return StudyStore.get_instance().get_streak(owner_id).to_wire()
    except StoreError as e:
        return _service_error(e, request_id)


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(
        'main:app',
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.ENVIRONMENT == 'development',
        timeout_graceful_shutdown=max(1, settings.SHUTDOWN_TIMEOUT_MS // 1000),
    )
