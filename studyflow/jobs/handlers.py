"""Per-type job execution.

Handlers receive a claimed job, run its pipeline and return the JSON result. Results are
written last-write-wins, so re-running a job id after a crash overwrites rather than adds.
"""
import base64
import binascii
import os
import re
import time
from typing import Any, Callable, Dict, Optional

import requests

from studyflow.semantic.grader import generate_lecture_metadata, grade_answer
from studyflow.semantic.llm_gateway import LLMGateway
from studyflow.semantic.practice_exam import generate_exam_questions
from studyflow.semantic.prompts import build_tutor_system_prompt
from studyflow.semantic.segmenter import truncate_to_token_limit
from studyflow.semantic.study_plan import generate_study_plan
from studyflow.storage import PracticeExamQuestion, PracticeExamStatus, StudyPlanEntry, StudyStore, StoreError
from studyflow.storage.usage import record_usage
from studyflow.utils import get_logger, log_plan_generation
from .job_queue import JobQueue
from .models import (
    ChatPayload,
    EmbedPayload,
    GradePayload,
    Job,
    JobType,
    MetadataPayload,
    PlanPayload,
    PracticeExamPayload,
    TranscribePayload,
)

LOG = get_logger()

CHAT_CONTEXT_MAX_TOKENS = int(os.getenv('CHAT_CONTEXT_MAX_TOKENS', '500000'))
CHAT_PARTIAL_FLUSH_CHARS = int(os.getenv('CHAT_PARTIAL_FLUSH_CHARS', '200'))
AUDIO_DOWNLOAD_TIMEOUT = int(os.getenv('AUDIO_DOWNLOAD_TIMEOUT', '30'))
JOB_ERROR_MAX_LENGTH = int(os.getenv('JOB_ERROR_MAX_LENGTH', '500'))

_DATA_URL_RE = re.compile(r'^data:(.*?);base64,(.*)$', re.DOTALL)


class JobHandlerError(Exception):
    pass


def decode_data_url(data_url: str) -> bytes:
    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise JobHandlerError('Invalid data URL')
    try:
        return base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise JobHandlerError(f'Invalid base64 audio: {e}') from e


def fetch_audio(audio_url: str) -> bytes:
    if audio_url.startswith('data:'):
        return decode_data_url(audio_url)
    try:
        resp = requests.get(audio_url, timeout=AUDIO_DOWNLOAD_TIMEOUT)
    except requests.RequestException as e:
        raise JobHandlerError(f'Failed to fetch audio: {e}') from e
    if not resp.ok:
        raise JobHandlerError(f'Failed to fetch audio: {resp.status_code}')
    return resp.content


class JobHandlers:
    def __init__(self, store: Optional[StudyStore] = None, gateway: Optional[LLMGateway] = None, queue: Optional[JobQueue] = None):
        self.store = store or StudyStore.get_instance()
        self.queue = queue or JobQueue.get_instance()
        self._gateway = gateway
        self._handlers: Dict[JobType, Callable[[Job, Any], Any]] = {
            JobType.PLAN: self.handle_plan,
            JobType.METADATA: self.handle_metadata,
            JobType.CHAT: self.handle_chat,
            JobType.GRADE: self.handle_grade,
            JobType.TRANSCRIBE: self.handle_transcribe,
            JobType.EMBED: self.handle_embed,
            JobType.PRACTICE_EXAM: self.handle_practice_exam,
        }

    @property
    def gateway(self) -> LLMGateway:
        # resolved lazily so a missing key fails the job rather than the worker
        if self._gateway is None:
            self._gateway = LLMGateway.get_instance()
        return self._gateway

    def dispatch(self, job: Job) -> Any:
        handler = self._handlers.get(job.type)
        if handler is None:
            raise JobHandlerError(f'Unknown job type: {job.type}')
        return handler(job, job.typed_payload())

    def _usage(self, job: Job, call, feature: str, lecture_id: Optional[str] = None):
        record_usage(self.store, call, feature, owner_id=job.owner_id, job_id=job.id, lecture_id=lecture_id)

    def handle_plan(self, job: Job, payload: PlanPayload) -> Dict[str, Any]:
        start = time.time()
        thresholds = payload.options.thresholds.model_dump(by_alias=True) if payload.options.thresholds else None
        generation = generate_study_plan(
            self.gateway,
            payload.extracted_texts,
            language=payload.language,
            additional_notes=payload.options.additional_notes,
            thresholds=thresholds,
            job_id=job.id,
        )
        for call in generation.calls:
            self._usage(job, call, 'plan', lecture_id=payload.lecture_id)

        if payload.lecture_id:
            entries = [
                StudyPlanEntry(lecture_id=payload.lecture_id, owner_id=job.owner_id, **item.model_dump())
                for item in generation.items
            ]
            self.store.save_plan_entries(payload.lecture_id, entries)
            wire_entries = [e.to_wire() for e in entries]
        else:
            wire_entries = [item.to_wire() for item in generation.items]

        duration_ms = int((time.time() - start) * 1000)
        log_plan_generation(job.id, generation.chunk_count, len(wire_entries), generation.fallback_chunks, duration_ms)
        return {'entries': wire_entries, 'chunkCount': generation.chunk_count, 'fallbackChunks': generation.fallback_chunks}

    def handle_metadata(self, job: Job, payload: MetadataPayload) -> Dict[str, Any]:
        metadata, call = generate_lecture_metadata(self.gateway, payload.files, language=payload.language)
        self._usage(job, call, 'metadata')
        return metadata

    def handle_chat(self, job: Job, payload: ChatPayload) -> Dict[str, Any]:
        context = truncate_to_token_limit(payload.material_context or '', CHAT_CONTEXT_MAX_TOKENS)
        messages = [{'role': 'system', 'content': build_tutor_system_prompt(context, payload.language)}]
        messages.extend({'role': m.role, 'content': m.content} for m in payload.messages)

        flushed = 0
        with self.gateway.generate_stream(messages, feature='chat') as stream:
            for _ in stream:
                if len(stream.text) - flushed >= CHAT_PARTIAL_FLUSH_CHARS:
                    self.queue.set_partial_result(job.id, stream.text)
                    flushed = len(stream.text)
            result = stream.result
        if len(result.text) != flushed:
            self.queue.set_partial_result(job.id, result.text)
        self._usage(job, result, 'chat')
        return {'message': result.text}

    def handle_grade(self, job: Job, payload: GradePayload) -> Dict[str, Any]:
        feedback, call = grade_answer(
            self.gateway,
            payload.question.prompt,
            answer_text=payload.answer_text,
            answer_image_data_url=payload.answer_image_data_url,
            language=payload.language,
        )
        self._usage(job, call, 'grade')
        return {'feedback': feedback.model_dump(exclude_none=True)}

    def handle_transcribe(self, job: Job, payload: TranscribePayload) -> Dict[str, Any]:
        audio = fetch_audio(payload.audio_url)
        result = self.gateway.transcribe(audio, filename='audio.m4a', language=payload.language)
        self._usage(job, result, 'transcribe')
        return {'text': result.text}

    def handle_embed(self, job: Job, payload: EmbedPayload) -> Dict[str, Any]:
        result = self.gateway.embed([str(i) for i in payload.inputs])
        self._usage(job, result, 'embed')
        return {'embeddings': result.embeddings}

    def handle_practice_exam(self, job: Job, payload: PracticeExamPayload) -> Dict[str, Any]:
        exam_id = payload.practice_exam_id
        try:
            entries = self.store.list_plan_entries(payload.lecture_id, owner_id=job.owner_id)
            questions, used_fallback, call = generate_exam_questions(
                self.gateway,
                entries,
                payload.question_count,
                language=payload.language,
                category=payload.category,
                exam_text=payload.exam_text,
                worksheet_text=payload.worksheet_text,
            )
            self._usage(job, call, 'practice_exam', lecture_id=payload.lecture_id)
            stored = self.store.save_exam_questions(exam_id, [
                PracticeExamQuestion(
                    practice_exam_id=exam_id,
                    study_plan_entry_id=q.get('studyPlanEntryId'),
                    prompt=q['prompt'],
                    answer=q.get('answer'),
                    source=q.get('source') or 'material',
                    order_index=idx,
                )
                for idx, q in enumerate(questions)
            ])
            self.store.update_practice_exam(exam_id, PracticeExamStatus.READY, question_count=len(stored), job_id=job.id)
        except Exception as e:
            self._mark_exam_failed(exam_id, str(e))
            raise
        return {'practiceExamId': exam_id, 'questionCount': len(stored), 'usedFallback': used_fallback}

    def _mark_exam_failed(self, exam_id: str, error: str):
        try:
            self.store.update_practice_exam(exam_id, PracticeExamStatus.FAILED, error=error[:JOB_ERROR_MAX_LENGTH])
        except StoreError as e:
            LOG.warning('practice_exam_fail_mark_failed', extra={'exam_id': exam_id, 'error': str(e)})
