import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis

from studyflow.utils import get_logger, connect_redis
from .models import (
    PracticeExam,
    PracticeExamQuestion,
    PracticeExamResponse,
    PracticeExamStatus,
    ReviewEvent,
    StreakInfo,
    StudyPlanEntry,
    UsageLog,
    can_transition_exam,
)

LOG = get_logger()

REVIEW_HISTORY_LIMIT = 50


class StoreError(Exception):
    pass


class NotFoundError(StoreError):
    pass


class InvalidExamTransition(StoreError):
    pass


class StudyStore:
    """Read/write contract for plans, reviews, practice exams, streaks and usage logs.

    Values are JSON documents in Redis; without Redis the same keys live in process memory.
    """

    _instance = None

    def __init__(self, client=None):
        self._client = client if client is not None else connect_redis()
        self._kv: Dict[str, str] = {}
        self._lists: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        LOG.info('StudyStore initialized', extra={'backend': 'redis' if self._client else 'memory'})

    @classmethod
    def get_instance(cls) -> 'StudyStore':
        if cls._instance is None:
            cls._instance = StudyStore()
        return cls._instance

    @property
    def uses_redis(self) -> bool:
        return self._client is not None

    # raw key access

    def _get_json(self, key: str) -> Optional[Any]:
        try:
            if self._client is not None:
                raw = self._client.get(key)
            else:
                with self._lock:
                    raw = self._kv.get(key)
        except redis.RedisError as e:
            LOG.error('store_read_failed', extra={'key': key, 'error': str(e)})
            raise StoreError(f'Failed to read {key}') from e
        return json.loads(raw) if raw else None

    def _set_json(self, key: str, value: Any):
        raw = json.dumps(value)
        try:
            if self._client is not None:
                self._client.set(key, raw)
            else:
                with self._lock:
                    self._kv[key] = raw
        except redis.RedisError as e:
            LOG.error('store_write_failed', extra={'key': key, 'error': str(e)})
            raise StoreError(f'Failed to write {key}') from e

    def _delete(self, *keys: str):
        if not keys:
            return
        try:
            if self._client is not None:
                self._client.delete(*keys)
            else:
                with self._lock:
                    for key in keys:
                        self._kv.pop(key, None)
                        self._lists.pop(key, None)
        except redis.RedisError as e:
            LOG.error('store_delete_failed', extra={'keys': list(keys), 'error': str(e)})
            raise StoreError('Failed to delete keys') from e

    def _lpush_json(self, key: str, value: Any):
        raw = json.dumps(value)
        try:
            if self._client is not None:
                self._client.lpush(key, raw)
            else:
                with self._lock:
                    self._lists.setdefault(key, []).insert(0, raw)
        except redis.RedisError as e:
            LOG.error('store_append_failed', extra={'key': key, 'error': str(e)})
            raise StoreError(f'Failed to append to {key}') from e

    def _lrange_json(self, key: str, limit: Optional[int] = None) -> List[Any]:
        end = (limit - 1) if limit else -1
        try:
            if self._client is not None:
                raws = self._client.lrange(key, 0, end)
            else:
                with self._lock:
                    items = list(self._lists.get(key, []))
                raws = items if end == -1 else items[:end + 1]
        except redis.RedisError as e:
            LOG.error('store_read_failed', extra={'key': key, 'error': str(e)})
            raise StoreError(f'Failed to read {key}') from e
        return [json.loads(raw) for raw in raws]

    # study plan

    def save_plan_entries(self, lecture_id: str, entries: List[StudyPlanEntry]) -> List[StudyPlanEntry]:
        """Replace the lecture's plan with `entries`."""
        previous = self._get_json(f'plan:{lecture_id}') or []
        self._delete(*[f'entry:{entry_id}' for entry_id in previous])
        for entry in entries:
            self._set_json(f'entry:{entry.id}', entry.to_wire())
        self._set_json(f'plan:{lecture_id}', [entry.id for entry in entries])
        LOG.info('study_plan_saved', extra={'lecture_id': lecture_id, 'entry_count': len(entries), 'replaced': len(previous)})
        return entries

    def list_plan_entries(self, lecture_id: str, owner_id: Optional[str] = None) -> List[StudyPlanEntry]:
        entries = []
        for entry_id in self._get_json(f'plan:{lecture_id}') or []:
            entry = self.get_plan_entry(entry_id, owner_id=owner_id)
            if entry is not None:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.order_index)

    def get_plan_entry(self, entry_id: str, owner_id: Optional[str] = None) -> Optional[StudyPlanEntry]:
        data = self._get_json(f'entry:{entry_id}')
        if not data:
            return None
        entry = StudyPlanEntry.model_validate(data)
        if owner_id is not None and entry.owner_id != owner_id:
            return None
        return entry

    def update_entry_mastery(self, entry_id: str, mastery_score: float, next_review_at: datetime, review_count: int, ease_factor: Optional[float] = None) -> StudyPlanEntry:
        entry = self.get_plan_entry(entry_id)
        if entry is None:
            raise NotFoundError(f'Study plan entry {entry_id} not found')
        update = {'mastery_score': mastery_score, 'next_review_at': next_review_at, 'review_count': review_count}
        if ease_factor is not None:
            update['ease_factor'] = ease_factor
        entry = entry.model_copy(update=update)
        self._set_json(f'entry:{entry_id}', entry.to_wire())
        return entry

    # review history

    def add_review_event(self, event: ReviewEvent) -> ReviewEvent:
        self._lpush_json(f'reviews:{event.study_plan_entry_id}', event.to_wire())
        return event

    def list_review_events(self, entry_id: str, limit: int = REVIEW_HISTORY_LIMIT) -> List[ReviewEvent]:
        """Newest first, at most `limit` events."""
        events = [ReviewEvent.model_validate(raw) for raw in self._lrange_json(f'reviews:{entry_id}')]
        events.sort(key=lambda ev: ev.reviewed_at, reverse=True)
        return events[:limit] if limit else events

    # practice exams

    def create_practice_exam(self, exam: PracticeExam) -> PracticeExam:
        self._set_json(f'exam:{exam.id}', exam.to_wire())
        return exam

    def get_practice_exam(self, exam_id: str, owner_id: Optional[str] = None) -> Optional[PracticeExam]:
        data = self._get_json(f'exam:{exam_id}')
        if not data:
            return None
        exam = PracticeExam.model_validate(data)
        if owner_id is not None and exam.owner_id != owner_id:
            return None
        return exam

    def update_practice_exam(self, exam_id: str, status: Optional[PracticeExamStatus] = None, **fields) -> PracticeExam:
        exam = self.get_practice_exam(exam_id)
        if exam is None:
            raise NotFoundError(f'Practice exam {exam_id} not found')
        update = dict(fields)
        if status is not None and PracticeExamStatus(status) != exam.status:
            if not can_transition_exam(exam.status, status):
                raise InvalidExamTransition(f'Cannot move practice exam from {exam.status.value} to {PracticeExamStatus(status).value}')
            update['status'] = PracticeExamStatus(status)
        update['updated_at'] = datetime.now(timezone.utc)
        exam = exam.model_copy(update=update)
        self._set_json(f'exam:{exam_id}', exam.to_wire())
        LOG.info('practice_exam_updated', extra={'exam_id': exam_id, 'status': exam.status.value})
        return exam

    def save_exam_questions(self, exam_id: str, questions: List[PracticeExamQuestion]) -> List[PracticeExamQuestion]:
        self._set_json(f'exam:{exam_id}:questions', [q.to_wire() for q in questions])
        return questions

    def list_exam_questions(self, exam_id: str) -> List[PracticeExamQuestion]:
        raw = self._get_json(f'exam:{exam_id}:questions') or []
        return sorted((PracticeExamQuestion.model_validate(q) for q in raw), key=lambda q: q.order_index)

    def upsert_exam_response(self, response: PracticeExamResponse) -> PracticeExamResponse:
        key = f'exam:{response.practice_exam_id}:responses'
        responses = self._get_json(key) or {}
        existing = responses.get(response.question_id)
        if existing:
            # re-grading keeps the response identity
            response = response.model_copy(update={'id': existing.get('id', response.id)})
        responses[response.question_id] = response.to_wire()
        self._set_json(key, responses)
        return response

    def list_exam_responses(self, exam_id: str) -> List[PracticeExamResponse]:
        raw = self._get_json(f'exam:{exam_id}:responses') or {}
        return [PracticeExamResponse.model_validate(r) for r in raw.values()]

    # streaks and usage

    def get_streak(self, owner_id: str) -> StreakInfo:
        data = self._get_json(f'streak:{owner_id}')
        return StreakInfo.model_validate(data) if data else StreakInfo(owner_id=owner_id)

    def save_streak(self, streak: StreakInfo) -> StreakInfo:
        self._set_json(f'streak:{streak.owner_id}', streak.to_wire())
        return streak

    def insert_usage_log(self, log: UsageLog) -> UsageLog:
        self._lpush_json('usage_logs', log.to_wire())
        return log

    def list_usage_logs(self, limit: Optional[int] = None) -> List[UsageLog]:
        return [UsageLog.model_validate(raw) for raw in self._lrange_json('usage_logs', limit)]
