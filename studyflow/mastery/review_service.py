"""Review recording and the practice exam grading pass."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from studyflow.semantic.grader import grade_answer
from studyflow.semantic.llm_gateway import LLMGateway
from studyflow.storage import (
    NotFoundError,
    PracticeExamResponse,
    PracticeExamStatus,
    ResponseQuality,
    ReviewEvent,
    StudyPlanEntry,
    StudyStore,
)
from studyflow.storage.usage import record_usage
from studyflow.utils import get_logger, log_grading_pass
from .engine import DEFAULT_CONFIG, MasteryConfig, as_utc, compute_mastery_score, compute_next_review_date
from .streaks import update_streak

LOG = get_logger()


def quality_from_correctness(correctness: Optional[str]) -> ResponseQuality:
    value = (correctness or '').strip().lower()
    if value == 'correct':
        return ResponseQuality.CORRECT
    if value == 'incorrect':
        return ResponseQuality.INCORRECT
    return ResponseQuality.PARTIAL


class ReviewService:
    def __init__(self, store: Optional[StudyStore] = None, gateway: Optional[LLMGateway] = None, config: MasteryConfig = DEFAULT_CONFIG):
        self.store = store or StudyStore.get_instance()
        self._gateway = gateway
        self.config = config

    @property
    def gateway(self) -> LLMGateway:
        if self._gateway is None:
            self._gateway = LLMGateway.get_instance()
        return self._gateway

    def record_review(self, entry_id: str, owner_id: str, response_quality: ResponseQuality, score: Optional[float] = None, reviewed_at: Optional[datetime] = None) -> StudyPlanEntry:
        """Append a review and reschedule the entry from its recent history."""
        entry = self.store.get_plan_entry(entry_id, owner_id=owner_id)
        if entry is None:
            raise NotFoundError(f'Study plan entry {entry_id} not found')

        now = datetime.now(timezone.utc)
        event = ReviewEvent(
            study_plan_entry_id=entry_id,
            owner_id=owner_id,
            score=score,
            response_quality=ResponseQuality(response_quality),
            reviewed_at=as_utc(reviewed_at) or now,
        )
        self.store.add_review_event(event)

        history = self.store.list_review_events(entry_id, limit=self.config.history_window)
        mastery = compute_mastery_score(history, now=now, config=self.config)
        # interval grows from the count of reviews before this one
        next_review_at = compute_next_review_date(mastery, entry.ease_factor, entry.review_count, now=now, config=self.config)
        updated = self.store.update_entry_mastery(entry_id, mastery, next_review_at, entry.review_count + 1)
        LOG.info('review_recorded', extra={
            'entry_id': entry_id,
            'quality': event.response_quality.value,
            'mastery_score': mastery,
            'review_count': updated.review_count,
            'next_review_at': next_review_at.isoformat(),
        })
        return updated

    def grade_practice_exam(self, exam_id: str, owner_id: str, answers: Dict[str, Dict[str, Any]], language: Optional[str] = None) -> Dict[str, Any]:
        start = time.time()
        exam = self.store.get_practice_exam(exam_id, owner_id=owner_id)
        if exam is None:
            raise NotFoundError(f'Practice exam {exam_id} not found')
        exam = self.store.update_practice_exam(exam_id, PracticeExamStatus.IN_PROGRESS)
        language = language or exam.language

        responses: List[PracticeExamResponse] = []
        scores: List[float] = []
        reviews_recorded = 0
        try:
            for question in self.store.list_exam_questions(exam_id):
                answer = answers.get(question.id) or {}
                answer_text = answer.get('answerText')
                image = answer.get('answerImageDataUrl')
                feedback, call = grade_answer(self.gateway, question.prompt, answer_text, image, language=language)
                record_usage(self.store, call, 'grade', owner_id=owner_id, lecture_id=exam.lecture_id)

                response = self.store.upsert_exam_response(PracticeExamResponse(
                    practice_exam_id=exam_id,
                    question_id=question.id,
                    owner_id=owner_id,
                    answer_text=answer_text,
                    answer_image_data_url=image,
                    feedback=feedback.model_dump(),
                    score=feedback.score,
                ))
                responses.append(response)
                if feedback.score is not None:
                    scores.append(feedback.score)

                if question.study_plan_entry_id:
                    try:
                        self.record_review(question.study_plan_entry_id, owner_id, quality_from_correctness(feedback.correctness), score=feedback.score)
                        reviews_recorded += 1
                    except NotFoundError:
                        LOG.warning('grading_entry_missing', extra={'exam_id': exam_id, 'entry_id': question.study_plan_entry_id})
        except Exception as e:
            LOG.error('grading_pass_failed', extra={'exam_id': exam_id, 'error': str(e)})
            self.store.update_practice_exam(exam_id, PracticeExamStatus.FAILED, error=(str(e) or e.__class__.__name__)[:500])
            raise

        average = round(sum(scores) / len(scores), 2) if scores else None
        exam = self.store.update_practice_exam(exam_id, PracticeExamStatus.COMPLETED, score=average, error=None)

        streak = None
        if reviews_recorded:
            streak = self.store.save_streak(update_streak(self.store.get_streak(owner_id)))

        log_grading_pass(exam_id, len(responses), reviews_recorded, average, int((time.time() - start) * 1000))
        return {
            'exam': exam.to_wire(),
            'responses': [r.to_wire() for r in responses],
            'averageScore': average,
            'reviewsRecorded': reviews_recorded,
            'streak': streak.to_wire() if streak else None,
        }
