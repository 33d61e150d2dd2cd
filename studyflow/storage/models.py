"""Persisted entities. Field names are snake_case in Python and camelCase on the wire."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


class ImportanceTier(str, Enum):
    CORE = 'core'
    HIGH_YIELD = 'high-yield'
    STRETCH = 'stretch'


class ExamRelevance(str, Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class ResponseQuality(str, Enum):
    CORRECT = 'correct'
    INCORRECT = 'incorrect'
    PARTIAL = 'partial'
    SKIPPED = 'skipped'


class StudyPlanEntry(CamelModel):
    id: str = Field(default_factory=new_id)
    lecture_id: str
    owner_id: Optional[str] = None
    title: str
    description: str = ''
    key_concepts: List[str] = []
    category: str = 'General'
    importance_tier: ImportanceTier = ImportanceTier.CORE
    priority_score: int = 90
    order_index: int = 0
    from_exam_source: bool = False
    exam_relevance: ExamRelevance = ExamRelevance.MEDIUM
    mentioned_in_notes: bool = False
    # None until the first review
    mastery_score: Optional[float] = None
    next_review_at: Optional[datetime] = None
    review_count: int = 0
    ease_factor: float = 2.5
    created_at: datetime = Field(default_factory=utcnow)


class ReviewEvent(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_id)
    study_plan_entry_id: str
    owner_id: Optional[str] = None
    score: Optional[float] = None
    response_quality: ResponseQuality
    reviewed_at: datetime = Field(default_factory=utcnow)


class PracticeExamStatus(str, Enum):
    PENDING = 'pending'
    READY = 'ready'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'


PRACTICE_EXAM_TRANSITIONS = {
    PracticeExamStatus.PENDING: {PracticeExamStatus.READY, PracticeExamStatus.FAILED},
    PracticeExamStatus.READY: {PracticeExamStatus.IN_PROGRESS, PracticeExamStatus.COMPLETED, PracticeExamStatus.FAILED},
    PracticeExamStatus.IN_PROGRESS: {PracticeExamStatus.COMPLETED, PracticeExamStatus.FAILED},
    # re-grading
    PracticeExamStatus.COMPLETED: {PracticeExamStatus.IN_PROGRESS},
    PracticeExamStatus.FAILED: set(),
}


def can_transition_exam(current: PracticeExamStatus, target: PracticeExamStatus) -> bool:
    return PracticeExamStatus(target) in PRACTICE_EXAM_TRANSITIONS.get(PracticeExamStatus(current), set())


class PracticeExam(CamelModel):
    id: str = Field(default_factory=new_id)
    lecture_id: str
    owner_id: str
    status: PracticeExamStatus = PracticeExamStatus.PENDING
    question_count: int = 5
    category: Optional[str] = None
    language: str = 'en'
    score: Optional[float] = None
    error: Optional[str] = None
    job_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PracticeExamQuestion(CamelModel):
    id: str = Field(default_factory=new_id)
    practice_exam_id: str
    study_plan_entry_id: Optional[str] = None
    prompt: str
    answer: Optional[str] = None
    source: str = 'material'
    order_index: int = 0


class PracticeExamResponse(CamelModel):
    id: str = Field(default_factory=new_id)
    practice_exam_id: str
    question_id: str
    owner_id: str
    answer_text: Optional[str] = None
    answer_image_data_url: Optional[str] = None
    feedback: Dict[str, Any] = {}
    score: Optional[float] = None
    graded_at: datetime = Field(default_factory=utcnow)


class StreakInfo(CamelModel):
    owner_id: str
    current: int = 0
    longest: int = 0
    last_review_date: Optional[str] = None


class UsageLog(CamelModel):
    id: str = Field(default_factory=new_id)
    owner_id: Optional[str] = None
    job_id: Optional[str] = None
    lecture_id: Optional[str] = None
    feature: str
    model: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    input_cost_usd: Optional[float] = None
    output_cost_usd: Optional[float] = None
    cost_usd: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
