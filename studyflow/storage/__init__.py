"""Storage subpackage: persisted entities and the StudyStore read/write contract."""

from .models import (
    StudyPlanEntry,
    ReviewEvent,
    ResponseQuality,
    ImportanceTier,
    ExamRelevance,
    PracticeExam,
    PracticeExamStatus,
    PracticeExamQuestion,
    PracticeExamResponse,
    StreakInfo,
    UsageLog,
)
from .study_store import StudyStore, StoreError, NotFoundError, InvalidExamTransition

__all__ = [
    'StudyPlanEntry',
    'ReviewEvent',
    'ResponseQuality',
    'ImportanceTier',
    'ExamRelevance',
    'PracticeExam',
    'PracticeExamStatus',
    'PracticeExamQuestion',
    'PracticeExamResponse',
    'StreakInfo',
    'UsageLog',
    'StudyStore',
    'StoreError',
    'NotFoundError',
    'InvalidExamTransition',
]
