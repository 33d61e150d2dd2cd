from .engine import (
    MasteryConfig,
    DEFAULT_CONFIG,
    compute_mastery_score,
    compute_next_review_date,
    get_items_due_for_review,
    select_daily_quiz_items,
)
from .streaks import update_streak
from .review_service import ReviewService, quality_from_correctness

__all__ = [
    'MasteryConfig',
    'DEFAULT_CONFIG',
    'compute_mastery_score',
    'compute_next_review_date',
    'get_items_due_for_review',
    'select_daily_quiz_items',
    'update_streak',
    'ReviewService',
    'quality_from_correctness',
]
