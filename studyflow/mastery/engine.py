"""Mastery scoring and review scheduling.

Pure functions over a caller-supplied review history. Malformed numeric or date fields
are clamped or replaced with defaults; nothing here raises on bad data.

- compute_mastery_score: recency-weighted average of review scores, decayed by time since
  the newest review
- compute_next_review_date: SM-2 style interval growing with review count, ease and mastery
- get_items_due_for_review: entries whose next review is unset or has elapsed
- select_daily_quiz_items: bounded deterministic mix of due, weak and filler entries
"""
from __future__ import annotations

import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field


class MasteryConfig(BaseModel):
    default_score: float = Field(default_factory=lambda: float(os.getenv('MASTERY_DEFAULT_SCORE', '30')))
    recency_decay_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_RECENCY_DECAY_DAYS', '14')))
    retention_decay_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_RETENTION_DECAY_DAYS', '28')))
    history_window: int = Field(default_factory=lambda: int(os.getenv('MASTERY_HISTORY_WINDOW', '50')))
    weak_threshold: float = Field(default_factory=lambda: float(os.getenv('MASTERY_WEAK_THRESHOLD', '50')))
    default_ease: float = Field(default_factory=lambda: float(os.getenv('MASTERY_DEFAULT_EASE', '2.5')))
    min_ease: float = Field(default_factory=lambda: float(os.getenv('MASTERY_MIN_EASE', '1.3')))
    first_interval_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_FIRST_INTERVAL_DAYS', '1')))
    second_interval_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_SECOND_INTERVAL_DAYS', '2')))
    min_interval_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_MIN_INTERVAL_DAYS', '0.5')))
    max_interval_days: float = Field(default_factory=lambda: float(os.getenv('MASTERY_MAX_INTERVAL_DAYS', '60')))
    quality_scores: dict = Field(default_factory=lambda: {'correct': 90.0, 'partial': 65.0, 'skipped': 35.0, 'incorrect': 20.0})


DEFAULT_CONFIG = MasteryConfig()
SECONDS_PER_DAY = 86400.0


def _value(obj: Any, name: str, alias: Optional[str] = None):
    if isinstance(obj, dict):
        if name in obj:
            return obj[name]
        return obj.get(alias) if alias else None
    return getattr(obj, name, None)


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def clamp_score(value: Any, default: float = 0.0) -> float:
    numeric = _finite(value)
    if numeric is None:
        return default
    return min(100.0, max(0.0, numeric))


def as_utc(value: Any) -> Optional[datetime]:
    """Datetime or ISO string to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) or datetime.now(timezone.utc)


def quality_to_score(quality: Any, config: MasteryConfig = DEFAULT_CONFIG) -> float:
    key = getattr(quality, 'value', quality)
    return config.quality_scores.get(key, config.quality_scores['incorrect'])


def compute_mastery_score(history: Iterable[Any], now: Optional[datetime] = None, config: MasteryConfig = DEFAULT_CONFIG) -> float:
    now = _now(now)
    events = []
    for event in history or []:
        reviewed_at = as_utc(_value(event, 'reviewed_at', 'reviewedAt')) or now
        events.append((reviewed_at, event))
    if not events:
        return config.default_score

    events.sort(key=lambda pair: pair[0], reverse=True)
    events = events[:max(1, config.history_window)]
    recency_days = config.recency_decay_days if config.recency_decay_days > 0 else DEFAULT_CONFIG.recency_decay_days
    retention_days = config.retention_decay_days if config.retention_decay_days > 0 else DEFAULT_CONFIG.retention_decay_days

    weighted_sum = 0.0
    weight_total = 0.0
    for reviewed_at, event in events:
        age_days = max(0.0, (now - reviewed_at).total_seconds() / SECONDS_PER_DAY)
        weight = math.exp(-age_days / recency_days)
        raw = _finite(_value(event, 'score'))
        if raw is None:
            raw = quality_to_score(_value(event, 'response_quality', 'responseQuality'), config)
        weighted_sum += clamp_score(raw) * weight
        weight_total += weight

    base = weighted_sum / weight_total if weight_total > 0 else config.default_score
    age_since_newest = max(0.0, (now - events[0][0]).total_seconds() / SECONDS_PER_DAY)
    decay = math.exp(-age_since_newest / retention_days)
    return round(clamp_score(base * decay), 2)


def compute_next_review_date(mastery_score: Any, ease_factor: Any = None, review_count: Any = 0, now: Optional[datetime] = None, config: MasteryConfig = DEFAULT_CONFIG) -> datetime:
    """Interval in days: first, second, then max(second, count * ease * (0.5 + 2.5 * mastery/100)),
    clamped to [min_interval_days, max_interval_days]."""
    now = _now(now)
    mastery = clamp_score(mastery_score, default=config.default_score)
    ease = _finite(ease_factor)
    ease = max(config.min_ease, ease if ease is not None else config.default_ease)
    count = _finite(review_count)
    count = int(count) if count is not None else 0

    if count <= 0:
        interval = config.first_interval_days
    elif count == 1:
        interval = config.second_interval_days
    else:
        mastery_multiplier = 0.5 + (mastery / 100.0) * 2.5
        interval = max(config.second_interval_days, count * ease * mastery_multiplier)

    interval = min(max(interval, config.min_interval_days), config.max_interval_days)
    # never schedule at or before now
    interval = max(interval, 1.0 / SECONDS_PER_DAY)
    return now + timedelta(days=interval)


def is_due(entry: Any, now: Optional[datetime] = None) -> bool:
    next_review = as_utc(_value(entry, 'next_review_at', 'nextReviewAt'))
    return next_review is None or next_review <= _now(now)


def get_items_due_for_review(entries: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
    now = _now(now)
    return [entry for entry in entries or [] if is_due(entry, now)]


def _is_exam_priority(entry: Any) -> bool:
    relevance = _value(entry, 'exam_relevance', 'examRelevance')
    return getattr(relevance, 'value', relevance) == 'high' or _value(entry, 'from_exam_source', 'fromExamSource') is True


def select_daily_quiz_items(entries: Iterable[Any], limit: int = 8, now: Optional[datetime] = None, config: MasteryConfig = DEFAULT_CONFIG) -> List[Any]:
    """Pick at most `limit` distinct entries.

    Groups in precedence: due and weak, due, weak, then the rest as filler. Within the first three
    groups: lowest mastery first, exam-priority entries first, higher priorityScore. Filler: exam
    priority, higher priorityScore, then lowest mastery. Ties end on orderIndex, id.
    """
    limit = int(_finite(limit) or 0)
    if limit <= 0:
        return []
    now = _now(now)

    def mastery_of(entry):
        return clamp_score(_value(entry, 'mastery_score', 'masteryScore'), default=config.default_score)

    def group_of(entry):
        due = is_due(entry, now)
        weak = mastery_of(entry) < config.weak_threshold
        if due and weak:
            return 0
        if due:
            return 1
        if weak:
            return 2
        return 3

    def sort_key(entry):
        group = group_of(entry)
        priority = _finite(_value(entry, 'priority_score', 'priorityScore')) or 0.0
        order_index = _finite(_value(entry, 'order_index', 'orderIndex'))
        exam_rank = 0 if _is_exam_priority(entry) else 1
        if group == 3:
            # filler is picked by priority, mastery only breaks ties
            ranking = (exam_rank, -priority, mastery_of(entry))
        else:
            ranking = (mastery_of(entry), exam_rank, -priority)
        return (
            group,
            *ranking,
            order_index if order_index is not None else float('inf'),
            str(_value(entry, 'id') or ''),
        )

    selected: List[Any] = []
    seen_ids = set()
    for entry in sorted(entries or [], key=sort_key):
        entry_id = _value(entry, 'id')
        key = entry_id if entry_id is not None else id(entry)
        if key in seen_ids:
            continue
        seen_ids.add(key)
        selected.append(entry)
        if len(selected) >= limit:
            break
    return selected
