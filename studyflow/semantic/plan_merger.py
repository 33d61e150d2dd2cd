"""Merge per-chunk study plan candidates into one ranked plan.

Each chunk's model output is parsed on its own; a chunk that does not parse contributes a
single fallback item instead of failing the job. Merging normalizes tier and priority,
drops case-insensitive duplicate titles (first seen wins) and orders by tier, then
priority, then discovery order.
"""
from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Optional, Tuple

from studyflow.storage.models import CamelModel, ExamRelevance, ImportanceTier
from studyflow.utils import get_logger
from .segmenter import sanitize_for_database, strip_code_fences

LOG = get_logger()

TIER_ORDER = {
    ImportanceTier.CORE: 0,
    ImportanceTier.HIGH_YIELD: 1,
    ImportanceTier.STRETCH: 2,
}

DEFAULT_PRIORITY = {
    ImportanceTier.CORE: 90,
    ImportanceTier.HIGH_YIELD: 70,
    ImportanceTier.STRETCH: 40,
}

DEFAULT_CATEGORY = 'General'


class PlanParseError(Exception):
    pass


class PlanItem(CamelModel):
    title: str
    description: str = ''
    key_concepts: List[str] = []
    category: str = DEFAULT_CATEGORY
    importance_tier: ImportanceTier = ImportanceTier.CORE
    priority_score: int = DEFAULT_PRIORITY[ImportanceTier.CORE]
    order_index: int = 0
    from_exam_source: bool = False
    exam_relevance: ExamRelevance = ExamRelevance.MEDIUM
    mentioned_in_notes: bool = False


def fallback_items() -> List[Dict[str, Any]]:
    return [{
        'title': 'General Study',
        'description': 'Review all materials comprehensively',
        'keyConcepts': ['Review', 'Practice', 'Understand'],
        'category': DEFAULT_CATEGORY,
        'importanceTier': ImportanceTier.CORE.value,
        'priorityScore': DEFAULT_PRIORITY[ImportanceTier.CORE],
    }]


def normalize_tier(value: Any) -> ImportanceTier:
    normalized = value.strip().lower() if isinstance(value, str) else ''
    if normalized == 'core':
        return ImportanceTier.CORE
    if normalized in ('high-yield', 'high yield', 'high_yield'):
        return ImportanceTier.HIGH_YIELD
    if normalized == 'stretch':
        return ImportanceTier.STRETCH
    return ImportanceTier.CORE


def normalize_priority(value: Any, tier: ImportanceTier) -> int:
    if isinstance(value, bool) or value is None:
        return DEFAULT_PRIORITY[tier]
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY[tier]
    if not math.isfinite(numeric):
        return DEFAULT_PRIORITY[tier]
    # half-up rounding
    return max(0, min(100, int(math.floor(numeric + 0.5))))


def normalize_exam_relevance(value: Any) -> ExamRelevance:
    normalized = value.strip().lower() if isinstance(value, str) else ''
    try:
        return ExamRelevance(normalized)
    except ValueError:
        return ExamRelevance.MEDIUM


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return value is True


def parse_plan_chunk(text: Optional[str]) -> List[Dict[str, Any]]:
    """Parse one chunk's model output into a list of candidate dicts."""
    clean = strip_code_fences(text or '')
    try:
        data = json.loads(clean)
    except (json.JSONDecodeError, TypeError) as e:
        raise PlanParseError(f'Study plan chunk is not valid JSON: {e}') from e
    if not isinstance(data, list):
        raise PlanParseError('Expected a JSON array of study plan entries')
    return [item for item in data if isinstance(item, dict)]


def parse_plan_chunk_or_fallback(text: Optional[str], chunk_index: int = 0) -> Tuple[List[Dict[str, Any]], bool]:
    """Returns (items, used_fallback)."""
    try:
        return parse_plan_chunk(text), False
    except PlanParseError as e:
        LOG.warning('plan_chunk_parse_failed', extra={'chunk_index': chunk_index, 'error': str(e)})
        return fallback_items(), True


def merge_plan_chunks(chunk_items: List[List[Dict[str, Any]]]) -> List[PlanItem]:
    merged: List[PlanItem] = []
    seen_titles = set()

    for items in chunk_items:
        for raw in items or []:
            title = sanitize_for_database(raw.get('title') or '') or f'Topic {len(merged) + 1}'
            key = title.strip().lower()
            if key in seen_titles:
                continue
            seen_titles.add(key)

            tier = normalize_tier(raw.get('importanceTier'))
            concepts = raw.get('keyConcepts')
            merged.append(PlanItem(
                title=title,
                description=sanitize_for_database(raw.get('description') or ''),
                key_concepts=[sanitize_for_database(c) for c in concepts if sanitize_for_database(c)] if isinstance(concepts, list) else [],
                category=sanitize_for_database(raw.get('category') or '') or DEFAULT_CATEGORY,
                importance_tier=tier,
                priority_score=normalize_priority(raw.get('priorityScore'), tier),
                order_index=len(merged),
                from_exam_source=_as_flag(raw.get('fromExamSource')),
                exam_relevance=normalize_exam_relevance(raw.get('examRelevance')),
                mentioned_in_notes=_as_flag(raw.get('mentionedInNotes')),
            ))

    if not merged:
        merged = [PlanItem.model_validate(item) for item in fallback_items()]

    # order_index still holds the discovery position here
    ranked = sorted(merged, key=lambda item: (TIER_ORDER[item.importance_tier], -item.priority_score, item.order_index))
    for idx, item in enumerate(ranked):
        item.order_index = idx
    return ranked
