"""Chunked study plan generation.

Sources are concatenated under `=== fileName ===` headers, chunked, and each chunk is
prompted in order with the titles already covered by earlier chunks. Past exam sources
are also passed to every chunk as a truncated high-priority signal.
"""
from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from studyflow.utils import get_logger
from .llm_gateway import ChatResult, LLMGateway
from .plan_merger import PlanItem, merge_plan_chunks, parse_plan_chunk_or_fallback
from .prompts import build_study_plan_prompt
from .segmenter import chunk_text, truncate_to_token_limit, PLAN_CHUNK_MAX_CHARS, PLAN_CHUNK_OVERLAP_CHARS

LOG = get_logger()

PLAN_EXAM_CONTEXT_TOKENS = int(os.getenv('PLAN_EXAM_CONTEXT_TOKENS', '6000'))


class PlanGeneration(BaseModel):
    items: List[PlanItem]
    chunk_count: int
    fallback_chunks: List[int] = []
    calls: List[ChatResult] = []


def _source_field(source: Any, name: str, alias: str, default=None):
    if isinstance(source, dict):
        return source.get(alias, source.get(name, default))
    return getattr(source, name, default)


def _source_header(source: Any) -> str:
    name = _source_field(source, 'file_name', 'fileName', 'Untitled')
    suffix = ' (Past Exam)' if _source_field(source, 'is_exam', 'isExam', False) else ''
    return f'=== {name}{suffix} ==='


def combine_sources(sources: List[Any]) -> str:
    return '\n\n'.join(f'{_source_header(s)}\n{_source_field(s, "text", "text", "") or ""}' for s in sources)


def build_exam_context(sources: List[Any], max_tokens: int = PLAN_EXAM_CONTEXT_TOKENS) -> str:
    raw = '\n\n'.join(
        f'{_source_header(s)}\n{_source_field(s, "text", "text", "") or ""}'
        for s in sources if _source_field(s, 'is_exam', 'isExam', False)
    )
    return truncate_to_token_limit(raw, max_tokens) if raw else ''


def passing_score_note(thresholds: Optional[Dict[str, Any]]) -> Optional[str]:
    if not thresholds:
        return None
    return (
        f'Target readiness: pass at {thresholds.get("pass")}% confidence, '
        f'solid at {thresholds.get("good")}%, ace at {thresholds.get("ace")}%.'
    )


def generate_study_plan(
    gateway: LLMGateway,
    sources: List[Any],
    language: str = 'en',
    additional_notes: Optional[str] = None,
    thresholds: Optional[Dict[str, Any]] = None,
    job_id: Optional[str] = None,
    max_chars: int = PLAN_CHUNK_MAX_CHARS,
    overlap_chars: int = PLAN_CHUNK_OVERLAP_CHARS,
) -> PlanGeneration:
    start = time.time()
    exam_content = build_exam_context(sources)
    chunks = chunk_text(combine_sources(sources), max_chars, overlap_chars)
    note = passing_score_note(thresholds)

    chunk_items: List[List[Dict[str, Any]]] = []
    fallback_chunks: List[int] = []
    calls: List[ChatResult] = []
    covered_titles: List[str] = []
    covered_keys = set()

    for idx, chunk in enumerate(chunks):
        multi = len(chunks) > 1
        prompt = build_study_plan_prompt(
            chunk,
            language=language,
            chunk_number=idx + 1 if multi else None,
            total_chunks=len(chunks) if multi else None,
            covered_titles=list(covered_titles),
            exam_content=exam_content or None,
            additional_notes=additional_notes,
            passing_score_note=note,
        )
        output = gateway.generate([{'type': 'text', 'text': prompt}], feature='plan')
        calls.append(output)

        items, used_fallback = parse_plan_chunk_or_fallback(output.text, chunk_index=idx)
        if used_fallback:
            fallback_chunks.append(idx)
        chunk_items.append(items)

        for item in items:
            title = str(item.get('title') or '').strip()
            if title and title.lower() not in covered_keys:
                covered_keys.add(title.lower())
                covered_titles.append(title)

        LOG.info('plan_chunk_processed', extra={'job_id': job_id, 'chunk_index': idx, 'chunk_count': len(chunks), 'item_count': len(items), 'fallback': used_fallback})

    merged = merge_plan_chunks(chunk_items)
    LOG.info('plan_merged', extra={'job_id': job_id, 'entry_count': len(merged), 'duration_ms': int((time.time() - start) * 1000)})
    return PlanGeneration(items=merged, chunk_count=len(chunks), fallback_chunks=fallback_chunks, calls=calls)
