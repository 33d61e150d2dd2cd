"""Answer grading and lecture metadata generation."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from studyflow.utils import get_logger
from .llm_gateway import ChatResult, LLMGateway
from .prompts import build_grading_prompt, build_metadata_prompt
from .segmenter import sanitize_for_database, strip_code_fences

LOG = get_logger()

DEFAULT_LECTURE_TITLE = 'New Lecture'
METADATA_NOTES_MAX_CHARS = 400

_CORRECTNESS_ALIASES = {
    'correct': 'correct',
    'fully correct': 'correct',
    'partially correct': 'partially correct',
    'partially_correct': 'partially correct',
    'partial': 'partially correct',
    'incorrect': 'incorrect',
    'wrong': 'incorrect',
}


class GradingFeedback(BaseModel):
    summary: str
    correctness: str = 'unknown'
    score: Optional[float] = None
    improvements: List[str] = []


def _parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(strip_code_fences(text or ''))
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _normalize_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:
        return None
    return max(0.0, min(100.0, score))


def normalize_feedback(text: str) -> GradingFeedback:
    data = _parse_json_object(text)
    if data is None:
        LOG.warning('grading_output_unparseable', extra={'length': len(text or '')})
        return GradingFeedback(summary=(text or '').strip(), correctness='unknown')

    correctness = str(data.get('correctness') or '').strip().lower()
    improvements = data.get('improvements') or []
    if isinstance(improvements, str):
        improvements = [line.strip(' -*\t') for line in improvements.splitlines()]
    return GradingFeedback(
        summary=str(data.get('summary') or '').strip(),
        correctness=_CORRECTNESS_ALIASES.get(correctness, correctness or 'unknown'),
        score=_normalize_score(data.get('score')),
        improvements=[str(tip).strip() for tip in improvements if str(tip).strip()],
    )


def grade_answer(
    gateway: LLMGateway,
    question_prompt: str,
    answer_text: Optional[str] = None,
    answer_image_data_url: Optional[str] = None,
    language: str = 'en',
    feature: str = 'grade',
) -> Tuple[GradingFeedback, ChatResult]:
    content: List[Dict[str, Any]] = [{'type': 'text', 'text': build_grading_prompt(question_prompt, answer_text, language)}]
    if answer_image_data_url:
        content.append({'type': 'image_url', 'image_url': {'url': answer_image_data_url}})
    output = gateway.generate(content, feature=feature)
    return normalize_feedback(output.text), output


def generate_lecture_metadata(gateway: LLMGateway, files: List[Any], language: str = 'en') -> Tuple[Dict[str, str], ChatResult]:
    lines = []
    for f in files:
        name = f.get('name') if isinstance(f, dict) else getattr(f, 'name', '')
        notes = (f.get('notes') if isinstance(f, dict) else getattr(f, 'notes', None)) or ''
        lines.append(f'- {name}: {notes[:METADATA_NOTES_MAX_CHARS]}' if notes else f'- {name}')
    output = gateway.generate([{'type': 'text', 'text': build_metadata_prompt('\n'.join(lines), language)}], feature='metadata')

    data = _parse_json_object(output.text)
    if data is None:
        LOG.warning('metadata_output_unparseable')
        return {'title': DEFAULT_LECTURE_TITLE, 'description': (output.text or '').strip()}, output
    title = sanitize_for_database(data.get('title') or '') or DEFAULT_LECTURE_TITLE
    return {'title': title, 'description': sanitize_for_database(data.get('description') or '')}, output
