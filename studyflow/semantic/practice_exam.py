"""Practice exam question generation from a lecture's stored study plan."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from studyflow.storage.models import StudyPlanEntry
from studyflow.utils import get_logger
from .llm_gateway import ChatResult, LLMGateway
from .prompts import build_practice_exam_prompt
from .segmenter import sanitize_for_database, strip_code_fences

LOG = get_logger()

QUESTION_SOURCES = ('exam', 'worksheet', 'material')


class PracticeExamError(Exception):
    pass


class PracticeExamParseError(PracticeExamError):
    pass


def select_topics(entries: List[StudyPlanEntry], category: Optional[str] = None) -> List[StudyPlanEntry]:
    """Plan entries in rank order, restricted to `category` for a cluster quiz."""
    ranked = sorted(entries, key=lambda e: e.order_index)
    if not category:
        return ranked
    wanted = category.strip().lower()
    in_category = [e for e in ranked if (e.category or '').strip().lower() == wanted]
    if not in_category:
        LOG.warning('practice_exam_category_empty', extra={'category': category})
        return ranked
    return in_category


def format_topics(entries: List[StudyPlanEntry]) -> str:
    lines = []
    for entry in entries:
        line = f'- {entry.title} [{entry.importance_tier.value}]'
        if entry.description:
            line += f': {entry.description}'
        lines.append(line)
    return '\n'.join(lines)


def parse_exam_questions(text: str) -> List[Dict[str, Any]]:
    try:
        data = json.loads(strip_code_fences(text or ''))
    except (json.JSONDecodeError, TypeError) as e:
        raise PracticeExamParseError(f'Practice exam output is not valid JSON: {e}') from e
    if not isinstance(data, list):
        raise PracticeExamParseError('Expected a JSON array of questions')
    questions = []
    for item in data:
        if not isinstance(item, dict):
            continue
        prompt = sanitize_for_database(item.get('prompt') or '')
        if not prompt:
            continue
        source = str(item.get('source') or '').strip().lower()
        questions.append({
            'prompt': prompt,
            'answer': sanitize_for_database(item.get('answer') or '') or None,
            'topicTitle': sanitize_for_database(item.get('topicTitle') or '') or None,
            'source': source if source in QUESTION_SOURCES else 'material',
        })
    if not questions:
        raise PracticeExamParseError('No usable questions in output')
    return questions


def fallback_questions(entries: List[StudyPlanEntry], question_count: int) -> List[Dict[str, Any]]:
    return [
        {
            'prompt': f'Explain the key ideas of "{entry.title}" and give an example.',
            'answer': entry.description or None,
            'topicTitle': entry.title,
            'source': 'material',
        }
        for entry in entries[:question_count]
    ]


def link_questions(questions: List[Dict[str, Any]], entries: List[StudyPlanEntry]) -> List[Dict[str, Any]]:
    """Attach studyPlanEntryId by case-insensitive topic title."""
    by_title = {entry.title.strip().lower(): entry.id for entry in entries}
    for question in questions:
        title = (question.get('topicTitle') or '').strip().lower()
        question['studyPlanEntryId'] = by_title.get(title)
    return questions


def generate_exam_questions(
    gateway: LLMGateway,
    entries: List[StudyPlanEntry],
    question_count: int,
    language: str = 'en',
    category: Optional[str] = None,
    exam_text: Optional[str] = None,
    worksheet_text: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], bool, ChatResult]:
    """Returns (questions, used_fallback, call)."""
    topics = select_topics(entries, category)
    if not topics:
        raise PracticeExamError('Lecture has no study plan entries to build an exam from')

    prompt = build_practice_exam_prompt(
        format_topics(topics),
        question_count,
        language=language,
        exam_text=exam_text,
        worksheet_text=worksheet_text,
        category_name=category,
    )
    output = gateway.generate([{'type': 'text', 'text': prompt}], feature='practice_exam')

    used_fallback = False
    try:
        questions = parse_exam_questions(output.text)[:question_count]
    except PracticeExamParseError as e:
        LOG.warning('practice_exam_parse_failed', extra={'error': str(e)})
        questions = fallback_questions(topics, question_count)
        used_fallback = True
    return link_questions(questions, entries), used_fallback, output
