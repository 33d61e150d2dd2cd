"""Prompt builders for the generation pipelines.

Each builder returns a plain string. Keys requested from the model are always English
even when the answer language differs.
"""
from typing import Optional


def _language_note(language: str) -> str:
    return f'Respond in {language or "en"} but keep JSON keys in English.'


def build_grading_prompt(question_prompt: str, answer_text: Optional[str] = None, language: str = 'en') -> str:
    answer = answer_text.strip() if answer_text and answer_text.strip() else '(no typed answer; see attached image if present)'
    return (
        f'You are grading a student\'s answer to the question "{question_prompt}". '
        'Evaluate correctness and point out gaps. Return a JSON object with: '
        '"summary" (1-2 sentences), "correctness" (correct | partially correct | incorrect), '
        '"score" (0-100) and "improvements" (2-4 short tips). '
        'If the answer is empty, say that no answer was provided. '
        'Use $...$ for inline math and $$...$$ for block math.\n\n'
        f'Student answer:\n{answer}\n\n'
        f'{_language_note(language)}'
    )


def build_metadata_prompt(file_summaries: str, language: str = 'en') -> str:
    return (
        'You are organizing lecture materials. Based on these file hints:\n'
        f'{file_summaries}\n'
        'Return a compact JSON object {"title": "<concise lecture title>", "description": "<1-2 sentence summary>"}. '
        'Keep it factual. '
        f'{_language_note(language)}'
    )


def build_study_plan_prompt(
    content: str,
    language: str = 'en',
    chunk_number: Optional[int] = None,
    total_chunks: Optional[int] = None,
    covered_titles: Optional[list] = None,
    exam_content: Optional[str] = None,
    additional_notes: Optional[str] = None,
    passing_score_note: Optional[str] = None,
) -> str:
    parts = ['You are an expert curriculum designer. Analyze the lecture materials and build an exam-aware study plan grouped into syllabus categories.']
    if chunk_number and total_chunks:
        parts.append(f'You are processing chunk {chunk_number} of {total_chunks}. Focus on this chunk only.')
    if covered_titles:
        parts.append('These topics are already covered, do not repeat them:\n- ' + '\n- '.join(covered_titles))
    parts.append('Secure the minimum passing score first, then add stretch learning.')
    parts.append(f'**Materials:**\n{content}')
    if exam_content:
        parts.append(f'**Past exam signals (very high priority):**\n{exam_content}')
    if additional_notes:
        parts.append(
            f'**Instructor notes (high priority):**\n{additional_notes}\n'
            'Mark topics from these notes with "mentionedInNotes": true and boost their priorityScore by 15-25 points.'
        )
    parts.append(passing_score_note or 'Target: confidently exceed the passing threshold before adding stretch goals.')
    parts.append(
        'Return ONLY a JSON array of 6-12 entries shaped like:\n'
        '[{"title": "5-10 words", "description": "1-2 sentences", "keyConcepts": ["..."], '
        '"category": "chapter", "importanceTier": "core | high-yield | stretch", "priorityScore": 0-100, '
        '"fromExamSource": true/false, "examRelevance": "high | medium | low", "mentionedInNotes": true/false}]\n'
        'Use core for must-pass items, high-yield for recurring ones and stretch for the rest. '
        'Topics taken from past exams get "fromExamSource": true and "examRelevance": "high".'
    )
    parts.append(_language_note(language))
    return '\n\n'.join(parts)


def build_practice_exam_prompt(
    topics: str,
    question_count: int,
    language: str = 'en',
    exam_text: Optional[str] = None,
    worksheet_text: Optional[str] = None,
    category_name: Optional[str] = None,
) -> str:
    if category_name:
        intro = f'You are writing a cluster assessment for the "{category_name}" topic cluster. Cover all of its topics.'
        guidance = f'Create {question_count} questions spread across the topics of "{category_name}". A score of 70% or more means the cluster is mastered.'
    else:
        intro = 'You are writing a practice exam from the student\'s study topics.'
        guidance = f'Create {question_count} questions. Mirror past exam patterns when exam text exists, otherwise use the worksheets.'
    return (
        f'{intro}\n\n'
        f'Topics:\n{topics}\n\n'
        f'Past exams (highest fidelity):\n{exam_text or "None provided"}\n\n'
        f'Worksheets / lecture materials (secondary):\n{worksheet_text or "None provided"}\n\n'
        f'{guidance}\n\n'
        'Return a JSON array: [{"prompt": "question", "answer": "short expected answer", '
        '"topicTitle": "exact title from the topics list", "source": "exam | worksheet | material"}]\n'
        f'{_language_note(language)}'
    )


def build_tutor_system_prompt(material_context: str, language: str = 'en') -> str:
    return (
        'You are a tutor using the Feynman technique. Explain ideas in simple language with analogies, '
        'find gaps in the student\'s understanding and guide them with one Socratic question at a time. '
        'Keep each turn to 1-2 short paragraphs and end with exactly one check-in question. '
        'Use Markdown and $...$ / $$...$$ for math.\n\n'
        f'**Material context:**\n{material_context or "None provided"}\n\n'
        f'Always respond in {language or "en"}.'
    )
