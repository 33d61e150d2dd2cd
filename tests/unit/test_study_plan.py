import json

import pytest

from studyflow.semantic import LLMGateway
from studyflow.semantic.study_plan import build_exam_context, combine_sources, generate_study_plan, passing_score_note
from tests.fixtures.mock_openai import FakeOpenAI, prompt_text
from tests.fixtures.sample_data import plan_sources

pytestmark = pytest.mark.unit

LONG_SOURCE = [{'fileName': 'a.txt', 'text': 'A' * 150 + '\n\n' + 'B' * 150}]


def test_combine_sources_adds_headers():
    combined = combine_sources(plan_sources())
    assert combined.startswith('=== lecture-notes.txt ===\nCell membranes')
    assert '=== exam-2023.txt (Past Exam) ===' in combined


def test_exam_context_only_includes_exam_sources():
    context = build_exam_context(plan_sources())
    assert 'Explain osmosis' in context
    assert 'lipid bilayers' not in context
    assert build_exam_context([{'fileName': 'n.txt', 'text': 'notes'}]) == ''


def test_passing_score_note():
    assert passing_score_note(None) is None
    assert '60%' in passing_score_note({'pass': 60, 'good': 75, 'ace': 90})


def test_single_chunk_plan():
    client = FakeOpenAI()
    generation = generate_study_plan(LLMGateway(client=client), plan_sources())
    assert generation.chunk_count == 1
    assert generation.fallback_chunks == []
    assert [i.title for i in generation.items] == ['Cell Membranes', 'Osmosis', 'Membrane History']
    prompt = prompt_text(client.completions.calls[0])
    assert 'Past exam signals' in prompt
    assert 'processing chunk' not in prompt


def test_chunks_see_titles_covered_so_far():
    replies = [
        json.dumps([{'title': 'Cells', 'importanceTier': 'core'}]),
        json.dumps([{'title': 'CELLS', 'importanceTier': 'stretch'}, {'title': 'Osmosis', 'importanceTier': 'high-yield'}]),
    ]
    client = FakeOpenAI(replies=replies)
    generation = generate_study_plan(LLMGateway(client=client), LONG_SOURCE, max_chars=200, overlap_chars=20)
    assert generation.chunk_count == 2
    assert [i.title for i in generation.items] == ['Cells', 'Osmosis']
    assert len(generation.calls) == 2
    second_prompt = prompt_text(client.completions.calls[1])
    assert 'processing chunk 2 of 2' in second_prompt
    assert 'already covered' in second_prompt
    assert '- Cells' in second_prompt


def test_unparseable_chunk_is_recorded_not_fatal():
    replies = [json.dumps([{'title': 'Cells'}]), 'Sorry, I cannot help with that.']
    generation = generate_study_plan(LLMGateway(client=FakeOpenAI(replies=replies)), LONG_SOURCE, max_chars=200, overlap_chars=20)
    assert generation.fallback_chunks == [1]
    assert [i.title for i in generation.items] == ['Cells', 'General Study']


def test_notes_and_thresholds_reach_the_prompt():
    client = FakeOpenAI()
    generate_study_plan(
        LLMGateway(client=client),
        plan_sources(),
        language='de',
        additional_notes='Chapter 3 is on the exam',
        thresholds={'pass': 50, 'good': 70, 'ace': 90},
    )
    prompt = prompt_text(client.completions.calls[0])
    assert 'Chapter 3 is on the exam' in prompt
    assert 'pass at 50%' in prompt
    assert 'Respond in de' in prompt
