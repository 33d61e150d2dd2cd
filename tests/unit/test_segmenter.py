import pytest

from studyflow.semantic.segmenter import (
    TRUNCATION_MARKER,
    chunk_text,
    sanitize_for_database,
    strip_code_fences,
    truncate_to_token_limit,
)

pytestmark = pytest.mark.unit


def test_short_text_is_a_single_trimmed_chunk():
    assert chunk_text('  hello world \n', max_chars=100, overlap_chars=10) == ['hello world']
    assert chunk_text(None) == []


def test_chunks_are_bounded_and_overlap():
    text = ''.join(str(i % 10) for i in range(250))
    chunks = chunk_text(text, max_chars=100, overlap_chars=20)
    assert len(chunks) == 3
    assert all(len(c) <= 100 for c in chunks)
    assert chunks[1][:20] == chunks[0][-20:]
    assert chunks[-1].endswith(text[-10:])


def test_chunk_prefers_late_paragraph_break():
    text = 'x' * 70 + '\n\n' + 'y' * 100
    chunks = chunk_text(text, max_chars=100, overlap_chars=10)
    assert chunks[0] == 'x' * 70
    assert chunks[-1].endswith('y' * 20)


def test_early_paragraph_break_is_ignored():
    text = 'x' * 10 + '\n\n' + 'y' * 200
    chunks = chunk_text(text, max_chars=100, overlap_chars=10)
    # a cut at position 10 would waste most of the window
    assert len(chunks[0]) == 100


def test_truncate_keeps_short_text():
    assert truncate_to_token_limit('short text', 100) == 'short text'
    assert truncate_to_token_limit('', 10) == ''


def test_truncate_cuts_at_sentence_boundary_and_marks():
    text = 'Sentence number one. ' * 100
    result = truncate_to_token_limit(text, 50)
    assert result.endswith(TRUNCATION_MARKER)
    body = result[:-len(TRUNCATION_MARKER)]
    assert len(body) <= 200
    assert body.endswith('.')


def test_truncate_without_boundaries_does_not_split_words():
    text = ' '.join(['word'] * 200)
    body = truncate_to_token_limit(text, 10)[:-len(TRUNCATION_MARKER)]
    assert body.split(' ')[-1] == 'word'


def test_strip_code_fences():
    assert strip_code_fences('```json\n[1, 2]\n```') == '[1, 2]'
    assert strip_code_fences('Here:\n```\n{"a": 1}\n```\nthanks') == '{"a": 1}'
    assert strip_code_fences('  plain  ') == 'plain'
    assert strip_code_fences(None) == ''


def test_sanitize_for_database_drops_control_chars():
    assert sanitize_for_database('a\x00b\x07c \n') == 'abc'
    assert sanitize_for_database('line one\nline two') == 'line one\nline two'
    assert sanitize_for_database(None) == ''


def _numbered_paragraphs(count=40):
    return '\n\n'.join(f'Paragraph {i} explains topic {i * 7} in {"some " * (i % 5)}detail.' for i in range(count))


@pytest.mark.parametrize('max_chars,overlap_chars', [
    (80, 10),
    (120, 30),
    (200, 0),
    (100, 99),
    (60, 60),
    (50, 200),
])
def test_chunks_cover_every_paragraph(max_chars, overlap_chars):
    text = _numbered_paragraphs()
    chunks = chunk_text(text, max_chars=max_chars, overlap_chars=overlap_chars)
    assert chunks
    assert all(len(c) <= max_chars for c in chunks)

    covered = [False] * len(text)
    for chunk in chunks:
        position = text.find(chunk)
        assert position >= 0
        while position >= 0:
            for i in range(position, position + len(chunk)):
                covered[i] = True
            position = text.find(chunk, position + 1)
    assert all(covered[i] for i, ch in enumerate(text) if not ch.isspace())


def test_overlap_larger_than_window_terminates():
    text = 'a' * 1000
    chunks = chunk_text(text, max_chars=100, overlap_chars=500)
    assert len(chunks) == 10
    assert ''.join(chunks) == text
