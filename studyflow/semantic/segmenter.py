"""Text segmentation helpers for the generation pipelines.

- chunk_text: bounded, overlapping chunks that prefer paragraph boundaries
- truncate_to_token_limit: approximate token budget with a truncation marker
- strip_code_fences / sanitize_for_database: cleanup of model output and stored text
"""
from __future__ import annotations

import os
import re
from typing import List

PLAN_CHUNK_MAX_CHARS = int(os.getenv('PLAN_CHUNK_MAX_CHARS', '48000'))
PLAN_CHUNK_OVERLAP_CHARS = int(os.getenv('PLAN_CHUNK_OVERLAP_CHARS', '1000'))
CHARS_PER_TOKEN = 4
# a paragraph break is only used as a cut point when it lies past this share of the window
PARAGRAPH_BREAK_MIN_RATIO = 0.6
TRUNCATION_BOUNDARY_WINDOW = 500
TRUNCATION_MARKER = '\n\n[... Content truncated for length. Key information above covers the main topics ...]'

_CODE_FENCE_RE = re.compile(r'```(?:json)?\n?([\s\S]*?)```', re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F]')


def chunk_text(text: str, max_chars: int = PLAN_CHUNK_MAX_CHARS, overlap_chars: int = PLAN_CHUNK_OVERLAP_CHARS) -> List[str]:
    if text is None:
        return []
    if len(text) <= max_chars:
        return [text.strip()]

    chunks: List[str] = []
    start = 0
    while start < len(text):
        slice_end = min(start + max_chars, len(text))
        chunk = text[start:slice_end]

        if slice_end < len(text):
            last_break = chunk.rfind('\n\n')
            if last_break > max_chars * PARAGRAPH_BREAK_MIN_RATIO:
                chunk = chunk[:last_break]

        trimmed = chunk.strip()
        if trimmed:
            chunks.append(trimmed)
        if slice_end >= len(text):
            break

        advance_by = len(chunk) - overlap_chars if len(chunk) > overlap_chars else len(chunk)
        if advance_by <= 0:
            break
        start += advance_by

    return chunks


def truncate_to_token_limit(text: str, max_tokens: int) -> str:
    if not text:
        return ''
    max_chars = max(0, int(max_tokens)) * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    last_paragraph = truncated.rfind('\n\n')
    last_sentence = truncated.rfind('. ')
    # sentence cuts keep the period
    if last_sentence >= 0:
        last_sentence += 1
    cut_point = max(last_paragraph, last_sentence)
    if cut_point <= 0 or cut_point < max_chars - TRUNCATION_BOUNDARY_WINDOW:
        # no usable boundary near the end of the budget: cut at the last whitespace instead of mid-word
        last_space = truncated.rfind(' ')
        cut_point = last_space if last_space > 0 else max_chars

    return truncated[:cut_point].rstrip() + TRUNCATION_MARKER


def strip_code_fences(text: str) -> str:
    if not text:
        return ''
    match = _CODE_FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def sanitize_for_database(text) -> str:
    if text is None:
        return ''
    return _CONTROL_CHARS_RE.sub('', str(text).replace('\u0000', '')).strip()
