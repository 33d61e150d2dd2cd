"""Token pricing for cost accounting (USD per 1K tokens), overridable per model via env."""
from __future__ import annotations

import os
import re
from typing import Dict, Optional

from pydantic import BaseModel

BASE_PRICING: Dict[str, Dict[str, float]] = {
    'gpt-5.1': {'input_per_1k': 0.003, 'output_per_1k': 0.012},
    'gpt-4.1': {'input_per_1k': 0.0025, 'output_per_1k': 0.01},
    'gpt-4o': {'input_per_1k': 0.005, 'output_per_1k': 0.015},
    'gpt-4o-mini': {'input_per_1k': 0.0003, 'output_per_1k': 0.0006},
    'text-embedding-3-small': {'input_per_1k': 0.00002, 'output_per_1k': 0.0},
    'text-embedding-3-large': {'input_per_1k': 0.00013, 'output_per_1k': 0.0},
    'default': {'input_per_1k': 0.003, 'output_per_1k': 0.006},
}


class TokenUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class CostBreakdown(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    input_cost_usd: float = 0.0
    output_cost_usd: float = 0.0
    cost_usd: float = 0.0


def _round_currency(value: float) -> float:
    return round(value, 6)


def _env_price(key: str, fallback: float) -> float:
    raw = os.getenv(key)
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


def get_model_pricing(model: Optional[str]) -> Dict[str, float]:
    key = (model or 'default').lower()
    base = BASE_PRICING.get(key, BASE_PRICING['default'])
    prefix = 'OPENAI_PRICE_' + re.sub(r'[^a-zA-Z0-9]', '_', key).upper()
    return {
        'input_per_1k': _env_price(f'{prefix}_INPUT', base['input_per_1k']),
        'output_per_1k': _env_price(f'{prefix}_OUTPUT', base['output_per_1k']),
    }


def calculate_token_cost(model: Optional[str], usage: TokenUsage) -> CostBreakdown:
    pricing = get_model_pricing(model)
    total = usage.total_tokens
    prompt_tokens = max(0, usage.prompt_tokens if usage.prompt_tokens is not None else (total or 0))
    if usage.completion_tokens is not None:
        completion_tokens = max(0, usage.completion_tokens)
    else:
        completion_tokens = max(0, total - prompt_tokens) if total else 0

    input_cost = _round_currency(prompt_tokens / 1000.0 * pricing['input_per_1k'])
    output_cost = _round_currency(completion_tokens / 1000.0 * pricing['output_per_1k'])
    return CostBreakdown(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        input_cost_usd=input_cost,
        output_cost_usd=output_cost,
        cost_usd=_round_currency(input_cost + output_cost),
    )


def calculate_transcription_cost(audio_seconds: Optional[float]) -> float:
    per_minute = _env_price('OPENAI_PRICE_WHISPER_PER_MIN', 0.006)
    minutes = max(0.0, float(audio_seconds or 0.0)) / 60.0
    return _round_currency(minutes * per_minute)
