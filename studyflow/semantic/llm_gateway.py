"""Gateway to the OpenAI generation backend.

Provides:
- LLMGateway singleton: whole-response chat, streamed chat, batched embeddings, transcription
- ChatStream: lazy, finite, non-restartable iterator of text deltas with explicit close()
- Result models carrying token usage and cost accounting

Custom exceptions: LLMGatewayError, ConfigurationError, UpstreamError, UpstreamTimeout
"""
from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional, Union

import openai
from openai import OpenAI
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from studyflow.utils import get_logger, log_llm_call, get_request_context
from .pricing import TokenUsage, CostBreakdown, calculate_token_cost, calculate_transcription_cost

LOG = get_logger()

OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_EMBED_MODEL = os.getenv('OPENAI_EMBED_MODEL', 'text-embedding-3-small')
OPENAI_TRANSCRIBE_MODEL = os.getenv('OPENAI_TRANSCRIBE_MODEL', 'whisper-1')
OPENAI_TIMEOUT = float(os.getenv('OPENAI_TIMEOUT', '60'))
OPENAI_RETRY_ATTEMPTS = int(os.getenv('OPENAI_RETRY_ATTEMPTS', '3'))
OPENAI_RETRY_MULTIPLIER = float(os.getenv('OPENAI_RETRY_MULTIPLIER', '2'))
OPENAI_RETRY_MAX_WAIT = float(os.getenv('OPENAI_RETRY_MAX_WAIT', '10'))
EMBED_BATCH_SIZE = int(os.getenv('EMBED_BATCH_SIZE', '12'))


class LLMGatewayError(Exception):
    pass


class ConfigurationError(LLMGatewayError):
    pass


class UpstreamError(LLMGatewayError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamTimeout(UpstreamError):
    pass


class ChatResult(BaseModel):
    text: str = ''
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    cost: Optional[CostBreakdown] = None


class EmbeddingResult(BaseModel):
    embeddings: List[List[float]] = []
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    cost: Optional[CostBreakdown] = None


class TranscriptionResult(BaseModel):
    text: str = ''
    model: Optional[str] = None
    duration_seconds: Optional[float] = None
    cost_usd: Optional[float] = None


ContentParts = Union[str, List[Dict[str, Any]]]


def _to_upstream_error(exc: Exception) -> UpstreamError:
    # APITimeoutError subclasses APIConnectionError, check it first
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamTimeout(f'OpenAI request timed out: {exc}')
    if isinstance(exc, openai.APIStatusError):
        return UpstreamError(f'OpenAI request failed: {exc.message}', status_code=exc.status_code)
    return UpstreamError(f'OpenAI request failed: {exc}')


def _usage_from(obj) -> Optional[TokenUsage]:
    usage = getattr(obj, 'usage', None)
    if usage is None:
        return None
    prompt = getattr(usage, 'prompt_tokens', None)
    completion = getattr(usage, 'completion_tokens', None)
    total = getattr(usage, 'total_tokens', None)
    if prompt is None and completion is None and total is None:
        return None
    return TokenUsage(
        prompt_tokens=prompt if isinstance(prompt, int) else None,
        completion_tokens=completion if isinstance(completion, int) else None,
        total_tokens=total if isinstance(total, int) else None,
    )


def _request_id(request_id: Optional[str]) -> Optional[str]:
    return request_id or get_request_context().get('request_id')


def _record_call(model: str, usage: Optional[TokenUsage], cost: Optional[CostBreakdown], started: float, feature: Optional[str], request_id: Optional[str]):
    duration_ms = int((time.time() - started) * 1000)
    log_llm_call(
        _request_id(request_id),
        model,
        (cost.prompt_tokens if cost else 0),
        (cost.completion_tokens if cost else 0),
        duration_ms,
        cost=cost.cost_usd if cost else None,
        feature=feature,
    )


_transport_retry = retry(
    stop=stop_after_attempt(OPENAI_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=OPENAI_RETRY_MULTIPLIER, max=OPENAI_RETRY_MAX_WAIT),
    retry=retry_if_exception_type(openai.APIConnectionError),
    reraise=True,
)


class ChatStream:
    """Iterator over the text deltas of one streamed completion.

    Deltas arrive in order and are kept; close() abandons the in-flight read without
    discarding text already delivered. Once exhausted or closed it yields nothing more.
    `result` is available at any time; usage and cost stay None unless the backend sent usage.
    """

    def __init__(self, stream, model: str, feature: Optional[str] = None, request_id: Optional[str] = None):
        self._stream = stream
        self._iter = iter(stream)
        self._parts: List[str] = []
        self._usage: Optional[TokenUsage] = None
        self._model = model
        self._feature = feature
        self._request_id = request_id
        self._started = time.time()
        self._closed = False
        self._finished = False

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self._closed or self._finished:
            raise StopIteration
        while True:
            try:
                chunk = next(self._iter)
            except StopIteration:
                self._finish()
                raise
            except openai.OpenAIError as e:
                self.close()
                LOG.warning('llm_stream_failed', extra={'model': self._model, 'error': str(e)})
                raise _to_upstream_error(e) from e

            if getattr(chunk, 'model', None):
                self._model = chunk.model
            usage = _usage_from(chunk)
            if usage is not None:
                self._usage = usage
            choices = getattr(chunk, 'choices', None) or []
            delta = getattr(choices[0].delta, 'content', None) if choices else None
            if delta:
                self._parts.append(delta)
                return delta

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _finish(self):
        if self._finished:
            return
        self._finished = True
        result = self.result
        _record_call(self._model, result.usage, result.cost, self._started, self._feature, self._request_id)

    def close(self):
        if self._closed:
            return
        self._closed = True
        closer = getattr(self._stream, 'close', None)
        if callable(closer):
            closer()
        if not self._finished:
            LOG.info('llm_stream_cancelled', extra={'model': self._model, 'delivered_chars': len(self.text)})

    @property
    def text(self) -> str:
        return ''.join(self._parts)

    @property
    def result(self) -> ChatResult:
        cost = calculate_token_cost(self._model, self._usage) if self._usage is not None else None
        return ChatResult(text=self.text, model=self._model, usage=self._usage, cost=cost)


class LLMGateway:
    _instance = None

    def __init__(self, client: Optional[OpenAI] = None):
        key = os.getenv('OPENAI_API_KEY')
        if client is None and not key:
            raise ConfigurationError('Missing OPENAI_API_KEY for OpenAI calls.')
        # retries are driven by tenacity below
        self.client = client or OpenAI(api_key=key, timeout=OPENAI_TIMEOUT, max_retries=0)
        self.model = OPENAI_MODEL
        self.embed_model = OPENAI_EMBED_MODEL
        self.transcribe_model = OPENAI_TRANSCRIBE_MODEL
        LOG.info('LLMGateway initialized', extra={'model': self.model, 'embed_model': self.embed_model})

    @classmethod
    def get_instance(cls) -> 'LLMGateway':
        if cls._instance is None:
            cls._instance = LLMGateway()
        return cls._instance

    @_transport_retry
    def _create_completion(self, messages: List[Dict[str, Any]], stream: bool = False):
        if stream:
            return self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
                stream_options={'include_usage': True},
            )
        return self.client.chat.completions.create(model=self.model, messages=messages)

    @_transport_retry
    def _create_embeddings(self, batch: List[str]):
        return self.client.embeddings.create(model=self.embed_model, input=batch)

    @_transport_retry
    def _create_transcription(self, filename: str, audio: bytes, language: Optional[str]):
        kwargs = {'model': self.transcribe_model, 'file': (filename, audio), 'response_format': 'verbose_json'}
        if language:
            kwargs['language'] = language
        return self.client.audio.transcriptions.create(**kwargs)

    def generate(self, content: ContentParts, feature: Optional[str] = None, request_id: Optional[str] = None) -> ChatResult:
        """Single user turn; `content` is a prompt string or a list of text/image_url parts."""
        return self.generate_with_messages([{'role': 'user', 'content': content}], feature=feature, request_id=request_id)

    def generate_with_messages(self, messages: List[Dict[str, Any]], feature: Optional[str] = None, request_id: Optional[str] = None) -> ChatResult:
        started = time.time()
        try:
            resp = self._create_completion(messages)
        except openai.OpenAIError as e:
            LOG.warning('llm_call_failed', extra={'model': self.model, 'feature': feature, 'error': str(e)})
            raise _to_upstream_error(e) from e

        model = getattr(resp, 'model', None) or self.model
        choices = getattr(resp, 'choices', None) or []
        text = (choices[0].message.content or '') if choices else ''
        usage = _usage_from(resp)
        cost = calculate_token_cost(model, usage) if usage is not None else None
        _record_call(model, usage, cost, started, feature, request_id)
        return ChatResult(text=text, model=model, usage=usage, cost=cost)

    def generate_stream(self, messages: List[Dict[str, Any]], feature: Optional[str] = None, request_id: Optional[str] = None) -> ChatStream:
        try:
            stream = self._create_completion(messages, stream=True)
        except openai.OpenAIError as e:
            LOG.warning('llm_stream_open_failed', extra={'model': self.model, 'feature': feature, 'error': str(e)})
            raise _to_upstream_error(e) from e
        return ChatStream(stream, self.model, feature=feature, request_id=request_id)

    def embed(self, texts: List[str], feature: Optional[str] = 'embed', request_id: Optional[str] = None) -> EmbeddingResult:
        """Embed texts in batches of EMBED_BATCH_SIZE; any failing batch aborts the whole call."""
        started = time.time()
        embeddings: List[List[float]] = []
        aggregated: Optional[TokenUsage] = None
        batch_size = max(1, EMBED_BATCH_SIZE)

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            try:
                resp = self._create_embeddings(batch)
            except openai.OpenAIError as e:
                LOG.warning('llm_embed_batch_failed', extra={'batch_start': i, 'batch_size': len(batch), 'error': str(e)})
                raise _to_upstream_error(e) from e

            usage = _usage_from(resp)
            if usage is not None:
                aggregated = TokenUsage(
                    prompt_tokens=((aggregated.prompt_tokens if aggregated else 0) or 0) + (usage.prompt_tokens or 0),
                    completion_tokens=((aggregated.completion_tokens if aggregated else 0) or 0) + (usage.completion_tokens or 0),
                    total_tokens=((aggregated.total_tokens if aggregated else 0) or 0) + (usage.total_tokens or 0),
                )
            items = sorted(getattr(resp, 'data', None) or [], key=lambda item: getattr(item, 'index', 0))
            embeddings.extend(list(item.embedding) for item in items)

        cost = calculate_token_cost(self.embed_model, aggregated) if aggregated is not None else None
        if texts:
            _record_call(self.embed_model, aggregated, cost, started, feature, request_id)
        return EmbeddingResult(embeddings=embeddings, model=self.embed_model, usage=aggregated, cost=cost)

    def transcribe(self, audio: bytes, filename: str = 'audio.m4a', language: Optional[str] = None, feature: Optional[str] = 'transcribe', request_id: Optional[str] = None) -> TranscriptionResult:
        started = time.time()
        try:
            resp = self._create_transcription(filename, audio, language)
        except openai.OpenAIError as e:
            LOG.warning('llm_transcribe_failed', extra={'model': self.transcribe_model, 'error': str(e)})
            raise _to_upstream_error(e) from e

        duration = getattr(resp, 'duration', None)
        cost_usd = calculate_transcription_cost(duration) if duration is not None else None
        log_llm_call(_request_id(request_id), self.transcribe_model, 0, 0, int((time.time() - started) * 1000), cost=cost_usd, feature=feature)
        return TranscriptionResult(text=getattr(resp, 'text', '') or '', model=self.transcribe_model, duration_seconds=duration, cost_usd=cost_usd)
