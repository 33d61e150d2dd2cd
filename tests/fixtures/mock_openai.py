import json
from types import SimpleNamespace

import httpx
import openai

MOCK_PLAN_RESPONSE = json.dumps([
    {'title': 'Cell Membranes', 'description': 'Structure of the lipid bilayer', 'keyConcepts': ['lipids', 'proteins'], 'category': 'Cells', 'importanceTier': 'core', 'priorityScore': 85},
    {'title': 'Osmosis', 'description': 'Water movement across membranes', 'keyConcepts': ['tonicity'], 'category': 'Transport', 'importanceTier': 'high-yield', 'priorityScore': 70},
    {'title': 'Membrane History', 'description': 'Early membrane models', 'keyConcepts': [], 'category': 'Cells', 'importanceTier': 'stretch', 'priorityScore': 30},
])
MOCK_GRADE_RESPONSE = json.dumps({'summary': 'Mostly right.', 'correctness': 'correct', 'score': 80, 'improvements': ['Mention tonicity']})
MOCK_METADATA_RESPONSE = json.dumps({'title': 'Membrane Transport', 'description': 'How substances cross cell membranes.'})
MOCK_EXAM_RESPONSE = json.dumps([
    {'prompt': 'Describe the lipid bilayer.', 'answer': 'Two layers of phospholipids', 'topicTitle': 'cell membranes', 'source': 'material'},
    {'prompt': 'What drives osmosis?', 'answer': 'Water potential', 'topicTitle': 'Osmosis', 'source': 'exam'},
])


def _request():
    return httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')


def connection_error():
    return openai.APIConnectionError(request=_request())


def timeout_error():
    return openai.APITimeoutError(request=_request())


def status_error(status_code=500, message='upstream exploded'):
    response = httpx.Response(status_code, request=_request())
    if status_code == 429:
        return openai.RateLimitError(message, response=response, body=None)
    return openai.InternalServerError(message, response=response, body=None)


def usage(prompt_tokens=10, completion_tokens=5):
    return SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_tokens=prompt_tokens + completion_tokens)


def completion(text, model='gpt-4o-mini'):
    message = SimpleNamespace(role='assistant', content=text)
    return SimpleNamespace(model=model, choices=[SimpleNamespace(message=message)], usage=usage())


def stream_chunks(parts, model='gpt-4o-mini', with_usage=True):
    chunks = [SimpleNamespace(model=model, choices=[SimpleNamespace(delta=SimpleNamespace(content=p))], usage=None) for p in parts]
    if with_usage:
        chunks.append(SimpleNamespace(model=model, choices=[], usage=usage(12, len(parts))))
    return chunks


def prompt_text(kwargs):
    texts = []
    for m in kwargs.get('messages', []):
        content = m.get('content')
        if isinstance(content, str):
            texts.append(content)
        else:
            texts.extend(part.get('text', '') for part in content or [] if part.get('type') == 'text')
    return '\n'.join(texts)


def route_by_prompt(kwargs):
    # pick a canned reply from the prompt contents
    prompt = prompt_text(kwargs)
    if 'curriculum designer' in prompt:
        return MOCK_PLAN_RESPONSE
    if 'grading a student' in prompt:
        return MOCK_GRADE_RESPONSE
    if 'organizing lecture materials' in prompt:
        return MOCK_METADATA_RESPONSE
    if 'practice exam' in prompt or 'cluster assessment' in prompt:
        return MOCK_EXAM_RESPONSE
    return 'ok'


class FakeStream:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def __iter__(self):
        for chunk in self.chunks:
            if self.closed:
                return
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeCompletions:
    """Replies are consumed in order; the last one repeats. A reply may be text, an exception
    to raise, or a callable taking the create() kwargs."""

    def __init__(self, replies=None, stream_parts=None, stream_error=None, stream_usage=True):
        self.replies = list(replies or [route_by_prompt])
        self.stream_parts = stream_parts if stream_parts is not None else ['Hello', ' there']
        self.stream_error = stream_error
        self.stream_usage = stream_usage
        self.calls = []
        self.streams = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if kwargs.get('stream'):
            stream = FakeStream(stream_chunks(self.stream_parts, kwargs['model'], self.stream_usage), error=self.stream_error)
            self.streams.append(stream)
            return stream
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(kwargs)
        return completion(reply, model=kwargs['model'])


class FakeEmbeddings:
    """Returns [len(text), batch position] per input, listed in reverse index order."""

    def __init__(self, fail_on_call=None, error=None):
        self.fail_on_call = fail_on_call
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.error or status_error(429, 'rate limited')
        batch = kwargs['input']
        data = [SimpleNamespace(index=i, embedding=[float(len(text)), float(i)]) for i, text in enumerate(batch)]
        tokens = len(batch)
        return SimpleNamespace(model=kwargs['model'], data=list(reversed(data)), usage=SimpleNamespace(prompt_tokens=tokens, completion_tokens=None, total_tokens=tokens))


class FakeTranscriptions:
    def __init__(self, text='transcribed lecture audio', duration=120.0):
        self.text = text
        self.duration = duration
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(text=self.text, duration=self.duration, language=kwargs.get('language'))


class FakeOpenAI:
    def __init__(self, replies=None, stream_parts=None, stream_error=None, stream_usage=True, embeddings=None, transcriptions=None):
        self.completions = FakeCompletions(replies, stream_parts, stream_error, stream_usage)
        self.chat = SimpleNamespace(completions=self.completions)
        self.embeddings = embeddings or FakeEmbeddings()
        self.transcriptions = transcriptions or FakeTranscriptions()
        self.audio = SimpleNamespace(transcriptions=self.transcriptions)
