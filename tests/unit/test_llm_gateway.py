import pytest

from studyflow.semantic import llm_gateway
from studyflow.semantic import (
    ConfigurationError,
    LLMGateway,
    UpstreamError,
    UpstreamTimeout,
    calculate_token_cost,
)
from tests.fixtures.mock_openai import (
    FakeEmbeddings,
    FakeOpenAI,
    FakeTranscriptions,
    connection_error,
    status_error,
    timeout_error,
)

pytestmark = pytest.mark.unit


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    with pytest.raises(ConfigurationError):
        LLMGateway()


def test_generate_returns_text_usage_and_cost():
    client = FakeOpenAI(replies=['The answer'])
    gateway = LLMGateway(client=client)
    result = gateway.generate('What is osmosis?', feature='test')
    assert result.text == 'The answer'
    assert result.usage.prompt_tokens == 10
    assert result.usage.completion_tokens == 5
    assert result.cost == calculate_token_cost(result.model, result.usage)
    assert client.completions.calls[0]['messages'] == [{'role': 'user', 'content': 'What is osmosis?'}]


def test_generate_passes_content_parts_through():
    client = FakeOpenAI(replies=['ok'])
    parts = [{'type': 'text', 'text': 'grade this'}, {'type': 'image_url', 'image_url': {'url': 'data:image/png;base64,AA'}}]
    LLMGateway(client=client).generate(parts)
    assert client.completions.calls[0]['messages'][0]['content'] == parts


def test_stream_yields_deltas_in_order():
    client = FakeOpenAI(stream_parts=['Hel', '', 'lo', ' world'])
    gateway = LLMGateway(client=client)
    with gateway.generate_stream([{'role': 'user', 'content': 'hi'}], feature='chat') as stream:
        deltas = list(stream)
        result = stream.result
    assert deltas == ['Hel', 'lo', ' world']
    assert result.text == 'Hello world'
    assert result.usage is not None
    assert result.cost is not None
    call = client.completions.calls[0]
    assert call['stream'] is True
    assert call['stream_options'] == {'include_usage': True}


def test_stream_without_usage_has_no_cost():
    gateway = LLMGateway(client=FakeOpenAI(stream_usage=False))
    stream = gateway.generate_stream([{'role': 'user', 'content': 'hi'}])
    assert ''.join(stream) == 'Hello there'
    assert stream.result.usage is None
    assert stream.result.cost is None


def test_closed_stream_keeps_delivered_text():
    client = FakeOpenAI(stream_parts=['one', 'two', 'three'])
    stream = LLMGateway(client=client).generate_stream([{'role': 'user', 'content': 'hi'}])
    assert next(stream) == 'one'
    stream.close()
    assert list(stream) == []
    assert stream.text == 'one'
    assert client.completions.streams[0].closed is True
    # close is idempotent
    stream.close()


def test_stream_failure_mid_way_raises_upstream_error():
    client = FakeOpenAI(stream_parts=['partial'], stream_error=connection_error())
    stream = LLMGateway(client=client).generate_stream([{'role': 'user', 'content': 'hi'}])
    received = []
    with pytest.raises(UpstreamError):
        for delta in stream:
            received.append(delta)
    assert received == ['partial']
    assert stream.text == 'partial'
    assert list(stream) == []


def test_timeout_maps_to_upstream_timeout():
    gateway = LLMGateway(client=FakeOpenAI(replies=[timeout_error()]))
    with pytest.raises(UpstreamTimeout):
        gateway.generate('hi')


def test_status_error_carries_status_code():
    client = FakeOpenAI(replies=[status_error(500)])
    with pytest.raises(UpstreamError) as exc_info:
        LLMGateway(client=client).generate('hi')
    assert exc_info.value.status_code == 500
    # status errors are not retried
    assert len(client.completions.calls) == 1


def test_connection_errors_are_retried_then_raised():
    client = FakeOpenAI(replies=[connection_error()])
    with pytest.raises(UpstreamError):
        LLMGateway(client=client).generate('hi')
    assert len(client.completions.calls) == llm_gateway.OPENAI_RETRY_ATTEMPTS


def test_connection_error_then_success():
    client = FakeOpenAI(replies=[connection_error(), 'recovered'])
    assert LLMGateway(client=client).generate('hi').text == 'recovered'
    assert len(client.completions.calls) == 2


def test_embed_batches_and_keeps_input_order(monkeypatch):
    monkeypatch.setattr(llm_gateway, 'EMBED_BATCH_SIZE', 2)
    embeddings = FakeEmbeddings()
    gateway = LLMGateway(client=FakeOpenAI(embeddings=embeddings))
    texts = ['a', 'bb', 'ccc', 'dddd', 'eeeee']
    result = gateway.embed(texts)
    assert len(embeddings.calls) == 3
    assert [e[0] for e in result.embeddings] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert result.usage.total_tokens == 5
    assert result.cost.prompt_tokens == 5


def test_embed_aborts_when_any_batch_fails(monkeypatch):
    monkeypatch.setattr(llm_gateway, 'EMBED_BATCH_SIZE', 2)
    embeddings = FakeEmbeddings(fail_on_call=2)
    gateway = LLMGateway(client=FakeOpenAI(embeddings=embeddings))
    with pytest.raises(UpstreamError) as exc_info:
        gateway.embed(['a', 'b', 'c', 'd'])
    assert exc_info.value.status_code == 429


def test_embed_of_nothing_makes_no_calls():
    embeddings = FakeEmbeddings()
    result = LLMGateway(client=FakeOpenAI(embeddings=embeddings)).embed([])
    assert result.embeddings == []
    assert embeddings.calls == []


def test_transcribe_reports_duration_cost():
    transcriptions = FakeTranscriptions(text='lecture audio', duration=120.0)
    gateway = LLMGateway(client=FakeOpenAI(transcriptions=transcriptions))
    result = gateway.transcribe(b'abc', language='de')
    assert result.text == 'lecture audio'
    assert result.cost_usd == pytest.approx(0.012)
    call = transcriptions.calls[0]
    assert call['file'] == ('audio.m4a', b'abc')
    assert call['language'] == 'de'
