import pytest
from pydantic import ValidationError

from studyflow.jobs import Job, JobType
from studyflow.jobs.models import ChatPayload, PlanPayload, PracticeExamPayload, TranscribePayload

pytestmark = pytest.mark.unit


def test_plan_payload_accepts_camel_case_and_thresholds():
    payload = PlanPayload.model_validate({
        'lectureId': 'lec-1',
        'extractedTexts': [{'fileName': 'exam.pdf', 'text': 'Q1', 'isExam': True}],
        'options': {'additionalNotes': 'Focus on osmosis', 'thresholds': {'pass': 60, 'good': 75}},
    })
    assert payload.extracted_texts[0].is_exam is True
    assert payload.options.thresholds.pass_ == 60
    assert payload.options.thresholds.ace is None
    assert payload.options.thresholds.model_dump(by_alias=True)['pass'] == 60


def test_chat_payload_rejects_unknown_role():
    with pytest.raises(ValidationError):
        ChatPayload.model_validate({'messages': [{'role': 'robot', 'content': 'hi'}]})
    with pytest.raises(ValidationError):
        ChatPayload.model_validate({'messages': []})


@pytest.mark.parametrize('url', ['data:audio/m4a;base64,AAAA', 'https://cdn.example.com/a.m4a', 'http://localhost/a.m4a'])
def test_transcribe_payload_accepts_data_and_http_urls(url):
    assert TranscribePayload.model_validate({'audioUrl': url}).audio_url == url


def test_transcribe_payload_rejects_other_schemes():
    with pytest.raises(ValidationError):
        TranscribePayload.model_validate({'audioUrl': 's3://bucket/a.m4a'})


def test_practice_exam_question_count_bounds():
    base = {'practiceExamId': 'x1', 'lectureId': 'lec-1'}
    assert PracticeExamPayload.model_validate(base).question_count == 5
    for bad in (0, 21):
        with pytest.raises(ValidationError):
            PracticeExamPayload.model_validate({**base, 'questionCount': bad})


def test_job_typed_payload_and_wire_format():
    job = Job(type=JobType.EMBED, payload={'inputs': ['a']}, owner_id='u1')
    assert job.typed_payload().inputs == ['a']
    wire = job.to_wire()
    assert wire['ownerId'] == 'u1'
    assert wire['status'] == 'pending'
    assert wire['partialResult'] is None
    assert Job.model_validate(wire).id == job.id
