"""Job records and the per-type payload schemas.

Payloads form a tagged union keyed by JobType; each variant is validated when the job is
enqueued so handlers receive typed input.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import Field, field_validator

from studyflow.storage.models import CamelModel, new_id, utcnow


class JobType(str, Enum):
    PLAN = 'plan'
    CHAT = 'chat'
    GRADE = 'grade'
    TRANSCRIBE = 'transcribe'
    METADATA = 'metadata'
    EMBED = 'embed'
    PRACTICE_EXAM = 'practice_exam'


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class PlanSource(CamelModel):
    file_name: str
    text: str
    is_exam: bool = False


class PlanThresholds(CamelModel):
    pass_: Optional[float] = Field(None, alias='pass')
    good: Optional[float] = None
    ace: Optional[float] = None


class PlanOptions(CamelModel):
    additional_notes: Optional[str] = None
    thresholds: Optional[PlanThresholds] = None


class PlanPayload(CamelModel):
    lecture_id: Optional[str] = None
    extracted_texts: List[PlanSource] = Field(min_length=1)
    language: str = 'en'
    options: PlanOptions = Field(default_factory=PlanOptions)


class ChatMessage(CamelModel):
    role: Literal['user', 'assistant', 'system']
    content: str = ''


class ChatPayload(CamelModel):
    messages: List[ChatMessage] = Field(min_length=1)
    material_context: str = ''
    language: str = 'en'


class GradeQuestion(CamelModel):
    id: Optional[str] = None
    prompt: str = Field(min_length=1)


class GradePayload(CamelModel):
    question: GradeQuestion
    answer_text: Optional[str] = None
    answer_image_data_url: Optional[str] = None
    language: str = 'en'


class TranscribePayload(CamelModel):
    audio_url: str
    language: str = 'en'

    @field_validator('audio_url')
    @classmethod
    def check_audio_url(cls, v: str) -> str:
        if not (v.startswith('data:') or v.startswith('http://') or v.startswith('https://')):
            raise ValueError('audioUrl must be a data: URL or an http(s) URL')
        return v


class MetadataFile(CamelModel):
    name: str
    notes: Optional[str] = None


class MetadataPayload(CamelModel):
    files: List[MetadataFile] = []
    language: str = 'en'


class EmbedPayload(CamelModel):
    inputs: List[str] = Field(min_length=1)


class PracticeExamPayload(CamelModel):
    practice_exam_id: str
    lecture_id: str
    question_count: int = Field(5, ge=1, le=20)
    language: str = 'en'
    category: Optional[str] = None
    exam_text: Optional[str] = None
    worksheet_text: Optional[str] = None


JOB_PAYLOAD_MODELS: Dict[JobType, Type[CamelModel]] = {
    JobType.PLAN: PlanPayload,
    JobType.CHAT: ChatPayload,
    JobType.GRADE: GradePayload,
    JobType.TRANSCRIBE: TranscribePayload,
    JobType.METADATA: MetadataPayload,
    JobType.EMBED: EmbedPayload,
    JobType.PRACTICE_EXAM: PracticeExamPayload,
}


class Job(CamelModel):
    id: str = Field(default_factory=new_id)
    type: JobType
    payload: Dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    partial_result: Optional[str] = None

    def typed_payload(self) -> CamelModel:
        return JOB_PAYLOAD_MODELS[self.type].model_validate(self.payload)
