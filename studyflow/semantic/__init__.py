"""
Semantic processing: text segmentation, the LLM gateway, and the generation pipelines
(study plan, practice exam, grading, lecture metadata).
"""
from .segmenter import chunk_text, truncate_to_token_limit, strip_code_fences, sanitize_for_database
from .pricing import TokenUsage, CostBreakdown, calculate_token_cost, calculate_transcription_cost, get_model_pricing
from .llm_gateway import LLMGateway, ChatStream, ChatResult, EmbeddingResult, TranscriptionResult, LLMGatewayError, ConfigurationError, UpstreamError, UpstreamTimeout
from .plan_merger import PlanItem, PlanParseError, merge_plan_chunks, parse_plan_chunk, normalize_tier, normalize_priority
from .study_plan import PlanGeneration, generate_study_plan
from .practice_exam import PracticeExamError, generate_exam_questions
from .grader import GradingFeedback, grade_answer, normalize_feedback, generate_lecture_metadata

__all__ = [
	'chunk_text', 'truncate_to_token_limit', 'strip_code_fences', 'sanitize_for_database',
	'TokenUsage', 'CostBreakdown', 'calculate_token_cost', 'calculate_transcription_cost', 'get_model_pricing',
	'LLMGateway', 'ChatStream', 'ChatResult', 'EmbeddingResult', 'TranscriptionResult',
	'LLMGatewayError', 'ConfigurationError', 'UpstreamError', 'UpstreamTimeout',
	'PlanItem', 'PlanParseError', 'merge_plan_chunks', 'parse_plan_chunk', 'normalize_tier', 'normalize_priority',
	'PlanGeneration', 'generate_study_plan',
	'PracticeExamError', 'generate_exam_questions',
	'GradingFeedback', 'grade_answer', 'normalize_feedback', 'generate_lecture_metadata',
]
