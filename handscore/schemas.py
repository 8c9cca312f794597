"""Request and response schemas."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from handscore.models import Evaluation, EvaluationStatus, Question


def _json_list(value: str | None) -> list[str]:
    if not value:
        return []
    decoded = json.loads(value)
    return [str(item) for item in decoded] if isinstance(decoded, list) else []


def _json_object(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    decoded = json.loads(value)
    return decoded if isinstance(decoded, dict) else None


class QuestionCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    marks: int = Field(default=15, gt=0)
    keywords: list[str] = Field(default_factory=list)
    sample_answer: str | None = None


class QuestionRead(BaseModel):
    id: int
    title: str
    content: str
    subject: str
    marks: int
    keywords: list[str] = Field(default_factory=list)
    sample_answer: str | None = None
    created_at: datetime

    @classmethod
    def from_model(cls, question: Question) -> "QuestionRead":
        return cls(
            id=question.id,
            title=question.title,
            content=question.content,
            subject=question.subject,
            marks=question.marks,
            keywords=_json_list(question.keywords_json),
            sample_answer=question.sample_answer,
            created_at=question.created_at,
        )


class EvaluationAccepted(BaseModel):
    evaluation_id: str


class EvaluationRead(BaseModel):
    id: str
    subject_id: str
    question_id: int
    status: EvaluationStatus
    stage: str
    priority: str
    original_filename: str
    original_image_url: str
    processed_image_url: str | None = None
    image_metadata: dict[str, Any] | None = None
    extracted_text: str | None = None
    ocr_provider: str | None = None
    ocr_confidence: float | None = None
    ocr_metadata: dict[str, Any] | None = None
    content_score: float | None = None
    structure_score: float | None = None
    handwriting_score: float | None = None
    overall_score: float | None = None
    grade: str | None = None
    analysis: dict[str, Any] | None = None
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    detailed_feedback: str | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, evaluation: Evaluation) -> "EvaluationRead":
        return cls(
            id=evaluation.id,
            subject_id=evaluation.subject_id,
            question_id=evaluation.question_id,
            status=evaluation.status,
            stage=evaluation.stage,
            priority=evaluation.priority,
            original_filename=evaluation.original_filename,
            original_image_url=evaluation.original_image_url,
            processed_image_url=evaluation.processed_image_url,
            image_metadata=_json_object(evaluation.image_metadata_json),
            extracted_text=evaluation.extracted_text,
            ocr_provider=evaluation.ocr_provider,
            ocr_confidence=evaluation.ocr_confidence,
            ocr_metadata=_json_object(evaluation.ocr_metadata_json),
            content_score=evaluation.content_score,
            structure_score=evaluation.structure_score,
            handwriting_score=evaluation.handwriting_score,
            overall_score=evaluation.overall_score,
            grade=evaluation.grade,
            analysis=_json_object(evaluation.analysis_json),
            strengths=_json_list(evaluation.strengths_json),
            improvements=_json_list(evaluation.improvements_json),
            suggestions=_json_list(evaluation.suggestions_json),
            detailed_feedback=evaluation.detailed_feedback,
            processing_time_ms=evaluation.processing_time_ms,
            error_message=evaluation.error_message,
            created_at=evaluation.created_at,
            updated_at=evaluation.updated_at,
            completed_at=evaluation.completed_at,
        )


class EvaluationSummary(BaseModel):
    id: str
    question_id: int
    status: EvaluationStatus
    overall_score: float | None = None
    grade: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ProgressEventRead(BaseModel):
    stage: str
    percent: int = Field(ge=0, le=100)
    message: str
    eta_seconds: float | None = None


class EvaluationProgressRead(BaseModel):
    evaluation_id: str
    status: EvaluationStatus
    stage: str
    percent: int = Field(ge=0, le=100)
    events: list[ProgressEventRead] = Field(default_factory=list)


class ScorePoint(BaseModel):
    created_at: datetime
    score: float | None = None


class SubjectAnalyticsRead(BaseModel):
    subject_id: str
    days: int
    total_evaluations: int
    average_score: float
    progress_trend: list[ScorePoint] = Field(default_factory=list)
    strongest_areas: list[str] = Field(default_factory=list)
    improvement_areas: list[str] = Field(default_factory=list)


class UsageRead(BaseModel):
    day: date
    evaluations_count: int


class OCRProviderRead(BaseModel):
    name: str
    is_available: bool
    supported_languages: list[str]
    max_payload_bytes: int
    priority: int
