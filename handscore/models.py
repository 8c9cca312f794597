"""SQLModel ORM models for HandScore."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Return timezone-aware UTC now timestamp."""
    return datetime.now(timezone.utc)


def new_evaluation_id() -> str:
    return uuid4().hex


class EvaluationStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({EvaluationStatus.COMPLETED, EvaluationStatus.FAILED, EvaluationStatus.CANCELLED})


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(index=True)
    content: str
    subject: str
    marks: int = 15
    keywords_json: str = "[]"
    sample_answer: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Evaluation(SQLModel, table=True):
    id: str = Field(default_factory=new_evaluation_id, primary_key=True)
    subject_id: str = Field(index=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    status: EvaluationStatus = Field(default=EvaluationStatus.PROCESSING, index=True)
    stage: str = "created"
    priority: str = "accuracy"

    original_filename: str = ""
    original_image_key: Optional[str] = None
    original_image_url: str = ""
    processed_image_key: Optional[str] = None
    processed_image_url: Optional[str] = None
    image_metadata_json: Optional[str] = None

    extracted_text: Optional[str] = None
    ocr_provider: Optional[str] = None
    ocr_confidence: Optional[float] = None
    ocr_metadata_json: Optional[str] = None

    content_score: Optional[float] = None
    structure_score: Optional[float] = None
    handwriting_score: Optional[float] = None
    overall_score: Optional[float] = None
    grade: Optional[str] = None
    analysis_json: Optional[str] = None

    strengths_json: str = "[]"
    improvements_json: str = "[]"
    suggestions_json: str = "[]"
    detailed_feedback: Optional[str] = None

    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = None


class ScheduledCleanup(SQLModel, table=True):
    """Deferred blob deletion that survives process restarts."""

    id: Optional[int] = Field(default=None, primary_key=True)
    evaluation_id: str = Field(foreign_key="evaluation.id", index=True)
    storage_key: str
    due_at: datetime = Field(index=True)
    done: bool = Field(default=False, index=True)
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class UsageStats(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: str = Field(index=True)
    day: date = Field(index=True)
    evaluations_count: int = 0
