"""Scoring result types and capability protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

from pydantic import BaseModel, Field

Score = float


class ContentAnalysis(BaseModel):
    relevance_score: Score = Field(ge=0, le=100)
    depth_score: Score = Field(ge=0, le=100)
    accuracy_score: Score = Field(ge=0, le=100)
    keyword_coverage: Score = Field(ge=0, le=100)
    covered_keywords: list[str] = Field(default_factory=list)
    missed_keywords: list[str] = Field(default_factory=list)
    additional_concepts: list[str] = Field(default_factory=list)
    strengths_identified: list[str] = Field(default_factory=list)
    improvement_areas: list[str] = Field(default_factory=list)
    factual_errors: list[str] = Field(default_factory=list)
    overall_content_score: Score = Field(ge=0, le=100)


class StructureAnalysis(BaseModel):
    introduction_score: Score = Field(ge=0, le=100)
    body_score: Score = Field(ge=0, le=100)
    conclusion_score: Score = Field(ge=0, le=100)
    logical_flow_score: Score = Field(ge=0, le=100)
    coherence_score: Score = Field(ge=0, le=100)
    paragraph_count: int = Field(ge=0)
    average_paragraph_length: float = Field(ge=0)
    transition_quality: Score = Field(ge=0, le=100)
    structural_strengths: list[str] = Field(default_factory=list)
    structural_weaknesses: list[str] = Field(default_factory=list)
    overall_structure_score: Score = Field(ge=0, le=100)


class ScoreBreakdown(BaseModel):
    content: Score = Field(ge=0, le=100)
    structure: Score = Field(ge=0, le=100)
    handwriting: Score = Field(ge=0, le=100)
    overall: Score = Field(ge=0, le=100)


class GeneratedFeedback(BaseModel):
    overall_score: Score = Field(ge=0, le=100)
    grade: str
    strengths: list[str]
    improvements: list[str]
    suggestions: list[str]
    detailed_feedback: str = Field(min_length=1)
    personalized_message: str = ""
    score_breakdown: ScoreBreakdown
    next_steps: list[str] = Field(default_factory=list)
    resource_recommendations: list[str] = Field(default_factory=list)


@dataclass
class HandwritingAnalysis:
    legibility_score: int
    consistency_score: int
    neatness_score: int
    speed_estimate: Literal["slow", "moderate", "fast"]
    handwriting_strengths: list[str] = field(default_factory=list)
    handwriting_issues: list[str] = field(default_factory=list)
    improvement_tips: list[str] = field(default_factory=list)
    overall_handwriting_score: int = 0


@dataclass
class QuestionContext:
    content: str
    subject: str
    marks: int = 15
    keywords: list[str] = field(default_factory=list)


@dataclass
class SubjectProfile:
    previous_scores: list[float] = field(default_factory=list)
    weak_areas: list[str] = field(default_factory=list)


class ContentAnalyzer(Protocol):
    name: str

    def analyze_content(self, text: str, question: QuestionContext, ocr_confidence: float) -> ContentAnalysis:
        """Score the answer's content against the question."""


class StructureAnalyzer(Protocol):
    name: str

    def analyze_structure(self, text: str, ocr_confidence: float) -> StructureAnalysis:
        """Score the answer's organisation."""


class FeedbackGenerator(Protocol):
    name: str

    def generate_feedback(
        self,
        content: ContentAnalysis,
        structure: StructureAnalysis,
        handwriting: HandwritingAnalysis,
        question: QuestionContext,
        profile: SubjectProfile | None = None,
    ) -> GeneratedFeedback:
        """Produce student-facing feedback from all prior scores."""
