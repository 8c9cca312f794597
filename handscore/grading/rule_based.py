"""Heuristic scoring used when no language model is available, and as its fallback."""

from __future__ import annotations

import math
import re

from handscore.grading.base import (
    ContentAnalysis,
    GeneratedFeedback,
    HandwritingAnalysis,
    QuestionContext,
    ScoreBreakdown,
    StructureAnalysis,
    SubjectProfile,
)

LOW_CONFIDENCE_THRESHOLD = 0.7
_NEUTRAL_KEYWORD_COVERAGE = 50.0


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_grade(score: float) -> str:
    if score >= 90:
        return "A+"
    if score >= 80:
        return "A"
    if score >= 70:
        return "B+"
    if score >= 60:
        return "B"
    if score >= 50:
        return "C+"
    if score >= 40:
        return "C"
    return "D"


def weighted_overall(content: float, structure: float, handwriting: float) -> int:
    return _round(content * 0.5 + structure * 0.3 + handwriting * 0.2)


def split_paragraphs(text: str) -> list[str]:
    return [part for part in re.split(r"\n\s*\n", text) if part.strip()]


class RuleBasedContentAnalyzer:
    name = "rule_based"

    def analyze_content(self, text: str, question: QuestionContext, ocr_confidence: float) -> ContentAnalysis:
        lowered = text.lower()
        covered = [keyword for keyword in question.keywords if keyword.lower() in lowered]
        missed = [keyword for keyword in question.keywords if keyword not in covered]
        if question.keywords:
            coverage = len(covered) / len(question.keywords) * 100
        else:
            coverage = _NEUTRAL_KEYWORD_COVERAGE

        improvement_areas = ["Could provide more detailed analysis"]
        if ocr_confidence < LOW_CONFIDENCE_THRESHOLD:
            improvement_areas.append("Parts of the handwriting could not be read reliably, so some content may not be credited")

        return ContentAnalysis(
            relevance_score=min(80.0, max(40.0, coverage)),
            depth_score=min(70.0, len(text) / 50),
            accuracy_score=75.0,
            keyword_coverage=round(coverage, 2),
            covered_keywords=covered,
            missed_keywords=missed,
            additional_concepts=[],
            strengths_identified=["Attempts to address the question"],
            improvement_areas=improvement_areas,
            factual_errors=[],
            overall_content_score=float(_round((coverage + 75 + 70) / 3)),
        )


class RuleBasedStructureAnalyzer:
    name = "rule_based"

    def analyze_structure(self, text: str, ocr_confidence: float) -> StructureAnalysis:
        del ocr_confidence
        paragraphs = split_paragraphs(text)
        word_count = len(text.split())
        weaknesses = [] if len(paragraphs) >= 3 else ["Could benefit from better paragraph organization"]

        return StructureAnalysis(
            introduction_score=70.0 if paragraphs else 40.0,
            body_score=75.0 if len(paragraphs) > 2 else 50.0,
            conclusion_score=70.0 if len(paragraphs) > 1 else 40.0,
            logical_flow_score=65.0,
            coherence_score=70.0,
            paragraph_count=len(paragraphs),
            average_paragraph_length=float(_round(word_count / max(1, len(paragraphs)))),
            transition_quality=60.0,
            structural_strengths=["Organized in paragraphs"] if paragraphs else [],
            structural_weaknesses=weaknesses,
            overall_structure_score=68.0,
        )


def build_fallback_feedback(
    content: ContentAnalysis,
    structure: StructureAnalysis,
    handwriting: HandwritingAnalysis,
) -> GeneratedFeedback:
    """Fixed-template feedback; depends only on the three component scores."""
    overall = weighted_overall(
        content.overall_content_score,
        structure.overall_structure_score,
        handwriting.overall_handwriting_score,
    )
    return GeneratedFeedback(
        overall_score=overall,
        grade=calculate_grade(overall),
        strengths=[
            "Shows understanding of the topic",
            "Attempts to address the question",
            "Organized presentation",
        ],
        improvements=[
            "Could provide more detailed analysis",
            "Add more relevant examples",
            "Improve conclusion strength",
        ],
        suggestions=[
            "Practice writing more comprehensive answers",
            "Include current examples and case studies",
            "Work on time management for detailed responses",
        ],
        detailed_feedback=(
            "Your answer demonstrates a basic understanding of the topic and shows effort in addressing the question. "
            "While you've covered some key points, there's room for improvement in depth of analysis and use of relevant "
            "examples. Focus on developing your arguments more comprehensively and ensure your conclusion ties together "
            "your main points effectively."
        ),
        personalized_message="Keep practicing! Your consistent effort will lead to significant improvement.",
        score_breakdown=ScoreBreakdown(
            content=content.overall_content_score,
            structure=structure.overall_structure_score,
            handwriting=handwriting.overall_handwriting_score,
            overall=overall,
        ),
        next_steps=[
            "Practice answer writing daily",
            "Read model answers for reference",
            "Focus on time-bound practice",
            "Improve handwriting consistency",
        ],
        resource_recommendations=[
            "Study current affairs from reliable sources",
            "Practice previous year questions",
            "Join peer discussion groups",
        ],
    )


class TemplateFeedbackGenerator:
    name = "rule_based"

    def generate_feedback(
        self,
        content: ContentAnalysis,
        structure: StructureAnalysis,
        handwriting: HandwritingAnalysis,
        question: QuestionContext,
        profile: SubjectProfile | None = None,
    ) -> GeneratedFeedback:
        del question, profile
        return build_fallback_feedback(content, structure, handwriting)
