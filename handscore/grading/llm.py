"""OpenAI-backed content, structure and feedback scoring."""

from __future__ import annotations

import copy
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import httpx

from handscore.grading.base import (
    ContentAnalysis,
    GeneratedFeedback,
    HandwritingAnalysis,
    QuestionContext,
    ScoreBreakdown,
    StructureAnalysis,
    SubjectProfile,
)
from handscore.grading.rule_based import (
    LOW_CONFIDENCE_THRESHOLD,
    RuleBasedContentAnalyzer,
    RuleBasedStructureAnalyzer,
    calculate_grade,
    weighted_overall,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class OpenAIRequestError(Exception):
    status_code: int | None
    body: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class SchemaBuildError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


def _number() -> dict[str, Any]:
    return {"type": "number"}


def _strings() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def _base_content_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "relevance_score": _number(),
            "depth_score": _number(),
            "accuracy_score": _number(),
            "keyword_coverage": _number(),
            "covered_keywords": _strings(),
            "missed_keywords": _strings(),
            "additional_concepts": _strings(),
            "strengths_identified": _strings(),
            "improvement_areas": _strings(),
            "factual_errors": _strings(),
            "overall_content_score": _number(),
        },
    }


def _base_structure_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "introduction_score": _number(),
            "body_score": _number(),
            "conclusion_score": _number(),
            "logical_flow_score": _number(),
            "coherence_score": _number(),
            "paragraph_count": {"type": "integer"},
            "average_paragraph_length": _number(),
            "transition_quality": _number(),
            "structural_strengths": _strings(),
            "structural_weaknesses": _strings(),
            "overall_structure_score": _number(),
        },
    }


def _base_feedback_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "overall_score": _number(),
            "grade": {"type": "string", "enum": ["A+", "A", "B+", "B", "C+", "C", "D"]},
            "strengths": _strings(),
            "improvements": _strings(),
            "suggestions": _strings(),
            "detailed_feedback": {"type": "string"},
            "personalized_message": {"type": "string"},
            "score_breakdown": {
                "type": "object",
                "properties": {
                    "content": _number(),
                    "structure": _number(),
                    "handwriting": _number(),
                    "overall": _number(),
                },
            },
            "next_steps": _strings(),
            "resource_recommendations": _strings(),
        },
    }


def _ensure_strict_schema_node(node: object) -> None:
    if isinstance(node, list):
        for item in node:
            _ensure_strict_schema_node(item)
        return

    if not isinstance(node, dict):
        return

    if node.get("type") == "object":
        properties = node.get("properties")
        if not isinstance(properties, dict):
            properties = {}
            node["properties"] = properties
        node["additionalProperties"] = False
        node["required"] = list(properties.keys())

    properties = node.get("properties")
    if isinstance(properties, dict):
        for value in properties.values():
            _ensure_strict_schema_node(value)

    items = node.get("items")
    if items is not None:
        _ensure_strict_schema_node(items)


def validate_schema_strictness(schema: dict[str, Any]) -> None:
    def _walk(node: object, path: str) -> None:
        if isinstance(node, list):
            for idx, item in enumerate(node):
                _walk(item, f"{path}[{idx}]")
            return

        if not isinstance(node, dict):
            return

        if node.get("type") == "object":
            if node.get("additionalProperties") is not False:
                raise SchemaBuildError(f"Object at {path} missing additionalProperties=false")
            required = node.get("required")
            if not isinstance(required, list):
                raise SchemaBuildError(f"Object at {path} missing required list")

        for key, value in node.items():
            _walk(value, f"{path}.{key}")

    _walk(schema, "schema")


def _strict(base: dict[str, Any]) -> dict[str, Any]:
    schema = copy.deepcopy(base)
    _ensure_strict_schema_node(schema)
    validate_schema_strictness(schema)
    return schema


def build_content_schema() -> dict[str, Any]:
    return _strict(_base_content_schema())


def build_structure_schema() -> dict[str, Any]:
    return _strict(_base_structure_schema())


def build_feedback_schema() -> dict[str, Any]:
    return _strict(_base_feedback_schema())


def build_scoring_request(
    model: str,
    system_prompt: str,
    prompt: str,
    schema_name: str,
    schema: dict[str, Any],
    temperature: float = 0.1,
) -> dict[str, object]:
    return {
        "model": model,
        "temperature": temperature,
        "input": [
            {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
            {"role": "user", "content": [{"type": "input_text", "text": prompt}]},
        ],
        "text": {
            "format": {
                "type": "json_schema",
                "name": schema_name,
                "strict": True,
                "schema": schema,
            }
        },
    }


def _confidence_note(ocr_confidence: float) -> str:
    if ocr_confidence >= LOW_CONFIDENCE_THRESHOLD:
        return f"The answer text was extracted by OCR with {ocr_confidence:.0%} confidence."
    return (
        f"The answer text was extracted by OCR with only {ocr_confidence:.0%} confidence. "
        "Treat garbled words as recognition errors, not as the student's mistakes."
    )


def build_content_prompt(text: str, question: QuestionContext, ocr_confidence: float) -> str:
    return (
        "Analyze this handwritten exam answer and score its content on a 0-100 scale.\n\n"
        f"Question: {question.content}\n"
        f"Subject: {question.subject}\n"
        f"Marks: {question.marks}\n"
        f"Expected keywords: {', '.join(question.keywords) or 'none given'}\n"
        f"{_confidence_note(ocr_confidence)}\n\n"
        f"Student answer:\n{text}\n\n"
        "Score relevance, depth, factual accuracy and keyword coverage; list covered and missed keywords, "
        "additional concepts, strengths, improvement areas and factual errors; overall_content_score is a "
        "weighted average. Focus on multi-dimensional analysis, use of examples, critical thinking and balance."
    )


def build_structure_prompt(text: str, ocr_confidence: float) -> str:
    return (
        "Analyze the structure and organisation of this handwritten exam answer on a 0-100 scale.\n"
        f"{_confidence_note(ocr_confidence)}\n\n"
        f"Answer text:\n{text}\n\n"
        "Score introduction (context, thesis), body (logical development, paragraphing), conclusion "
        "(synthesis, way forward), logical flow, coherence and transition quality; report paragraph count "
        "and average words per paragraph; list structural strengths and weaknesses."
    )


def build_feedback_prompt(
    content: ContentAnalysis,
    structure: StructureAnalysis,
    handwriting: HandwritingAnalysis,
    question: QuestionContext,
    profile: SubjectProfile | None,
) -> str:
    history = ""
    if profile and profile.previous_scores:
        history = f"Previous overall scores: {', '.join(str(round(score)) for score in profile.previous_scores)}\n"
    if profile and profile.weak_areas:
        history += f"Previous weak areas: {', '.join(profile.weak_areas)}\n"

    strengths = [*content.strengths_identified, *structure.structural_strengths, *handwriting.handwriting_strengths]
    weaknesses = [*content.improvement_areas, *structure.structural_weaknesses, *handwriting.handwriting_issues]
    return (
        "Generate encouraging, specific and actionable feedback for this exam answer evaluation.\n\n"
        f"Question: {question.content}\nSubject: {question.subject}\nMarks: {question.marks}\n{history}\n"
        f"Content score: {content.overall_content_score}/100 "
        f"(relevance {content.relevance_score}, depth {content.depth_score}, accuracy {content.accuracy_score})\n"
        f"Structure score: {structure.overall_structure_score}/100 "
        f"(introduction {structure.introduction_score}, body {structure.body_score}, conclusion {structure.conclusion_score})\n"
        f"Handwriting score: {handwriting.overall_handwriting_score}/100 "
        f"(legibility {handwriting.legibility_score}, consistency {handwriting.consistency_score})\n\n"
        f"Identified strengths: {', '.join(strengths) or 'none'}\n"
        f"Areas for improvement: {', '.join(weaknesses) or 'none'}\n\n"
        "overall_score is weighted content 50%, structure 30%, handwriting 20%. Give 3-5 strengths, improvements "
        "and suggestions, 2-3 paragraphs of detailed feedback, a 1-2 sentence personalised message, 3-4 next steps "
        "and 2-3 resource recommendations. Copy the component scores into score_breakdown unchanged."
    )


class OpenAIJSONClient:
    """Structured-output Responses API calls with bounded retry."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 60.0,
        retry_backoffs_seconds: tuple[float, ...] = (1.0, 2.0),
    ) -> None:
        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set")

        from openai import OpenAI

        self._client = OpenAI(api_key=api_key, timeout=timeout_seconds)
        self.model = model
        self._retry_backoffs_seconds = retry_backoffs_seconds

    def complete_json(self, request_payload: dict[str, object], purpose: str) -> dict[str, Any]:
        last_exc: OpenAIRequestError | None = None
        attempts = len(self._retry_backoffs_seconds) + 1
        for attempt in range(attempts):
            started = time.perf_counter()
            try:
                response = self._client.responses.create(**request_payload)
            except Exception as exc:  # noqa: BLE001
                status_code = getattr(exc, "status_code", None)
                if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
                    status_code = 504
                response_obj = getattr(exc, "response", None)
                body_text = ""
                if response_obj is not None:
                    body_text = getattr(response_obj, "text", "") or ""
                if not body_text:
                    body_text = str(exc)

                retryable = isinstance(exc, (httpx.TimeoutException, TimeoutError)) or status_code in {429, 503, 504}
                last_exc = OpenAIRequestError(status_code=status_code, body=body_text, message=f"OpenAI request failed: {exc}")

                if retryable and attempt < attempts - 1:
                    logger.warning(
                        "openai retry",
                        extra={"stage": purpose, "model": self.model, "attempt": attempt + 1, "status_code": status_code},
                    )
                    time.sleep(self._retry_backoffs_seconds[attempt])
                    continue
                raise last_exc from exc

            logger.info(
                "openai call timing",
                extra={"stage": purpose, "model": self.model, "openai_ms": int((time.perf_counter() - started) * 1000)},
            )
            output_text = getattr(response, "output_text", "") or ""
            if not output_text.strip():
                raise OpenAIRequestError(status_code=None, body="", message="OpenAI returned an empty response")
            return json.loads(output_text)

        if last_exc:
            raise last_exc
        raise OpenAIRequestError(status_code=None, body="Unknown OpenAI error", message="OpenAI request failed")


class OpenAIContentAnalyzer:
    name = "llm"

    def __init__(self, client: OpenAIJSONClient | None = None, fallback: RuleBasedContentAnalyzer | None = None) -> None:
        self._client = client or OpenAIJSONClient()
        self._fallback = fallback or RuleBasedContentAnalyzer()

    def analyze_content(self, text: str, question: QuestionContext, ocr_confidence: float) -> ContentAnalysis:
        request = build_scoring_request(
            model=self._client.model,
            system_prompt="You are an experienced examiner evaluating handwritten exam answers. Be detailed and constructive.",
            prompt=build_content_prompt(text, question, ocr_confidence),
            schema_name="content_analysis",
            schema=build_content_schema(),
        )
        try:
            return ContentAnalysis.model_validate(self._client.complete_json(request, purpose="analyze_content"))
        except (OpenAIRequestError, ValueError) as exc:
            logger.warning("content analysis fell back to rule-based scoring", extra={"error": str(exc)})
            return self._fallback.analyze_content(text, question, ocr_confidence)


class OpenAIStructureAnalyzer:
    name = "llm"

    def __init__(self, client: OpenAIJSONClient | None = None, fallback: RuleBasedStructureAnalyzer | None = None) -> None:
        self._client = client or OpenAIJSONClient()
        self._fallback = fallback or RuleBasedStructureAnalyzer()

    def analyze_structure(self, text: str, ocr_confidence: float) -> StructureAnalysis:
        request = build_scoring_request(
            model=self._client.model,
            system_prompt="You are an expert in academic writing structure evaluating handwritten exam answers.",
            prompt=build_structure_prompt(text, ocr_confidence),
            schema_name="structure_analysis",
            schema=build_structure_schema(),
        )
        try:
            return StructureAnalysis.model_validate(self._client.complete_json(request, purpose="analyze_structure"))
        except (OpenAIRequestError, ValueError) as exc:
            logger.warning("structure analysis fell back to rule-based scoring", extra={"error": str(exc)})
            return self._fallback.analyze_structure(text, ocr_confidence)


class OpenAIFeedbackGenerator:
    """Raises on any failure; the pipeline owns the deterministic fallback."""

    name = "llm"

    def __init__(self, client: OpenAIJSONClient | None = None) -> None:
        self._client = client or OpenAIJSONClient()

    def generate_feedback(
        self,
        content: ContentAnalysis,
        structure: StructureAnalysis,
        handwriting: HandwritingAnalysis,
        question: QuestionContext,
        profile: SubjectProfile | None = None,
    ) -> GeneratedFeedback:
        request = build_scoring_request(
            model=self._client.model,
            system_prompt=(
                "You are a senior examiner and mentor. Your feedback is specific, balanced, encouraging and actionable."
            ),
            prompt=build_feedback_prompt(content, structure, handwriting, question, profile),
            schema_name="generated_feedback",
            schema=build_feedback_schema(),
            temperature=0.3,
        )
        return GeneratedFeedback.model_validate(self._client.complete_json(request, purpose="generate_feedback"))


class MockContentAnalyzer:
    name = "mock"

    def analyze_content(self, text: str, question: QuestionContext, ocr_confidence: float) -> ContentAnalysis:
        analysis = RuleBasedContentAnalyzer().analyze_content(text, question, ocr_confidence)
        return analysis.model_copy(update={"additional_concepts": ["mock analysis"]})


class MockStructureAnalyzer:
    name = "mock"

    def analyze_structure(self, text: str, ocr_confidence: float) -> StructureAnalysis:
        return RuleBasedStructureAnalyzer().analyze_structure(text, ocr_confidence)


class MockFeedbackGenerator:
    name = "mock"

    def generate_feedback(
        self,
        content: ContentAnalysis,
        structure: StructureAnalysis,
        handwriting: HandwritingAnalysis,
        question: QuestionContext,
        profile: SubjectProfile | None = None,
    ) -> GeneratedFeedback:
        overall = weighted_overall(
            content.overall_content_score,
            structure.overall_structure_score,
            handwriting.overall_handwriting_score,
        )
        previous = len(profile.previous_scores) if profile else 0
        return GeneratedFeedback(
            overall_score=overall,
            grade=calculate_grade(overall),
            strengths=list(content.strengths_identified) + list(handwriting.handwriting_strengths),
            improvements=list(content.improvement_areas) + list(structure.structural_weaknesses),
            suggestions=list(handwriting.improvement_tips) or ["Keep practising timed answers"],
            detailed_feedback=f"Mock feedback for a {question.subject} answer scored {overall}/100.",
            personalized_message=f"Based on {previous} previous evaluation(s).",
            score_breakdown=ScoreBreakdown(
                content=content.overall_content_score,
                structure=structure.overall_structure_score,
                handwriting=handwriting.overall_handwriting_score,
                overall=overall,
            ),
        )


def _mock_enabled() -> bool:
    return os.getenv("OPENAI_MOCK", "").strip() == "1"


def get_llm_content_analyzer(model: str = DEFAULT_MODEL):
    if _mock_enabled():
        return MockContentAnalyzer()
    return OpenAIContentAnalyzer(OpenAIJSONClient(model=model))


def get_llm_structure_analyzer(model: str = DEFAULT_MODEL):
    if _mock_enabled():
        return MockStructureAnalyzer()
    return OpenAIStructureAnalyzer(OpenAIJSONClient(model=model))


def get_llm_feedback_generator(model: str = DEFAULT_MODEL):
    if _mock_enabled():
        return MockFeedbackGenerator()
    return OpenAIFeedbackGenerator(OpenAIJSONClient(model=model))
