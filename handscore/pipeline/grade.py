"""Scoring capability factory/dispatcher."""

from __future__ import annotations

import logging

from handscore.grading.base import ContentAnalyzer, FeedbackGenerator, StructureAnalyzer
from handscore.grading.llm import get_llm_content_analyzer, get_llm_feedback_generator, get_llm_structure_analyzer
from handscore.grading.rule_based import RuleBasedContentAnalyzer, RuleBasedStructureAnalyzer, TemplateFeedbackGenerator

logger = logging.getLogger(__name__)

SCORING_BACKENDS = ("rule_based", "llm")


def _backend(name: str) -> str:
    backend = name.lower().strip()
    if backend not in SCORING_BACKENDS:
        raise ValueError(f"Unknown scoring backend '{name}'. Use one of: rule_based, llm")
    return backend


def get_content_analyzer(name: str, model: str = "gpt-4o-mini") -> ContentAnalyzer:
    if _backend(name) == "llm":
        try:
            return get_llm_content_analyzer(model)
        except RuntimeError as exc:
            logger.warning("LLM content analysis unavailable, using rule_based", extra={"error": str(exc)})
    return RuleBasedContentAnalyzer()


def get_structure_analyzer(name: str, model: str = "gpt-4o-mini") -> StructureAnalyzer:
    if _backend(name) == "llm":
        try:
            return get_llm_structure_analyzer(model)
        except RuntimeError as exc:
            logger.warning("LLM structure analysis unavailable, using rule_based", extra={"error": str(exc)})
    return RuleBasedStructureAnalyzer()


def get_feedback_generator(name: str, model: str = "gpt-4o-mini") -> FeedbackGenerator:
    if _backend(name) == "llm":
        try:
            return get_llm_feedback_generator(model)
        except RuntimeError as exc:
            logger.warning("LLM feedback unavailable, using template feedback", extra={"error": str(exc)})
    return TemplateFeedbackGenerator()
