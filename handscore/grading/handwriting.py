"""Handwriting scoring from OCR confidence, word boxes and image quality.

Pure computation: no I/O, identical inputs always give identical scores.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from handscore.grading.base import HandwritingAnalysis
from handscore.ocr.base import WordBox

DEFAULT_CONSISTENCY = 75
_MIN_BOXES_FOR_CONSISTENCY = 5
_SLOW_MEAN_AREA = 1000
_FAST_MEAN_AREA = 300


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def consistency_score(boxes: Sequence[WordBox]) -> int:
    if len(boxes) <= _MIN_BOXES_FOR_CONSISTENCY:
        return DEFAULT_CONSISTENCY
    confidences = [box.confidence for box in boxes]
    mean = sum(confidences) / len(confidences)
    variance = sum((value - mean) ** 2 for value in confidences) / len(confidences)
    return _clamp(_round((1 - math.sqrt(variance)) * 100))


def speed_estimate(boxes: Sequence[WordBox]) -> str:
    if not boxes:
        return "moderate"
    mean_area = sum(box.area for box in boxes) / len(boxes)
    if mean_area > _SLOW_MEAN_AREA:
        return "slow"
    if mean_area < _FAST_MEAN_AREA:
        return "fast"
    return "moderate"


def analyze_handwriting(
    ocr_confidence: float,
    boxes: Sequence[WordBox],
    quality_score: float,
    sharpness: float,
    contrast: float,
) -> HandwritingAnalysis:
    legibility = _clamp(_round(ocr_confidence * 100))
    consistency = consistency_score(boxes)
    neatness = _clamp(_round((quality_score + sharpness + contrast) / 3))
    speed = speed_estimate(boxes)

    strengths: list[str] = []
    issues: list[str] = []
    tips: list[str] = []

    if legibility >= 80:
        strengths.append("Excellent legibility - text is very clear to read")
    elif legibility >= 60:
        strengths.append("Good legibility - most text is readable")
    else:
        issues.append("Legibility needs improvement - some text is difficult to read")
        tips.append("Practice writing slowly and focus on letter formation")

    if consistency >= 80:
        strengths.append("Consistent handwriting style throughout")
    elif consistency < 60:
        issues.append("Handwriting consistency varies across the answer")
        tips.append("Practice maintaining consistent letter size and spacing")

    if neatness >= 75:
        strengths.append("Neat and well-organized presentation")
    elif neatness < 50:
        issues.append("Presentation could be neater")
        tips.append("Use proper margins and maintain line spacing")

    if speed == "slow":
        tips.append("Practice writing faster while maintaining legibility")
    elif speed == "fast":
        tips.append("Slow down slightly to improve clarity")

    overall = _clamp(_round(legibility * 0.5 + consistency * 0.3 + neatness * 0.2))

    return HandwritingAnalysis(
        legibility_score=legibility,
        consistency_score=consistency,
        neatness_score=neatness,
        speed_estimate=speed,  # type: ignore[arg-type]
        handwriting_strengths=strengths,
        handwriting_issues=issues,
        improvement_tips=tips,
        overall_handwriting_score=overall,
    )
