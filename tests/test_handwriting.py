from __future__ import annotations

from handscore.grading.handwriting import DEFAULT_CONSISTENCY, analyze_handwriting, consistency_score, speed_estimate
from handscore.ocr.base import WordBox


def boxes(confidences: list[float], width: float = 20.0, height: float = 20.0) -> list[WordBox]:
    return [
        WordBox(text=f"w{idx}", confidence=value, x=idx * 25.0, y=0.0, width=width, height=height)
        for idx, value in enumerate(confidences)
    ]


def test_identical_inputs_give_identical_scores() -> None:
    word_boxes = boxes([0.9, 0.8, 0.95, 0.7, 0.85, 0.9, 0.6])

    first = analyze_handwriting(0.82, word_boxes, 64.0, 31.5, 77.2)
    second = analyze_handwriting(0.82, list(word_boxes), 64.0, 31.5, 77.2)

    assert first == second


def test_scores_follow_weighted_formula() -> None:
    result = analyze_handwriting(0.9, boxes([0.9, 0.9]), 60.0, 30.0, 93.0)

    assert result.legibility_score == 90
    assert result.consistency_score == DEFAULT_CONSISTENCY
    assert result.neatness_score == 61
    # 0.5 * 90 + 0.3 * 75 + 0.2 * 61 = 79.7
    assert result.overall_handwriting_score == 80


def test_consistency_uses_confidence_spread_above_five_boxes() -> None:
    assert consistency_score(boxes([0.8] * 5)) == DEFAULT_CONSISTENCY
    assert consistency_score(boxes([0.8] * 6)) == 100
    assert consistency_score(boxes([0.5, 1.0] * 3)) == 75


def test_speed_estimate_from_mean_word_area() -> None:
    assert speed_estimate([]) == "moderate"
    assert speed_estimate(boxes([0.9], width=50, height=30)) == "slow"
    assert speed_estimate(boxes([0.9], width=10, height=10)) == "fast"
    assert speed_estimate(boxes([0.9], width=25, height=20)) == "moderate"


def test_low_legibility_produces_issues_and_tips() -> None:
    result = analyze_handwriting(0.4, boxes([0.2, 0.9] * 3, width=10, height=10), 20.0, 10.0, 15.0)

    assert result.legibility_score == 40
    assert any("Legibility" in issue for issue in result.handwriting_issues)
    assert "Slow down slightly to improve clarity" in result.improvement_tips
    assert 0 <= result.overall_handwriting_score <= 100
