from __future__ import annotations

import io
import random

import pytest
from PIL import Image, UnidentifiedImageError

from handscore.pipeline.image_quality import (
    assess_image_quality,
    calculate_quality_score,
    capture_recommendations,
    enhance_image,
    verify_image,
)


def encode(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def noisy_image(size: tuple[int, int] = (1200, 900)) -> bytes:
    rng = random.Random(7)
    return encode(Image.frombytes("L", size, rng.randbytes(size[0] * size[1])))


def test_blank_page_scores_low_and_gets_recommendations() -> None:
    metrics = assess_image_quality(encode(Image.new("RGB", (400, 300), "white")))

    assert metrics.width == 400
    assert metrics.height == 300
    assert metrics.format == "png"
    assert metrics.has_color is True
    assert metrics.contrast == 0
    assert metrics.quality_score < 70
    assert "Capture image at higher resolution for better text recognition" in metrics.recommendations
    assert "Reduce lighting or exposure - image appears overexposed" in metrics.recommendations


def test_detailed_high_resolution_page_scores_above_enhancement_threshold() -> None:
    metrics = assess_image_quality(noisy_image())

    assert metrics.has_color is False
    assert 20 <= metrics.brightness <= 80
    assert metrics.quality_score >= 70
    assert all(0 <= value <= 100 for value in (metrics.brightness, metrics.contrast, metrics.sharpness))


def test_quality_score_weights() -> None:
    assert calculate_quality_score(1000, 1000, 50, 50, 50) == 100
    assert calculate_quality_score(1000, 1000, 50, 0, 0) == 55
    assert calculate_quality_score(400, 400, 100, 0, 0) == 12


def test_capture_recommendations_for_dark_blurry_capture() -> None:
    recommendations = capture_recommendations(2000, 1500, 10, 20, 5, 40)

    assert recommendations == [
        "Increase lighting - image appears too dark",
        "Improve contrast between text and background",
        "Ensure image is in focus and avoid camera shake",
        "Consider retaking the photo with better lighting and focus",
    ]


def test_enhance_image_returns_grayscale_jpeg_cropped_to_ink(answer_image: bytes) -> None:
    enhanced = enhance_image(answer_image)

    with Image.open(io.BytesIO(enhanced)) as image:
        assert image.format == "JPEG"
        assert image.mode == "L"
        assert image.size[0] <= 400
        assert image.size[1] <= 300


def test_verify_image_detects_format_and_rejects_garbage(answer_image: bytes) -> None:
    assert verify_image(answer_image) == "png"
    with pytest.raises(UnidentifiedImageError):
        verify_image(b"definitely not an image")
