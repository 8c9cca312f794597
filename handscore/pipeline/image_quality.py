"""Answer-image quality assessment and OCR-oriented enhancement."""

from __future__ import annotations

import io
import math
from dataclasses import asdict, dataclass, field

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageStat

_LAPLACIAN = ImageFilter.Kernel((3, 3), [-1, -1, -1, -1, 8, -1, -1, -1, -1], scale=1, offset=0)
_JPEG_QUALITY = 95
_WHITESPACE_THRESHOLD = 10


@dataclass
class ImageQualityMetrics:
    width: int
    height: int
    file_size: int
    format: str
    has_color: bool
    brightness: float
    contrast: float
    sharpness: float
    quality_score: float
    recommendations: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class EnhancementOptions:
    enhance_contrast: bool = True
    remove_noise: bool = True
    sharpen_text: bool = True
    crop_whitespace: bool = True


def _brightness(image: Image.Image) -> float:
    means = ImageStat.Stat(image).mean
    return (sum(means) / len(means)) / 255 * 100


def _contrast(image: Image.Image) -> float:
    stddevs = ImageStat.Stat(image).stddev
    return min(100.0, (sum(stddevs) / len(stddevs)) / 64 * 100)


def _sharpness(image: Image.Image) -> float:
    edges = image.convert("L").filter(_LAPLACIAN)
    variance = ImageStat.Stat(edges).var[0]
    return min(100.0, variance / 1000)


def calculate_quality_score(width: int, height: int, brightness: float, contrast: float, sharpness: float) -> float:
    resolution_score = min(100.0, math.sqrt((width * height) / 1_000_000) * 100)
    if 20 <= brightness <= 80:
        brightness_score = 100.0
    else:
        brightness_score = max(0.0, 100 - abs(brightness - 50) * 2)
    contrast_score = min(100.0, contrast * 2)
    sharpness_score = min(100.0, sharpness * 2)
    weighted = resolution_score * 0.3 + brightness_score * 0.25 + contrast_score * 0.25 + sharpness_score * 0.2
    return float(math.floor(weighted + 0.5))


def capture_recommendations(
    width: int, height: int, brightness: float, contrast: float, sharpness: float, quality_score: float
) -> list[str]:
    recommendations: list[str] = []
    if width < 1200 or height < 800:
        recommendations.append("Capture image at higher resolution for better text recognition")
    if brightness < 20:
        recommendations.append("Increase lighting - image appears too dark")
    elif brightness > 80:
        recommendations.append("Reduce lighting or exposure - image appears overexposed")
    if contrast < 30:
        recommendations.append("Improve contrast between text and background")
    if sharpness < 30:
        recommendations.append("Ensure image is in focus and avoid camera shake")
    if quality_score < 60:
        recommendations.append("Consider retaking the photo with better lighting and focus")
    return recommendations


def assess_image_quality(image_bytes: bytes) -> ImageQualityMetrics:
    """Compute capture-quality metrics on a 0-100 scale from raw image bytes."""
    with Image.open(io.BytesIO(image_bytes)) as source:
        image_format = (source.format or "unknown").lower()
        has_color = len(source.getbands()) > 1
        image = ImageOps.exif_transpose(source).convert("RGB" if has_color else "L")

    width, height = image.size
    brightness = _brightness(image)
    contrast = _contrast(image)
    sharpness = _sharpness(image)
    quality_score = calculate_quality_score(width, height, brightness, contrast, sharpness)

    return ImageQualityMetrics(
        width=width,
        height=height,
        file_size=len(image_bytes),
        format=image_format,
        has_color=has_color,
        brightness=round(brightness, 2),
        contrast=round(contrast, 2),
        sharpness=round(sharpness, 2),
        quality_score=quality_score,
        recommendations=capture_recommendations(width, height, brightness, contrast, sharpness, quality_score),
    )


def enhance_image(image_bytes: bytes, options: EnhancementOptions | None = None) -> bytes:
    """Return a grayscale JPEG tuned for text recognition."""
    options = options or EnhancementOptions()
    with Image.open(io.BytesIO(image_bytes)) as source:
        image = ImageOps.exif_transpose(source).convert("L")

    if options.enhance_contrast:
        image = ImageEnhance.Contrast(image).enhance(1.2)
    if options.remove_noise:
        image = image.filter(ImageFilter.GaussianBlur(radius=0.3))
    if options.sharpen_text:
        image = image.filter(ImageFilter.UnsharpMask(radius=1, percent=150, threshold=2))
    if options.crop_whitespace:
        ink = ImageOps.invert(image).point(lambda value: 255 if value > _WHITESPACE_THRESHOLD else 0)
        bbox = ink.getbbox()
        if bbox:
            image = image.crop(bbox)

    image = ImageOps.autocontrast(image)
    output = io.BytesIO()
    image.save(output, format="JPEG", quality=_JPEG_QUALITY, optimize=True)
    return output.getvalue()


def verify_image(image_bytes: bytes) -> str:
    """Raise if the bytes are not a decodable image; return the detected format."""
    with Image.open(io.BytesIO(image_bytes)) as image:
        image.verify()
        return (image.format or "unknown").lower()
