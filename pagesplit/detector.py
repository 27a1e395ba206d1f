"""
Spread detection: decide whether a scan holds two facing pages and where to split it.

The heuristic path runs entirely on local pixels:

    decode -> column features -> gutter search -> text check -> classification

A vision-model path and a cascade of the two are available behind the same
``Detector`` interface so callers can pick a strategy per confidence tier.
"""

import base64
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum

import httpx
from PIL import Image

from .config import DetectionConfig
from .errors import EmptyImageError, FetchTimeoutError, PageSplitError, VisionModelError
from .features import analyze_columns
from .gutter import find_gutter
from .raster import CROP_SCALE, PixelMatrix, decode_image, open_image
from .text_check import detect_text_at_position

logger = logging.getLogger(__name__)

# Aspect-ratio-only classification used when sampling whole books
ASPECT_SINGLE_PAGE = 0.9  # Below this = definitely a single page
ASPECT_TWO_PAGE = 1.3  # Above this = definitely a two-page spread


class Confidence(Enum):
    """How far a detection can be trusted without a human looking at it."""

    HIGH = "high"  # Safe to apply automatically
    MEDIUM = "medium"  # Queue for review
    LOW = "low"  # Queue for review, likely wrong or text at split


@dataclass(frozen=True)
class DetectionMetrics:
    """Raw numbers behind a detection."""

    aspect_ratio: float
    gutter_score: float = 0.0
    max_dark_run: float = 0.0
    transitions: int = 0


@dataclass(frozen=True)
class DetectionResult:
    """Split recommendation for one page image.

    ``split_position`` is on the 0-1000 scale so it can be replayed against
    the full-resolution image. It carries no meaning when
    ``is_two_page_spread`` is False.
    """

    is_two_page_spread: bool
    confidence: Confidence
    split_position: int
    split_percent: float
    has_text_at_split: bool
    metrics: DetectionMetrics = field(default_factory=lambda: DetectionMetrics(aspect_ratio=0.0))

    @property
    def safe_to_apply(self) -> bool:
        """Whether the split may be applied without human confirmation."""
        return (
            self.is_two_page_spread
            and self.confidence is Confidence.HIGH
            and not self.has_text_at_split
        )

    def to_dict(self) -> dict:
        """Serialize with the public field names."""
        return {
            "isTwoPageSpread": self.is_two_page_spread,
            "confidence": self.confidence.value,
            "splitPosition": self.split_position,
            "splitPercent": self.split_percent,
            "hasTextAtSplit": self.has_text_at_split,
            "metrics": {
                "aspectRatio": self.metrics.aspect_ratio,
                "gutterScore": self.metrics.gutter_score,
                "maxDarkRun": self.metrics.max_dark_run,
                "transitions": self.metrics.transitions,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionResult":
        metrics = data.get("metrics") or {}
        return cls(
            is_two_page_spread=bool(data["isTwoPageSpread"]),
            confidence=Confidence(data["confidence"]),
            split_position=int(data["splitPosition"]),
            split_percent=float(data["splitPercent"]),
            has_text_at_split=bool(data.get("hasTextAtSplit", False)),
            metrics=DetectionMetrics(
                aspect_ratio=float(metrics.get("aspectRatio", 0.0)),
                gutter_score=float(metrics.get("gutterScore", 0.0)),
                max_dark_run=float(metrics.get("maxDarkRun", 0.0)),
                transitions=int(metrics.get("transitions", 0)),
            ),
        )


def split_position_for(column: int, num_columns: int) -> int:
    """Map a column index to the 0-1000 scale, rounding half up."""
    return int(math.floor(column / num_columns * CROP_SCALE + 0.5))


def classify_confidence(
    aspect_ratio: float,
    gutter_score: float,
    has_text: bool,
    config: DetectionConfig | None = None,
) -> Confidence:
    """Three-way confidence tier for a full (non short-circuited) analysis."""
    config = config or DetectionConfig()

    if aspect_ratio > config.high_aspect and gutter_score > config.high_gutter_score and not has_text:
        return Confidence.HIGH
    if aspect_ratio < config.spread_aspect or gutter_score < config.low_gutter_score or has_text:
        return Confidence.LOW
    return Confidence.MEDIUM


def classify_aspect_ratio(aspect_ratio: float) -> str:
    """Cheap single/spread/ambiguous verdict from proportions alone."""
    if aspect_ratio < ASPECT_SINGLE_PAGE:
        return "single"
    if aspect_ratio > ASPECT_TWO_PAGE:
        return "spread"
    return "ambiguous"


def single_page_result(aspect_ratio: float) -> DetectionResult:
    """Confident single-page verdict for a portrait scan."""
    logger.debug(f"Aspect ratio {aspect_ratio:.2f}: single page")
    return DetectionResult(
        is_two_page_spread=False,
        confidence=Confidence.HIGH,
        split_position=0,
        split_percent=0.0,
        has_text_at_split=False,
        metrics=DetectionMetrics(aspect_ratio=aspect_ratio),
    )


def detect_matrix(matrix: PixelMatrix, config: DetectionConfig | None = None) -> DetectionResult:
    """Run the heuristic detector on an already decoded image.

    Args:
        matrix: Grayscale image (usually downsampled)
        config: Detection constants

    Returns:
        DetectionResult for the image
    """
    config = config or DetectionConfig()
    aspect_ratio = matrix.aspect_ratio

    # A portrait scan cannot be a landscape spread
    if aspect_ratio < config.single_page_aspect:
        return single_page_result(aspect_ratio)

    columns = analyze_columns(matrix, config)
    gutter = find_gutter(columns, config)
    text_check = detect_text_at_position(columns, gutter.position, config)

    confidence = classify_confidence(aspect_ratio, gutter.score, text_check.has_text, config)
    if text_check.has_text:
        logger.debug(text_check.reason)

    return DetectionResult(
        is_two_page_spread=aspect_ratio > config.spread_aspect,
        confidence=confidence,
        split_position=split_position_for(gutter.position, len(columns)),
        split_percent=gutter.position / len(columns) * 100,
        has_text_at_split=text_check.has_text,
        metrics=DetectionMetrics(
            aspect_ratio=aspect_ratio,
            gutter_score=gutter.score,
            max_dark_run=gutter.stats.max_dark_run,
            transitions=gutter.stats.transitions,
        ),
    )


def detect(
    image_bytes: bytes,
    target_width: int | None = None,
    config: DetectionConfig | None = None,
) -> DetectionResult:
    """Detect a two-page spread in encoded image bytes.

    Args:
        image_bytes: Encoded image (any format Pillow reads)
        target_width: Analysis width (defaults to config.analysis_width)
        config: Detection constants

    Returns:
        DetectionResult

    Raises:
        DecodeError: If the bytes are not a readable image
    """
    config = config or DetectionConfig()
    matrix = decode_image(image_bytes, target_width or config.analysis_width)
    return detect_matrix(matrix, config)


class Detector(ABC):
    """Strategy interface: image bytes in, DetectionResult out."""

    name: str = "detector"

    @abstractmethod
    def detect(self, image_bytes: bytes, target_width: int | None = None) -> DetectionResult:
        """Detect a spread in encoded image bytes."""


class HeuristicDetector(Detector):
    """Local pixel heuristics. Fast, free, deterministic."""

    name = "heuristic"

    def __init__(self, config: DetectionConfig | None = None) -> None:
        self.config = config or DetectionConfig()

    def detect(self, image_bytes: bytes, target_width: int | None = None) -> DetectionResult:
        return detect(image_bytes, target_width, self.config)


VISION_PROMPT = """You are looking at a scanned book image.

Decide whether it shows a TWO-PAGE SPREAD (left and right pages side by side) or a SINGLE PAGE.

Signs of a spread: two text blocks separated by a gutter (a dark shadow, a bright gap
or just a margin), a binding line near the middle, an image wider than it is tall.
Signs of a single page: one text block, portrait proportions, no central gap.

If it is a spread, find the vertical line to cut along. Never cut through text; the cut
must fall in the gap between the two text blocks. Follow the binding if the book is tilted.

Answer with this JSON and nothing else:
{
  "isTwoPageSpread": <true|false>,
  "splitPosition": <integer 0-1000, 0 = left edge, 1000 = right edge, 500 if single page>,
  "confidence": "<high|medium|low>",
  "reasoning": "<one sentence>"
}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*?\}")


class VisionModelDetector(Detector):
    """Ask an OpenAI-compatible vision model where the gutter is.

    Never inspects pixels itself, so ``has_text_at_split`` is always False and
    only the aspect ratio is filled in the metrics. Portrait scans are
    answered locally, the same way the heuristic answers them.
    """

    name = "vision"

    def __init__(
        self,
        api_url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
        config: DetectionConfig | None = None,
    ) -> None:
        self.api_url = api_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.config = config or DetectionConfig()
        self._client = client

    def detect(self, image_bytes: bytes, target_width: int | None = None) -> DetectionResult:
        img = open_image(image_bytes)
        width, height = img.size
        if width == 0 or height == 0:
            raise EmptyImageError(f"Image has no pixels ({width}x{height})")

        aspect_ratio = width / height
        if aspect_ratio < self.config.single_page_aspect:
            return single_page_result(aspect_ratio)

        mime_type = Image.MIME.get(img.format or "", "image/jpeg")
        answer = self._ask(image_bytes, mime_type)
        return self._parse_answer(answer, aspect_ratio)

    def _ask(self, image_bytes: bytes, mime_type: str) -> str:
        encoded = base64.b64encode(image_bytes).decode("utf-8")

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                    {"type": "text", "text": VISION_PROMPT},
                ],
            }
        ]
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(
                self.api_url,
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": 0.1,
                    "max_tokens": 300,
                },
                headers=headers,
            )
            response.raise_for_status()
            result = response.json()
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"Vision model timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise VisionModelError(f"Vision model request failed: {e}") from e
        except ValueError as e:
            raise VisionModelError(f"Vision model returned invalid JSON: {e}") from e
        finally:
            if self._client is None:
                client.close()

        try:
            return result["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise VisionModelError(f"Unexpected vision model response: {result!r:.200}") from e

    def _parse_answer(self, answer: str, aspect_ratio: float) -> DetectionResult:
        match = _JSON_OBJECT.search(answer)
        if not match:
            raise VisionModelError(f"Could not find JSON in vision answer: {answer[:200]!r}")

        try:
            parsed = json.loads(match.group(0))
            position = int(round(float(parsed.get("splitPosition", 500))))
        except (ValueError, TypeError) as e:
            raise VisionModelError(f"Could not parse vision answer: {answer[:200]!r}") from e

        position = max(0, min(CROP_SCALE, position))

        try:
            confidence = Confidence(str(parsed.get("confidence", "medium")).lower())
        except ValueError:
            confidence = Confidence.MEDIUM

        is_spread = bool(parsed.get("isTwoPageSpread", True))
        if parsed.get("reasoning"):
            logger.debug(f"Vision model: {parsed['reasoning']}")

        return DetectionResult(
            is_two_page_spread=is_spread,
            confidence=confidence,
            split_position=position,
            split_percent=position / 10,
            has_text_at_split=False,
            metrics=DetectionMetrics(aspect_ratio=aspect_ratio),
        )


class CascadeDetector(Detector):
    """Heuristics first; consult the fallback only when they are unsure.

    High-confidence heuristic results are returned as-is. Low-confidence
    results are sent to the fallback; if it fails the heuristic result is
    returned. Medium results are kept for human review.

    Text the primary found at the split survives the fallback, and such a
    result is never better than MEDIUM.
    """

    name = "cascade"

    def __init__(self, primary: Detector, fallback: Detector | None = None) -> None:
        self.primary = primary
        self.fallback = fallback

    def detect(self, image_bytes: bytes, target_width: int | None = None) -> DetectionResult:
        result = self.primary.detect(image_bytes, target_width)

        if result.confidence is not Confidence.LOW or self.fallback is None:
            return result

        try:
            fallback_result = self.fallback.detect(image_bytes, target_width)
        except PageSplitError as e:
            logger.warning(f"{self.fallback.name} detection failed, keeping {self.primary.name} result: {e}")
            return result

        logger.info(f"Using {self.fallback.name} detection (low-confidence {self.primary.name} result)")
        # Keep the pixel metrics; the fallback has none of its own
        merged = replace(
            fallback_result,
            metrics=result.metrics,
            has_text_at_split=result.has_text_at_split or fallback_result.has_text_at_split,
        )
        if merged.has_text_at_split and merged.confidence is Confidence.HIGH:
            merged = replace(merged, confidence=Confidence.MEDIUM)
        return merged
