"""
Configuration for split detection and the page split service.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal


@dataclass
class DetectionConfig:
    """Tuning constants for the heuristic spread detector.

    The weights and thresholds were fitted against hand-labelled splits;
    changing them changes which column wins on existing scans.

    Attributes:
        analysis_width: Width images are downsampled to before analysis

        # Column features
        dark_threshold: Intensity below which a pixel counts as dark (0-255)

        # Gutter search
        search_start: Left edge of the gutter search band (fraction of width)
        search_end: Right edge of the gutter search band (fraction of width)
        weight_p10: Weight of the darkest-decile score
        weight_dark_run: Weight of the longest dark run
        weight_transitions: Weight of the (inverted) transition count
        weight_consistency: Weight of the (inverted) dark-pixel spread
        transition_divisor: Transitions are divided by this before inverting
        consistency_ceiling: Dark-pixel std dev above this scores zero

        # Text at the split line
        text_window: Columns inspected on each side of the gutter
        text_column_transitions: Gutter column transitions above this look like text
        text_window_transitions: Window mean transitions above this look like text
        text_column_dark_run: Gutter column dark run below this looks like text
        text_window_dark_run: Window mean dark run below this looks like text
        text_window_dark_std: Window mean dark std dev above this looks like text
        min_text_signals: Signals that must agree before text is reported

        # Classification
        single_page_aspect: Below this width/height ratio the page is a single page
        spread_aspect: Above this ratio the page is treated as a spread
        high_aspect: Ratio required for a high-confidence result
        high_gutter_score: Gutter score required for a high-confidence result
        low_gutter_score: Gutter score below which the result is low confidence
    """

    analysis_width: int = 1000

    dark_threshold: int = 180

    search_start: float = 0.35
    search_end: float = 0.65
    weight_p10: float = 0.30
    weight_dark_run: float = 0.35
    weight_transitions: float = 0.20
    weight_consistency: float = 0.15
    transition_divisor: float = 5.0
    consistency_ceiling: float = 50.0

    text_window: int = 3
    text_column_transitions: float = 30
    text_window_transitions: float = 40
    text_column_dark_run: float = 40
    text_window_dark_run: float = 50
    text_window_dark_std: float = 30
    min_text_signals: int = 2

    single_page_aspect: float = 0.9
    spread_aspect: float = 1.0
    high_aspect: float = 1.1
    high_gutter_score: float = 50
    low_gutter_score: float = 30

    def __post_init__(self) -> None:
        """Validate ranges."""
        if self.analysis_width < 1:
            raise ValueError(f"analysis_width must be >= 1, got {self.analysis_width}")

        if not 0 < self.dark_threshold <= 255:
            raise ValueError(f"dark_threshold must be in (0, 255], got {self.dark_threshold}")

        if not 0 <= self.search_start < self.search_end <= 1:
            raise ValueError(
                f"search band must satisfy 0 <= start < end <= 1, "
                f"got ({self.search_start}, {self.search_end})"
            )

        if self.transition_divisor <= 0:
            raise ValueError(f"transition_divisor must be > 0, got {self.transition_divisor}")

        if self.text_window < 0:
            raise ValueError(f"text_window must be >= 0, got {self.text_window}")

        if not 1 <= self.min_text_signals <= 3:
            raise ValueError(f"min_text_signals must be in [1, 3], got {self.min_text_signals}")

        if self.low_gutter_score > self.high_gutter_score:
            raise ValueError("low_gutter_score cannot exceed high_gutter_score")


DetectionMethod = Literal["heuristic", "vision", "cascade"]


@dataclass
class AppConfig:
    """Runtime settings for the CLI and HTTP server.

    Attributes:
        store_dir: Directory holding one JSON file per book
        analysis_width: Width images are downsampled to before analysis
        fetch_timeout: Seconds allowed for fetching a source image
        detection_method: Which detector to use for stored pages
        vision_api_url: OpenAI-compatible chat completions endpoint
        vision_model: Model name sent to the vision endpoint
        vision_api_key: Bearer token for the vision endpoint (optional)
        vision_timeout: Seconds allowed for one vision request
        label_log: JSONL file receiving every prediction (None to disable)
    """

    store_dir: Path = Path("./pagesplit-data")
    analysis_width: int = 1000
    fetch_timeout: float = 30.0
    detection_method: DetectionMethod = "heuristic"
    vision_api_url: str = "http://localhost:8080/v1/chat/completions"
    vision_model: str = "gpt-4o-mini"
    vision_api_key: str | None = None
    vision_timeout: float = 60.0
    label_log: Path | None = None

    def __post_init__(self) -> None:
        """Validate and convert paths."""
        self.store_dir = Path(self.store_dir)
        if self.label_log:
            self.label_log = Path(self.label_log)

        if self.analysis_width < 1:
            raise ValueError(f"analysis_width must be >= 1, got {self.analysis_width}")

        if self.fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be > 0, got {self.fetch_timeout}")

        if self.vision_timeout <= 0:
            raise ValueError(f"vision_timeout must be > 0, got {self.vision_timeout}")

        valid_methods = {"heuristic", "vision", "cascade"}
        if self.detection_method not in valid_methods:
            raise ValueError(
                f"Invalid detection method: {self.detection_method}. Valid: {valid_methods}"
            )

    @classmethod
    def from_env(cls, **overrides) -> "AppConfig":
        """Build a config from PAGESPLIT_* (and LLM_*) environment variables.

        Keyword arguments that are not None take precedence over the environment.
        """
        env = os.environ
        values = {
            "store_dir": env.get("PAGESPLIT_STORE_DIR", "./pagesplit-data"),
            "analysis_width": int(env.get("PAGESPLIT_ANALYSIS_WIDTH", "1000")),
            "fetch_timeout": float(env.get("PAGESPLIT_FETCH_TIMEOUT", "30")),
            "detection_method": env.get("PAGESPLIT_DETECTION_METHOD", "heuristic"),
            "vision_api_url": env.get("LLM_API_URL", "http://localhost:8080/v1/chat/completions"),
            "vision_model": env.get("LLM_MODEL", "gpt-4o-mini"),
            "vision_api_key": env.get("LLM_API_KEY") or None,
            "vision_timeout": float(env.get("PAGESPLIT_VISION_TIMEOUT", "60")),
            "label_log": env.get("PAGESPLIT_LABEL_LOG") or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def detection_config(self) -> DetectionConfig:
        """Detector tuning using this config's analysis width."""
        return DetectionConfig(analysis_width=self.analysis_width)
