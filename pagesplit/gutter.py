"""
Gutter location: pick the column in the middle of a spread most likely to be the binding.
"""

import logging
from dataclasses import dataclass

from .config import DetectionConfig
from .features import ColumnStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GutterCandidate:
    """Best-scoring column in the search band."""

    position: int
    score: float
    stats: ColumnStats


def score_column(col: ColumnStats, config: DetectionConfig | None = None) -> float:
    """Score how much a column looks like a binding shadow.

    Each component is normalized to roughly 0-100 before weighting:
    a dark bottom decile, a long unbroken dark run, few light/dark
    transitions and a uniform set of dark pixels all raise the score.
    """
    config = config or DetectionConfig()

    p10_score = (255 - col.p10) / 2.55
    dark_run_score = col.max_dark_run
    transition_score = max(0.0, 100 - col.transitions / config.transition_divisor)
    consistency_score = max(0.0, config.consistency_ceiling - col.dark_std_dev)

    return (
        p10_score * config.weight_p10
        + dark_run_score * config.weight_dark_run
        + transition_score * config.weight_transitions
        + consistency_score * config.weight_consistency
    )


def search_band(num_columns: int, config: DetectionConfig | None = None) -> range:
    """Column indices searched for the gutter."""
    config = config or DetectionConfig()
    return range(int(num_columns * config.search_start), int(num_columns * config.search_end))


def find_gutter(
    columns: list[ColumnStats],
    config: DetectionConfig | None = None,
) -> GutterCandidate:
    """Find the best gutter column inside the central search band.

    Columns are scanned left to right and only a strictly higher score
    replaces the current best, so ties go to the leftmost column.

    Args:
        columns: ColumnStats for the whole image, ordered by x
        config: Detection constants

    Returns:
        GutterCandidate for the winning column
    """
    if not columns:
        raise ValueError("Cannot search for a gutter in an image with no columns")

    config = config or DetectionConfig()
    band = search_band(len(columns), config)

    best_score = float("-inf")
    best_idx = len(columns) // 2

    for i in band:
        score = score_column(columns[i], config)
        if score > best_score:
            best_score = score
            best_idx = i

    if not band:
        # Too narrow to have a band; fall back to the middle column
        best_score = score_column(columns[best_idx], config)

    logger.debug(f"Gutter at column {best_idx}/{len(columns)} (score {best_score:.1f})")
    return GutterCandidate(position=best_idx, score=best_score, stats=columns[best_idx])
