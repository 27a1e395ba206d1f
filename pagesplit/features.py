"""
Per-column statistics over a grayscale page image.
"""

from dataclasses import dataclass

import numpy as np

from .config import DetectionConfig
from .raster import PixelMatrix


@dataclass(frozen=True)
class ColumnStats:
    """Statistics for one vertical pixel column.

    Attributes:
        x: Column index
        mean: Average intensity
        p10: 10th percentile intensity (how dark the darkest decile is)
        max_dark_run: Longest unbroken run of dark pixels, percent of height
        transitions: Number of light/dark changes walking down the column
        dark_std_dev: Standard deviation of the darkest quarter of pixels
    """

    x: int
    mean: float
    p10: int
    max_dark_run: float
    transitions: int
    dark_std_dev: float


def _longest_runs(dark: np.ndarray) -> np.ndarray:
    """Longest run of True values down each column of a (height, width) mask."""
    run = np.zeros(dark.shape[1], dtype=np.int64)
    longest = np.zeros(dark.shape[1], dtype=np.int64)
    for row in dark:
        run = np.where(row, run + 1, 0)
        np.maximum(longest, run, out=longest)
    return longest


def analyze_columns(
    matrix: PixelMatrix,
    config: DetectionConfig | None = None,
) -> list[ColumnStats]:
    """Compute ColumnStats for every column, ordered by x.

    Args:
        matrix: Grayscale image to analyze
        config: Detection constants (only dark_threshold is used here)

    Returns:
        One ColumnStats per column in increasing x
    """
    config = config or DetectionConfig()
    pixels = matrix.pixels
    height = matrix.height

    sorted_cols = np.sort(pixels, axis=0)
    means = pixels.mean(axis=0, dtype=np.float64)
    p10 = sorted_cols[int(height * 0.1)]

    dark = pixels < config.dark_threshold
    longest = _longest_runs(dark)
    transitions = np.count_nonzero(dark[1:] != dark[:-1], axis=0)

    # Spread of the darkest quarter: a shadow is uniformly dark, print is not
    quarter = int(height * 0.25)
    if quarter > 0:
        dark_std = sorted_cols[:quarter].astype(np.float64).std(axis=0)
    else:
        dark_std = np.zeros(matrix.width)

    return [
        ColumnStats(
            x=x,
            mean=float(means[x]),
            p10=int(p10[x]),
            max_dark_run=float(longest[x]) / height * 100,
            transitions=int(transitions[x]),
            dark_std_dev=float(dark_std[x]),
        )
        for x in range(matrix.width)
    ]
