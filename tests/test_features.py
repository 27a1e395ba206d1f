"""Tests for per-column statistics."""

import numpy as np
import pytest

from pagesplit.config import DetectionConfig
from pagesplit.features import analyze_columns
from pagesplit.raster import PixelMatrix


@pytest.fixture
def columns():
    """Four 10px columns: white, black, striped, and a 0..90 ramp."""
    pixels = np.zeros((10, 4), dtype=np.uint8)
    pixels[:, 0] = 255
    pixels[:, 1] = 0
    pixels[:, 2] = [0, 255] * 5
    pixels[:, 3] = np.arange(0, 100, 10)
    return analyze_columns(PixelMatrix.from_array(pixels))


class TestAnalyzeColumns:
    """Tests for column feature extraction."""

    def test_one_entry_per_column(self, columns):
        """Stats are ordered by x."""
        assert [c.x for c in columns] == [0, 1, 2, 3]

    def test_mean(self, columns):
        """Mean intensity per column."""
        assert columns[0].mean == 255
        assert columns[1].mean == 0
        assert columns[3].mean == pytest.approx(45)

    def test_p10(self, columns):
        """p10 is the sorted value at index floor(height * 0.1)."""
        assert columns[0].p10 == 255
        assert columns[2].p10 == 0
        assert columns[3].p10 == 10

    def test_max_dark_run(self, columns):
        """Longest dark run is a percentage of the height."""
        assert columns[0].max_dark_run == 0
        assert columns[1].max_dark_run == 100
        assert columns[2].max_dark_run == 10

    def test_transitions(self, columns):
        """Every light/dark change between vertical neighbours counts."""
        assert columns[0].transitions == 0
        assert columns[1].transitions == 0
        assert columns[2].transitions == 9

    def test_dark_std_dev(self, columns):
        """Population std dev of the darkest quarter (here 2 pixels)."""
        assert columns[1].dark_std_dev == 0
        assert columns[3].dark_std_dev == pytest.approx(5.0)

    def test_dark_threshold_is_strict(self):
        """A pixel exactly at the threshold is not dark."""
        matrix = PixelMatrix.from_array(np.full((4, 1), 180))
        assert analyze_columns(matrix, DetectionConfig(dark_threshold=180))[0].max_dark_run == 0

    def test_single_row(self):
        """One-row images have no darkest quarter and no transitions."""
        stats = analyze_columns(PixelMatrix.from_array([[7, 200]]))
        assert stats[0].dark_std_dev == 0
        assert stats[0].p10 == 7
        assert stats[0].transitions == 0
        assert stats[0].max_dark_run == 100

    def test_dark_run_ignores_broken_runs(self):
        """Only the longest unbroken run counts."""
        pixels = np.array([[0], [0], [255], [0], [0], [0], [255], [255], [255], [255]])
        stats = analyze_columns(PixelMatrix.from_array(pixels))
        assert stats[0].max_dark_run == 30
