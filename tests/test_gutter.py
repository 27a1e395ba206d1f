"""Tests for gutter scoring and search."""

import pytest

from pagesplit.config import DetectionConfig
from pagesplit.features import ColumnStats
from pagesplit.gutter import find_gutter, score_column, search_band


def blank_column(x: int) -> ColumnStats:
    return ColumnStats(x=x, mean=255, p10=255, max_dark_run=0, transitions=0, dark_std_dev=0)


def shadow_column(x: int) -> ColumnStats:
    return ColumnStats(x=x, mean=0, p10=0, max_dark_run=100, transitions=0, dark_std_dev=0)


class TestScoreColumn:
    """Tests for the weighted column score."""

    def test_perfect_shadow(self):
        """Black, unbroken, uniform column gets every component at its maximum."""
        assert score_column(shadow_column(0)) == pytest.approx(30 + 35 + 20 + 7.5)

    def test_blank_column(self):
        """White column only earns the transition and consistency parts."""
        assert score_column(blank_column(0)) == pytest.approx(20 + 7.5)

    def test_components_floor_at_zero(self):
        """Many transitions and a wide dark spread cannot go negative."""
        col = ColumnStats(x=0, mean=255, p10=255, max_dark_run=0, transitions=600, dark_std_dev=60)
        assert score_column(col) == 0

    def test_fewer_transitions_score_higher(self):
        """A shadow beats printed text."""
        text = ColumnStats(x=0, mean=128, p10=0, max_dark_run=2, transitions=120, dark_std_dev=40)
        assert score_column(shadow_column(0)) > score_column(text)


class TestSearchBand:
    """Tests for the central search band."""

    def test_band_bounds(self):
        """Band covers [floor(n * 0.35), floor(n * 0.65))."""
        band = search_band(1000)
        assert band.start == 350
        assert band.stop == 650

    def test_small_image(self):
        """Tiny widths truncate toward zero."""
        assert list(search_band(10)) == [3, 4, 5]


class TestFindGutter:
    """Tests for picking the gutter column."""

    def test_finds_shadow(self):
        """The shadow column wins."""
        columns = [blank_column(x) for x in range(100)]
        columns[52] = shadow_column(52)
        gutter = find_gutter(columns)
        assert gutter.position == 52
        assert gutter.stats is columns[52]

    def test_ignores_outside_band(self):
        """A stronger column outside the band is never chosen."""
        columns = [blank_column(x) for x in range(100)]
        columns[10] = shadow_column(10)
        assert find_gutter(columns).position == 35

    def test_tie_goes_left(self):
        """Equal scores keep the leftmost column."""
        columns = [blank_column(x) for x in range(100)]
        columns[40] = shadow_column(40)
        columns[60] = shadow_column(60)
        assert find_gutter(columns).position == 40

    def test_uniform_image(self):
        """All-equal columns pick the start of the band."""
        columns = [blank_column(x) for x in range(10)]
        gutter = find_gutter(columns)
        assert gutter.position == 3
        assert gutter.score == pytest.approx(27.5)

    def test_empty_band_falls_back_to_middle(self):
        """A single column has no band; it is scored and returned."""
        gutter = find_gutter([shadow_column(0)])
        assert gutter.position == 0
        assert gutter.score == pytest.approx(92.5)

    def test_no_columns(self):
        """Nothing to search is an error."""
        with pytest.raises(ValueError):
            find_gutter([])

    def test_custom_band(self):
        """Band comes from the config."""
        columns = [blank_column(x) for x in range(100)]
        columns[20] = shadow_column(20)
        config = DetectionConfig(search_start=0.1, search_end=0.9)
        assert find_gutter(columns, config).position == 20
