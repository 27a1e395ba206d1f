"""Tests for page records and crop decisions."""

import pytest

from pagesplit.detector import Confidence, DetectionMetrics, DetectionResult
from pagesplit.pages import (
    BoundingBox,
    Crop,
    CropDecision,
    OriginalPage,
    Side,
    SplitRightPage,
    page_from_dict,
)


class TestCrop:
    """Tests for crop validation."""

    def test_valid(self):
        assert Crop(0, 1000).to_dict() == {"xStart": 0, "xEnd": 1000}

    @pytest.mark.parametrize("start,end", [(-1, 500), (500, 500), (600, 400), (0, 1001)])
    def test_invalid(self, start, end):
        """Crops must satisfy 0 <= xStart < xEnd <= 1000."""
        with pytest.raises(ValueError):
            Crop(start, end)


class TestCropDecision:
    """Tests for building crop decisions."""

    def test_from_ratio_left(self):
        """The page keeps the left half by default."""
        decision = CropDecision.from_ratio(50)
        assert decision.kept == Crop(0, 500)
        assert decision.other == Crop(500, 1000)

    def test_from_ratio_right(self):
        """Keeping the right side hands the left half to the new page."""
        decision = CropDecision.from_ratio(40, side="right")
        assert decision.keep is Side.RIGHT
        assert decision.kept == Crop(400, 1000)
        assert decision.other == Crop(0, 400)

    @pytest.mark.parametrize("ratio", [0, 100, -5, 150])
    def test_ratio_out_of_range(self, ratio):
        with pytest.raises(ValueError):
            CropDecision.from_ratio(ratio)

    def test_from_position_overlap(self):
        """Overlap lets each half run past the split line."""
        decision = CropDecision.from_position(480, overlap=10)
        assert decision.left == Crop(0, 490)
        assert decision.right == Crop(470, 1000)

    def test_overlap_clamped(self):
        """Overlap never pushes a crop past the image."""
        decision = CropDecision.from_position(995, overlap=10)
        assert decision.left == Crop(0, 1000)

    def test_from_boxes(self):
        decision = CropDecision.from_boxes(BoundingBox(20, 490), BoundingBox(510, 980))
        assert decision.left == Crop(20, 490)
        assert decision.right == Crop(510, 980)

    def test_from_detection(self):
        result = DetectionResult(True, Confidence.HIGH, 512, 51.2, False, DetectionMetrics(1.5))
        assert CropDecision.from_detection(result).left == Crop(0, 512)

    def test_from_single_page_detection(self):
        """A single-page result has no split to apply."""
        result = DetectionResult(False, Confidence.HIGH, 0, 0.0, False, DetectionMetrics(0.7))
        with pytest.raises(ValueError):
            CropDecision.from_detection(result)


class TestPageRecords:
    """Tests for page serialization."""

    def test_original_to_dict(self):
        page = OriginalPage(id="p1", book_id="b1", page_number=1, photo="a.jpg")
        data = page.to_dict()
        assert data["crop"] is None
        assert data["split_from"] is None
        assert not page.is_split

    def test_right_page_round_trip(self):
        """The variant is recovered from split_from."""
        page = SplitRightPage(
            id="p1r", book_id="b1", page_number=2, photo="a.jpg",
            photo_original="a.jpg", crop=Crop(500, 1000), split_from="p1",
        )
        loaded = page_from_dict(page.to_dict())
        assert isinstance(loaded, SplitRightPage)
        assert loaded == page

    def test_right_page_without_crop(self):
        """A generated half without a crop is corrupt."""
        with pytest.raises(ValueError):
            page_from_dict({"id": "x", "book_id": "b1", "page_number": 1, "split_from": "p1"})

    def test_source_image_prefers_original(self):
        page = OriginalPage(id="p1", book_id="b1", page_number=1, photo="crop.jpg", photo_original="full.jpg")
        assert page.source_image == "full.jpg"
