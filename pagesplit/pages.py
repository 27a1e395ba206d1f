"""
Book and page records, and the crop decisions applied to them.

A page is either an ``OriginalPage`` (an imported scan, possibly cropped to
its left/kept half) or a ``SplitRightPage`` (the second half generated by a
split, pointing back at the page it came from).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from .detector import DetectionResult
from .raster import CROP_SCALE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Crop:
    """Horizontal region of a page image on the 0-1000 scale."""

    x_start: float
    x_end: float

    def __post_init__(self) -> None:
        if not 0 <= self.x_start < self.x_end <= CROP_SCALE:
            raise ValueError(
                f"Crop must satisfy 0 <= xStart < xEnd <= {CROP_SCALE}, "
                f"got ({self.x_start}, {self.x_end})"
            )

    def to_dict(self) -> dict:
        return {"xStart": self.x_start, "xEnd": self.x_end}

    @classmethod
    def from_dict(cls, data: dict) -> "Crop":
        return cls(x_start=data["xStart"], x_end=data["xEnd"])


class Side(Enum):
    """Which half of a spread the existing page keeps."""

    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class BoundingBox:
    """Page region reported by a vision model (0-1000 scale)."""

    xmin: float
    xmax: float
    ymin: float = 0
    ymax: float = CROP_SCALE


@dataclass(frozen=True)
class CropDecision:
    """Left and right regions of a spread, and which one the page keeps."""

    left: Crop
    right: Crop
    keep: Side = Side.LEFT

    @property
    def kept(self) -> Crop:
        return self.left if self.keep is Side.LEFT else self.right

    @property
    def other(self) -> Crop:
        return self.right if self.keep is Side.LEFT else self.left

    @classmethod
    def from_ratio(cls, ratio: float = 50, side: Side | str = Side.LEFT) -> "CropDecision":
        """Split at ``ratio`` percent of the width."""
        if not 0 < ratio < 100:
            raise ValueError(f"Split ratio must be in (0, 100), got {ratio}")
        position = ratio * 10
        return cls(
            left=Crop(0, position),
            right=Crop(position, CROP_SCALE),
            keep=Side(side),
        )

    @classmethod
    def from_boxes(
        cls,
        left: BoundingBox,
        right: BoundingBox,
        side: Side | str = Side.LEFT,
    ) -> "CropDecision":
        """Use page bounding boxes as reported by a vision model."""
        return cls(
            left=Crop(left.xmin, left.xmax),
            right=Crop(right.xmin, right.xmax),
            keep=Side(side),
        )

    @classmethod
    def from_position(cls, position: float, overlap: float = 0) -> "CropDecision":
        """Split at a 0-1000 position, letting each half run ``overlap`` past the line."""
        if not 0 < position < CROP_SCALE:
            raise ValueError(f"Split position must be in (0, {CROP_SCALE}), got {position}")
        return cls(
            left=Crop(0, min(CROP_SCALE, position + overlap)),
            right=Crop(max(0, position - overlap), CROP_SCALE),
        )

    @classmethod
    def from_detection(cls, result: DetectionResult, overlap: float = 0) -> "CropDecision":
        if not result.is_two_page_spread:
            raise ValueError("Detection did not find a two-page spread")
        return cls.from_position(result.split_position, overlap)


@dataclass(kw_only=True)
class Page:
    """Fields shared by every page record."""

    id: str
    book_id: str
    page_number: int
    photo: str | None = None
    photo_original: str | None = None
    split_detection: dict | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def source_image(self) -> str | None:
        """Uncropped image the page was cut from."""
        return self.photo_original or self.photo

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        crop = getattr(self, "crop", None)
        data["crop"] = crop.to_dict() if crop else None
        data.setdefault("split_from", None)
        return data


@dataclass(kw_only=True)
class OriginalPage(Page):
    """An imported page. ``crop`` is set once it has been split."""

    crop: Crop | None = None

    @property
    def is_split(self) -> bool:
        return self.crop is not None


@dataclass(kw_only=True)
class SplitRightPage(Page):
    """The half created by a split; ``split_from`` is the original's id."""

    crop: Crop
    split_from: str


AnyPage = Union[OriginalPage, SplitRightPage]


def page_from_dict(data: dict) -> AnyPage:
    """Rebuild a page record; ``split_from`` decides the variant."""
    common = {
        "id": data["id"],
        "book_id": data["book_id"],
        "page_number": data["page_number"],
        "photo": data.get("photo"),
        "photo_original": data.get("photo_original"),
        "split_detection": data.get("split_detection"),
    }
    for key in ("created_at", "updated_at"):
        if data.get(key):
            common[key] = datetime.fromisoformat(data[key])

    crop = Crop.from_dict(data["crop"]) if data.get("crop") else None

    if data.get("split_from"):
        if crop is None:
            raise ValueError(f"Split page {data['id']} has no crop")
        return SplitRightPage(crop=crop, split_from=data["split_from"], **common)
    return OriginalPage(crop=crop, **common)


@dataclass
class Book:
    """A book and its bookkeeping counters. Pages are stored separately."""

    id: str
    title: str = ""
    pages_count: int = 0
    needs_splitting: bool | None = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Book":
        book = cls(
            id=data["id"],
            title=data.get("title", ""),
            pages_count=data.get("pages_count", 0),
            needs_splitting=data.get("needs_splitting"),
        )
        if data.get("updated_at"):
            book.updated_at = datetime.fromisoformat(data["updated_at"])
        return book
