"""Shared fixtures: synthetic scans and a small book."""

import io

import numpy as np
import pytest
from PIL import Image

from pagesplit.pages import Book, OriginalPage
from pagesplit.store import MemoryPageStore

WHITE = 255


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode a 2-D uint8 array as a grayscale PNG."""
    out = io.BytesIO()
    Image.fromarray(np.asarray(pixels, dtype=np.uint8)).save(out, "PNG")
    return out.getvalue()


def blank(width: int, height: int) -> np.ndarray:
    return np.full((height, width), WHITE, dtype=np.uint8)


def text_lines(pixels: np.ndarray, x_start: int, x_end: int, line_height: int = 4) -> np.ndarray:
    """Paint alternating dark/light horizontal stripes, like lines of print."""
    for y in range(0, pixels.shape[0], line_height * 2):
        pixels[y:y + line_height, x_start:x_end] = 0
    return pixels


@pytest.fixture
def make_png():
    """Factory for white ``width`` x ``height`` PNGs.

    ``fill`` sets the background and ``draw(pixels)`` may paint on the array
    before it is encoded.
    """
    def make(width: int, height: int, draw=None, fill: int = WHITE) -> bytes:
        pixels = np.full((height, width), fill, dtype=np.uint8)
        if draw is not None:
            draw(pixels)
        return encode_png(pixels)

    return make


@pytest.fixture
def gutter_spread_png() -> bytes:
    """2000x1000 white scan with a 1px black binding line at x=1000."""
    pixels = blank(2000, 1000)
    pixels[:, 1000] = 0
    return encode_png(pixels)


@pytest.fixture
def clean_spread_png() -> bytes:
    """1000x600 scan with a dark shadow at column 500 (no resampling needed)."""
    pixels = blank(1000, 600)
    pixels[:, 500] = 40
    return encode_png(pixels)


@pytest.fixture
def squarish_spread_png() -> bytes:
    """Barely landscape (1000x950) with a clear gutter."""
    pixels = blank(1000, 950)
    pixels[:, 500] = 0
    return encode_png(pixels)


@pytest.fixture
def text_spread_png() -> bytes:
    """1000x500 spread whose printed lines run straight across the middle."""
    return encode_png(text_lines(blank(1000, 500), 300, 700))


@pytest.fixture
def portrait_png() -> bytes:
    """1000x1400 single page."""
    return encode_png(blank(1000, 1400))


@pytest.fixture
def store() -> MemoryPageStore:
    """Book ``b1`` with ten unsplit pages ``p1``..``p10``."""
    store = MemoryPageStore()
    store.save_book(Book(id="b1", title="Test Book", pages_count=10))
    for n in range(1, 11):
        store.insert_page(
            OriginalPage(
                id=f"p{n}",
                book_id="b1",
                page_number=n,
                photo=f"scan_{n:02d}.jpg",
            )
        )
    return store
