"""
Image decoding: raw bytes to a small grayscale pixel matrix, plus cropping helpers.
"""

import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError, EmptyImageError

logger = logging.getLogger(__name__)

CROP_SCALE = 1000  # Crops are expressed out of 1000 of the image width


@dataclass(frozen=True, eq=False)
class PixelMatrix:
    """Immutable grayscale image, one uint8 intensity per pixel.

    ``pixels`` has shape (height, width); row-major flattening gives the
    ``y * width + x`` layout.
    """

    width: int
    height: int
    pixels: np.ndarray

    @classmethod
    def from_array(cls, array) -> "PixelMatrix":
        """Build a matrix from a 2-D array of intensities (copied, read-only)."""
        pixels = np.array(array, dtype=np.uint8, copy=True)
        if pixels.ndim != 2:
            raise DecodeError(f"Expected a 2-D intensity array, got shape {pixels.shape}")

        height, width = pixels.shape
        if width == 0 or height == 0:
            raise EmptyImageError(f"Image has no pixels ({width}x{height})")

        pixels.setflags(write=False)
        return cls(width=width, height=height, pixels=pixels)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def flat(self) -> np.ndarray:
        """Intensities in row-major order."""
        return self.pixels.reshape(-1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelMatrix):
            return NotImplemented
        return (self.width, self.height) == (other.width, other.height) and bool(
            np.array_equal(self.pixels, other.pixels)
        )

    __hash__ = None


def open_image(data: bytes) -> Image.Image:
    """Open and fully load image bytes, upright per EXIF orientation.

    Raises:
        DecodeError: If the bytes are empty or not a readable image
    """
    if not data:
        raise DecodeError("No image data")

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        # Rotate pixels to match EXIF orientation; the copy loses the source format
        upright = ImageOps.exif_transpose(img)
        upright.format = img.format
        return upright
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Unreadable image: {e}") from e
    except (OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Corrupt image: {e}") from e


def image_size(data: bytes) -> tuple[int, int]:
    """Return (width, height) after EXIF orientation without decoding pixels twice."""
    img = open_image(data)
    width, height = img.size
    if width == 0 or height == 0:
        raise EmptyImageError(f"Image has no pixels ({width}x{height})")
    return width, height


def decode_image(data: bytes, target_width: int = 1000) -> PixelMatrix:
    """Decode image bytes to a grayscale matrix exactly ``target_width`` wide.

    Narrow scans are enlarged and wide ones reduced, both with Lanczos
    resampling, so every image is analysed at the same width. Maintains
    aspect ratio.

    Args:
        data: Encoded image bytes (any format Pillow reads)
        target_width: Analysis width in pixels

    Returns:
        PixelMatrix of the resized grayscale image

    Raises:
        DecodeError: On empty, corrupt or unsupported input
        EmptyImageError: If either dimension is zero
    """
    if target_width < 1:
        raise ValueError(f"target_width must be >= 1, got {target_width}")

    img = open_image(data)
    width, height = img.size
    if width == 0 or height == 0:
        raise EmptyImageError(f"Image has no pixels ({width}x{height})")

    gray = img.convert("L")

    if width != target_width:
        new_height = max(1, round(height * target_width / width))
        gray = gray.resize((target_width, new_height), Image.LANCZOS)
        logger.debug(f"Resized {width}x{height} -> {target_width}x{new_height}")

    return PixelMatrix.from_array(np.asarray(gray, dtype=np.uint8))


def crop_to_pixels(x_start: float, x_end: float, image_width: int) -> tuple[int, int]:
    """Convert a 0-1000 horizontal crop to (left, width) in pixels.

    The width is clipped so the region never runs past the right edge.
    """
    left = int(round(x_start / CROP_SCALE * image_width))
    left = min(max(left, 0), image_width - 1)
    width = int(round((x_end - x_start) / CROP_SCALE * image_width))
    width = max(1, min(width, image_width - left))
    return left, width


def crop_half(
    data: bytes,
    x_start: float,
    x_end: float,
    max_width: int = 1200,
    quality: int = 80,
) -> bytes:
    """Cut one page out of a spread and return it as JPEG bytes.

    Args:
        data: Encoded source image
        x_start: Left edge on the 0-1000 scale
        x_end: Right edge on the 0-1000 scale
        max_width: Result is downscaled to this width if wider (0 to disable)
        quality: JPEG quality

    Returns:
        JPEG-encoded crop covering the full image height
    """
    img = open_image(data)
    width, height = img.size
    if width == 0 or height == 0:
        raise EmptyImageError(f"Image has no pixels ({width}x{height})")

    left, crop_width = crop_to_pixels(x_start, x_end, width)
    region = img.crop((left, 0, left + crop_width, height))

    if max_width > 0 and region.width > max_width:
        scale = max_width / region.width
        region = region.resize((max_width, max(1, int(region.height * scale))), Image.LANCZOS)

    if region.mode not in ("RGB", "L"):
        region = region.convert("RGB")

    out = io.BytesIO()
    region.save(out, "JPEG", quality=quality)
    return out.getvalue()
