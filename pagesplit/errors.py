"""
Exceptions raised by split detection and page split bookkeeping.
"""


class PageSplitError(Exception):
    """Base class for all pagesplit errors."""


class DecodeError(PageSplitError):
    """Image bytes could not be decoded (corrupt, empty or unsupported)."""


class EmptyImageError(DecodeError):
    """Decoded image has zero width or height."""


class FetchError(PageSplitError):
    """Source image could not be fetched."""


class FetchTimeoutError(FetchError):
    """Fetching the source image exceeded its time budget."""


class VisionModelError(PageSplitError):
    """Vision model request failed or returned an unusable answer."""


class PageNotFoundError(PageSplitError):
    """Referenced page (or book) does not exist."""

    def __init__(self, page_id: str, kind: str = "Page") -> None:
        super().__init__(f"{kind} not found: {page_id}")
        self.page_id = page_id


class InvalidStateError(PageSplitError):
    """Operation does not apply to the page in its current state."""
