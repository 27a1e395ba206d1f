"""
Apply and undo page splits while keeping each book's page numbers contiguous.

Every structural change ends with a full renumber of the book computed from
the stored page list, so a retried operation always converges on 1..N.
"""

import logging
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace

from .errors import InvalidStateError, PageNotFoundError
from .pages import AnyPage, Book, CropDecision, OriginalPage, SplitRightPage, utcnow
from .store import PageStore

logger = logging.getLogger(__name__)

BATCH_SPLIT_OVERLAP = 10  # Each half runs 1% past the split line


@dataclass
class SplitOutcome:
    """Pages as stored after a split."""

    updated_page: OriginalPage
    new_page: SplitRightPage
    total_pages: int


@dataclass
class UndoOutcome:
    """Result of resetting a split."""

    page: OriginalPage
    deleted_sibling_id: str | None
    renumbered_count: int


@dataclass
class BatchSplitResult:
    """Summary of a batch split across one or more books."""

    split_count: int = 0
    total_pages: int = 0
    new_page_ids: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)  # page id -> reason


def canonical_order(pages: list[AnyPage]) -> list[AnyPage]:
    """Order a book's pages for numbering.

    Originals (and orphaned right halves) go by their current page_number;
    each generated right half follows directly after the page it came from.
    """
    ids = {p.id for p in pages}
    children: dict[str, list[SplitRightPage]] = defaultdict(list)
    roots = []
    for page in pages:
        if isinstance(page, SplitRightPage) and page.split_from in ids:
            children[page.split_from].append(page)
        else:
            roots.append(page)

    roots.sort(key=lambda p: (p.page_number, p.created_at, p.id))

    ordered = []
    for page in roots:
        ordered.append(page)
        ordered.extend(sorted(children.get(page.id, []), key=lambda c: (c.created_at, c.id)))
    return ordered


class PageSplitManager:
    """Splits pages into sibling records and reverses those splits.

    Structural changes to a book are serialized by a per-book lock so two
    splits of the same book never interleave their renumbering.
    """

    def __init__(self, store: PageStore) -> None:
        self.store = store
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def book_lock(self, book_id: str) -> threading.Lock:
        with self._locks_guard:
            if book_id not in self._locks:
                self._locks[book_id] = threading.Lock()
            return self._locks[book_id]

    def _require_page(self, page_id: str) -> AnyPage:
        page = self.store.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    def apply_split(self, page_id: str, decision: CropDecision) -> SplitOutcome:
        """Split a page: it keeps one crop, a new sibling gets the other.

        Splitting a page that already has a sibling adjusts both crops in
        place instead of creating another sibling.

        Args:
            page_id: Page to split
            decision: Crop regions and which side the page keeps

        Returns:
            SplitOutcome with both stored pages and the new page count

        Raises:
            PageNotFoundError: If the page does not exist
            InvalidStateError: If the page has no image or is itself a generated half
        """
        page = self._require_page(page_id)

        with self.book_lock(page.book_id):
            with self.store.atomic(page.book_id):
                updated, sibling = self._split_locked(page_id, decision)
                total = self._renumber_locked(page.book_id)

        # Re-read so the caller sees final page numbers
        updated = self.store.get_page(updated.id)
        sibling = self.store.get_page(sibling.id)
        logger.info(
            f"Split page {page_id} at {decision.left.x_end}: "
            f"sibling {sibling.id} is page {sibling.page_number} of {total}"
        )
        return SplitOutcome(updated_page=updated, new_page=sibling, total_pages=total)

    def _split_locked(self, page_id: str, decision: CropDecision) -> tuple[OriginalPage, SplitRightPage]:
        page = self._require_page(page_id)

        if isinstance(page, SplitRightPage):
            raise InvalidStateError(
                f"Page {page_id} was created by splitting {page.split_from}; reset that split instead"
            )
        if not page.photo:
            raise InvalidStateError(f"Page {page_id} has no image")

        now = utcnow()
        source = page.source_image

        updated = replace(page, crop=decision.kept, photo_original=source, updated_at=now)
        self.store.update_page(updated)

        existing = self.store.find_split_child(page_id)
        if existing is not None:
            sibling = replace(existing, crop=decision.other, updated_at=now)
            self.store.update_page(sibling)
            logger.debug(f"Adjusted existing sibling {sibling.id} of page {page_id}")
        else:
            sibling = SplitRightPage(
                id=uuid.uuid4().hex,
                book_id=page.book_id,
                page_number=page.page_number + 1,  # Provisional; renumbering is authoritative
                photo=source,
                photo_original=source,
                split_detection=page.split_detection,
                crop=decision.other,
                split_from=page_id,
                created_at=now,
                updated_at=now,
            )
            self.store.insert_page(sibling)

        return updated, sibling

    def undo_split(self, page_id: str) -> UndoOutcome:
        """Reset a split given either of its halves.

        Resolves to the original page, deletes its generated sibling, clears
        the crop and renumbers the book.

        Raises:
            PageNotFoundError: If the page does not exist
            InvalidStateError: If the page is not split
        """
        page = self._require_page(page_id)

        with self.book_lock(page.book_id):
            with self.store.atomic(page.book_id):
                page = self._require_page(page_id)

                if isinstance(page, SplitRightPage):
                    parent = self.store.get_page(page.split_from)
                    if parent is not None:
                        page = parent

                sibling = None
                if isinstance(page, OriginalPage):
                    sibling = self.store.find_split_child(page.id)

                # A leftover sibling still counts as split so it can be cleaned up
                if page.crop is None and sibling is None:
                    raise InvalidStateError(f"Page {page.id} is not split (no crop)")

                now = utcnow()
                deleted_id = None

                if isinstance(page, SplitRightPage):
                    # Orphaned right half: turn it back into a plain page
                    logger.warning(f"Page {page.id} points at missing page {page.split_from}")
                    restored = self._as_original(page, now)
                else:
                    if sibling is not None:
                        self.store.delete_page(sibling.id)
                        deleted_id = sibling.id
                    restored = replace(page, crop=None, updated_at=now)

                self.store.update_page(restored)
                total = self._renumber_locked(page.book_id)

        restored = self.store.get_page(restored.id)
        logger.info(f"Reset split of page {restored.id} (deleted sibling {deleted_id}), {total} pages")
        return UndoOutcome(page=restored, deleted_sibling_id=deleted_id, renumbered_count=total)

    @staticmethod
    def _as_original(page: SplitRightPage, now) -> OriginalPage:
        return OriginalPage(
            id=page.id,
            book_id=page.book_id,
            page_number=page.page_number,
            photo=page.photo,
            photo_original=page.photo_original,
            split_detection=page.split_detection,
            created_at=page.created_at,
            updated_at=now,
            crop=None,
        )

    def batch_split(
        self,
        splits: list[tuple[str, float]],
        overlap: float = BATCH_SPLIT_OVERLAP,
    ) -> BatchSplitResult:
        """Split many pages at given 0-1000 positions, renumbering each book once.

        Pages that are missing, have no image or cannot be split are skipped
        and reported; they do not stop the rest of the batch.
        """
        result = BatchSplitResult()
        by_book: dict[str, list[tuple[str, CropDecision]]] = defaultdict(list)

        for page_id, position in splits:
            page = self.store.get_page(page_id)
            if page is None:
                result.skipped[page_id] = "Page not found"
                continue
            try:
                decision = CropDecision.from_position(position, overlap)
            except ValueError as e:
                result.skipped[page_id] = str(e)
                continue
            by_book[page.book_id].append((page_id, decision))

        for book_id, items in by_book.items():
            with self.book_lock(book_id):
                for page_id, decision in items:
                    try:
                        with self.store.atomic(book_id):
                            _, sibling = self._split_locked(page_id, decision)
                    except (InvalidStateError, PageNotFoundError) as e:
                        logger.warning(f"Skipping page {page_id}: {e}")
                        result.skipped[page_id] = str(e)
                        continue
                    result.split_count += 1
                    result.new_page_ids.append(sibling.id)

                with self.store.atomic(book_id):
                    result.total_pages += self._renumber_locked(book_id)

        logger.info(f"Batch split {result.split_count} pages ({len(result.skipped)} skipped)")
        return result

    def renumber(self, book_id: str) -> int:
        """Recompute page numbers 1..N for a book. Returns N."""
        with self.book_lock(book_id):
            with self.store.atomic(book_id):
                return self._renumber_locked(book_id)

    def _renumber_locked(self, book_id: str) -> int:
        pages = canonical_order(self.store.find_pages(book_id))
        numbers = {p.id: i for i, p in enumerate(pages, start=1)}
        self.store.bulk_renumber(book_id, numbers)

        book = self.store.get_book(book_id) or Book(id=book_id)
        book.pages_count = len(pages)
        book.updated_at = utcnow()
        self.store.save_book(book)

        return len(pages)
