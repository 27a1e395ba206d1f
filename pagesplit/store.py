"""
Page persistence: the operations the split manager needs, in memory or as JSON files.
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .pages import AnyPage, Book, SplitRightPage, page_from_dict

logger = logging.getLogger(__name__)


class PageStore(ABC):
    """Storage operations used for splitting and renumbering.

    Records handed out are copies; changes only take effect through
    ``update_page`` / ``save_book``.
    """

    @abstractmethod
    def get_page(self, page_id: str) -> AnyPage | None: ...

    @abstractmethod
    def find_pages(self, book_id: str) -> list[AnyPage]:
        """All pages of a book ordered by page_number."""

    @abstractmethod
    def find_split_child(self, page_id: str) -> SplitRightPage | None:
        """The right half generated from ``page_id``, if any."""

    @abstractmethod
    def insert_page(self, page: AnyPage) -> None: ...

    @abstractmethod
    def update_page(self, page: AnyPage) -> None: ...

    @abstractmethod
    def delete_page(self, page_id: str) -> bool: ...

    @abstractmethod
    def bulk_renumber(self, book_id: str, numbers: dict[str, int]) -> None:
        """Set page_number for many pages of one book in a single operation."""

    @abstractmethod
    def get_book(self, book_id: str) -> Book | None: ...

    @abstractmethod
    def save_book(self, book: Book) -> None: ...

    @abstractmethod
    def atomic(self, book_id: str):
        """Context manager: every change to the book inside it lands, or none does."""


class MemoryPageStore(PageStore):
    """Thread-safe in-process store."""

    def __init__(self) -> None:
        self._pages: dict[str, AnyPage] = {}
        self._books: dict[str, Book] = {}
        self._lock = threading.RLock()
        self._depth = 0

    def get_page(self, page_id: str) -> AnyPage | None:
        with self._lock:
            page = self._pages.get(page_id)
            return copy.deepcopy(page) if page else None

    def find_pages(self, book_id: str) -> list[AnyPage]:
        with self._lock:
            pages = [copy.deepcopy(p) for p in self._pages.values() if p.book_id == book_id]
        return sorted(pages, key=lambda p: (p.page_number, p.created_at, p.id))

    def find_split_child(self, page_id: str) -> SplitRightPage | None:
        with self._lock:
            for page in self._pages.values():
                if isinstance(page, SplitRightPage) and page.split_from == page_id:
                    return copy.deepcopy(page)
        return None

    def insert_page(self, page: AnyPage) -> None:
        with self._lock:
            if page.id in self._pages:
                raise ValueError(f"Page already exists: {page.id}")
            self._pages[page.id] = copy.deepcopy(page)
            self._changed(page.book_id)

    def update_page(self, page: AnyPage) -> None:
        with self._lock:
            if page.id not in self._pages:
                raise KeyError(page.id)
            self._pages[page.id] = copy.deepcopy(page)
            self._changed(page.book_id)

    def delete_page(self, page_id: str) -> bool:
        with self._lock:
            page = self._pages.pop(page_id, None)
            if page is None:
                return False
            self._changed(page.book_id)
            return True

    def bulk_renumber(self, book_id: str, numbers: dict[str, int]) -> None:
        with self._lock:
            for page_id, number in numbers.items():
                page = self._pages.get(page_id)
                if page is not None and page.book_id == book_id:
                    page.page_number = number
            self._changed(book_id)

    def get_book(self, book_id: str) -> Book | None:
        with self._lock:
            book = self._books.get(book_id)
            return copy.deepcopy(book) if book else None

    def save_book(self, book: Book) -> None:
        with self._lock:
            self._books[book.id] = copy.deepcopy(book)
            self._changed(book.id)

    def list_books(self) -> list[Book]:
        with self._lock:
            return [copy.deepcopy(b) for b in self._books.values()]

    @contextmanager
    def atomic(self, book_id: str) -> Iterator[None]:
        with self._lock:
            pages = {pid: copy.deepcopy(p) for pid, p in self._pages.items() if p.book_id == book_id}
            book = copy.deepcopy(self._books.get(book_id))
            self._depth += 1
            try:
                yield
            except BaseException:
                logger.warning(f"Rolling back changes to book {book_id}")
                for pid in [pid for pid, p in self._pages.items() if p.book_id == book_id]:
                    del self._pages[pid]
                self._pages.update(pages)
                if book is None:
                    self._books.pop(book_id, None)
                else:
                    self._books[book_id] = book
                self._depth -= 1
                raise
            self._depth -= 1
            self._changed(book_id)

    def _changed(self, book_id: str) -> None:
        if self._depth == 0:
            self._persist(book_id)

    def _persist(self, book_id: str) -> None:
        """Hook for durable subclasses; called outside atomic blocks."""


class JsonPageStore(MemoryPageStore):
    """One JSON file per book under ``root``; everything is kept in memory too.

    Files are replaced atomically on every committed change.
    """

    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._load()

    def _book_path(self, book_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in book_id)
        return self.root / f"{safe}.json"

    def _load(self) -> None:
        for path in sorted(self.root.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ValueError(f"Corrupt book file {path}: {e}") from e

            book = Book.from_dict(data["book"])
            self._books[book.id] = book
            for raw in data.get("pages", []):
                page = page_from_dict(raw)
                self._pages[page.id] = page

        logger.debug(f"Loaded {len(self._books)} books from {self.root}")

    def _persist(self, book_id: str) -> None:
        book = self._books.get(book_id) or Book(id=book_id)
        pages = sorted(
            (p for p in self._pages.values() if p.book_id == book_id),
            key=lambda p: (p.page_number, p.id),
        )
        payload = {"book": book.to_dict(), "pages": [p.to_dict() for p in pages]}

        path = self._book_path(book_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
