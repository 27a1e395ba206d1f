"""
Caller-side orchestration: fetch page images, detect spreads, decide what to apply.

Only high-confidence spreads with a clean gutter are split automatically;
everything else is queued for a human to confirm.
"""

import logging
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field

from .config import AppConfig
from .detector import (
    CascadeDetector,
    DetectionResult,
    Detector,
    HeuristicDetector,
    VisionModelDetector,
    classify_aspect_ratio,
)
from .errors import InvalidStateError, PageNotFoundError, PageSplitError
from .fetch import ImageFetcher
from .labels import PredictionLog
from .pages import Book, CropDecision, OriginalPage, utcnow
from .progress import ProgressReporter
from .raster import image_size
from .split_manager import PageSplitManager
from .store import JsonPageStore, PageStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_PAGES = (10, 15)


@dataclass
class PageDetection:
    """What happened to one page during an auto-split run."""

    page_id: str
    page_number: int
    action: str  # applied | queued | single | failed
    result: DetectionResult | None = None
    new_page_id: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.action != "failed"


@dataclass
class AutoSplitReport:
    """Outcome of running detection over a whole book."""

    book_id: str
    pages: list[PageDetection] = field(default_factory=list)
    total_pages: int = 0

    def _count(self, action: str) -> int:
        return sum(1 for p in self.pages if p.action == action)

    @property
    def applied(self) -> int:
        return self._count("applied")

    @property
    def queued(self) -> int:
        return self._count("queued")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def review_queue(self) -> list[PageDetection]:
        """Pages a human has to confirm."""
        return [p for p in self.pages if p.action == "queued"]


@dataclass
class SampleCheck:
    page_number: int
    aspect_ratio: float
    classification: str  # single | spread | ambiguous
    image: str | None = None
    error: str | None = None


@dataclass
class NeedsSplitReport:
    """Whether a book looks like it was scanned as spreads."""

    book_id: str
    needs_splitting: bool | None
    confidence: str
    reasoning: str
    samples: list[SampleCheck] = field(default_factory=list)
    already_split: bool = False


def build_detector(config: AppConfig) -> Detector:
    """Detector for the configured method."""
    heuristic = HeuristicDetector(config.detection_config)
    if config.detection_method == "heuristic":
        return heuristic

    vision = VisionModelDetector(
        api_url=config.vision_api_url,
        model=config.vision_model,
        api_key=config.vision_api_key,
        timeout=config.vision_timeout,
        config=config.detection_config,
    )
    if config.detection_method == "vision":
        return vision
    return CascadeDetector(heuristic, vision)


class SplitService:
    """Ties the store, split manager, detector and image fetcher together."""

    def __init__(
        self,
        store: PageStore,
        detector: Detector | None = None,
        fetcher: ImageFetcher | None = None,
        prediction_log: PredictionLog | None = None,
        analysis_width: int | None = None,
    ) -> None:
        self.store = store
        self.manager = PageSplitManager(store)
        self.detector = detector or HeuristicDetector()
        self.fetcher = fetcher or ImageFetcher()
        self.prediction_log = prediction_log
        self.analysis_width = analysis_width

    @classmethod
    def from_config(cls, config: AppConfig) -> "SplitService":
        return cls(
            store=JsonPageStore(config.store_dir),
            detector=build_detector(config),
            fetcher=ImageFetcher(timeout=config.fetch_timeout),
            prediction_log=PredictionLog(config.label_log) if config.label_log else None,
            analysis_width=config.analysis_width,
        )

    def _require_page(self, page_id: str):
        page = self.store.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    def import_book(self, book_id: str, title: str, images: list[str]) -> Book:
        """Register scan images as a new book, numbered 1..N in the given order.

        Raises:
            InvalidStateError: If the book already exists
        """
        if self.store.get_book(book_id) is not None:
            raise InvalidStateError(f"Book already exists: {book_id}")

        book = Book(id=book_id, title=title, pages_count=len(images))
        with self.manager.book_lock(book_id):
            with self.store.atomic(book_id):
                self.store.save_book(book)
                for number, image in enumerate(images, start=1):
                    self.store.insert_page(
                        OriginalPage(
                            id=uuid.uuid4().hex,
                            book_id=book_id,
                            page_number=number,
                            photo=image,
                            photo_original=image,
                        )
                    )

        logger.info(f"Imported {len(images)} pages into book {book_id}")
        return book

    def detect_page(self, page_id: str) -> DetectionResult:
        """Detect a spread in a stored page's source image and record the result.

        Raises:
            PageNotFoundError: If the page does not exist
            InvalidStateError: If the page has no image
            FetchError / DecodeError: If the image cannot be loaded
        """
        page = self._require_page(page_id)
        source = page.source_image
        if not source:
            raise InvalidStateError(f"Page {page_id} has no image")

        image_bytes = self.fetcher.fetch(source)
        result = self.detector.detect(image_bytes, self.analysis_width)

        # Re-read under the book lock so a concurrent renumber is not overwritten
        with self.manager.book_lock(page.book_id):
            page = self._require_page(page_id)
            page.split_detection = {
                **result.to_dict(),
                "detector": self.detector.name,
                "detected_at": utcnow().isoformat(),
            }
            page.updated_at = utcnow()
            self.store.update_page(page)

        if self.prediction_log:
            self.prediction_log.record(page.id, page.book_id, self.detector.name, result, source)

        logger.debug(
            f"Page {page_id}: spread={result.is_two_page_spread} "
            f"at {result.split_position} ({result.confidence.value})"
        )
        return result

    def auto_split_book(
        self,
        book_id: str,
        apply: bool = True,
        show_progress: bool = False,
    ) -> AutoSplitReport:
        """Detect spreads on every unsplit page of a book, one page at a time.

        Safe detections are applied when ``apply`` is set; the rest are queued.
        A failure on one page is recorded and the run continues.
        """
        candidates = [
            p for p in self.store.find_pages(book_id)
            if isinstance(p, OriginalPage) and not p.is_split and p.source_image
        ]
        report = AutoSplitReport(book_id=book_id)

        progress = ProgressReporter(len(candidates), desc="Detecting spreads") if show_progress else None

        with progress or nullcontext():
            for page in candidates:
                entry = self._auto_split_page(page, apply)
                report.pages.append(entry)
                if progress:
                    progress.update(entry.action, page.id)

        report.total_pages = len(self.store.find_pages(book_id))
        logger.info(
            f"Book {book_id}: {report.applied} split, {report.queued} queued for review, "
            f"{report.failed} failed"
        )
        return report

    def _auto_split_page(self, page: OriginalPage, apply: bool) -> PageDetection:
        try:
            result = self.detect_page(page.id)
        except PageSplitError as e:
            logger.warning(f"Detection failed for page {page.id}: {e}")
            return PageDetection(page.id, page.page_number, "failed", error_message=str(e))

        if not result.is_two_page_spread:
            return PageDetection(page.id, page.page_number, "single", result)

        if not (apply and result.safe_to_apply):
            return PageDetection(page.id, page.page_number, "queued", result)

        try:
            outcome = self.manager.apply_split(page.id, CropDecision.from_detection(result))
        except (PageSplitError, ValueError) as e:
            logger.warning(f"Split failed for page {page.id}: {e}")
            return PageDetection(page.id, page.page_number, "failed", result, error_message=str(e))

        return PageDetection(
            page.id, page.page_number, "applied", result, new_page_id=outcome.new_page.id
        )

    def check_needs_split(
        self,
        book_id: str,
        sample_pages: tuple[int, ...] = DEFAULT_SAMPLE_PAGES,
        dry_run: bool = False,
    ) -> NeedsSplitReport:
        """Guess from a few sample pages whether a book was scanned as spreads.

        Uses aspect ratio only. Sets ``book.needs_splitting`` unless ``dry_run``.
        """
        book = self.store.get_book(book_id)
        if book is None:
            raise PageNotFoundError(book_id, kind="Book")

        pages = self.store.find_pages(book_id)

        if any(p.crop is not None for p in pages):
            return NeedsSplitReport(
                book_id=book_id,
                needs_splitting=False,
                confidence="high",
                reasoning="Book already has split pages",
                already_split=True,
            )

        if not pages:
            return NeedsSplitReport(book_id, None, "low", "Book has no pages")

        # Clamp sample numbers for short books, dropping duplicates
        wanted = list(dict.fromkeys(min(n, len(pages)) for n in sample_pages))
        samples = [p for p in pages if p.page_number in wanted] or pages[:2]

        checks = [self._sample_aspect(p) for p in samples]
        report = self._summarize_samples(book_id, checks)

        if not dry_run:
            with self.manager.book_lock(book_id):
                book = self.store.get_book(book_id)
                book.needs_splitting = report.needs_splitting
                book.updated_at = utcnow()
                self.store.save_book(book)

        return report

    def _sample_aspect(self, page) -> SampleCheck:
        source = page.source_image
        if not source:
            return SampleCheck(page.page_number, 0.0, "ambiguous", error="No image")
        try:
            width, height = image_size(self.fetcher.fetch(source))
        except PageSplitError as e:
            return SampleCheck(page.page_number, 0.0, "ambiguous", source, error=str(e))

        ratio = width / height
        return SampleCheck(page.page_number, round(ratio, 2), classify_aspect_ratio(ratio), source)

    @staticmethod
    def _summarize_samples(book_id: str, checks: list[SampleCheck]) -> NeedsSplitReport:
        valid = [c for c in checks if c.error is None]
        spread = sum(1 for c in valid if c.classification == "spread")
        single = sum(1 for c in valid if c.classification == "single")
        ambiguous = len(valid) - spread - single
        counts = f"{spread} spread, {single} single, {ambiguous} ambiguous"

        if not valid:
            return NeedsSplitReport(book_id, None, "low", "Could not analyze any pages", checks)
        if spread == len(valid):
            return NeedsSplitReport(book_id, True, "high", f"All {spread} sampled pages are spreads", checks)
        if single == len(valid):
            return NeedsSplitReport(book_id, False, "high", f"All {single} sampled pages are single pages", checks)

        confidence = "medium" if ambiguous else "high"
        if spread > single:
            return NeedsSplitReport(book_id, True, confidence, f"Majority spreads: {counts}", checks)
        if single > spread:
            return NeedsSplitReport(book_id, False, confidence, f"Majority single: {counts}", checks)
        return NeedsSplitReport(book_id, None, "low", f"Inconclusive: {counts}. Manual review needed.", checks)
