"""
Split Review Server

Serves spread detection and the split/reset operations over HTTP.
"""

import logging
from pathlib import Path
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from .config import AppConfig
from .detector import HeuristicDetector
from .errors import (
    DecodeError,
    FetchError,
    FetchTimeoutError,
    InvalidStateError,
    PageNotFoundError,
    PageSplitError,
    VisionModelError,
)
from .pages import BoundingBox, CropDecision
from .service import SplitService

logger = logging.getLogger(__name__)

app = FastAPI(title="Page Split Server")

# CORS for local dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set by configure() or built from the environment on first use
current_service: SplitService | None = None


def configure(service: SplitService) -> None:
    """Use ``service`` for all requests."""
    global current_service
    current_service = service


def get_service() -> SplitService:
    global current_service
    if current_service is None:
        current_service = SplitService.from_config(AppConfig.from_env())
    return current_service


class Box(BaseModel):
    xmin: float
    xmax: float
    ymin: float = 0
    ymax: float = 1000


class DetectionData(BaseModel):
    isTwoPageSpread: bool
    leftPage: Optional[Box] = None
    rightPage: Optional[Box] = None


class SplitRequest(BaseModel):
    side: Literal["left", "right"] = "left"  # Which half this page keeps
    splitRatio: float = Field(50, gt=0, lt=100)  # Percent of width
    detection: Optional[DetectionData] = None  # Vision-model bounding boxes


class BatchSplitItem(BaseModel):
    pageId: str
    splitPosition: float  # 0-1000


class BatchSplitRequest(BaseModel):
    splits: list[BatchSplitItem]


def _http_error(e: Exception) -> HTTPException:
    """Map library errors to HTTP status codes."""
    if isinstance(e, PageNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidStateError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, DecodeError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, FetchTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, (FetchError, VisionModelError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@app.get("/health")
async def health():
    """Health check endpoint."""
    service = get_service()
    return {"status": "ok", "detector": service.detector.name}


@app.post("/detect")
async def detect_upload(request: Request, width: int = Query(1000, ge=1, le=10000)):
    """Detect a spread in a raw image request body."""
    data = await request.body()
    detector = HeuristicDetector()
    try:
        result = await run_in_threadpool(detector.detect, data, width)
    except PageSplitError as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/pages/{page_id}/detect")
async def detect_page(page_id: str):
    """Detect a spread in a stored page's image and record it on the page."""
    service = get_service()
    try:
        result = await run_in_threadpool(service.detect_page, page_id)
    except PageSplitError as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/pages/{page_id}/split")
async def split_page(page_id: str, request: SplitRequest):
    """Split a page in two, from boxes if given, otherwise at splitRatio."""
    service = get_service()
    try:
        detection = request.detection
        if detection and detection.leftPage and detection.rightPage:
            decision = CropDecision.from_boxes(
                BoundingBox(**detection.leftPage.model_dump()),
                BoundingBox(**detection.rightPage.model_dump()),
                side=request.side,
            )
        else:
            decision = CropDecision.from_ratio(request.splitRatio, side=request.side)

        outcome = await run_in_threadpool(service.manager.apply_split, page_id, decision)
    except (PageSplitError, ValueError) as e:
        raise _http_error(e)

    return {
        "success": True,
        "currentPage": {"id": outcome.updated_page.id, "crop": outcome.updated_page.crop.to_dict()},
        "newPage": {
            "id": outcome.new_page.id,
            "crop": outcome.new_page.crop.to_dict(),
            "page_number": outcome.new_page.page_number,
        },
        "totalPages": outcome.total_pages,
    }


@app.post("/pages/{page_id}/reset")
async def reset_page(page_id: str):
    """Undo a split given either half."""
    service = get_service()
    try:
        outcome = await run_in_threadpool(service.manager.undo_split, page_id)
    except PageSplitError as e:
        raise _http_error(e)

    return {
        "success": True,
        "pageId": outcome.page.id,
        "deletedSibling": outcome.deleted_sibling_id,
        "totalPages": outcome.renumbered_count,
    }


@app.post("/pages/batch-split")
async def batch_split(request: BatchSplitRequest):
    """Split several pages at 0-1000 positions, renumbering once per book."""
    if not request.splits:
        raise HTTPException(status_code=400, detail="No splits provided")

    service = get_service()
    splits = [(s.pageId, s.splitPosition) for s in request.splits]
    result = await run_in_threadpool(service.manager.batch_split, splits)

    if result.split_count == 0 and len(result.skipped) == len(splits):
        raise HTTPException(status_code=404, detail={"error": "No pages split", "skipped": result.skipped})

    return {
        "success": True,
        "splitCount": result.split_count,
        "totalPages": result.total_pages,
        "skipped": result.skipped,
    }


@app.get("/books/{book_id}/pages")
async def list_pages(book_id: str):
    """All pages of a book in reading order."""
    service = get_service()
    if service.store.get_book(book_id) is None:
        raise HTTPException(status_code=404, detail=f"Book not found: {book_id}")
    pages = service.store.find_pages(book_id)
    return {"bookId": book_id, "pages": [p.to_dict() for p in pages]}


@app.post("/books/{book_id}/auto-split")
async def auto_split(book_id: str, apply: bool = True):
    """Detect spreads across a book, applying only the safe ones."""
    service = get_service()
    if service.store.get_book(book_id) is None:
        raise HTTPException(status_code=404, detail=f"Book not found: {book_id}")

    report = await run_in_threadpool(service.auto_split_book, book_id, apply)
    return {
        "bookId": book_id,
        "applied": report.applied,
        "queued": report.queued,
        "failed": report.failed,
        "totalPages": report.total_pages,
        "pages": [
            {
                "pageId": p.page_id,
                "pageNumber": p.page_number,
                "action": p.action,
                "newPageId": p.new_page_id,
                "detection": p.result.to_dict() if p.result else None,
                "error": p.error_message,
            }
            for p in report.pages
        ],
    }


@app.get("/books/{book_id}/check-needs-split")
async def check_needs_split(book_id: str, dryRun: bool = False):
    """Guess from sample pages whether the book was scanned as spreads."""
    service = get_service()
    try:
        report = await run_in_threadpool(service.check_needs_split, book_id, dry_run=dryRun)
    except PageSplitError as e:
        raise _http_error(e)

    return {
        "bookId": book_id,
        "needs_splitting": report.needs_splitting,
        "confidence": report.confidence,
        "reasoning": report.reasoning,
        "alreadySplit": report.already_split,
        "samples": [
            {
                "pageNumber": s.page_number,
                "aspectRatio": s.aspect_ratio,
                "classification": s.classification,
                "error": s.error,
            }
            for s in report.samples
        ],
        "dryRun": dryRun,
    }


def serve(config: AppConfig, host: str = "0.0.0.0", port: int = 8787) -> None:
    """Run the server with uvicorn."""
    import uvicorn

    configure(SplitService.from_config(config))
    logger.info(f"Serving books from {Path(config.store_dir).resolve()}")
    uvicorn.run(app, host=host, port=port)
