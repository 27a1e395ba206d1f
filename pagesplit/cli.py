#!/usr/bin/env python3
"""
Command-line interface for pagesplit.

Usage:
    # Check scan images for two-page spreads
    pagesplit detect scan_001.jpg scan_002.jpg --json

    # Cut a spread into two page images
    pagesplit split-image scan_001.jpg --output ./pages

    # Register a folder of scans as a book
    pagesplit import ./scans --book atalanta --title "Atalanta Fugiens"

    # Detect and apply safe splits across the whole book
    pagesplit auto-split atalanta

    # Split or reset one page by id
    pagesplit split <page-id> --ratio 48
    pagesplit reset <page-id>

    # Serve the HTTP API
    pagesplit serve --port 8787
"""

import argparse
import json
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def discover_images(input_dir: Path) -> list[Path]:
    """Supported images in a directory, sorted by filename."""
    images = [
        p for p in input_dir.iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
    ]
    return sorted(images, key=lambda p: p.name)


def _app_config(args: argparse.Namespace):
    from .config import AppConfig

    return AppConfig.from_env(
        store_dir=getattr(args, "store", None),
        detection_method=getattr(args, "method", None),
        label_log=getattr(args, "label_log", None),
    )


def _service(args: argparse.Namespace):
    from .service import SplitService

    return SplitService.from_config(_app_config(args))


def cmd_detect(args: argparse.Namespace) -> int:
    """Run heuristic detection on image files."""
    from .config import DetectionConfig
    from .detector import HeuristicDetector
    from .errors import PageSplitError

    detector = HeuristicDetector(DetectionConfig(analysis_width=args.width))
    failures = 0

    for path in [Path(p) for p in args.images]:
        try:
            result = detector.detect(path.read_bytes())
        except (OSError, PageSplitError) as e:
            # One bad file must not stop the others
            print(f"✗ {path.name}: {e}", file=sys.stderr)
            failures += 1
            continue

        if args.json:
            print(json.dumps({"file": str(path), **result.to_dict()}))
        elif result.is_two_page_spread:
            warning = " ⚠ text at split" if result.has_text_at_split else ""
            print(
                f"{path.name}: spread, split at {result.split_position}/1000 "
                f"({result.confidence.value}){warning}"
            )
        else:
            print(f"{path.name}: single page ({result.confidence.value})")

    return 1 if failures else 0


def cmd_split_image(args: argparse.Namespace) -> int:
    """Cut one image into left and right page files."""
    from .detector import detect
    from .errors import PageSplitError
    from .pages import CropDecision
    from .raster import crop_half

    path = Path(args.image)
    try:
        data = path.read_bytes()
        if args.position is not None:
            decision = CropDecision.from_position(args.position, args.overlap)
        else:
            result = detect(data, args.width)
            if not result.is_two_page_spread:
                print(f"{path.name} does not look like a two-page spread", file=sys.stderr)
                return 1
            if not result.safe_to_apply and not args.force:
                print(
                    f"⚠ {path.name}: {result.confidence.value} confidence"
                    f"{', text at split' if result.has_text_at_split else ''}; "
                    f"rerun with --force or --position",
                    file=sys.stderr,
                )
                return 1
            decision = CropDecision.from_detection(result, args.overlap)

        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)
        for suffix, crop in (("L", decision.left), ("R", decision.right)):
            out_path = output_dir / f"{path.stem}_{suffix}.jpg"
            out_path.write_bytes(crop_half(data, crop.x_start, crop.x_end, max_width=args.max_width))
            print(f"✓ {out_path}")
    except (OSError, ValueError, PageSplitError) as e:
        print(f"✗ {path.name}: {e}", file=sys.stderr)
        return 1

    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Register a directory of scans as a book."""
    from .errors import PageSplitError

    input_dir = Path(args.input)
    if not input_dir.is_dir():
        print(f"Not a directory: {input_dir}", file=sys.stderr)
        return 1

    images = discover_images(input_dir)
    if not images:
        print("No images found", file=sys.stderr)
        return 1

    service = _service(args)
    try:
        book = service.import_book(args.book, args.title or args.book, [str(p.resolve()) for p in images])
    except PageSplitError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print(f"✓ Imported {book.pages_count} pages into book {book.id}")
    return 0


def cmd_split(args: argparse.Namespace) -> int:
    """Split one stored page."""
    from .errors import PageSplitError
    from .pages import CropDecision

    service = _service(args)
    try:
        decision = CropDecision.from_ratio(args.ratio, side=args.side)
        outcome = service.manager.apply_split(args.page_id, decision)
    except (ValueError, PageSplitError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print(
        f"✓ Split page {outcome.updated_page.page_number}: new page "
        f"{outcome.new_page.page_number} ({outcome.new_page.id}), {outcome.total_pages} pages"
    )
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Undo a split."""
    from .errors import PageSplitError

    service = _service(args)
    try:
        outcome = service.manager.undo_split(args.page_id)
    except PageSplitError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    deleted = outcome.deleted_sibling_id or "none"
    print(f"✓ Reset page {outcome.page.page_number} (removed {deleted}), {outcome.renumbered_count} pages")
    return 0


def cmd_batch_split(args: argparse.Namespace) -> int:
    """Split several pages given as PAGE_ID:POSITION pairs."""
    splits = []
    for item in args.splits:
        page_id, _, position = item.rpartition(":")
        try:
            splits.append((page_id, float(position)))
        except ValueError:
            print(f"Expected PAGE_ID:POSITION, got {item!r}", file=sys.stderr)
            return 1

    service = _service(args)
    result = service.manager.batch_split(splits, overlap=args.overlap)

    print(f"✓ Split {result.split_count} pages, {result.total_pages} pages total")
    for page_id, reason in result.skipped.items():
        print(f"⚠ Skipped {page_id}: {reason}")
    return 0 if result.split_count else 1


def cmd_auto_split(args: argparse.Namespace) -> int:
    """Detect spreads across a book and apply the safe ones."""
    service = _service(args)
    if service.store.get_book(args.book) is None:
        print(f"Book not found: {args.book}", file=sys.stderr)
        return 1

    report = service.auto_split_book(args.book, apply=not args.dry_run, show_progress=True)

    print(f"✓ {report.applied} pages split, {report.total_pages} pages total")
    if report.review_queue:
        print(f"⚠ {len(report.review_queue)} pages need review:")
        for entry in report.review_queue:
            r = entry.result
            reason = "text at split" if r.has_text_at_split else f"{r.confidence.value} confidence"
            print(f"  page {entry.page_number} ({entry.page_id}): split at {r.split_position}, {reason}")
    for entry in report.pages:
        if not entry.success:
            print(f"✗ page {entry.page_number} ({entry.page_id}): {entry.error_message}", file=sys.stderr)

    return 0 if report.failed == 0 else 1


def cmd_check(args: argparse.Namespace) -> int:
    """Check whether a book was scanned as spreads."""
    from .errors import PageSplitError

    service = _service(args)
    try:
        report = service.check_needs_split(args.book, dry_run=args.dry_run)
    except PageSplitError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    verdict = {True: "needs splitting", False: "does not need splitting", None: "unclear"}
    print(f"{args.book}: {verdict[report.needs_splitting]} ({report.confidence})")
    print(f"  {report.reasoning}")
    for s in report.samples:
        detail = s.error or f"aspect {s.aspect_ratio:.2f}"
        print(f"  page {s.page_number}: {s.classification} ({detail})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server."""
    from .server import serve

    serve(_app_config(args), host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pagesplit",
        description="Detect and split two-page book spreads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    store_args = argparse.ArgumentParser(add_help=False)
    store_args.add_argument("--store", help="Book store directory (default: $PAGESPLIT_STORE_DIR)")

    # detect command
    p_detect = subparsers.add_parser("detect", help="Detect spreads in image files")
    p_detect.add_argument("images", nargs="+", help="Image files")
    p_detect.add_argument("--width", type=int, default=1000, help="Analysis width (default: 1000)")
    p_detect.add_argument("--json", action="store_true", help="Print one JSON result per line")
    p_detect.set_defaults(func=cmd_detect)

    # split-image command
    p_split_image = subparsers.add_parser("split-image", help="Cut a spread image into two files")
    p_split_image.add_argument("image", help="Spread image")
    p_split_image.add_argument("-o", "--output", default="./pages", help="Output directory")
    p_split_image.add_argument("--position", type=float, help="Split position 0-1000 (default: detect)")
    p_split_image.add_argument("--overlap", type=float, default=0, help="Overlap past the split line (0-1000 scale)")
    p_split_image.add_argument("--width", type=int, default=1000, help="Analysis width")
    p_split_image.add_argument("--max-width", type=int, default=1200, help="Maximum output width (0 to disable)")
    p_split_image.add_argument("--force", action="store_true", help="Split even without high confidence")
    p_split_image.set_defaults(func=cmd_split_image)

    # import command
    p_import = subparsers.add_parser("import", parents=[store_args], help="Register scans as a book")
    p_import.add_argument("input", help="Directory with scan images")
    p_import.add_argument("-b", "--book", required=True, help="Book id")
    p_import.add_argument("-t", "--title", help="Book title")
    p_import.set_defaults(func=cmd_import)

    # split command
    p_split = subparsers.add_parser("split", parents=[store_args], help="Split a stored page")
    p_split.add_argument("page_id", help="Page id")
    p_split.add_argument("--ratio", type=float, default=50, help="Split at this percent of the width")
    p_split.add_argument("--side", choices=["left", "right"], default="left", help="Half the page keeps")
    p_split.set_defaults(func=cmd_split)

    # reset command
    p_reset = subparsers.add_parser("reset", parents=[store_args], help="Undo a split")
    p_reset.add_argument("page_id", help="Either half of the split")
    p_reset.set_defaults(func=cmd_reset)

    # batch-split command
    p_batch = subparsers.add_parser("batch-split", parents=[store_args], help="Split several pages")
    p_batch.add_argument("splits", nargs="+", help="PAGE_ID:POSITION pairs (position 0-1000)")
    p_batch.add_argument("--overlap", type=float, default=10, help="Overlap past the split line")
    p_batch.set_defaults(func=cmd_batch_split)

    # auto-split command
    p_auto = subparsers.add_parser("auto-split", parents=[store_args], help="Detect and split a whole book")
    p_auto.add_argument("book", help="Book id")
    p_auto.add_argument("--method", choices=["heuristic", "vision", "cascade"], help="Detector")
    p_auto.add_argument("--label-log", help="Append predictions to this JSONL file")
    p_auto.add_argument("--dry-run", action="store_true", help="Detect only, apply nothing")
    p_auto.set_defaults(func=cmd_auto_split)

    # check command
    p_check = subparsers.add_parser("check", parents=[store_args], help="Check if a book needs splitting")
    p_check.add_argument("book", help="Book id")
    p_check.add_argument("--dry-run", action="store_true", help="Don't update the book")
    p_check.set_defaults(func=cmd_check)

    # serve command
    p_serve = subparsers.add_parser("serve", parents=[store_args], help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    p_serve.add_argument("--port", type=int, default=8787, help="Port")
    p_serve.add_argument("--method", choices=["heuristic", "vision", "cascade"], help="Detector")
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
