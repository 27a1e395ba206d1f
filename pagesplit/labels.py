"""
Append-only log of split predictions, kept as raw material for ground-truth labels.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from .detector import DetectionResult

logger = logging.getLogger(__name__)


class PredictionLog:
    """Writes one JSON line per prediction to ``path``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(
        self,
        page_id: str,
        book_id: str,
        detector: str,
        result: DetectionResult,
        image: str | None = None,
    ) -> None:
        entry = {
            "pageId": page_id,
            "bookId": book_id,
            "detector": detector,
            "image": image,
            "result": result.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        line = json.dumps(entry, ensure_ascii=False)

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> list[dict]:
        """All entries logged so far, oldest first."""
        if not self.path.exists():
            return []
        entries = []
        for line_no, line in enumerate(self.path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed line {line_no} in {self.path}")
        return entries
