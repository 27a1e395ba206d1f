"""
Terminal progress for batch detection runs.

One line that updates in place on a terminal. Pipes and log files get a
plain line roughly every tenth of the run instead.
"""

import sys
import time
from collections import Counter

BAR_WIDTH = 20
MAX_NAME_LENGTH = 25


def format_time(seconds: float | None) -> str:
    """Short duration such as ``45s``, ``2m 5s`` or ``1h 1m``."""
    if seconds is None:
        return "--:--"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{seconds:.0f}s"


class ProgressReporter:
    """Progress line for a run over ``total`` pages that tallies page outcomes.

    Usage:
        with ProgressReporter(len(pages), desc="Detecting spreads") as progress:
            for page in pages:
                progress.update("applied", page.id)
    """

    def __init__(self, total: int, desc: str = "Progress", unit: str = "pages", stream=None):
        self.total = total
        self.desc = desc
        self.unit = unit
        self.outcomes: Counter = Counter()
        self.started = time.time()
        self._stream = stream or sys.stderr
        self._is_tty = hasattr(self._stream, "isatty") and self._stream.isatty()
        self._line_width = 0

    def __enter__(self):
        self.started = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()

    @property
    def done(self) -> int:
        return sum(self.outcomes.values())

    def elapsed(self) -> float:
        return time.time() - self.started

    def eta(self) -> float | None:
        """Seconds left at the pace so far; None until a page is done."""
        elapsed = self.elapsed()
        if self.done == 0 or elapsed <= 0:
            return None
        return (self.total - self.done) * elapsed / self.done

    def update(self, outcome: str = "done", item_name: str | None = None) -> None:
        """Count one finished page under ``outcome`` (applied, queued, failed...)."""
        self.outcomes[outcome] += 1
        line = self._line(item_name)

        if self._is_tty:
            self._stream.write("\r" + line.ljust(self._line_width))
            self._line_width = len(line)
        elif self.done == self.total or self.done % max(1, self.total // 10) == 0:
            self._stream.write(line + "\n")
        self._stream.flush()

    def _line(self, item_name: str | None) -> str:
        filled = BAR_WIDTH * self.done // self.total if self.total else BAR_WIDTH
        line = (
            f"{self.desc}: [{'█' * filled}{'░' * (BAR_WIDTH - filled)}] {self.done}/{self.total} "
            f"[{format_time(self.elapsed())}<{format_time(self.eta())}]"
        )
        failed = self.outcomes["failed"]
        if failed:
            line += f" {failed} failed"
        if item_name:
            if len(item_name) > MAX_NAME_LENGTH:
                item_name = "..." + item_name[3 - MAX_NAME_LENGTH:]
            line += f" | {item_name}"
        return line

    def finish(self) -> None:
        """Write the closing summary line."""
        counts = ", ".join(f"{n} {outcome}" for outcome, n in sorted(self.outcomes.items()))
        summary = f"✓ {self.desc} complete: {self.done} {self.unit}"
        if counts:
            summary += f" ({counts})"

        if self._is_tty:
            self._stream.write("\n")
        self._stream.write(f"{summary} in {format_time(self.elapsed())}\n")
        self._stream.flush()
