"""
Check whether running text crosses a proposed split line.
"""

from dataclasses import dataclass

from .config import DetectionConfig
from .features import ColumnStats


@dataclass(frozen=True)
class TextCheck:
    """Outcome of inspecting the columns around a split line."""

    has_text: bool
    confidence: float  # Fraction of signals agreeing with the verdict
    reason: str
    window_transitions: float
    window_dark_run: float
    window_dark_std: float


def detect_text_at_position(
    columns: list[ColumnStats],
    position: int,
    config: DetectionConfig | None = None,
) -> TextCheck:
    """Vote on whether text runs across column ``position``.

    Looks at a narrow window (``config.text_window`` columns either side,
    clipped to the image) and raises three independent signals: many
    light/dark transitions, short dark runs, and a spread-out set of dark
    pixels. Text is reported only when ``config.min_text_signals`` of them
    fire, so one ambiguous metric alone never blocks a split.
    """
    config = config or DetectionConfig()

    start = max(0, position - config.text_window)
    end = min(len(columns), position + config.text_window + 1)
    window = columns[start:end]

    avg_transitions = sum(c.transitions for c in window) / len(window)
    avg_dark_run = sum(c.max_dark_run for c in window) / len(window)
    avg_dark_std = sum(c.dark_std_dev for c in window) / len(window)

    split_col = columns[position]

    high_transitions = (
        split_col.transitions > config.text_column_transitions
        and avg_transitions > config.text_window_transitions
    )
    short_dark_run = (
        split_col.max_dark_run < config.text_column_dark_run
        and avg_dark_run < config.text_window_dark_run
    )
    high_variance = avg_dark_std > config.text_window_dark_std

    signals = sum([high_transitions, short_dark_run, high_variance])

    if signals >= config.min_text_signals:
        reasons = []
        if high_transitions:
            reasons.append(f"high transitions ({split_col.transitions})")
        if short_dark_run:
            reasons.append(f"short dark runs ({split_col.max_dark_run:.0f}%)")
        if high_variance:
            reasons.append(f"high variance ({avg_dark_std:.0f})")
        return TextCheck(
            has_text=True,
            confidence=signals / 3,
            reason=f"Text at split: {', '.join(reasons)}",
            window_transitions=avg_transitions,
            window_dark_run=avg_dark_run,
            window_dark_std=avg_dark_std,
        )

    return TextCheck(
        has_text=False,
        confidence=1 - signals / 3,
        reason="Clean gutter detected",
        window_transitions=avg_transitions,
        window_dark_run=avg_dark_run,
        window_dark_std=avg_dark_std,
    )
