"""
PageSplit - Find and split two-page spreads in book scans

Provides:
1. Heuristic gutter detection on downsampled grayscale images
2. A text-at-split check so cuts never run through printed lines
3. Optional vision-model detection, alone or as a fallback
4. Split and undo bookkeeping that keeps page numbers contiguous
5. A CLI and an HTTP server over the same operations
"""

__version__ = "1.0.0"
__author__ = "PageSplit"

from .config import AppConfig, DetectionConfig
from .detector import Confidence, DetectionResult, detect
from .service import SplitService
from .split_manager import PageSplitManager

__all__ = [
    "AppConfig",
    "Confidence",
    "DetectionConfig",
    "DetectionResult",
    "PageSplitManager",
    "SplitService",
    "detect",
]
