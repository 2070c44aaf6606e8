"""Tap session state shared by the event source and the renderer."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from tapbpm.errors import InvalidInputError
from tapbpm.estimator import TempoEstimator
from tapbpm.tempo_map import TempoMapEntry, build_tempo_map

logger = logging.getLogger(__name__)

ALLOWED_WINDOW_SIZES = (1, 2, 4, 6, 8, 10)
DEFAULT_WINDOW_SIZE = 4


class DisplayMode(str, Enum):
    EXACT = "exact"
    AVERAGE = "average"


DEFAULT_DISPLAY_MODE = DisplayMode.EXACT


def validate_window_size(window_size: Any) -> int:
    """Return window_size as int or raise InvalidInputError if not allowed."""
    if isinstance(window_size, bool) or isinstance(window_size, float):
        raise InvalidInputError(f"window_size must be an integer, got {window_size!r}")
    try:
        size = int(window_size)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"window_size must be an integer, got {window_size!r}") from exc
    if size not in ALLOWED_WINDOW_SIZES:
        raise InvalidInputError(f"window_size must be one of: {list(ALLOWED_WINDOW_SIZES)}")
    return size


def parse_display_mode(value: Any) -> DisplayMode:
    """Parse 'exact' / 'average' (case-insensitive) into a DisplayMode."""
    if isinstance(value, DisplayMode):
        return value
    try:
        return DisplayMode(str(value).lower().strip())
    except ValueError as exc:
        raise InvalidInputError(
            f"display mode must be one of: {[m.value for m in DisplayMode]}"
        ) from exc


class TapSession:
    """One tapping session: the estimator plus the user's view preferences.

    Window size and display mode are preferences and survive `reset()`.
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        display_mode: DisplayMode = DEFAULT_DISPLAY_MODE,
    ) -> None:
        self.estimator = TempoEstimator()
        self.window_size = validate_window_size(window_size)
        self.display_mode = parse_display_mode(display_mode)

    def record_tap(self, timestamp_ms: float) -> Optional[float]:
        return self.estimator.record_tap(timestamp_ms)

    def reset(self) -> None:
        self.estimator.reset()
        logger.debug("session reset, window_size=%d kept", self.window_size)

    def set_window_size(self, window_size: Any) -> int:
        self.window_size = validate_window_size(window_size)
        return self.window_size

    def set_display_mode(self, mode: Any) -> DisplayMode:
        self.display_mode = parse_display_mode(mode)
        return self.display_mode

    def toggle_display_mode(self) -> DisplayMode:
        if self.display_mode is DisplayMode.EXACT:
            self.display_mode = DisplayMode.AVERAGE
        else:
            self.display_mode = DisplayMode.EXACT
        return self.display_mode

    def display_series(self) -> List[float]:
        if self.display_mode is DisplayMode.AVERAGE:
            return self.estimator.running_average_series()
        return self.estimator.smoothed_series(self.window_size)

    def tempo_map(self, window_size: Optional[int] = None) -> List[TempoMapEntry]:
        size = self.window_size if window_size is None else validate_window_size(window_size)
        return build_tempo_map(self.estimator.tap_log(), size)

    def chart_data(self) -> Dict[str, Any]:
        """Snapshot for a renderer.

        Output dict:
        - labels: list[str] MM:SS per BPM sample.
        - series: list[float] BPM values for the current display mode.
        - display_mode: 'exact' or 'average'.
        - window_size: int.
        - average_bpm: float, 2-decimal running average.
        - tap_count: int.
        """
        return {
            "labels": self.estimator.elapsed_labels(),
            "series": self.display_series(),
            "display_mode": self.display_mode.value,
            "window_size": self.window_size,
            "average_bpm": self.estimator.running_average(),
            "tap_count": self.estimator.tap_count,
        }
