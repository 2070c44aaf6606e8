"""Tap-tempo estimation.

Tap timestamps are milliseconds since an arbitrary epoch; BPM values are
beats per minute derived from the gap between consecutive taps.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np

from tapbpm.errors import DegenerateIntervalError, InvalidInputError

MS_PER_SECOND = 1000.0
SECONDS_PER_MINUTE = 60.0


def interval_to_bpm(interval_ms: float) -> float:
    """Convert one inter-tap interval to BPM.

    Input:
    - interval_ms: gap between two taps in milliseconds.

    Output:
    - float BPM, `60 / seconds`.

    Raises:
    - DegenerateIntervalError if the interval is zero, negative or not finite.
    """
    interval_s = float(interval_ms) / MS_PER_SECOND
    if not (interval_s > 0 and math.isfinite(interval_s)):
        raise DegenerateIntervalError(
            f"Tap interval must be positive and finite, got {interval_ms!r} ms"
        )
    return SECONDS_PER_MINUTE / interval_s


def smooth_bpm(bpm_values: Sequence[float], window_size: int) -> List[float]:
    """Trailing moving average over a BPM series.

    Input:
    - bpm_values: raw BPM samples in tap order.
    - window_size: number of trailing samples averaged per output sample (>= 1).

    Output:
    - list[float] with the same length as the input. Element i is the mean of
      bpm_values[max(0, i - window_size + 1) : i + 1]. When the series is
      shorter than the window it is returned unchanged.
    """
    if window_size < 1:
        raise InvalidInputError(f"window_size must be >= 1, got {window_size}")

    raw = [float(v) for v in bpm_values]
    if window_size == 1 or len(raw) < window_size:
        return raw

    values = np.asarray(raw, dtype=np.float64)
    smoothed: List[float] = []
    for idx in range(values.size):
        start = max(0, idx - window_size + 1)
        smoothed.append(float(values[start : idx + 1].mean()))
    return smoothed


def format_elapsed(elapsed_ms: float) -> str:
    """Format an elapsed duration as MM:SS.

    Minutes keep counting past 59; there is no hour field.
    """
    total_seconds = int(max(0.0, float(elapsed_ms)) // MS_PER_SECOND)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


class TempoEstimator:
    """Owns the tap log of one session and the BPM series derived from it."""

    def __init__(self) -> None:
        self._taps: List[float] = []
        self._raw: List[float] = []
        self._average_history: List[float] = []
        self._bpm_sum = 0.0
        self._average = 0.0

    def __len__(self) -> int:
        return len(self._taps)

    @property
    def tap_count(self) -> int:
        return len(self._taps)

    @property
    def session_start(self) -> Optional[float]:
        return self._taps[0] if self._taps else None

    @property
    def running_average_exact(self) -> float:
        return self._average

    def record_tap(self, timestamp_ms: float) -> Optional[float]:
        """Append a tap and update the derived series.

        Input:
        - timestamp_ms: tap time in milliseconds, not earlier than the last tap.

        Output:
        - the new raw BPM sample, or None for the first tap of a session.

        Raises:
        - DegenerateIntervalError if the tap is at or before the previous one
          or is not a finite number. Nothing is recorded in that case.
        """
        timestamp_ms = float(timestamp_ms)
        if not math.isfinite(timestamp_ms):
            raise DegenerateIntervalError(f"Tap timestamp must be finite, got {timestamp_ms!r}")
        if not self._taps:
            self._taps.append(timestamp_ms)
            return None

        bpm = interval_to_bpm(timestamp_ms - self._taps[-1])

        # The history records the average as it stood before this tap.
        self._average_history.append(self._average)
        self._raw.append(bpm)
        self._bpm_sum += bpm
        self._average = self._bpm_sum / len(self._raw)
        self._taps.append(timestamp_ms)
        return bpm

    def reset(self) -> None:
        self._taps.clear()
        self._raw.clear()
        self._average_history.clear()
        self._bpm_sum = 0.0
        self._average = 0.0

    def tap_log(self) -> List[float]:
        return list(self._taps)

    def raw_series(self) -> List[float]:
        return list(self._raw)

    def smoothed_series(self, window_size: int) -> List[float]:
        return smooth_bpm(self._raw, window_size)

    def running_average(self) -> float:
        """Mean of the raw series, rounded to 2 decimals for display."""
        return round(self._average, 2)

    def running_average_series(self) -> List[float]:
        return list(self._average_history)

    def elapsed_label(self, timestamp_ms: float) -> str:
        start = self.session_start
        if start is None:
            return format_elapsed(0.0)
        return format_elapsed(float(timestamp_ms) - start)

    def elapsed_labels(self) -> List[str]:
        """One label per raw BPM sample, i.e. per tap after the first."""
        return [self.elapsed_label(ts) for ts in self._taps[1:]]
