"""Tempo-map construction from a tap log.

Durations are MIDI ticks at 480 ticks per quarter note. The output is a plain
list of entries; serializing it to a MIDI file is left to `tapbpm.export`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from tapbpm.errors import InsufficientDataError
from tapbpm.estimator import MS_PER_SECOND, interval_to_bpm, smooth_bpm

TICKS_PER_BEAT = 480
COUNT_IN_BEATS = 8
INITIAL_TEMPO_SAMPLES = 4


@dataclass(frozen=True)
class TempoMapEntry:
    tempo_bpm: float
    duration_ticks: int

    @property
    def microseconds_per_beat(self) -> int:
        return int(round(60_000_000 / self.tempo_bpm))


def seconds_to_ticks(seconds: float, ticks_per_beat: int = TICKS_PER_BEAT) -> int:
    """Convert seconds to whole ticks, rounding to the nearest tick."""
    return int(round(float(seconds) * ticks_per_beat))


def raw_bpm_from_taps(tap_log: Sequence[float]) -> List[float]:
    """Derive the raw BPM series from a list of tap timestamps in milliseconds."""
    taps = [float(t) for t in tap_log]
    return [interval_to_bpm(b - a) for a, b in zip(taps[:-1], taps[1:])]


def initial_tempo(smoothed: Sequence[float], samples: int = INITIAL_TEMPO_SAMPLES) -> float:
    """Mean of the first `samples` values (fewer if the series is shorter)."""
    if not smoothed:
        raise InsufficientDataError("Cannot derive an initial tempo from an empty series")
    head = [float(v) for v in smoothed[: min(samples, len(smoothed))]]
    return sum(head) / len(head)


def build_tempo_map(tap_log: Sequence[float], window_size: int) -> List[TempoMapEntry]:
    """Build a tempo map with a fixed count-in.

    Input:
    - tap_log: tap timestamps in milliseconds, strictly increasing.
    - window_size: smoothing window applied to the raw BPM series.

    Output:
    - list[TempoMapEntry]: COUNT_IN_BEATS quarter-note entries at the initial
      tempo, followed by one entry per smoothed BPM sample.

    Raises:
    - InsufficientDataError if fewer than two taps are given.
    """
    taps = [float(t) for t in tap_log]
    smoothed = smooth_bpm(raw_bpm_from_taps(taps), window_size)
    if not smoothed:
        raise InsufficientDataError(
            f"Need at least 2 taps to build a tempo map, got {len(taps)}"
        )

    start_tempo = initial_tempo(smoothed)
    entries = [TempoMapEntry(start_tempo, TICKS_PER_BEAT) for _ in range(COUNT_IN_BEATS)]

    for idx, bpm in enumerate(smoothed):
        # The first two samples both span the first interval.
        if idx == 0:
            duration_ms = taps[1] - taps[0]
        else:
            duration_ms = taps[idx] - taps[idx - 1]
        ticks = seconds_to_ticks(duration_ms / MS_PER_SECOND)
        entries.append(TempoMapEntry(float(bpm), ticks))

    return entries
