"""MIDI export for tempo maps.

Each tempo-map entry becomes a `set_tempo` meta event followed by one click
note lasting the entry's duration in ticks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from tapbpm.errors import InsufficientDataError, InvalidInputError, MissingDependencyError
from tapbpm.tempo_map import TICKS_PER_BEAT, TempoMapEntry

CLICK_PITCH = 60  # C4
CLICK_VELOCITY = 100
MAX_MIDI_TEMPO = 0xFFFFFF


def require_mido():
    """Return mido module or raise dependency error."""
    try:
        import mido  # type: ignore
    except Exception as exc:  # pragma: no cover - environment dependent
        raise MissingDependencyError("Missing dependency: mido. Install with `pip install mido`.") from exc
    return mido


def tempo_map_to_midi(
    entries: Sequence[TempoMapEntry],
    ticks_per_beat: int = TICKS_PER_BEAT,
    pitch: int = CLICK_PITCH,
    velocity: int = CLICK_VELOCITY,
):
    """Build a single-track MIDI file from a tempo map.

    Input:
    - entries: tempo-map entries in playback order (count-in first).
    - ticks_per_beat: MIDI division.
    - pitch / velocity: click note written under every entry.

    Output:
    - mido.MidiFile (not yet written to disk).

    Raises:
    - InvalidInputError if an entry tempo does not fit a 24-bit MIDI tempo
      (slower than about 3.58 BPM, i.e. taps more than ~16.8 s apart).
    """
    if not entries:
        raise InsufficientDataError("Tempo map is empty, nothing to export")

    mido = require_mido()

    midi = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    midi.tracks.append(track)
    track.append(mido.MetaMessage("track_name", name="Tap tempo", time=0))

    for entry in entries:
        tempo = entry.microseconds_per_beat
        if not 1 <= tempo <= MAX_MIDI_TEMPO:
            raise InvalidInputError(
                f"Tempo {entry.tempo_bpm:.2f} BPM is outside the MIDI tempo range"
            )
        track.append(mido.MetaMessage("set_tempo", tempo=tempo, time=0))
        track.append(mido.Message("note_on", note=pitch, velocity=velocity, time=0))
        track.append(
            mido.Message("note_off", note=pitch, velocity=0, time=max(0, int(entry.duration_ticks)))
        )

    track.append(mido.MetaMessage("end_of_track", time=0))
    return midi


def export_tempo_map_midi(entries: Sequence[TempoMapEntry], output_path: Path) -> Path:
    """Write a tempo map to a .mid file.

    Input:
    - entries: tempo-map entries, as returned by `build_tempo_map`.
    - output_path: target MIDI path.

    Output:
    - output_path (Path) after writing.
    """
    midi = tempo_map_to_midi(entries)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    midi.save(str(output_path))
    return output_path
