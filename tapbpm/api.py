"""FastAPI service for tap sessions and tempo-map export."""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

from tapbpm.errors import (
    DegenerateIntervalError,
    InsufficientDataError,
    InvalidInputError,
    MissingDependencyError,
)
from tapbpm.export import export_tempo_map_midi
from tapbpm.session import TapSession

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("tap-bpm")

MAX_SESSIONS = 256
EXPORT_TIMEOUT_SECONDS = 30
BASE_OUTPUT_DIR = Path(os.environ.get("TAPBPM_OUTPUT_DIR", "outputs"))
MIDI_FILENAME = "bpm.mid"

app = FastAPI(title="tap-bpm", version="0.1.0")

SESSIONS: Dict[str, TapSession] = {}


class TapRequest(BaseModel):
    timestamp_ms: Optional[float] = None


class WindowSizeRequest(BaseModel):
    window_size: int


class DisplayModeRequest(BaseModel):
    mode: str


def now_ms() -> float:
    return time.monotonic() * 1000.0


def create_job_dir() -> Tuple[str, Path]:
    """Create output folder under ./outputs/{uuid}.

    Output:
    - (job_id, job_dir)
    """
    job_id = str(uuid.uuid4())
    job_dir = BASE_OUTPUT_DIR / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    return job_id, job_dir


def get_session(session_id: str) -> TapSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return session


def session_payload(session_id: str, session: TapSession) -> Dict[str, Any]:
    return {"session_id": session_id, **session.chart_data()}


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions")
async def create_session() -> Dict[str, Any]:
    while len(SESSIONS) >= MAX_SESSIONS:
        oldest = next(iter(SESSIONS))
        del SESSIONS[oldest]
        logger.info("Evicted session %s", oldest)

    session_id = str(uuid.uuid4())
    session = TapSession()
    SESSIONS[session_id] = session
    logger.info("Created session %s", session_id)
    return session_payload(session_id, session)


@app.get("/sessions/{session_id}")
async def read_session(session_id: str) -> Dict[str, Any]:
    return session_payload(session_id, get_session(session_id))


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> Dict[str, str]:
    get_session(session_id)
    del SESSIONS[session_id]
    return {"status": "deleted"}


@app.post("/sessions/{session_id}/tap")
async def tap(session_id: str, request: Optional[TapRequest] = None) -> Dict[str, Any]:
    session = get_session(session_id)
    timestamp = request.timestamp_ms if request and request.timestamp_ms is not None else now_ms()

    try:
        bpm = session.record_tap(timestamp)
    except DegenerateIntervalError as exc:
        logger.warning("Rejected tap for session %s: %s", session_id, exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return {"bpm": bpm, **session_payload(session_id, session)}


@app.post("/sessions/{session_id}/reset")
async def reset(session_id: str) -> Dict[str, Any]:
    session = get_session(session_id)
    session.reset()
    return session_payload(session_id, session)


@app.put("/sessions/{session_id}/window-size")
async def set_window_size(session_id: str, request: WindowSizeRequest) -> Dict[str, Any]:
    session = get_session(session_id)
    try:
        session.set_window_size(request.window_size)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return session_payload(session_id, session)


@app.put("/sessions/{session_id}/display-mode")
async def set_display_mode(session_id: str, request: DisplayModeRequest) -> Dict[str, Any]:
    session = get_session(session_id)
    try:
        session.set_display_mode(request.mode)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return session_payload(session_id, session)


@app.post("/sessions/{session_id}/display-mode/toggle")
async def toggle_display_mode(session_id: str) -> Dict[str, Any]:
    session = get_session(session_id)
    session.toggle_display_mode()
    return session_payload(session_id, session)


@app.get("/sessions/{session_id}/tempo-map")
async def tempo_map(session_id: str, window_size: Optional[int] = None) -> Dict[str, Any]:
    session = get_session(session_id)
    try:
        entries = session.tempo_map(window_size)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InsufficientDataError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    items: List[Dict[str, Any]] = [
        {"tempo_bpm": e.tempo_bpm, "duration_ticks": e.duration_ticks} for e in entries
    ]
    return {
        "session_id": session_id,
        "window_size": session.window_size if window_size is None else window_size,
        "entries": items,
    }


@app.get("/sessions/{session_id}/export.mid")
async def export_midi(session_id: str, window_size: Optional[int] = None) -> FileResponse:
    session = get_session(session_id)
    try:
        entries = session.tempo_map(window_size)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InsufficientDataError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    job_id, job_dir = create_job_dir()
    try:
        midi_path = await asyncio.wait_for(
            asyncio.to_thread(export_tempo_map_midi, entries, job_dir / MIDI_FILENAME),
            timeout=EXPORT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        raise HTTPException(
            status_code=504,
            detail=f"MIDI export timed out after {EXPORT_TIMEOUT_SECONDS} seconds",
        ) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except MissingDependencyError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("MIDI export failed")
        raise HTTPException(status_code=500, detail=f"MIDI export failed: {exc}") from exc

    logger.info("Exported %d tempo entries for session %s to %s", len(entries), session_id, midi_path)
    return FileResponse(
        str(midi_path),
        media_type="audio/midi",
        filename=MIDI_FILENAME,
        headers={"X-Job-Id": job_id},
    )


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("tapbpm.api:app", host="0.0.0.0", port=8000, reload=True)
