import time
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from tapbpm import api


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(api, "BASE_OUTPUT_DIR", tmp_path)
    api.SESSIONS.clear()
    return TestClient(api.app)


def _new_session(client) -> str:
    resp = client.post("/sessions")
    assert resp.status_code == 200
    return resp.json()["session_id"]


def test_tap_flow_and_tempo_map(client):
    sid = _new_session(client)
    for t in [0, 500, 1000]:
        resp = client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": t})
        assert resp.status_code == 200

    body = resp.json()
    assert body["bpm"] == pytest.approx(120.0)
    assert body["series"] == [120.0, 120.0]
    assert body["average_bpm"] == 120.0

    resp = client.get(f"/sessions/{sid}/tempo-map")
    assert resp.status_code == 200
    entries = resp.json()["entries"]
    assert len(entries) == 10
    assert entries[-1] == {"tempo_bpm": 120.0, "duration_ticks": 240}


def test_duplicate_tap_conflicts(client):
    sid = _new_session(client)
    client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 100})
    resp = client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 100})
    assert resp.status_code == 409
    assert client.get(f"/sessions/{sid}").json()["tap_count"] == 1


def test_window_size_and_display_mode_validation(client):
    sid = _new_session(client)
    assert client.put(f"/sessions/{sid}/window-size", json={"window_size": 3}).status_code == 400
    assert client.put(f"/sessions/{sid}/window-size", json={"window_size": 6}).json()["window_size"] == 6
    assert client.put(f"/sessions/{sid}/display-mode", json={"mode": "bogus"}).status_code == 400
    resp = client.post(f"/sessions/{sid}/display-mode/toggle")
    assert resp.json()["display_mode"] == "average"


def test_reset_and_missing_data(client):
    sid = _new_session(client)
    client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 0})
    client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 500})
    resp = client.post(f"/sessions/{sid}/reset")
    assert resp.json()["tap_count"] == 0
    assert client.get(f"/sessions/{sid}/tempo-map").status_code == 422
    assert client.get(f"/sessions/{sid}/export.mid").status_code == 422


def test_unknown_session(client):
    assert client.get("/sessions/nope").status_code == 404


def test_export_midi_download(client):
    pytest.importorskip("mido")
    sid = _new_session(client)
    for t in [0, 500, 1000]:
        client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": t})

    resp = client.get(f"/sessions/{sid}/export.mid")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/midi"
    assert resp.content.startswith(b"MThd")


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_tap_is_rejected(client, literal):
    sid = _new_session(client)
    client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 0})

    resp = client.post(
        f"/sessions/{sid}/tap",
        content='{"timestamp_ms": %s}' % literal,
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 409

    resp = client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": 500})
    assert resp.status_code == 200
    assert resp.json()["bpm"] == pytest.approx(120.0)
    assert resp.json()["tap_count"] == 2


def test_server_clock_is_monotonic(monkeypatch):
    monkeypatch.setattr(api.time, "monotonic", lambda: 2.5)
    assert api.now_ms() == 2500.0


def test_server_stamped_taps_ignore_wall_clock_steps(client, monkeypatch):
    wall = iter(range(1_000_000, 0, -1000))
    monkeypatch.setattr(time, "time", lambda: float(next(wall)))
    sid = _new_session(client)

    assert client.post(f"/sessions/{sid}/tap").status_code == 200
    resp = client.post(f"/sessions/{sid}/tap")
    assert resp.status_code == 200
    assert resp.json()["bpm"] > 0


def test_export_runs_with_timeout(client, monkeypatch):
    def slow_export(entries, output_path):
        time.sleep(0.5)
        return output_path

    monkeypatch.setattr(api, "export_tempo_map_midi", slow_export)
    monkeypatch.setattr(api, "EXPORT_TIMEOUT_SECONDS", 0.05)
    sid = _new_session(client)
    for t in [0, 500]:
        client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": t})

    resp = client.get(f"/sessions/{sid}/export.mid")
    assert resp.status_code == 504


def test_export_rejects_tempo_outside_midi_range(client):
    pytest.importorskip("mido")
    sid = _new_session(client)
    for t in [0, 20_000]:
        client.post(f"/sessions/{sid}/tap", json={"timestamp_ms": t})

    resp = client.get(f"/sessions/{sid}/export.mid")
    assert resp.status_code == 422
