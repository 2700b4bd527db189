"""
HTTP and WebSocket API tests.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import API_KEY, STOP, frame_payload, spoken_text

HEADERS = {"X-API-Key": API_KEY}
STREAM_URL = "/ws/consultations/consult-1?clinic_id=clinic-1&physician_id=dr-ana&patient_id=patient-1"


def receive_until_closed(ws):
    events = []
    with pytest.raises(WebSocketDisconnect) as exc_info:
        while True:
            events.append(ws.receive_json())
    return events, exc_info.value.code


def test_stream_produces_transcript_and_structured_result(api):
    with TestClient(api.app) as client:
        with client.websocket_connect(STREAM_URL, headers=HEADERS) as ws:
            ws.send_bytes(frame_payload(0))
            ws.send_bytes(frame_payload(1))
            ws.send_text(STOP)
            events, code = receive_until_closed(ws)

    assert code == 1000
    finals = [e for e in events if e["type"] == "final"]
    assert [(e["speaker"], e["text"]) for e in finals] == [
        ("Doctor", spoken_text(0)),
        ("Patient", spoken_text(1)),
    ]
    kinds = [e["type"] for e in events]
    assert kinds[-3:] == ["transcript", "structured", "closed"]
    assert events[-3]["text"] == "Doctor: fala 0\nPatient: fala 1"
    assert events[-1] == {"type": "closed", "state": "CLOSED"}
    assert len(api.sink.records) == 1
    assert api.sink.records[0].patient_id == "patient-1"


def test_stream_accepts_api_key_query_parameter(api):
    with TestClient(api.app) as client:
        with client.websocket_connect(f"{STREAM_URL}&api_key={API_KEY}") as ws:
            ws.send_text(STOP)
            events, code = receive_until_closed(ws)

    assert code == 1000
    assert events[-1]["state"] == "CLOSED"


def test_stream_without_credentials_is_closed_unauthorized(api):
    with TestClient(api.app) as client:
        with client.websocket_connect(STREAM_URL) as ws:
            events, code = receive_until_closed(ws)

    assert code == 4401
    assert events == [{"type": "error", "code": "UNAUTHORIZED", "message": events[0]["message"]}]
    assert len(api.registry) == 0


def test_stream_rejects_unsupported_encoding(api):
    with TestClient(api.app) as client:
        with client.websocket_connect(f"{STREAM_URL}&encoding=bogus", headers=HEADERS) as ws:
            events, code = receive_until_closed(ws)

    assert code == 4400
    assert events[0]["code"] == "INVALID_INPUT"
    assert "bogus" in events[0]["message"]


def test_live_session_can_be_inspected_and_aborted(api):
    with TestClient(api.app) as client:
        with client.websocket_connect(STREAM_URL, headers=HEADERS) as ws:
            ws.send_bytes(frame_payload(0))
            assert ws.receive_json()["type"] == "partial"
            assert ws.receive_json()["type"] == "final"

            listed = client.get("/consultations/sessions", headers=HEADERS)
            assert listed.status_code == 200
            assert [s["consultation_id"] for s in listed.json()["data"]] == ["consult-1"]

            view = client.get("/consultations/consult-1/session", headers=HEADERS)
            assert view.status_code == 200
            data = view.json()["data"]
            assert data["session"]["state"] == "STREAMING"
            assert [s["text"] for s in data["live_transcript"]] == [spoken_text(0)]

            aborted = client.delete("/consultations/consult-1/session", headers=HEADERS)
            assert aborted.status_code == 200
            assert aborted.json()["data"]["closed_reason"] == "aborted"

            events, code = receive_until_closed(ws)

    assert events == [{"type": "closed", "state": "CLOSED", "reason": "aborted"}]
    assert code == 1000
    assert api.sink.records == []


def test_unknown_live_session_is_not_found(api):
    with TestClient(api.app) as client:
        response = client.get("/consultations/missing/session", headers=HEADERS)
        deleted = client.delete("/consultations/missing/session", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["error"] == "SESSION_NOT_FOUND"
    assert deleted.status_code == 404


def test_structure_endpoint_returns_suggestions(api):
    with TestClient(api.app) as client:
        response = client.post(
            "/consultations/structure",
            json={"transcript": "Doctor: O que sente?\nPatient: Dor de cabeça.", "allergies": [" dipirona ", ""]},
            headers=HEADERS,
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["anamnesis"].startswith("QUEIXA")
    assert [s["description"] for s in body["data"]["suggestions"]] == ["Hemograma completo", "Dipirona 500 mg"]
    assert body["data"]["usage"]["total_tokens"] == 150
    assert "Known allergies: dipirona" in api.model.prompts[0]


def test_structure_endpoint_rejects_empty_transcript(api):
    with TestClient(api.app) as client:
        response = client.post("/consultations/structure", json={"transcript": "   "}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == "EMPTY_INPUT"
    assert api.model.calls == 0


def test_structure_endpoint_validates_body(api):
    with TestClient(api.app) as client:
        response = client.post("/consultations/structure", json={}, headers=HEADERS)

    assert response.status_code == 422
    assert response.json()["error"] == "INVALID_INPUT"


def test_consultation_routes_require_api_key(api):
    with TestClient(api.app) as client:
        response = client.post("/consultations/structure", json={"transcript": "x"})

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_request_id_is_echoed(api):
    with TestClient(api.app) as client:
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"
    assert response.json()["request_id"] == "req-42"
