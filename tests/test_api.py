from __future__ import annotations

import base64
import json


def _webhook(event_type: str, call_control_id: str, **payload) -> dict:
    return {"data": {"event_type": event_type, "payload": {"call_control_id": call_control_id, **payload}}}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 0}


def test_start_call_and_follow_webhooks(client, telephony):
    response = client.post("/api/calls", json={"meeting_id": "839 1407 6399"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["state"] == "DIALING"
    session_id = payload["session_id"]

    response = client.post("/api/webhooks/telnyx", json=_webhook("call.answered", "call-1"))
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    status = client.get(f"/api/calls/{session_id}").json()
    assert status["state"] == "ANSWERED"
    assert status["call_control_id"] == "call-1"
    assert status["retry_count"] == 0

    response = client.post(f"/api/calls/{session_id}/hangup")
    assert response.status_code == 200
    assert response.json()["state"] == "ENDED"
    assert telephony.hangups == ["call-1"]

    # Finished sessions stay readable.
    assert client.get(f"/api/calls/{session_id}").json()["state"] == "ENDED"


def test_invalid_meeting_id_is_422(client, telephony):
    response = client.post("/api/calls", json={"meeting_id": "12-34"})
    assert response.status_code == 422
    assert telephony.dial_attempts == 0


def test_unknown_session_is_404(client):
    assert client.get("/api/calls/missing").status_code == 404
    assert client.post("/api/calls/missing/hangup").status_code == 404
    response = client.post("/api/calls/missing/speak", json={"text": "hi"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found."


def test_speak_requires_text(client):
    session_id = client.post("/api/calls", json={"meeting_id": "123"}).json()["session_id"]
    assert client.post(f"/api/calls/{session_id}/speak", json={"text": ""}).status_code == 422

    response = client.post(f"/api/calls/{session_id}/speak", json={"text": "hello there"})
    assert response.status_code == 200
    assert response.json() == {"queued": True, "text": "hello there"}

    client.post(f"/api/calls/{session_id}/hangup")


def test_webhook_for_unknown_call_is_acknowledged(client):
    response = client.post("/api/webhooks/telnyx", json=_webhook("call.answered", "v3:nobody"))
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}


def test_malformed_webhook_is_acknowledged(client):
    response = client.post("/api/webhooks/telnyx", json={"data": {"payload": {}}})
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}

    response = client.post("/api/webhooks/telnyx", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 200


def test_media_stream_binds_without_forwarding_before_join(client, speech_endpoints):
    session_id = client.post("/api/calls", json={"meeting_id": "83914076399"}).json()["session_id"]
    frame = base64.b64encode(b"\xff" * 160).decode("ascii")

    with client.websocket_connect("/api/media") as ws:
        ws.send_text(json.dumps({"event": "connected"}))
        ws.send_text(json.dumps({"event": "start", "stream_id": "s1", "start": {"call_control_id": "call-1"}}))
        ws.send_text(json.dumps({"event": "media", "media": {"track": "inbound", "payload": frame}}))
        ws.send_text("garbage")
        ws.send_text(json.dumps({"event": "stop", "stream_id": "s1"}))

    assert speech_endpoints[0].sent == []
    client.post(f"/api/calls/{session_id}/hangup")


def test_media_stream_survives_malformed_frames(client, registry, monkeypatch):
    session_id = client.post("/api/calls", json={"meeting_id": "83914076399"}).json()["session_id"]
    bound: list[str] = []
    attach_media = registry.attach_media

    async def recording_attach(call_control_id, sink):
        bound.append(call_control_id)
        return await attach_media(call_control_id, sink)

    monkeypatch.setattr(registry, "attach_media", recording_attach)

    with client.websocket_connect("/api/media") as ws:
        ws.send_text(json.dumps({"event": "media", "media": "oops"}))
        ws.send_text(json.dumps({"event": "start", "start": "oops"}))
        ws.send_text(json.dumps([1, 2, 3]))
        ws.send_text(json.dumps({"event": "start", "stream_id": "s1", "start": {"call_control_id": "call-1"}}))
        ws.send_text(json.dumps({"event": "stop", "stream_id": "s1"}))

    assert bound == ["call-1"]
    client.post(f"/api/calls/{session_id}/hangup")


def test_malformed_transcription_webhook_is_acknowledged(client):
    body = _webhook("call.transcription", "call-1", transcription_data={"transcript": "hi", "confidence": "high"})
    response = client.post("/api/webhooks/telnyx", json=body)
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
