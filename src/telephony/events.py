"""Closed sets of inbound notifications.

Call-progress webhooks and media-stream messages are parsed once at the
edge into the frozen dataclasses below; everything downstream matches on
the type rather than on event-type strings.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from telephony.errors import MalformedEventError
from telephony.models import AudioFrame, Direction


@dataclass(frozen=True, slots=True)
class CallEvent:
    call_control_id: str


@dataclass(frozen=True, slots=True)
class CallInitiated(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class CallAnswered(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class CallHangup(CallEvent):
    cause: str | None = None


@dataclass(frozen=True, slots=True)
class DtmfReceived(CallEvent):
    digit: str = ""


@dataclass(frozen=True, slots=True)
class SpeakStarted(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class SpeakEnded(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class StreamingStarted(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class StreamingStopped(CallEvent):
    pass


@dataclass(frozen=True, slots=True)
class TranscriptionReceived(CallEvent):
    text: str = ""
    is_final: bool = False
    confidence: float | None = None


@dataclass(frozen=True, slots=True)
class UnknownEvent(CallEvent):
    event_type: str = ""


_SIMPLE_EVENTS: dict[str, type[CallEvent]] = {
    "call.initiated": CallInitiated,
    "call.answered": CallAnswered,
    "call.speak.started": SpeakStarted,
    "call.speak.ended": SpeakEnded,
    "streaming.started": StreamingStarted,
    "streaming.stopped": StreamingStopped,
}


def _nested(value: Any, what: str) -> dict[str, Any]:
    """A nested object field; absent means empty."""

    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedEventError(f"{what} must be a JSON object.")
    return value


def parse_call_event(body: Any) -> CallEvent:
    """Parse a Telnyx call-control webhook body.

    Accepts both the enveloped form ``{"data": {"event_type", "payload"}}``
    and a bare ``{"event_type", "payload"}`` object.

    Raises:
        MalformedEventError: if the body has no event type or call id.
    """

    if not isinstance(body, dict):
        raise MalformedEventError("Webhook body must be a JSON object.")

    event = body.get("data") if isinstance(body.get("data"), dict) else body
    event_type = str(event.get("event_type") or "")
    payload = event.get("payload") if isinstance(event.get("payload"), dict) else event
    call_control_id = str(payload.get("call_control_id") or "")

    if not event_type:
        raise MalformedEventError("Webhook body has no event_type.")
    if not call_control_id:
        raise MalformedEventError(f"Webhook {event_type} has no call_control_id.")

    simple = _SIMPLE_EVENTS.get(event_type)
    if simple is not None:
        return simple(call_control_id)

    if event_type == "call.hangup":
        cause = payload.get("hangup_cause")
        return CallHangup(call_control_id, cause=str(cause) if cause else None)

    if event_type == "call.dtmf.received":
        return DtmfReceived(call_control_id, digit=str(payload.get("digit") or ""))

    if event_type == "call.transcription":
        data = _nested(payload.get("transcription_data"), "transcription_data")
        confidence = data.get("confidence")
        if confidence is not None:
            try:
                confidence = float(confidence)
            except (TypeError, ValueError) as exc:
                raise MalformedEventError(f"Invalid transcription confidence: {confidence!r}") from exc
        return TranscriptionReceived(
            call_control_id,
            text=str(data.get("transcript") or "").strip(),
            is_final=bool(data.get("is_final")),
            confidence=confidence,
        )

    return UnknownEvent(call_control_id, event_type=event_type)


@dataclass(frozen=True, slots=True)
class MediaStart:
    stream_id: str
    call_control_id: str


@dataclass(frozen=True, slots=True)
class MediaStop:
    stream_id: str


MediaMessage = MediaStart | MediaStop | AudioFrame


def parse_media_message(text: str | bytes) -> MediaMessage | None:
    """Parse one media-stream websocket message.

    Returns ``None`` for message kinds that carry nothing for the bridge
    (``connected``, ``mark``, ``dtmf`` ...).

    Raises:
        MalformedEventError: on invalid JSON or an undecodable payload.
    """

    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedEventError(f"Invalid media message: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedEventError("Media message must be a JSON object.")

    event = str(message.get("event") or "")
    stream_id = str(message.get("stream_id") or "")

    if event == "start":
        start = _nested(message.get("start"), "start")
        return MediaStart(stream_id=stream_id, call_control_id=str(start.get("call_control_id") or ""))

    if event == "stop":
        return MediaStop(stream_id=stream_id)

    if event == "media":
        media = _nested(message.get("media"), "media")
        track = str(media.get("track") or Direction.INBOUND.value)
        try:
            direction = Direction(track)
        except ValueError as exc:
            raise MalformedEventError(f"Unknown media track: {track}") from exc

        payload = media.get("payload")
        if not isinstance(payload, str):
            raise MalformedEventError("Media message has no payload.")
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedEventError("Media payload is not valid base64.") from exc
        return AudioFrame(direction=direction, payload=raw)

    return None


def build_media_message(ulaw: bytes) -> str:
    """Outbound media frame in the stream's JSON envelope."""

    return json.dumps({"event": "media", "media": {"payload": base64.b64encode(ulaw).decode("ascii")}})
