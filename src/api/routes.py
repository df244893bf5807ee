"""FastAPI routes: operator controls, Telnyx webhook intake and the media stream."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect

from api.dependencies import get_registry
from api.schemas import (
    SessionStatusResponse,
    SpeakRequest,
    SpeakResponse,
    StartCallRequest,
    StartCallResponse,
)
from telephony.errors import BridgeError, MalformedEventError
from telephony.events import MediaStart, MediaStop, build_media_message, parse_call_event, parse_media_message
from telephony.models import AudioFrame
from telephony.registry import SessionRegistry

if TYPE_CHECKING:  # pragma: no cover
    from telephony.session import CallSession

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _http_error(exc: BridgeError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.post("/calls", response_model=StartCallResponse)
async def start_call(
    payload: StartCallRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StartCallResponse:
    try:
        session = await registry.start_call(
            payload.meeting_id,
            passcode=payload.passcode,
            dial_in_number=payload.dial_in_number,
        )
    except BridgeError as exc:
        raise _http_error(exc) from exc

    return StartCallResponse(session_id=session.session_id, state=session.state.value)


@router.get("/calls/{session_id}", response_model=SessionStatusResponse)
async def get_call(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStatusResponse:
    try:
        status = await registry.status(session_id)
    except BridgeError as exc:
        raise _http_error(exc) from exc
    return SessionStatusResponse(**status)


@router.post("/calls/{session_id}/hangup", response_model=SessionStatusResponse)
async def hangup_call(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStatusResponse:
    try:
        status = await registry.end_session(session_id)
    except BridgeError as exc:
        raise _http_error(exc) from exc
    return SessionStatusResponse(**status)


@router.post("/calls/{session_id}/speak", response_model=SpeakResponse)
async def speak(
    session_id: str,
    payload: SpeakRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SpeakResponse:
    try:
        queued = await registry.queue_speak(session_id, payload.text)
    except BridgeError as exc:
        raise _http_error(exc) from exc
    return SpeakResponse(queued=queued, text=payload.text[:50])


@router.post("/webhooks/telnyx")
async def telnyx_webhook(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    try:
        body = await request.json()
    except ValueError:
        LOGGER.warning("Discarding webhook with invalid JSON body")
        return {"status": "ignored"}

    try:
        event = parse_call_event(body)
    except MalformedEventError as exc:
        LOGGER.warning("Discarding malformed webhook: %s", exc.detail)
        return {"status": "ignored"}

    routed = await registry.dispatch_event(event)
    return {"status": "ok" if routed else "ignored"}


@router.websocket("/media")
async def media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    await websocket.accept()
    LOGGER.info("Media websocket connected")

    async def sink(ulaw: bytes) -> None:
        await websocket.send_text(build_media_message(ulaw))

    session: CallSession | None = None
    try:
        while True:
            message = await websocket.receive_text()
            try:
                parsed = parse_media_message(message)
            except MalformedEventError as exc:
                LOGGER.warning("Discarding media message: %s", exc.detail)
                continue

            match parsed:
                case AudioFrame():
                    if session is not None:
                        await session.bridge.forward_inbound(parsed)
                case MediaStart(call_control_id=call_control_id):
                    session = await registry.attach_media(call_control_id, sink)
                case MediaStop():
                    LOGGER.info("Media stream stopped")
                    if session is not None:
                        session.bridge.detach_media()
                    session = None
                case _:
                    pass
    except WebSocketDisconnect:
        LOGGER.info("Media websocket closed")
    finally:
        if session is not None:
            session.bridge.detach_media()
