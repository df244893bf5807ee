from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from telephony.bridge import AudioBridge
from telephony.errors import BridgeError
from telephony.events import (
    CallEvent,
    SpeakEnded,
    SpeakStarted,
    TranscriptionReceived,
)
from telephony.models import CallTarget, NavigationState, TranscriptEntry
from telephony.navigator import CallNavigator
from telephony.timers import SessionTimers
from telephony.turn import TurnLock

if TYPE_CHECKING:  # pragma: no cover
    from integrations.telnyx_client import TelnyxClient

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PostJoinActions:
    restart_streaming: bool = True
    start_transcription: bool = False
    transcription_language: str = "en"


@dataclass
class CallSession:
    """Everything owned by one outbound call attempt."""

    session_id: str
    target: CallTarget
    client: TelnyxClient
    timers: SessionTimers
    turn: TurnLock
    navigator: CallNavigator
    bridge: AudioBridge
    post_join: PostJoinActions = field(default_factory=PostJoinActions)
    transcripts: deque[TranscriptEntry] = field(default_factory=lambda: deque(maxlen=200))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    on_closed: Callable[[CallSession], Awaitable[None]] | None = None
    closed: bool = False

    def __post_init__(self) -> None:
        self.navigator.on_joined = self._on_joined
        self.navigator.on_terminal = self._on_terminal
        self.bridge.on_speech_lost = self._on_speech_lost

    @property
    def label(self) -> str:
        return self.session_id[:8]

    @property
    def state(self) -> NavigationState:
        return self.navigator.state

    @property
    def call_control_id(self) -> str | None:
        return self.navigator.call_control_id

    def record_transcript(self, entry: TranscriptEntry) -> None:
        self.transcripts.append(entry)

    async def start(self) -> None:
        await self.navigator.start_call()

    async def handle_event(self, event: CallEvent) -> None:
        match event:
            case SpeakEnded():
                LOGGER.debug("[%s] Speaking ended", self.label)
                self.bridge.on_playback_ended()
            case SpeakStarted():
                LOGGER.debug("[%s] Speaking started", self.label)
            case TranscriptionReceived(text=text, is_final=True, confidence=confidence) if text:
                self.record_transcript(
                    TranscriptEntry(role="user", text=text, source="telephony", confidence=confidence)
                )
            case TranscriptionReceived():
                pass
            case _:
                await self.navigator.on_call_progress(event)

    async def queue_speak(self, text: str) -> bool:
        return await self.bridge.queue_speak(text)

    async def hangup(self) -> None:
        await self.navigator.hangup()

    async def _on_joined(self) -> None:
        call_id = self.navigator.call_control_id
        if call_id and self.post_join.restart_streaming and self.client.stream_url:
            # Media streaming often stops during the menu phase.
            try:
                await self.client.start_streaming(call_id)
            except BridgeError as exc:
                LOGGER.warning("[%s] Streaming restart failed: %s", self.label, exc.detail)
        if call_id and self.post_join.start_transcription:
            try:
                await self.client.start_transcription(call_id, language=self.post_join.transcription_language)
            except BridgeError as exc:
                LOGGER.warning("[%s] Transcription start failed: %s", self.label, exc.detail)

        try:
            await self.bridge.activate()
        except BridgeError as exc:
            LOGGER.error("[%s] Speech endpoint unavailable: %s", self.label, exc.detail)
            await self.navigator.hangup()

    async def _on_speech_lost(self) -> None:
        LOGGER.error("[%s] Speech endpoint lost; hanging up", self.label)
        await self.navigator.hangup()

    async def _on_terminal(self, state: NavigationState) -> None:
        if state is NavigationState.FAILED:
            LOGGER.error(
                "[%s] FAILED: %s after %s retries",
                self.label,
                self.navigator.last_failure.value if self.navigator.last_failure else "unknown",
                self.navigator.retry_count,
            )
        await self.close()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.timers.close()
        await self.bridge.close()
        if self.on_closed is not None:
            await self.on_closed(self)

    def status(self) -> dict:
        nav = self.navigator
        return {
            "session_id": self.session_id,
            "state": nav.state.value,
            "call_control_id": nav.call_control_id,
            "retry_count": nav.retry_count,
            "last_failure": nav.last_failure.value if nav.last_failure else None,
            "last_failure_detail": nav.last_failure_detail,
            "ended_reason": nav.ended_reason,
            "speaking": self.turn.active,
            "bridge_active": self.bridge.active,
            "created_at": self.created_at,
            "transcripts": [
                {"role": t.role, "text": t.text, "source": t.source, "at": t.at} for t in list(self.transcripts)[-20:]
            ],
        }
