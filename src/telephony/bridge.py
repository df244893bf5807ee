"""Duplex relay between the call's media stream and the speech endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from integrations.speech_endpoint import BaseSpeechEndpoint
from telephony.capture import DiagnosticCapture
from telephony.delivery import SpeechDelivery
from telephony.errors import DeliveryUnavailableError, SpeechEndpointError
from telephony.models import AudioFrame, Direction, TranscriptEntry
from telephony.pacing import InboundDecoder, MediaSink
from telephony.turn import TurnLock

LOGGER = logging.getLogger(__name__)


class AudioBridge:
    """Gates and transcodes audio for one session.

    Inbound frames reach the speech endpoint only once the call is inside
    the meeting and only while the turn lock is clear, in that order.
    Outbound speech goes through the session's single delivery backend,
    one turn at a time.
    """

    def __init__(
        self,
        session_id: str,
        turn: TurnLock,
        speech: BaseSpeechEndpoint,
        delivery: SpeechDelivery,
        *,
        is_joined: Callable[[], bool],
        capture: DiagnosticCapture | None = None,
        speak_queue_size: int = 8,
        on_transcript: Callable[[TranscriptEntry], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self.turn = turn
        self.speech = speech
        self.delivery = delivery
        self.capture = capture
        self._is_joined = is_joined
        self._on_transcript = on_transcript
        self._decoder = InboundDecoder()
        self._speak_queue: asyncio.Queue[str] = asyncio.Queue(maxsize=speak_queue_size)
        self._speaker: asyncio.Task | None = None
        self.active = False
        self.closed = False
        self.frames_forwarded = 0
        self.on_speech_lost: Callable[[], Awaitable[None]] | None = None

        speech.on_audio = self.deliver_outbound
        speech.on_text = self._on_reply_text
        speech.on_transcript = self._record_transcript
        speech.on_disconnect = self._on_speech_disconnected

    @property
    def label(self) -> str:
        return self.session_id[:8]

    async def activate(self) -> None:
        """Open the speech session and start the speak worker."""

        if self.active or self.closed:
            return
        try:
            await self.speech.connect()
        except SpeechEndpointError:
            if self.closed:
                return
            raise
        if self.closed:
            # Torn down while the speech session was opening.
            LOGGER.info("[%s] Bridge closed during speech connect; discarding session", self.label)
            await self.speech.close()
            return
        self._decoder.reset()
        self._speaker = asyncio.create_task(self._speak_loop())
        self.active = True
        LOGGER.info("[%s] Audio bridge active (gate open)", self.label)

    # -- media channel --------------------------------------------------

    def attach_media(self, sink: MediaSink) -> None:
        self._decoder.reset()
        self.delivery.attach_sink(sink)

    def detach_media(self) -> None:
        self.delivery.detach_sink()

    # -- inbound ----------------------------------------------------------

    async def forward_inbound(self, frame: AudioFrame) -> bool:
        if frame.direction is not Direction.INBOUND:
            return False
        if not self._is_joined():
            return False
        if self.turn.active:
            return False
        if not self.active:
            return False

        pcm16k = self._decoder.decode(frame.payload)
        if self.capture is not None:
            self.capture.append(pcm16k)
        await self.speech.send_audio(pcm16k)
        self.frames_forwarded += 1
        return True

    # -- outbound ---------------------------------------------------------

    async def deliver_outbound(self, pcm16: bytes) -> bool:
        if self.closed or not self._is_joined():
            return False
        return await self.delivery.deliver_audio(pcm16)

    async def queue_speak(self, text: str) -> bool:
        """Queue ``text`` for delivery once the current turn (if any) ends."""

        text = text.strip()
        if not text or self.closed:
            return False
        if not self.delivery.accepts_text:
            raise DeliveryUnavailableError()
        try:
            self._speak_queue.put_nowait(text)
        except asyncio.QueueFull:
            LOGGER.warning("[%s] Speak queue full; dropping %r", self.label, text[:40])
            return False
        return True

    async def _on_reply_text(self, text: str) -> None:
        if not self.delivery.accepts_text:
            return
        await self.queue_speak(text)

    async def _speak_loop(self) -> None:
        while True:
            text = await self._speak_queue.get()
            await self.turn.wait_clear()
            if not self._is_joined():
                LOGGER.debug("[%s] Not in meeting; dropping queued speech", self.label)
                continue
            await self.delivery.deliver_text(text)

    def on_playback_ended(self) -> None:
        self.turn.end_turn()

    def _record_transcript(self, text: str, role: str) -> None:
        if self._on_transcript is not None:
            self._on_transcript(TranscriptEntry(role=role, text=text, source="speech"))

    async def _on_speech_disconnected(self) -> None:
        if self.closed or not self.active:
            return
        self.active = False
        LOGGER.error("[%s] Speech session dropped mid-call", self.label)
        if self.on_speech_lost is not None:
            await self.on_speech_lost()

    # -- teardown -----------------------------------------------------------

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.active = False
        if self._speaker is not None:
            self._speaker.cancel()
            try:
                await self._speaker
            except asyncio.CancelledError:
                pass
            self._speaker = None
        await self.delivery.close()
        self.turn.end_turn()
        await self.speech.close()
        if self.capture is not None:
            await self.capture.save(self.label)
        LOGGER.info("[%s] Audio bridge closed (%s frames forwarded)", self.label, self.frames_forwarded)
