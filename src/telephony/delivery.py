"""How synthesized speech reaches the call.

Two backends, one per session, chosen at construction:

* :class:`TelephonySpeakDelivery` issues one text-to-speech action per
  reply and holds the turn until the telephony side reports playback end.
* :class:`StreamedAudioDelivery` encodes the speech endpoint's PCM and
  paces it onto the media stream, holding the turn while frames remain.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from telephony.errors import BridgeError
from telephony.pacing import MediaSink, OutboundEncoder, OutboundPacer
from telephony.turn import TurnLock, estimate_speech_ms

if TYPE_CHECKING:  # pragma: no cover
    from integrations.telnyx_client import TelnyxClient

LOGGER = logging.getLogger(__name__)

# Tail added to streamed audio before the safety timer releases the turn.
STREAM_TAIL_MS = 1500


class SpeechDelivery(ABC):
    """Capability interface for delivering speech into the call."""

    accepts_text: bool = False
    accepts_audio: bool = False

    def __init__(self, turn: TurnLock, *, label: str = "") -> None:
        self.turn = turn
        self.label = label

    async def deliver_text(self, text: str) -> bool:
        """Speak ``text``; False if it was not delivered."""

        LOGGER.debug("[%s] %s ignores text", self.label, type(self).__name__)
        return False

    async def deliver_audio(self, pcm16: bytes) -> bool:
        """Play PCM16 LE wideband audio; False if it was not delivered."""

        return False

    def attach_sink(self, sink: MediaSink) -> None:
        """Bind the outbound media channel, if this backend writes one."""

    def detach_sink(self) -> None:
        """Unbind the outbound media channel."""

    @abstractmethod
    async def close(self) -> None:
        """Release playback resources."""


class TelephonySpeakDelivery(SpeechDelivery):
    accepts_text = True

    def __init__(
        self,
        turn: TurnLock,
        client: TelnyxClient,
        call_control_id: Callable[[], str | None],
        *,
        voice: str = "male",
        language: str = "en-US",
        per_word_ms: int = 400,
        overhead_ms: int = 5000,
        label: str = "",
    ) -> None:
        super().__init__(turn, label=label)
        self._client = client
        self._call_control_id = call_control_id
        self._voice = voice
        self._language = language
        self._per_word_ms = per_word_ms
        self._overhead_ms = overhead_ms

    async def deliver_text(self, text: str) -> bool:
        call_id = self._call_control_id()
        if not call_id or not text.strip():
            return False
        if not self.turn.begin_turn(estimate_speech_ms(text, per_word_ms=self._per_word_ms, overhead_ms=self._overhead_ms)):
            LOGGER.debug("[%s] Turn busy; speak skipped", self.label)
            return False

        try:
            await self._client.speak(call_id, text, voice=self._voice, language=self._language)
        except BridgeError as exc:
            LOGGER.error("[%s] Speak failed: %s", self.label, exc.detail)
            self.turn.end_turn()
            return False
        LOGGER.info("[%s] Speaking: %r", self.label, text[:60])
        return True

    async def close(self) -> None:
        self.turn.end_turn()


class StreamedAudioDelivery(SpeechDelivery):
    accepts_audio = True

    def __init__(
        self,
        turn: TurnLock,
        pacer: OutboundPacer,
        encoder: OutboundEncoder | None = None,
        *,
        label: str = "",
    ) -> None:
        super().__init__(turn, label=label)
        self._pacer = pacer
        self._encoder = encoder or OutboundEncoder()
        self._pacer.on_drained = self._on_drained

    def attach_sink(self, sink: MediaSink) -> None:
        self._pacer.attach(sink)

    def detach_sink(self) -> None:
        self._pacer.detach()

    async def deliver_audio(self, pcm16: bytes) -> bool:
        if not self._pacer.attached:
            LOGGER.debug("[%s] No media stream bound; dropping synthesized audio", self.label)
            return False

        ulaw = self._encoder.encode(pcm16)
        if not ulaw:
            return True
        self._pacer.enqueue(ulaw)

        expected_ms = self._pacer.queued_ms + STREAM_TAIL_MS
        if not self.turn.begin_turn(expected_ms):
            self.turn.extend(expected_ms)
        return True

    def _on_drained(self) -> None:
        self._encoder.reset()
        self.turn.end_turn()

    async def close(self) -> None:
        await self._pacer.close()
        self.turn.end_turn()
