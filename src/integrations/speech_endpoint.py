"""Speech endpoint abstraction and the Gemini Live implementation."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import websockets

from config.settings import get_settings
from telephony.errors import SpeechEndpointError
from telephony.timers import Sleep

LOGGER = logging.getLogger(__name__)

AudioCallback = Callable[[bytes], Awaitable[None]]
TextCallback = Callable[[str], Awaitable[None]]
TranscriptCallback = Callable[[str, str], None]
DisconnectCallback = Callable[[], Awaitable[None]]


class BaseSpeechEndpoint(ABC):
    """Duplex speech session: wideband PCM in, audio and/or reply text out.

    Owners assign the ``on_*`` callbacks before :meth:`connect`.
    """

    def __init__(self) -> None:
        self.on_audio: AudioCallback | None = None
        self.on_text: TextCallback | None = None
        self.on_transcript: TranscriptCallback | None = None
        # Fired when an established session drops without close() being called.
        self.on_disconnect: DisconnectCallback | None = None

    @property
    @abstractmethod
    def ready(self) -> bool:
        """True once the session accepts audio."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the session."""

    @abstractmethod
    async def send_audio(self, pcm16: bytes) -> None:
        """Send PCM16 LE 16 kHz mono audio."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session."""


def _system_instruction(agent_name: str, agent_role: str) -> str:
    return (
        f"You are {agent_name}, {agent_role}, participating in a video meeting via phone.\n\n"
        "RULES:\n"
        "- You are ALREADY in the meeting. Do not describe joining or narrate actions.\n"
        "- Listen and respond naturally to what people say.\n"
        "- Keep responses concise (1-3 sentences).\n"
        "- Introduce yourself briefly only when someone asks who you are."
    )


class GeminiLiveEndpoint(BaseSpeechEndpoint):
    """Gemini Live BidiGenerateContent session over a websocket."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        ws_url: str,
        voice: str = "Kore",
        instruction: str = "",
        setup_timeout_s: float = 15.0,
        connect_attempts: int = 3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._model = model
        self._ws_url = ws_url
        self._voice = voice
        self._instruction = instruction
        self._setup_timeout_s = setup_timeout_s
        self._connect_attempts = connect_attempts
        self._sleep = sleep

        self._ws = None
        self._receiver: asyncio.Task | None = None
        self._setup_done = asyncio.Event()
        self._text_buffer = ""
        self._closing = False

    @property
    def ready(self) -> bool:
        return self._ws is not None and self._setup_done.is_set()

    def _url(self) -> str:
        return f"{self._ws_url}?{urlencode({'key': self._api_key})}"

    def build_setup(self) -> dict[str, Any]:
        return {
            "setup": {
                "model": f"models/{self._model}",
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self._voice}}},
                },
                "realtimeInputConfig": {"automaticActivityDetection": {"disabled": False}},
                "inputAudioTranscription": {},
                "outputAudioTranscription": {},
                "systemInstruction": {"parts": [{"text": self._instruction}]},
            }
        }

    async def connect(self) -> None:
        self._closing = False
        for attempt in range(1, self._connect_attempts + 1):
            if self._closing:
                break
            try:
                await self._open()
                LOGGER.info("Gemini Live session ready (model=%s)", self._model)
                return
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
                LOGGER.warning("Gemini connect attempt %s/%s failed: %s", attempt, self._connect_attempts, exc)
                await self._reset()
                if attempt < self._connect_attempts and not self._closing:
                    await self._sleep(3.0)
        raise SpeechEndpointError(f"Gemini Live unavailable after {self._connect_attempts} attempts")

    async def _open(self) -> None:
        self._setup_done.clear()
        self._ws = await websockets.connect(self._url(), ping_interval=20, ping_timeout=20)
        self._receiver = asyncio.create_task(self._receive_loop(self._ws))
        await self._ws.send(json.dumps(self.build_setup()))
        await asyncio.wait_for(self._setup_done.wait(), timeout=self._setup_timeout_s)

    async def _reset(self) -> None:
        if self._receiver is not None:
            self._receiver.cancel()
            self._receiver = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    LOGGER.warning("Discarding unparseable Gemini message")
                    continue
                try:
                    await self.handle_message(message)
                except Exception:
                    LOGGER.exception("Gemini message handling failed")
        except websockets.ConnectionClosed as exc:
            LOGGER.info("Gemini websocket closed: %s", exc)
        finally:
            was_ready = self._setup_done.is_set()
            self._setup_done.clear()

        if was_ready and not self._closing:
            LOGGER.warning("Gemini session dropped unexpectedly")
            # This task is ending on its own; close() must not cancel it.
            self._receiver = None
            if self.on_disconnect is not None:
                await self.on_disconnect()

    async def handle_message(self, message: dict[str, Any]) -> None:
        if "setupComplete" in message:
            self._setup_done.set()
            return

        content = message.get("serverContent") or {}

        for part in (content.get("modelTurn") or {}).get("parts") or []:
            inline = part.get("inlineData") or {}
            if "audio" in str(inline.get("mimeType") or "") and inline.get("data"):
                if self.on_audio is not None:
                    await self.on_audio(base64.b64decode(inline["data"]))
            if part.get("text") and not part.get("thought"):
                self._text_buffer += part["text"]

        input_text = (content.get("inputTranscription") or {}).get("text")
        if input_text:
            LOGGER.debug("Heard: %s", input_text)
            if self.on_transcript is not None:
                self.on_transcript(input_text, "user")

        output_text = (content.get("outputTranscription") or {}).get("text")
        if output_text:
            self._text_buffer += output_text
            if self.on_transcript is not None:
                self.on_transcript(output_text, "assistant")

        if content.get("turnComplete") or content.get("interrupted"):
            reply = self._text_buffer.strip()
            self._text_buffer = ""
            if reply and self.on_text is not None:
                await self.on_text(reply)

    async def send_audio(self, pcm16: bytes) -> None:
        if not self.ready:
            return
        message = {
            "realtimeInput": {
                "mediaChunks": [
                    {"mimeType": "audio/pcm;rate=16000", "data": base64.b64encode(pcm16).decode("ascii")}
                ]
            }
        }
        try:
            await self._ws.send(json.dumps(message))
        except websockets.ConnectionClosed:
            LOGGER.warning("Gemini websocket closed while sending audio")

    async def close(self) -> None:
        self._closing = True
        await self._reset()


def build_speech_endpoint() -> BaseSpeechEndpoint:
    """Factory returning the configured speech endpoint."""

    settings = get_settings()
    if not settings.gemini_api_key:
        raise ValueError("GEMINI_API_KEY is not configured")
    return GeminiLiveEndpoint(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        ws_url=settings.gemini_ws_url,
        voice=settings.gemini_voice,
        instruction=_system_instruction(settings.agent_name, settings.agent_role),
        setup_timeout_s=settings.speech_setup_timeout_s,
        connect_attempts=settings.speech_connect_attempts,
    )
