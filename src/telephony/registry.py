"""Process-wide map from session id to live call sessions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from integrations.speech_endpoint import BaseSpeechEndpoint
from telephony.bridge import AudioBridge
from telephony.capture import DiagnosticCapture
from telephony.delivery import SpeechDelivery, StreamedAudioDelivery, TelephonySpeakDelivery
from telephony.errors import SessionNotFoundError
from telephony.events import CallEvent
from telephony.models import CallTarget, NavigationPolicy
from telephony.navigator import CallNavigator
from telephony.pacing import MediaSink, OutboundPacer
from telephony.session import CallSession, PostJoinActions
from telephony.timers import SessionTimers, Sleep
from telephony.transcoder import INBOUND_WIDEBAND_RATE
from telephony.turn import TurnLock

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings
    from integrations.telnyx_client import TelnyxClient

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionConfig:
    policy: NavigationPolicy = field(default_factory=NavigationPolicy)
    delivery: Literal["speak", "audio"] = "speak"
    default_dial_in_number: str = "+16699009128"
    from_number: str = ""
    speak_voice: str = "male"
    speak_language: str = "en-US"
    speak_per_word_ms: int = 400
    speak_overhead_ms: int = 5000
    speak_queue_size: int = 8
    post_join: PostJoinActions = field(default_factory=PostJoinActions)
    transcript_history: int = 200
    capture_dir: Path | None = None
    capture_seconds: float = 10.0
    finished_history: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionConfig:
        return cls(
            policy=NavigationPolicy.from_settings(settings),
            delivery=settings.speech_delivery,
            default_dial_in_number=settings.default_dial_in_number,
            from_number=settings.telnyx_from_number or "",
            speak_voice=settings.speak_voice,
            speak_language=settings.speak_language,
            speak_per_word_ms=settings.speak_per_word_ms,
            speak_overhead_ms=settings.speak_overhead_ms,
            speak_queue_size=settings.speak_queue_size,
            post_join=PostJoinActions(
                restart_streaming=True,
                start_transcription=settings.enable_call_transcription,
                transcription_language=settings.transcription_language,
            ),
            transcript_history=settings.transcript_history,
            capture_dir=settings.capture_dir,
            capture_seconds=settings.capture_seconds,
        )


class SessionRegistry:
    """Creates sessions and routes webhook/media traffic to them.

    Inserts, removals and lookups are serialized by one lock; session
    work itself runs outside the lock.
    """

    def __init__(
        self,
        client: TelnyxClient,
        speech_factory: Callable[[], BaseSpeechEndpoint],
        config: SessionConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._speech_factory = speech_factory
        self._config = config or SessionConfig()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}
        self._finished: OrderedDict[str, dict] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def client(self) -> TelnyxClient:
        return self._client

    def build_target(
        self,
        meeting_id: str,
        passcode: str | None = None,
        dial_in_number: str | None = None,
        from_number: str | None = None,
    ) -> CallTarget:
        return CallTarget(
            meeting_id=meeting_id,
            passcode=passcode or "",
            dial_in_number=dial_in_number or self._config.default_dial_in_number,
            from_number=from_number or self._config.from_number,
        )

    def build_session(self, target: CallTarget, session_id: str | None = None) -> CallSession:
        cfg = self._config
        session_id = session_id or str(uuid.uuid4())
        label = session_id[:8]

        timers = SessionTimers(sleep=self._sleep, label=label)
        turn = TurnLock(timers, label=label)
        navigator = CallNavigator(session_id, target, self._client, timers, cfg.policy)

        delivery: SpeechDelivery
        if cfg.delivery == "audio":
            delivery = StreamedAudioDelivery(turn, OutboundPacer(sleep=self._sleep, label=label), label=label)
        else:
            delivery = TelephonySpeakDelivery(
                turn,
                self._client,
                lambda: navigator.call_control_id,
                voice=cfg.speak_voice,
                language=cfg.speak_language,
                per_word_ms=cfg.speak_per_word_ms,
                overhead_ms=cfg.speak_overhead_ms,
                label=label,
            )

        capture = DiagnosticCapture(
            sample_rate=INBOUND_WIDEBAND_RATE,
            max_seconds=cfg.capture_seconds,
            directory=cfg.capture_dir,
        )
        transcripts: deque = deque(maxlen=cfg.transcript_history)
        bridge = AudioBridge(
            session_id,
            turn,
            self._speech_factory(),
            delivery,
            is_joined=lambda: navigator.joined,
            capture=capture,
            speak_queue_size=cfg.speak_queue_size,
            on_transcript=transcripts.append,
        )
        session = CallSession(
            session_id=session_id,
            target=target,
            client=self._client,
            timers=timers,
            turn=turn,
            navigator=navigator,
            bridge=bridge,
            post_join=cfg.post_join,
            transcripts=transcripts,
        )
        session.on_closed = self._on_session_closed
        return session

    async def start_call(
        self,
        meeting_id: str,
        passcode: str | None = None,
        dial_in_number: str | None = None,
        from_number: str | None = None,
    ) -> CallSession:
        target = self.build_target(meeting_id, passcode, dial_in_number, from_number)
        session = self.build_session(target)
        async with self._lock:
            self._sessions[session.session_id] = session
        LOGGER.info("[%s] Session created for meeting %s", session.label, target.masked_meeting_id)
        await session.start()
        return session

    async def get(self, session_id: str) -> CallSession:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        return session

    async def status(self, session_id: str) -> dict:
        async with self._lock:
            session = self._sessions.get(session_id)
            finished = self._finished.get(session_id)
        if session is not None:
            return session.status()
        if finished is not None:
            return finished
        raise SessionNotFoundError()

    async def find_by_call(self, call_control_id: str) -> CallSession | None:
        if not call_control_id:
            return None
        async with self._lock:
            for session in self._sessions.values():
                if session.call_control_id == call_control_id:
                    return session
        return None

    async def dispatch_event(self, event: CallEvent) -> bool:
        session = await self.find_by_call(event.call_control_id)
        if session is None:
            LOGGER.debug("Dropping %s for unknown call %s", type(event).__name__, event.call_control_id[:20])
            return False
        await session.handle_event(event)
        return True

    async def attach_media(self, call_control_id: str, sink: MediaSink) -> CallSession | None:
        session = await self.find_by_call(call_control_id)
        if session is None:
            LOGGER.warning("Media stream for unknown call %s", call_control_id[:20])
            return None
        session.bridge.attach_media(sink)
        LOGGER.info("[%s] Media stream bound", session.label)
        return session

    async def end_session(self, session_id: str) -> dict:
        session = await self.get(session_id)
        await session.hangup()
        return session.status()

    async def queue_speak(self, session_id: str, text: str) -> bool:
        session = await self.get(session_id)
        return await session.queue_speak(text)

    async def _on_session_closed(self, session: CallSession) -> None:
        async with self._lock:
            self._sessions.pop(session.session_id, None)
            self._finished[session.session_id] = session.status()
            while len(self._finished) > self._config.finished_history:
                self._finished.popitem(last=False)
        LOGGER.info("[%s] Session removed (%s)", session.label, session.state.value)

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await session.hangup()
