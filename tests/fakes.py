"""In-memory stand-ins for the telephony API, the speech endpoint and time."""

from __future__ import annotations

import asyncio
import itertools

from integrations.speech_endpoint import BaseSpeechEndpoint
from integrations.telnyx_client import CallHandle
from telephony.errors import ActionError, DialError, SpeechEndpointError


async def settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Injectable ``sleep`` that only returns when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.requested: list[float] = []
        self._waiters: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def sleep(self, delay: float) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self.requested.append(delay)
        self._waiters.append((self.now + delay, next(self._seq), future))
        return future

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while True:
            due = [w for w in self._waiters if w[0] <= target + 1e-9 and not w[2].done()]
            if not due:
                break
            waiter = min(due, key=lambda w: (w[0], w[1]))
            self._waiters.remove(waiter)
            self.now = waiter[0]
            waiter[2].set_result(None)
            await settle()
        self._waiters = [w for w in self._waiters if not w[2].done()]
        self.now = target


class FakeTelephony:
    """Records every call-control action instead of talking to Telnyx."""

    def __init__(self, *, dial_failures: int = 0, alive: bool = True, stream_url: str | None = None) -> None:
        self.dial_failures = dial_failures
        self.alive = alive
        self.stream_url = stream_url
        self.webhook_url = None
        self.fail_speak = False
        self.dial_attempts = 0
        self.dtmf: list[str] = []
        self.spoken: list[str] = []
        self.hangups: list[str] = []
        self.actions: list[tuple[str, str]] = []
        self.closed = False

    async def create_call(self, to: str, from_: str | None = None, *, timeout_secs: int = 60) -> CallHandle:
        self.dial_attempts += 1
        if self.dial_attempts <= self.dial_failures:
            raise DialError("dial rejected")
        return CallHandle(call_control_id=f"call-{self.dial_attempts}", call_leg_id=f"leg-{self.dial_attempts}")

    async def send_dtmf(self, call_control_id: str, digits: str, *, duration_ms: int = 300) -> None:
        self.actions.append(("send_dtmf", call_control_id))
        self.dtmf.append(digits)

    async def speak(self, call_control_id: str, text: str, *, voice: str = "male", language: str = "en-US") -> None:
        if self.fail_speak:
            raise ActionError("speak rejected")
        self.actions.append(("speak", call_control_id))
        self.spoken.append(text)

    async def start_transcription(self, call_control_id: str, *, language: str = "en") -> None:
        self.actions.append(("transcription_start", call_control_id))

    async def start_streaming(self, call_control_id: str) -> None:
        self.actions.append(("streaming_start", call_control_id))

    async def hangup(self, call_control_id: str) -> None:
        self.actions.append(("hangup", call_control_id))
        self.hangups.append(call_control_id)

    async def is_alive(self, call_control_id: str) -> bool:
        return self.alive

    async def aclose(self) -> None:
        self.closed = True


class FakeSpeechEndpoint(BaseSpeechEndpoint):
    def __init__(self, *, fail_connect: bool = False) -> None:
        super().__init__()
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self.sent: list[bytes] = []

    @property
    def ready(self) -> bool:
        return self.connected and not self.closed

    async def connect(self) -> None:
        if self.fail_connect:
            raise SpeechEndpointError("no speech today")
        self.connected = True

    async def send_audio(self, pcm16: bytes) -> None:
        self.sent.append(pcm16)

    async def close(self) -> None:
        self.closed = True


class SlowSpeechEndpoint(FakeSpeechEndpoint):
    """``connect`` blocks until the test sets ``release``."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def connect(self) -> None:
        await self.release.wait()
        self.connected = True
