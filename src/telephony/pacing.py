from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

from telephony.timers import Sleep
from telephony.transcoder import (
    NARROWBAND_RATE,
    OUTBOUND_WIDEBAND_RATE,
    TranscoderState,
    decode_to_wideband,
    encode_from_wideband,
)

LOGGER = logging.getLogger(__name__)

FRAME_MS: Final[int] = 20
FRAME_BYTES_8K: Final[int] = 160
ULAW_SILENCE: Final[int] = 0xFF

MediaSink = Callable[[bytes], Awaitable[None]]


class InboundDecoder:
    """Stateful wrapper threading the carry sample between inbound frames."""

    def __init__(self) -> None:
        self.state = TranscoderState()

    def decode(self, ulaw: bytes) -> bytes:
        pcm, self.state.carry = decode_to_wideband(ulaw, self.state.carry)
        return pcm

    def reset(self) -> None:
        self.state.reset()


class OutboundEncoder:
    """Keeps the decimation phase continuous across arbitrary chunk sizes."""

    def __init__(self, ratio: int = OUTBOUND_WIDEBAND_RATE // NARROWBAND_RATE) -> None:
        self._ratio = ratio
        self._remainder = b""

    def encode(self, pcm: bytes) -> bytes:
        data = self._remainder + pcm
        group = 2 * self._ratio
        usable = len(data) - (len(data) % group)
        self._remainder = data[usable:]
        return encode_from_wideband(data[:usable], self._ratio)

    def reset(self) -> None:
        self._remainder = b""


class OutboundPacer:
    """Slices mu-law into 20 ms frames and writes them no faster than real time.

    ``on_drained`` fires each time the queue empties after playing audio.
    Frames written while no sink is attached are dropped.
    """

    def __init__(
        self,
        sink: MediaSink | None = None,
        *,
        frame_bytes: int = FRAME_BYTES_8K,
        frame_ms: int = FRAME_MS,
        sleep: Sleep = asyncio.sleep,
        on_drained: Callable[[], None] | None = None,
        label: str = "",
    ) -> None:
        self._sink = sink
        self._frame_bytes = frame_bytes
        self._frame_ms = frame_ms
        self._sleep = sleep
        self._label = label
        self.on_drained = on_drained
        self._buffer = bytearray()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.frames_sent = 0

    def attach(self, sink: MediaSink) -> None:
        self._sink = sink

    def detach(self) -> None:
        self._sink = None

    @property
    def attached(self) -> bool:
        return self._sink is not None

    @property
    def queued_ms(self) -> int:
        return len(self._buffer) * 1000 // NARROWBAND_RATE

    def enqueue(self, ulaw: bytes) -> None:
        if not ulaw:
            return
        self._buffer.extend(ulaw)
        self._wakeup.set()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    def clear(self) -> None:
        self._buffer.clear()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            played = False
            while self._buffer:
                frame = bytes(self._buffer[: self._frame_bytes])
                del self._buffer[: self._frame_bytes]
                if len(frame) < self._frame_bytes:
                    frame += bytes([ULAW_SILENCE]) * (self._frame_bytes - len(frame))
                await self._write(frame)
                played = True
                await self._sleep(self._frame_ms / 1000)
            if played and self.on_drained is not None:
                self.on_drained()

    async def _write(self, frame: bytes) -> None:
        if self._sink is None:
            return
        try:
            await self._sink(frame)
            self.frames_sent += 1
        except Exception as exc:
            LOGGER.warning("[%s] Media sink write failed (%s); detaching", self._label, exc)
            self._sink = None
            self._buffer.clear()

    async def close(self) -> None:
        self._buffer.clear()
        self._sink = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
