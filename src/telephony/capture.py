from __future__ import annotations

import asyncio
import logging
import wave
from io import BytesIO
from pathlib import Path

import numpy as np

LOGGER = logging.getLogger(__name__)


def pcm16_to_wav_bytes(pcm: bytes, sample_rate: int) -> bytes:
    buffer = BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


class DiagnosticCapture:
    """Keeps the first few seconds of forwarded audio plus level stats.

    Appending is a bounded in-memory copy; the WAV file is only written at
    session teardown, off the event loop.
    """

    def __init__(self, *, sample_rate: int = 16000, max_seconds: float = 10.0, directory: Path | None = None) -> None:
        self.sample_rate = sample_rate
        self.max_bytes = int(sample_rate * max_seconds) * 2
        self.directory = directory
        self._chunks: list[bytes] = []
        self._size = 0
        self.frames = 0
        self.peak = 0

    @property
    def full(self) -> bool:
        return self._size >= self.max_bytes

    def append(self, pcm16: bytes) -> None:
        if not pcm16:
            return
        self.frames += 1
        samples = np.frombuffer(pcm16[: len(pcm16) - len(pcm16) % 2], dtype="<i2")
        if samples.size:
            self.peak = max(self.peak, int(np.max(np.abs(samples.astype(np.int32)))))

        if self.full:
            return
        room = self.max_bytes - self._size
        chunk = pcm16[:room]
        self._chunks.append(chunk)
        self._size += len(chunk)

    def to_wav_bytes(self) -> bytes:
        return pcm16_to_wav_bytes(b"".join(self._chunks), self.sample_rate)

    async def save(self, name: str) -> Path | None:
        LOGGER.info(
            "Audio diagnostics %s: %s frames, peak=%s%s",
            name,
            self.frames,
            self.peak,
            " (LOW)" if self.frames and self.peak < 500 else "",
        )
        if self.directory is None or not self._chunks:
            return None

        path = self.directory / f"{name}-inbound.wav"
        data = self.to_wav_bytes()
        await asyncio.to_thread(path.write_bytes, data)
        LOGGER.info("Saved %.1fs of forwarded audio to %s", self._size / (2 * self.sample_rate), path)
        return path
