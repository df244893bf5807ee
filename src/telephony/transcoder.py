"""Narrowband mu-law <-> wideband linear PCM conversion.

Both directions are pure with respect to their explicit arguments: the
only state that survives a frame is the inbound carry sample, which the
caller threads through per direction and per session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import numpy as np

from telephony.g711 import ulaw_decode, ulaw_encode

NARROWBAND_RATE: Final[int] = 8000
INBOUND_WIDEBAND_RATE: Final[int] = 16000
OUTBOUND_WIDEBAND_RATE: Final[int] = 24000


@dataclass(slots=True)
class TranscoderState:
    """Trailing decoded sample of the previous inbound frame."""

    carry: int = 0

    def reset(self) -> None:
        self.carry = 0


def decode_to_wideband(frame: bytes, carry: int) -> tuple[bytes, int]:
    """Decode mu-law 8 kHz to PCM16 LE 16 kHz.

    Each decoded sample is preceded by the midpoint between it and its
    predecessor; the predecessor of the first sample is ``carry``.

    Returns:
        (pcm16le_bytes, new_carry) where the output holds exactly twice as
        many samples as ``frame`` has bytes.
    """

    samples = ulaw_decode(frame).astype(np.int32)
    if samples.size == 0:
        return b"", carry

    previous = np.empty_like(samples)
    previous[0] = carry
    previous[1:] = samples[:-1]

    out = np.empty(samples.size * 2, dtype=np.int32)
    out[0::2] = (previous + samples) >> 1
    out[1::2] = samples

    return out.astype("<i2").tobytes(), int(samples[-1])


def encode_from_wideband(buffer: bytes, ratio: int = OUTBOUND_WIDEBAND_RATE // NARROWBAND_RATE) -> bytes:
    """Decimate PCM16 LE by ``ratio`` and compress each kept sample to mu-law.

    Trailing samples that do not fill a whole ``ratio`` group are dropped.
    """

    if ratio < 1:
        raise ValueError(f"Invalid decimation ratio: {ratio}")

    usable = len(buffer) - (len(buffer) % 2)
    pcm = np.frombuffer(buffer[:usable], dtype="<i2")
    kept = (pcm.size // ratio) * ratio
    return ulaw_encode(pcm[:kept:ratio])
