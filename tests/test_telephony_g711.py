from __future__ import annotations

import numpy as np

from telephony.g711 import ulaw_decode, ulaw_encode


def test_ulaw_encode_decode_shape_and_types() -> None:
    # 20ms of 8kHz samples
    pcm = (np.sin(np.linspace(0, 2 * np.pi, 160, endpoint=False)) * 12000).astype(np.int16)

    ulaw = ulaw_encode(pcm)
    assert isinstance(ulaw, bytes | bytearray)
    assert len(ulaw) == pcm.size

    decoded = ulaw_decode(ulaw)
    assert decoded.dtype == np.int16
    assert decoded.shape == pcm.shape


def test_ulaw_decode_reference_values() -> None:
    decoded = ulaw_decode(bytes([0xFF, 0x80, 0x00, 0x7F]))
    assert decoded.tolist() == [0, 32124, -32124, 0]


def test_ulaw_encode_reference_values() -> None:
    pcm = np.array([0, 32767, -32768], dtype=np.int16)
    assert ulaw_encode(pcm) == bytes([0xFF, 0x80, 0x00])


def test_ulaw_reencode_is_stable_for_every_code() -> None:
    # 0x7F decodes to the same zero as 0xFF ("negative zero").
    codes = bytes(c for c in range(256) if c != 0x7F)
    assert ulaw_encode(ulaw_decode(codes)) == codes


def test_ulaw_encode_empty() -> None:
    assert ulaw_encode(np.zeros(0, dtype=np.int16)) == b""
