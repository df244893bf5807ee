from __future__ import annotations

import numpy as np
import pytest

from telephony.g711 import ulaw_decode, ulaw_encode
from telephony.pacing import InboundDecoder, OutboundEncoder
from telephony.transcoder import TranscoderState, decode_to_wideband, encode_from_wideband


def _samples(pcm: bytes) -> list[int]:
    return np.frombuffer(pcm, dtype="<i2").tolist()


def test_decode_doubles_sample_count() -> None:
    pcm, carry = decode_to_wideband(b"\xff" * 160, 0)
    assert len(pcm) == 160 * 2 * 2
    assert carry == 0


def test_decode_interpolates_from_carry() -> None:
    frame = bytes([0x80, 0x00])  # 32124, -32124
    pcm, carry = decode_to_wideband(frame, 100)

    assert _samples(pcm) == [(100 + 32124) >> 1, 32124, 0, -32124]
    assert carry == -32124


def test_decode_empty_frame_keeps_carry() -> None:
    assert decode_to_wideband(b"", 1234) == (b"", 1234)


def test_split_frames_match_whole_frame() -> None:
    frame = bytes(range(0, 256, 3))
    whole, _ = decode_to_wideband(frame, 0)

    first, carry = decode_to_wideband(frame[:40], 0)
    second, _ = decode_to_wideband(frame[40:], carry)

    assert first + second == whole


def test_inbound_decoder_threads_and_resets_carry() -> None:
    decoder = InboundDecoder()
    decoder.decode(bytes([0x80]))
    assert decoder.state.carry == 32124

    decoder.reset()
    assert decoder.state == TranscoderState()


def test_encode_keeps_every_third_sample() -> None:
    pcm = np.array([1000, 5, 5, -2000, 5, 5, 30000, 5], dtype="<i2")
    out = encode_from_wideband(pcm.tobytes(), 3)

    assert out == ulaw_encode(np.array([1000, -2000], dtype=np.int16))


def test_encode_ratio_two_restores_narrowband_length() -> None:
    frame = bytes(range(160))
    wide, _ = decode_to_wideband(frame, 0)
    assert len(encode_from_wideband(wide, 2)) == len(frame)


def test_encode_rejects_bad_ratio() -> None:
    with pytest.raises(ValueError):
        encode_from_wideband(b"\x00\x00", 0)


def test_outbound_encoder_carries_partial_groups() -> None:
    encoder = OutboundEncoder(ratio=3)
    pcm = np.array([8000, 1, 2, -8000, 4, 5], dtype="<i2").tobytes()

    # 4 bytes = 2 samples: not a full group yet.
    assert encoder.encode(pcm[:4]) == b""
    out = encoder.encode(pcm[4:])

    assert ulaw_decode(out).tolist() == ulaw_decode(ulaw_encode(np.array([8000, -8000], dtype=np.int16))).tolist()

    encoder.encode(pcm[:4])
    encoder.reset()
    assert encoder.encode(b"") == b""
