from __future__ import annotations

import numpy as np
import pytest

from cheddar_live.io.reframe import PcmReframer, stereo_to_mono_left


def _stereo(n_frames: int, *, start: int = 0) -> bytes:
    left = np.arange(start, start + n_frames, dtype=np.int16)
    right = -left - 1
    inter = np.empty(n_frames * 2, dtype="<i2")
    inter[0::2] = left
    inter[1::2] = right
    return inter.tobytes()


def test_stereo_to_mono_keeps_left_channel_only() -> None:
    raw = _stereo(4) + b"\x01\x02\x03"  # partial trailing frame

    out = np.frombuffer(stereo_to_mono_left(raw), dtype="<i2")
    assert out.tolist() == [0, 1, 2, 3]
    assert stereo_to_mono_left(b"\x00\x00") == b""


def test_frame_sizes_for_default_capture_format() -> None:
    r = PcmReframer()
    assert r.input_frame_bytes == 9600
    assert r.output_frame_bytes == 4800


def test_arbitrary_chunks_produce_frames_in_order() -> None:
    r = PcmReframer()
    stream = _stereo(2400 * 3)  # three frames' worth

    frames: list[bytes] = []
    for chunk_size in (1, 4095, 5000, 7, 9600, 10000):
        if not stream:
            break
        chunk, stream = stream[:chunk_size], stream[chunk_size:]
        frames.extend(r.feed(chunk))
    frames.extend(r.feed(stream))

    assert len(frames) == 3
    assert all(len(f) == 4800 for f in frames)
    joined = np.frombuffer(b"".join(frames), dtype="<i2")
    assert joined.tolist() == list(range(2400 * 3))
    assert r.buffered_bytes == 0


def test_residual_is_capped_after_framing() -> None:
    r = PcmReframer(max_residual_bytes=100)

    frames = r.feed(b"\x00" * (9600 + 150))
    assert len(frames) == 1
    assert r.buffered_bytes == 100
    assert r.dropped_bytes == 50


def test_default_residual_cap_is_one_second() -> None:
    r = PcmReframer()
    assert r.max_residual_bytes == 24000 * 2


def test_mono_input_is_passed_through() -> None:
    r = PcmReframer(channels=1)
    data = bytes(range(256)) * 19  # 4864 bytes

    frames = r.feed(data)
    assert frames == [data[:4800]]
    assert r.buffered_bytes == 64


def test_reset_clears_buffer() -> None:
    r = PcmReframer()
    r.feed(b"\x01" * 1000)
    r.reset()
    assert r.buffered_bytes == 0
    assert r.feed(b"") == []


def test_unsupported_channel_count() -> None:
    with pytest.raises(ValueError):
        PcmReframer(channels=6)


def test_default_frames_leave_residual_below_one_chunk() -> None:
    r = PcmReframer()

    frames: list[bytes] = []
    for _ in range(40):
        frames.extend(r.feed(b"\x00" * 7001))

    assert len(frames) == (40 * 7001) // 9600
    assert r.buffered_bytes == (40 * 7001) % 9600
    assert r.buffered_bytes < r.input_frame_bytes
    assert r.dropped_bytes == 0
