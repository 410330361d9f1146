from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


def stereo_to_mono_left(raw: bytes) -> bytes:
    """Downmix interleaved PCM16LE stereo by keeping the left sample of each pair.

    The right channel is dropped, not averaged in. A trailing partial frame
    (fewer than 4 bytes) is ignored.
    """

    n = (len(raw) // 4) * 4
    if n <= 0:
        return b""
    samples = np.frombuffer(raw[:n], dtype="<i2")
    return samples[0::2].tobytes()


@dataclass(slots=True)
class PcmReframer:
    """Cuts an unbounded PCM16LE byte stream into fixed-duration mono frames.

    Bytes arrive in arbitrary chunk sizes. Whenever one frame's worth of input
    is buffered it is sliced off the front, downmixed to mono and returned.
    After framing, the residual is capped to `max_residual_bytes` (newest
    bytes kept) so a stalled consumer cannot grow the buffer without bound.
    """

    sample_rate: int = 24000
    channels: int = 2
    bytes_per_sample: int = 2
    frame_duration_s: float = 0.1
    max_residual_bytes: int | None = None

    _buf: bytearray = field(default_factory=bytearray, init=False, repr=False)
    _dropped_bytes: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.channels not in (1, 2):
            raise ValueError(f"Unsupported channels={self.channels}; expected 1 or 2")
        if self.input_frame_bytes <= 0:
            raise ValueError("frame size must be positive")
        if self.max_residual_bytes is None:
            # One second of audio.
            self.max_residual_bytes = self.sample_rate * self.bytes_per_sample

    @property
    def input_frame_bytes(self) -> int:
        return int(self.sample_rate * self.bytes_per_sample * self.channels * self.frame_duration_s)

    @property
    def output_frame_bytes(self) -> int:
        return int(self.sample_rate * self.bytes_per_sample * self.frame_duration_s)

    @property
    def buffered_bytes(self) -> int:
        return len(self._buf)

    @property
    def dropped_bytes(self) -> int:
        return self._dropped_bytes

    def feed(self, data: bytes) -> list[bytes]:
        if data:
            self._buf.extend(data)

        frames: list[bytes] = []
        size = self.input_frame_bytes
        while len(self._buf) >= size:
            chunk = bytes(self._buf[:size])
            del self._buf[:size]
            frames.append(stereo_to_mono_left(chunk) if self.channels == 2 else chunk)

        cap = self.max_residual_bytes
        if cap is not None and len(self._buf) > cap:
            overflow = len(self._buf) - cap
            del self._buf[:overflow]
            self._dropped_bytes += overflow

        return frames

    def reset(self) -> None:
        self._buf.clear()
