"""Debug dumps of captured audio frames.

Each frame is written three ways: raw `.pcm`, playable `.wav` and a `.json`
sidecar with level statistics. Only enabled when a debug directory is set.
"""

from __future__ import annotations

import json
import logging
import wave
from dataclasses import asdict, dataclass
from pathlib import Path

import numpy as np

from cheddar_live.core.clock import wall_ms


logger = logging.getLogger(__name__)

# |sample| below this counts as silence.
_SILENCE_THRESHOLD = 100


@dataclass(frozen=True, slots=True)
class AudioAnalysis:
    min_value: int
    max_value: int
    avg_value: float
    rms_value: float
    silence_percentage: float
    sample_count: int


def analyze_pcm16(pcm: bytes) -> AudioAnalysis:
    samples = np.frombuffer(pcm[: (len(pcm) // 2) * 2], dtype="<i2")
    if samples.size == 0:
        return AudioAnalysis(0, 0, 0.0, 0.0, 100.0, 0)

    wide = samples.astype(np.float64)
    silent = int(np.count_nonzero(np.abs(samples.astype(np.int32)) < _SILENCE_THRESHOLD))
    return AudioAnalysis(
        min_value=int(samples.min()),
        max_value=int(samples.max()),
        avg_value=float(wide.mean()),
        rms_value=float(np.sqrt(np.mean(wide * wide))),
        silence_percentage=silent / samples.size * 100.0,
        sample_count=int(samples.size),
    )


def write_wav(pcm: bytes, path: Path, *, sample_rate: int, channels: int = 1) -> Path:
    with wave.open(str(path), "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(pcm)
    return path


class DebugAudioWriter:
    def __init__(self, directory: Path, *, sample_rate: int, label: str = "system_audio") -> None:
        self._dir = directory
        self._sample_rate = sample_rate
        self._label = label

    def write(self, pcm: bytes, *, timestamp_ms: int | None = None) -> Path:
        ts = timestamp_ms if timestamp_ms is not None else wall_ms()
        self._dir.mkdir(parents=True, exist_ok=True)
        stem = self._dir / f"{self._label}_{ts}"

        stem.with_suffix(".pcm").write_bytes(pcm)
        wav_path = write_wav(pcm, stem.with_suffix(".wav"), sample_rate=self._sample_rate)

        analysis = analyze_pcm16(pcm)
        meta = {
            "timestamp": ts,
            "type": self._label,
            "buffer_size": len(pcm),
            "analysis": asdict(analysis),
            "format": {"sample_rate": self._sample_rate, "channels": 1, "bit_depth": 16},
        }
        stem.with_suffix(".json").write_text(json.dumps(meta, indent=2), encoding="utf-8")

        logger.debug("debug_audio_saved", extra={"path": str(wav_path), "bytes": len(pcm)})
        return wav_path
