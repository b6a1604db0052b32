"""Shared audio buffer type and the decode boundary.

Recorded clips arrive as opaque encoded blobs (WAV, FLAC, OGG...). decode()
turns one into an AudioBuffer; everything downstream works on AudioBuffer.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np
import soundfile as sf

from aurora.errors import DecodeError


@dataclass(frozen=True)
class AudioBuffer:
    """Float samples shaped (frames, channels) plus their sample rate.

    The sample array is copied and made read-only on construction; a new
    buffer is produced for every recording or render.
    """

    samples: np.ndarray
    sr: int

    def __post_init__(self):
        data = np.array(self.samples, dtype=np.float64, copy=True)
        if data.ndim == 1:
            data = data[:, None]
        if data.ndim != 2:
            raise ValueError(f"expected (frames, channels) samples, got shape {data.shape}")
        if data.shape[1] < 1:
            raise ValueError("audio buffer needs at least one channel")
        if int(self.sr) <= 0:
            raise ValueError(f"sample rate must be positive, got {self.sr}")
        data.flags.writeable = False
        object.__setattr__(self, "samples", data)
        object.__setattr__(self, "sr", int(self.sr))

    @classmethod
    def from_channels(cls, channels, sr) -> "AudioBuffer":
        """Build from a list of per-channel sample sequences."""
        return cls(np.column_stack([np.asarray(c, dtype=np.float64) for c in channels]), sr)

    @property
    def frames(self) -> int:
        return self.samples.shape[0]

    @property
    def channels(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.frames / self.sr

    def channel(self, index: int) -> np.ndarray:
        return self.samples[:, index]


def decode(blob: bytes) -> AudioBuffer:
    """Decode an encoded audio blob. Raises DecodeError on malformed data."""
    if not blob:
        raise DecodeError("empty audio data")
    try:
        data, sr = sf.read(io.BytesIO(blob), dtype="float64", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as exc:
        raise DecodeError(f"could not decode audio: {exc}") from exc
    if data.shape[0] == 0:
        raise DecodeError("decoded audio has no samples")
    return AudioBuffer(data, sr)


def load_audio(path) -> AudioBuffer:
    """Read and decode an audio file from disk."""
    try:
        with open(path, "rb") as f:
            blob = f.read()
    except OSError as exc:
        raise DecodeError(f"could not read {path}: {exc}") from exc
    return decode(blob)


def make_impulse(sr=44100, seconds=0.5, channels=1):
    """Generate a unit impulse (click) for testing."""
    n = int(sr * seconds)
    impulse = np.zeros((n, channels))
    impulse[0, :] = 1.0
    return AudioBuffer(impulse, sr)
