"""Synthetic reverb impulse: white noise under a power-curve decay.

    h[i] = uniform(-1, 1) * ((L - i) / L) ** decay,   L = round(sr * seconds)

The envelope is deterministic; the noise is not, unless a seeded generator
is passed in.
"""

import numpy as np

from shared.audio import AudioBuffer

MAX_CHANNELS = 2


def make_rng(rng=None):
    """Accept None (fresh entropy), an int seed, or a numpy Generator."""
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def decay_envelope(length, decay):
    i = np.arange(length, dtype=np.float64)
    return ((length - i) / length) ** decay


def generate_impulse(seconds, decay, sr, channels=2, rng=None) -> AudioBuffer:
    """Decaying-noise impulse response, (round(sr * seconds), channels)."""
    if seconds <= 0:
        raise ValueError(f"impulse duration must be positive, got {seconds}")
    if decay <= 0:
        raise ValueError(f"decay exponent must be positive, got {decay}")
    if sr <= 0:
        raise ValueError(f"sample rate must be positive, got {sr}")
    if channels < 1:
        raise ValueError(f"channel count must be at least 1, got {channels}")
    channels = min(int(channels), MAX_CHANNELS)
    length = int(round(sr * seconds))
    if length < 1:
        raise ValueError(f"impulse of {seconds}s at {sr} Hz has no samples")

    rng = make_rng(rng)
    env = decay_envelope(length, decay)
    noise = rng.uniform(-1.0, 1.0, size=(length, channels))
    return AudioBuffer(noise * env[:, None], sr)
