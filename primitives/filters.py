"""Biquad lowpass / highpass filters with block processing.

Coefficients follow the RBJ audio-EQ cookbook. The sample loop runs in
Numba and keeps its state between blocks, so a signal filtered in one call
or in many consecutive blocks comes out identical.
"""

import numpy as np
from numba import njit

# Resonance of 1 dB at the cutoff, expressed as a linear Q.
DEFAULT_Q = 10.0 ** (1.0 / 20.0)

_PASS = (1.0, 0.0, 0.0, 0.0, 0.0)
_MUTE = (0.0, 0.0, 0.0, 0.0, 0.0)


def lowpass_coeffs(freq, q, sr):
    """(b0, b1, b2, a1, a2) normalized by a0. freq in Hz."""
    nyquist = sr / 2.0
    if freq >= nyquist:
        return _PASS
    if freq <= 0:
        return _MUTE
    w0 = 2.0 * np.pi * freq / sr
    alpha = np.sin(w0) / (2.0 * q)
    cos_w0 = np.cos(w0)
    a0 = 1.0 + alpha
    b0 = (1.0 - cos_w0) / 2.0 / a0
    b1 = (1.0 - cos_w0) / a0
    b2 = b0
    a1 = (-2.0 * cos_w0) / a0
    a2 = (1.0 - alpha) / a0
    return (b0, b1, b2, a1, a2)


def highpass_coeffs(freq, q, sr):
    """(b0, b1, b2, a1, a2) normalized by a0. freq in Hz."""
    nyquist = sr / 2.0
    if freq >= nyquist:
        return _MUTE
    if freq <= 0:
        return _PASS
    w0 = 2.0 * np.pi * freq / sr
    alpha = np.sin(w0) / (2.0 * q)
    cos_w0 = np.cos(w0)
    a0 = 1.0 + alpha
    b0 = (1.0 + cos_w0) / 2.0 / a0
    b1 = -(1.0 + cos_w0) / a0
    b2 = b0
    a1 = (-2.0 * cos_w0) / a0
    a2 = (1.0 - alpha) / a0
    return (b0, b1, b2, a1, a2)


@njit(cache=True)
def biquad_block(x, b0, b1, b2, a1, a2, state):
    """Direct Form 1 biquad over one block.

    state is [x1, x2, y1, y2] and is updated in place.
    """
    n = len(x)
    out = np.empty(n, dtype=np.float64)
    x1 = state[0]
    x2 = state[1]
    y1 = state[2]
    y2 = state[3]
    for i in range(n):
        y = b0 * x[i] + b1 * x1 + b2 * x2 - a1 * y1 - a2 * y2
        x2 = x1
        x1 = x[i]
        y2 = y1
        y1 = y
        out[i] = y
    state[0] = x1
    state[1] = x2
    state[2] = y1
    state[3] = y2
    return out


class BiquadFilter:
    """Second-order filter over (frames, channels) blocks.

    Difference equation (Direct Form 1):
        y[n] = b0*x[n] + b1*x[n-1] + b2*x[n-2] - a1*y[n-1] - a2*y[n-2]

    Use lowpass() / highpass() to construct.
    """

    def __init__(self, coeffs, channels=1):
        self.b0, self.b1, self.b2, self.a1, self.a2 = (float(c) for c in coeffs)
        self.state = np.zeros((channels, 4), dtype=np.float64)

    @classmethod
    def lowpass(cls, freq, sr, q=DEFAULT_Q, channels=1):
        return cls(lowpass_coeffs(freq, q, sr), channels)

    @classmethod
    def highpass(cls, freq, sr, q=DEFAULT_Q, channels=1):
        return cls(highpass_coeffs(freq, q, sr), channels)

    @property
    def coeffs(self):
        return (self.b0, self.b1, self.b2, self.a1, self.a2)

    def process(self, block):
        out = np.empty_like(block)
        for ch in range(block.shape[1]):
            out[:, ch] = biquad_block(np.ascontiguousarray(block[:, ch]),
                                      self.b0, self.b1, self.b2, self.a1, self.a2,
                                      self.state[ch])
        return out

    def reset(self):
        self.state[:] = 0.0
