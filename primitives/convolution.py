"""Block convolution with a fixed impulse response (overlap-add).

Each block is FFT-convolved with the whole impulse; the part that spills
past the block end is carried into the next block.
"""

import numpy as np
from scipy.signal import fftconvolve

GAIN_CALIBRATION = 0.00125
CALIBRATION_RATE = 44100
MIN_POWER = 0.000125


def normalization_scale(impulse, sr):
    """Scale that brings a dense impulse response to roughly unity loudness.

    impulse is (frames, channels). Based on the RMS power of the response,
    with a floor so near-silent responses are not blown up.
    """
    frames, channels = impulse.shape
    if frames == 0:
        return 0.0
    power = np.sqrt(np.sum(impulse * impulse) / (channels * frames))
    if not np.isfinite(power) or power < MIN_POWER:
        power = MIN_POWER
    return (1.0 / power) * GAIN_CALIBRATION * (CALIBRATION_RATE / sr)


class Convolver:
    """Overlap-add convolver over (frames, channels) blocks.

    Channel c of the signal is convolved with channel c % impulse_channels
    of the impulse, so a stereo impulse serves mono and stereo signals.
    """

    def __init__(self, impulse, sr, channels=1, normalize=True):
        impulse = np.asarray(impulse, dtype=np.float64)
        if impulse.ndim == 1:
            impulse = impulse[:, None]
        scale = normalization_scale(impulse, sr) if normalize else 1.0
        self.kernels = [np.ascontiguousarray(impulse[:, c % impulse.shape[1]]) * scale
                        for c in range(channels)]
        self.tail = np.zeros((channels, max(impulse.shape[0] - 1, 0)), dtype=np.float64)

    def process(self, block):
        n = block.shape[0]
        out = np.empty_like(block)
        if n == 0:
            return out
        for ch in range(block.shape[1]):
            acc = fftconvolve(block[:, ch], self.kernels[ch])
            tail = self.tail[ch]
            acc[:len(tail)] += tail
            out[:, ch] = acc[:n]
            self.tail[ch] = acc[n:]
        return out
