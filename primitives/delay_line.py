"""Circular-buffer delay line with a feedback loop.

    y[n] = x[n - D] + feedback * y[n - D]

The output is the delayed signal itself (no dry component), so with
0 < feedback < 1 an impulse comes out as echoes at D, 2D, 3D... samples,
each `feedback` times the previous one.
"""

import numpy as np
from numba import njit


@njit(cache=True)
def feedback_delay_block(x, buf, pos, feedback):
    """Run one block through the loop. buf and pos[0] are updated in place."""
    n = len(x)
    length = len(buf)
    out = np.empty(n, dtype=np.float64)
    w = pos[0]
    for i in range(n):
        delayed = buf[w]
        out[i] = delayed
        buf[w] = x[i] + feedback * delayed
        w += 1
        if w == length:
            w = 0
    pos[0] = w
    return out


class FeedbackDelay:
    """Per-channel feedback delay over (frames, channels) blocks.

    Usage:
        dl = FeedbackDelay(delay_samples=11025, feedback=0.3, channels=2)
        out = dl.process(block)
    """

    def __init__(self, delay_samples: int, feedback: float, channels: int = 1):
        if delay_samples < 1:
            raise ValueError(f"delay must be at least one sample, got {delay_samples}")
        if not 0.0 <= feedback < 1.0:
            raise ValueError(f"feedback must be in [0, 1), got {feedback}")
        self.delay = int(delay_samples)
        self.feedback = float(feedback)
        self.buffer = np.zeros((channels, self.delay), dtype=np.float64)
        self.pos = np.zeros(channels, dtype=np.int64)

    def process(self, block):
        out = np.empty_like(block)
        for ch in range(block.shape[1]):
            out[:, ch] = feedback_delay_block(np.ascontiguousarray(block[:, ch]),
                                              self.buffer[ch], self.pos[ch:ch + 1],
                                              self.feedback)
        return out

    def reset(self):
        """Clear the buffer."""
        self.buffer[:] = 0.0
        self.pos[:] = 0
