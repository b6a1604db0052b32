"""16-bit PCM WAV encoding.

Samples are clipped to [-1, 1], scaled by 32767 and rounded to the nearest
integer, then written as canonical PCM (44-byte header, interleaved int16
frames). The buffer's sample rate is written as-is (no resampling).
"""

import io

import numpy as np
from scipy.io import wavfile

MIME_TYPE = "audio/wav"
HEADER_SIZE = 44


def pcm16(samples):
    """Float samples -> int16 array of the same shape."""
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    return np.rint(clipped * 32767.0).astype(np.int16)


def encode_wav(buffer) -> bytes:
    """Serialize an AudioBuffer to a complete WAV byte string."""
    bio = io.BytesIO()
    wavfile.write(bio, buffer.sr, pcm16(buffer.samples))
    return bio.getvalue()


def write_wav(path, buffer):
    """Encode and write to `path`. Returns the number of bytes written."""
    blob = encode_wav(buffer)
    with open(path, "wb") as f:
        f.write(blob)
    return len(blob)
