"""Audio streaming utilities for live monitoring.

StreamPlayer manages an sd.OutputStream for chunk-based playback.
safety_check rejects diverged render output before it is played or saved.
"""

import logging

import numpy as np
import sounddevice as sd

from aurora.errors import DeviceError

log = logging.getLogger(__name__)


class StreamPlayer:
    """Manages streaming audio playback via sd.OutputStream."""

    def __init__(self, sr=44100, channels=2, device=None):
        self.sr = sr
        self.channels = channels
        self.device = device
        self._stream = None
        self._stop_flag = False

    def start(self):
        """Open and start the output stream. Raises DeviceError."""
        self._stop_flag = False
        try:
            self._stream = sd.OutputStream(
                samplerate=self.sr, channels=self.channels, dtype='float32',
                device=self.device,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            log.error("output device unavailable: %s", exc)
            raise DeviceError(f"output device unavailable: {exc}") from exc

    def write_chunk(self, chunk):
        """Write a (frames, channels) chunk to the stream.

        Usable directly as ``chunk_callback`` for render_graph.
        Returns True to continue, False once stopped.
        """
        if self._stop_flag or self._stream is None:
            return False
        clipped = np.clip(chunk, -1.0, 1.0).astype(np.float32)
        if clipped.ndim == 1:
            clipped = clipped[:, None]
        # Match the device's channel count
        if clipped.shape[1] == 1 and self.channels > 1:
            clipped = np.repeat(clipped, self.channels, axis=1)
        elif clipped.shape[1] > self.channels:
            clipped = clipped[:, :self.channels]
        try:
            self._stream.write(np.ascontiguousarray(clipped))
        except sd.PortAudioError as exc:
            if self._stop_flag:
                return False
            raise DeviceError(f"output stream failed: {exc}") from exc
        return True

    def stop(self):
        """Signal stop and abort the stream immediately. Safe to repeat."""
        self._stop_flag = True
        if self._stream is not None:
            try:
                self._stream.abort()
            except sd.PortAudioError as exc:
                log.debug("abort on stopped stream: %s", exc)

    def close(self, cancelled=False):
        """Close the stream, draining it unless cancelled."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            if cancelled:
                stream.abort()
            else:
                stream.stop()
        except sd.PortAudioError as exc:
            log.debug("stream stop: %s", exc)
        finally:
            stream.close()

    @property
    def stopped(self):
        return self._stop_flag


def safety_check(output):
    """Reject non-finite or exploded output.

    Returns (ok, error_message).
    """
    if output.size == 0:
        return True, ""
    if not np.all(np.isfinite(output)):
        return False, "output diverged (non-finite values)"
    peak = np.max(np.abs(output))
    if peak > 1e6:
        return False, f"output exploded (peak={peak:.0e})"
    return True, ""
