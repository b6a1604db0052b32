"""Live monitoring — plays a clip through the effect graph on the output device.

Each play() snapshots the parameter store, builds a fresh "live" graph and
streams render_graph() blocks to a StreamPlayer from a worker thread. At
most one playback is active: starting another (processed or raw) stops the
previous one first. Knob changes made while a clip plays only affect the
next play().
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, wait

import numpy as np

from aurora.engine.graph import build_graph, render_graph, render_length
from aurora.engine.params import ANALYSER_SIZE, CHUNK_SIZE, ParameterStore
from aurora.errors import RenderError
from shared.streaming import StreamPlayer

log = logging.getLogger(__name__)

STOP_TIMEOUT = 2.0  # seconds to wait for a stopped worker to release the device


class Analyser:
    """Rolling window of the most recent output frames (mono mix).

    Feeds external waveform drawing; thread-safe.
    """

    def __init__(self, size=ANALYSER_SIZE):
        self.size = size
        self._lock = threading.Lock()
        self._window = np.zeros(size, dtype=np.float64)

    def push(self, block):
        mono = block.mean(axis=1) if block.ndim == 2 else block
        with self._lock:
            if len(mono) >= self.size:
                self._window = np.array(mono[-self.size:], dtype=np.float64)
            elif len(mono):
                self._window = np.concatenate([self._window[len(mono):], mono])

    def time_domain(self) -> np.ndarray:
        """Float samples, oldest first."""
        with self._lock:
            return self._window.copy()

    def byte_time_domain(self) -> np.ndarray:
        """Samples as unsigned bytes, 128 = silence, clipped to 0..255."""
        x = self.time_domain()
        return np.clip(np.floor(128.0 * (1.0 + x)), 0, 255).astype(np.uint8)

    def clear(self):
        with self._lock:
            self._window = np.zeros(self.size, dtype=np.float64)


class PlaybackHandle:
    """One playback. `done` resolves True on natural end, False if stopped."""

    def __init__(self, player, kind):
        self.kind = kind
        self.done: Future = Future()
        self._player = player
        self._cancel = threading.Event()

    def stop(self):
        """Stop this playback. Stopping twice (or after it ended) is a no-op."""
        if self._cancel.is_set() or self.done.done():
            return
        self._cancel.set()
        self._player.stop()

    @property
    def stopped(self) -> bool:
        return self._cancel.is_set()

    @property
    def active(self) -> bool:
        return not self.done.done()

    def wait(self, timeout=None) -> bool:
        """Block until playback ends; True if it ran to completion."""
        return self.done.result(timeout)

    def add_done_callback(self, fn):
        """Call fn(handle) when playback ends, however it ends."""
        self.done.add_done_callback(lambda _f: fn(self))


class LivePlayback:
    """Plays clips through the effect chain for monitoring."""

    def __init__(self, store: ParameterStore | None = None, channels=2,
                 player_factory=StreamPlayer, rng=None):
        self.store = store if store is not None else ParameterStore()
        self.channels = channels
        self.player_factory = player_factory
        self.rng = rng
        self.analyser = Analyser()
        self._lock = threading.Lock()
        self._active: PlaybackHandle | None = None

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._active is not None and self._active.active

    def play(self, buffer, tail=0.0) -> PlaybackHandle:
        """Play `buffer` through a freshly built graph.

        Raises RenderError for a missing buffer, GraphError for an unusable
        one and DeviceError when the output device cannot be opened.
        """
        if buffer is None or buffer.frames == 0:
            raise RenderError("no decoded audio to play", stage="source")
        self.stop()
        graph = build_graph(self.store, buffer.sr, buffer.channels, "live", rng=self.rng)
        frames = render_length(buffer.frames, graph.source.rate, buffer.sr, tail=tail)

        def run(player):
            def feed(block):
                self.analyser.push(block)
                return player.write_chunk(block)
            render_graph(graph, buffer, frames, chunk_callback=feed)

        log.info("play processed: %d frames @ %d Hz, pitch %.2f",
                 frames, buffer.sr, graph.source.rate)
        return self._start(buffer.sr, "processed", run)

    def play_raw(self, buffer) -> PlaybackHandle:
        """Monitor the unprocessed clip (stops any processed playback)."""
        if buffer is None or buffer.frames == 0:
            raise RenderError("no decoded audio to play", stage="source")
        self.stop()
        samples = buffer.samples

        def run(player):
            for start in range(0, samples.shape[0], CHUNK_SIZE):
                block = samples[start:start + CHUNK_SIZE]
                self.analyser.push(block)
                if not player.write_chunk(block):
                    return

        log.info("play raw: %d frames @ %d Hz", buffer.frames, buffer.sr)
        return self._start(buffer.sr, "raw", run)

    def stop(self):
        """Stop the active playback, if any, and wait for it to release the device."""
        with self._lock:
            handle, self._active = self._active, None
        if handle is None:
            return
        handle.stop()
        wait([handle.done], timeout=STOP_TIMEOUT)
        log.info("stopped %s playback", handle.kind)

    def _start(self, sr, kind, run):
        player = self.player_factory(sr=sr, channels=self.channels)
        player.start()
        handle = PlaybackHandle(player, kind)
        with self._lock:
            self._active = handle
        thread = threading.Thread(target=self._worker, args=(handle, player, run),
                                  daemon=True)
        thread.start()
        return handle

    def _worker(self, handle, player, run):
        try:
            run(player)
        except Exception as exc:
            log.error("%s playback failed: %s", handle.kind, exc)
            player.close(cancelled=True)
            self._release(handle)
            handle.done.set_exception(exc)
            return
        completed = not (handle.stopped or player.stopped)
        player.close(cancelled=not completed)
        self._release(handle)
        handle.done.set_result(completed)

    def _release(self, handle):
        with self._lock:
            if self._active is handle:
                self._active = None
