"""The effect graph — declarative stages and the one function that runs them.

Signal flow:
    Source (pitch) -> Lowpass -> Highpass -> Delay (feedback loop)
        -> Mix [ dry: x (1 - mix) | wet: Convolution reverb x mix ]
        -> Gain (master) -> destination

build_graph() turns a parameter snapshot into a Graph: a tuple of frozen
stage descriptors. render_graph() interprets a Graph block by block. Live
monitoring and offline export both go through render_graph(), with the same
block size, so what you hear is sample-for-sample what gets exported.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from aurora.engine.impulse import generate_impulse
from aurora.engine.params import (
    CHUNK_SIZE, FEEDBACK_GAIN, IMPULSE_DECAY, IMPULSE_SECONDS, MIN_LOOP_DELAY,
    ParamSnapshot, snapshot_of,
)
from aurora.errors import GraphError, RenderError
from primitives.convolution import Convolver
from primitives.delay_line import FeedbackDelay
from primitives.filters import DEFAULT_Q, BiquadFilter
from shared.audio import AudioBuffer

log = logging.getLogger(__name__)

DESTINATIONS = ("live", "offline")


# ── Stage descriptors ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Source:
    rate: float


@dataclass(frozen=True)
class Filter:
    kind: str           # "lowpass" | "highpass"
    cutoff: float
    q: float = DEFAULT_Q


@dataclass(frozen=True)
class Delay:
    time: float         # seconds
    feedback: float


@dataclass(frozen=True, eq=False)
class Convolution:
    impulse: AudioBuffer


@dataclass(frozen=True)
class Mix:
    dry_gain: float
    wet_gain: float
    wet: tuple          # stages on the wet branch


@dataclass(frozen=True)
class Gain:
    value: float


@dataclass(frozen=True, eq=False)
class Graph:
    source: Source
    stages: tuple
    sr: int
    channels: int
    destination: str
    params: ParamSnapshot
    chunk_size: int = CHUNK_SIZE

    def describe(self):
        return [stage_name(s) for s in self.stages]


def stage_name(stage):
    if isinstance(stage, Filter):
        return stage.kind
    return type(stage).__name__.lower()


# ── Construction ──────────────────────────────────────────────────────

def build_graph(params, sr, channels, destination="offline", rng=None,
                chunk_size=CHUNK_SIZE) -> Graph:
    """Wire the fixed effect chain for one playback or one render.

    Args:
        params: ParameterStore, ParamSnapshot or mapping; read exactly once.
        sr: sample rate of the destination.
        channels: channel count of the destination.
        destination: "live" or "offline". Recorded only; the stages are
            the same for both.
        rng: seed or numpy Generator for the reverb impulse noise.
        chunk_size: frames per processing block; every render of this
            graph runs with it.
    """
    if sr <= 0:
        raise GraphError(f"sample rate must be positive, got {sr}")
    if channels < 1:
        raise GraphError(f"channel count must be at least 1, got {channels}")
    if chunk_size < 1:
        raise GraphError(f"chunk size must be positive, got {chunk_size}")
    if destination not in DESTINATIONS:
        raise GraphError(f"unknown destination {destination!r}, expected one of {DESTINATIONS}")

    p = snapshot_of(params)
    impulse = generate_impulse(IMPULSE_SECONDS, IMPULSE_DECAY, sr, channels, rng=rng)

    stages = (
        Filter("lowpass", p.lowpass),
        Filter("highpass", p.highpass),
        Delay(p.delay_time, FEEDBACK_GAIN),
        Mix(p.dry_gain, p.wet_gain, wet=(Convolution(impulse),)),
        Gain(p.master_gain),
    )
    graph = Graph(Source(p.pitch), stages, int(sr), int(channels), destination, p,
                  int(chunk_size))
    log.debug("built %s graph @ %d Hz x%d: %s (%s)", destination, sr, channels,
              " -> ".join(graph.describe()), p.as_dict())
    return graph


def render_length(frames, pitch, sr, tail=0.0, fit_pitch=True):
    """Output frames for a source of `frames` samples played at `pitch`.

    With fit_pitch the length follows the pitched duration (ceil(frames /
    pitch)); without it the source's native length is kept, which cuts off
    slowed-down audio and pads sped-up audio with silence.
    """
    n = math.ceil(frames / pitch) if fit_pitch else frames
    if tail > 0:
        n += math.ceil(tail * sr)
    return int(n)


# ── Execution ─────────────────────────────────────────────────────────

class _SourceReader:
    """Reads the input at `rate` x its natural speed, linear interpolation."""

    def __init__(self, samples, rate):
        self.samples = samples
        self.rate = float(rate)
        self.grid = np.arange(samples.shape[0], dtype=np.float64)

    def read(self, start, n):
        frames, channels = self.samples.shape
        if self.rate == 1.0:
            block = np.zeros((n, channels), dtype=np.float64)
            if start < frames:
                avail = min(n, frames - start)
                block[:avail] = self.samples[start:start + avail]
            return block
        pos = (start + np.arange(n, dtype=np.float64)) * self.rate
        block = np.empty((n, channels), dtype=np.float64)
        for ch in range(channels):
            block[:, ch] = np.interp(pos, self.grid, self.samples[:, ch], left=0.0, right=0.0)
        return block


class _MixNode:
    def __init__(self, stage, sr, channels):
        self.dry_gain = stage.dry_gain
        self.wet_gain = stage.wet_gain
        self.wet = [(s, _make_node(s, sr, channels)) for s in stage.wet]

    def process(self, block):
        wet = block
        for s, node in self.wet:
            wet = _run_stage(s, node, wet)
        return block * self.dry_gain + wet * self.wet_gain


class _GainNode:
    def __init__(self, value):
        self.value = value

    def process(self, block):
        return block * self.value


def _make_node(stage, sr, channels):
    if isinstance(stage, Filter):
        if stage.kind == "lowpass":
            return BiquadFilter.lowpass(stage.cutoff, sr, q=stage.q, channels=channels)
        if stage.kind == "highpass":
            return BiquadFilter.highpass(stage.cutoff, sr, q=stage.q, channels=channels)
        raise GraphError(f"unknown filter kind {stage.kind!r}")
    if isinstance(stage, Delay):
        samples = max(MIN_LOOP_DELAY, int(round(stage.time * sr)))
        return FeedbackDelay(samples, stage.feedback, channels)
    if isinstance(stage, Convolution):
        return Convolver(stage.impulse.samples, sr, channels)
    if isinstance(stage, Mix):
        return _MixNode(stage, sr, channels)
    if isinstance(stage, Gain):
        return _GainNode(stage.value)
    raise GraphError(f"unknown stage {stage!r}")


def _run_stage(stage, node, block):
    try:
        return node.process(block)
    except RenderError:
        raise
    except Exception as exc:
        raise RenderError(str(exc), stage=stage_name(stage), cause=exc) from exc


def _match_channels(samples, channels):
    have = samples.shape[1]
    if have == channels:
        return samples
    if have == 1:
        return np.repeat(samples, channels, axis=1)
    if channels == 1:
        return samples.mean(axis=1, keepdims=True)
    idx = [min(c, have - 1) for c in range(channels)]
    return samples[:, idx]


def render_graph(graph: Graph, buffer: AudioBuffer, frames: int,
                 chunk_callback=None) -> AudioBuffer:
    """Run `buffer` through `graph` and return `frames` frames of output.

    Args:
        graph: from build_graph(); its stages get fresh processing state
            and it is processed in blocks of graph.chunk_size frames.
        buffer: source audio. Its sample rate is assumed to match graph.sr.
        frames: output length.
        chunk_callback: if provided, called with each rendered block.
            Return True to continue, False to stop early; the returned
            buffer then holds only what was rendered.

    Raises:
        RenderError naming the failing stage.
    """
    samples = _match_channels(buffer.samples, graph.channels)
    reader = _SourceReader(samples, graph.source.rate)
    try:
        nodes = [(s, _make_node(s, graph.sr, graph.channels)) for s in graph.stages]
    except GraphError:
        raise
    except Exception as exc:
        raise RenderError(str(exc), stage="build", cause=exc) from exc

    out = np.zeros((frames, graph.channels), dtype=np.float64)
    end = 0
    chunk_size = graph.chunk_size
    for start in range(0, frames, chunk_size):
        n = min(chunk_size, frames - start)
        block = reader.read(start, n)
        for stage, node in nodes:
            block = _run_stage(stage, node, block)
        out[start:start + n] = block
        end = start + n
        if chunk_callback is not None and not chunk_callback(block):
            break
    return AudioBuffer(out[:end], graph.sr)
