"""Test the effect graph — topology, live/offline parity, stage behavior.

Run: uv run python tests/test_graph.py
"""

import os
import sys

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from aurora.engine.graph import (
    Convolution, Delay, Filter, Gain, Graph, Mix, Source,
    build_graph, render_graph, render_length,
)
from aurora.engine.params import CHUNK_SIZE, MIN_LOOP_DELAY, ParameterStore, ParamSnapshot
from aurora.errors import GraphError, RenderError
from shared.audio import AudioBuffer, make_impulse

SR = 8000

# Everything open: no filtering to speak of, no reverb, unity gain
TRANSPARENT = {"gain": 100, "lowpass": 20000, "highpass": 10,
               "delay_time": 0.0, "reverb_mix": 0.0, "pitch": 1.0}


def make_noise(seconds=0.5, channels=1, seed=0):
    rng = np.random.default_rng(seed)
    return AudioBuffer(rng.standard_normal((int(SR * seconds), channels)) * 0.3, SR)


# ---------------------------------------------------------------------------
# Test 1: Fixed topology bound to the parameter snapshot
# ---------------------------------------------------------------------------
def test_topology():
    store = ParameterStore({"gain": 40, "pitch": 1.5, "lowpass": 3000,
                            "highpass": 120, "delay_time": 0.2, "reverb_mix": 0.25})
    graph = build_graph(store, SR, 2, "offline", rng=0)
    assert graph.describe() == ["lowpass", "highpass", "delay", "mix", "gain"]
    assert graph.source == Source(1.5)
    lp, hp, delay, mix, gain = graph.stages
    assert isinstance(lp, Filter) and lp.cutoff == 3000.0
    assert isinstance(hp, Filter) and hp.cutoff == 120.0
    assert delay == Delay(0.2, 0.3)
    assert isinstance(mix, Mix)
    assert mix.dry_gain == 0.75 and mix.wet_gain == 0.25
    (conv,) = mix.wet
    assert isinstance(conv, Convolution)
    assert conv.impulse.frames == round(SR * 2.5)
    assert conv.impulse.channels == 2
    assert gain == Gain(0.4)

    # Later knob changes don't reach an already-built graph
    store.set("lowpass", 500)
    assert graph.stages[0].cutoff == 3000.0
    assert graph.params.lowpass == 3000.0


def test_invalid_graphs():
    for args in [(TRANSPARENT, 0, 1, "offline"), (TRANSPARENT, SR, 0, "offline"),
                 (TRANSPARENT, SR, 1, "speaker"),
                 (TRANSPARENT, SR, 1, "live", None, 0)]:
        try:
            build_graph(*args)
        except GraphError:
            pass
        else:
            raise AssertionError(f"accepted {args[1:]}")


# ---------------------------------------------------------------------------
# Test 2: Live and offline graphs render identically
# ---------------------------------------------------------------------------
def test_live_offline_parity():
    snap = ParamSnapshot.from_mapping({"lowpass": 2500, "highpass": 200,
                                       "delay_time": 0.05, "reverb_mix": 0.5,
                                       "pitch": 0.8, "gain": 70})
    source = make_noise(channels=2)
    frames = render_length(source.frames, snap.pitch, SR)
    live = build_graph(snap, SR, 2, "live", rng=11)
    offline = build_graph(snap, SR, 2, "offline", rng=11)
    blocks = []

    def collect(block):
        blocks.append(block.copy())
        return True

    a = render_graph(live, source, frames, chunk_callback=collect)
    b = render_graph(offline, source, frames)
    assert a.frames == frames
    assert np.array_equal(a.samples, b.samples)
    assert np.array_equal(np.vstack(blocks), a.samples)
    assert live.chunk_size == offline.chunk_size == CHUNK_SIZE
    assert all(len(block) == CHUNK_SIZE for block in blocks[:-1])


def test_chunk_callback_can_stop():
    graph = build_graph(TRANSPARENT, SR, 1, "live", rng=0, chunk_size=1000)
    source = make_noise(seconds=1.0)
    calls = []

    def stop_after_two(block):
        calls.append(len(block))
        return len(calls) < 2

    out = render_graph(graph, source, source.frames, chunk_callback=stop_after_two)
    assert calls == [1000, 1000]
    assert out.frames == 2000


# ---------------------------------------------------------------------------
# Test 3: Stage behavior through the whole chain
# ---------------------------------------------------------------------------
def test_transparent_chain_is_a_short_echo():
    graph = build_graph(TRANSPARENT, SR, 1, "offline", rng=0)
    out = render_graph(graph, make_impulse(SR, 0.2), int(SR * 0.2)).channel(0)
    # The feedback loop is never shorter than one processing quantum
    assert np.all(out[:MIN_LOOP_DELAY] == 0.0)
    assert abs(out[MIN_LOOP_DELAY] - 1.0) < 0.01
    assert abs(out[2 * MIN_LOOP_DELAY] - 0.3) < 0.02


def test_delay_time():
    params = dict(TRANSPARENT, delay_time=0.05)
    graph = build_graph(params, SR, 1, "offline", rng=0)
    out = render_graph(graph, make_impulse(SR, 0.2), int(SR * 0.2)).channel(0)
    d = int(0.05 * SR)
    assert np.argmax(np.abs(out)) == d
    assert np.all(out[:d] == 0.0)


def test_feedback_never_runs_away():
    params = dict(TRANSPARENT, delay_time=0.05)
    graph = build_graph(params, SR, 1, "offline", rng=0)
    out = render_graph(graph, make_impulse(SR, 0.01), int(SR * 4.0)).channel(0)
    d = int(0.05 * SR)
    peaks = [np.max(np.abs(out[k * d:(k + 1) * d])) for k in range(1, len(out) // d)]
    assert max(peaks) == peaks[0]
    assert peaks[-1] < 1e-6
    assert np.all(np.isfinite(out))


def test_gain_and_mix():
    source = make_noise()
    silent = build_graph(dict(TRANSPARENT, gain=0), SR, 1, "offline", rng=0)
    assert np.all(render_graph(silent, source, source.frames).samples == 0.0)

    half = build_graph(dict(TRANSPARENT, gain=50), SR, 1, "offline", rng=0)
    full = build_graph(TRANSPARENT, SR, 1, "offline", rng=0)
    a = render_graph(half, source, source.frames).samples
    b = render_graph(full, source, source.frames).samples
    assert np.allclose(a * 2.0, b)

    # Fully wet: the dry path contributes nothing, reverb output is non-zero
    wet = build_graph(dict(TRANSPARENT, reverb_mix=1.0), SR, 1, "offline", rng=0)
    out = render_graph(wet, make_impulse(SR, 0.5), int(SR * 0.5)).channel(0)
    assert np.max(np.abs(out[MIN_LOOP_DELAY + 1:])) > 0.0


def test_pitch_reads_source_faster():
    ramp = AudioBuffer(np.arange(100, dtype=np.float64) / 100.0, SR)
    graph = Graph(Source(2.0), (), SR, 1, "offline", ParamSnapshot.from_mapping({}))
    out = render_graph(graph, ramp, render_length(100, 2.0, SR)).channel(0)
    assert len(out) == 50
    assert np.allclose(out, np.arange(0, 100, 2) / 100.0)

    slow = Graph(Source(0.5), (), SR, 1, "offline", ParamSnapshot.from_mapping({}))
    out = render_graph(slow, ramp, render_length(100, 0.5, SR)).channel(0)
    assert len(out) == 200
    assert np.isclose(out[1], 0.005)
    assert out[-1] == 0.0


def test_mono_source_fills_every_channel():
    graph = build_graph(TRANSPARENT, SR, 2, "offline", rng=0)
    out = render_graph(graph, make_noise(channels=1), 2000)
    assert out.channels == 2
    assert np.array_equal(out.channel(0), out.channel(1))


def test_render_length():
    assert render_length(1000, 1.0, SR) == 1000
    assert render_length(1000, 2.0, SR) == 500
    assert render_length(1000, 0.5, SR) == 2000
    assert render_length(100, 0.9, SR) == 112
    assert render_length(1000, 0.5, SR, fit_pitch=False) == 1000
    assert render_length(1000, 1.0, SR, tail=0.5) == 1000 + SR // 2


# ---------------------------------------------------------------------------
# Test 4: Failures name their stage
# ---------------------------------------------------------------------------
def test_stage_errors():
    snap = ParamSnapshot.from_mapping({})
    bad_gain = Graph(Source(1.0), (Gain("loud"),), SR, 1, "offline", snap)
    try:
        render_graph(bad_gain, make_noise(), 100)
    except RenderError as exc:
        assert exc.stage == "gain"
        assert exc.cause is not None
    else:
        raise AssertionError("bad gain stage rendered")

    bad_filter = Graph(Source(1.0), (Filter("bandpass", 100.0),), SR, 1, "offline", snap)
    try:
        render_graph(bad_filter, make_noise(), 100)
    except GraphError:
        pass
    else:
        raise AssertionError("unknown filter kind rendered")


if __name__ == "__main__":
    print(f"Sample rate: {SR} Hz")
    test_topology()
    test_invalid_graphs()
    test_live_offline_parity()
    test_chunk_callback_can_stop()
    test_transparent_chain_is_a_short_echo()
    test_delay_time()
    test_feedback_never_runs_away()
    test_gain_and_mix()
    test_pitch_reads_source_faster()
    test_mono_source_fills_every_channel()
    test_render_length()
    test_stage_errors()
    print("Graph OK")
