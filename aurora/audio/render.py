"""Offline rendering and WAV export.

Usage:
    python -m aurora.audio.render input.wav [-o output.wav] [--preset hall]
    python -m aurora.audio.render input.wav --raw
"""

import argparse
import logging
import sys
import time
from datetime import datetime

from aurora.audio.wav import encode_wav, write_wav
from aurora.engine.graph import build_graph, render_graph, render_length
from aurora.engine.params import PRESETS, SCHEMA, ParameterStore, snapshot_of
from aurora.errors import AuroraError, RenderError
from shared.audio import load_audio
from shared.streaming import safety_check

log = logging.getLogger(__name__)

RAW_PREFIX = "Aurora_"
FX_PREFIX = "Aurora_fx_"


def render(buffer, params=None, tail=0.0, fit_pitch=True, rng=None):
    """Render `buffer` through the effect chain, as fast as possible.

    Args:
        buffer: decoded AudioBuffer.
        params: ParameterStore, ParamSnapshot or mapping (defaults if None);
            snapshotted once.
        tail: extra seconds rendered after the source ends (delay/reverb tail).
        fit_pitch: size the output to the pitched duration; False keeps the
            source's native length.
        rng: seed or Generator for the reverb impulse.

    Returns:
        AudioBuffer at the source's sample rate and channel count.

    Raises:
        RenderError when there is nothing to render or a stage fails.
    """
    if buffer is None:
        raise RenderError("no decoded audio to render", stage="source")
    if buffer.frames == 0:
        raise RenderError("source audio is empty", stage="source")

    t0 = time.perf_counter()
    graph = build_graph(params, buffer.sr, buffer.channels, "offline", rng=rng)
    frames = render_length(buffer.frames, graph.source.rate, buffer.sr,
                           tail=tail, fit_pitch=fit_pitch)
    out = render_graph(graph, buffer, frames)

    ok, msg = safety_check(out.samples)
    if not ok:
        raise RenderError(msg, stage="output")

    elapsed = time.perf_counter() - t0
    rtf = out.duration / elapsed if elapsed > 0 else float('inf')
    log.info("render %.2fs audio in %.3fs (%d frames x%d, %.0fx RT)",
             out.duration, elapsed, out.frames, out.channels, rtf)
    return out


def export_wav(buffer, params=None, **render_kwargs) -> bytes:
    """WAV bytes for `buffer`: processed when params are given, raw otherwise."""
    if buffer is None:
        raise RenderError("no decoded audio to export", stage="source")
    if params is not None:
        buffer = render(buffer, params, **render_kwargs)
    return encode_wav(buffer)


def timestamp_name(prefix=FX_PREFIX, ext="wav", now=None):
    """File name like Aurora_fx_2024-05-01_13-07-42.wav."""
    now = now or datetime.now()
    return f"{prefix}{now:%Y-%m-%d_%H-%M-%S}.{ext}"


def add_param_arguments(parser):
    """Add --preset and one flag per parameter, grouped by schema section."""
    parser.add_argument("--preset", choices=sorted(PRESETS))
    for section, params in SCHEMA.param_sections().items():
        group = parser.add_argument_group(section)
        for p in params:
            lo, hi = p.range
            group.add_argument(f"--{p.key}", type=float,
                               help=f"{p.label} ({lo:g}-{hi:g}, default {p.default:g})")


def store_from_args(args):
    """ParameterStore from parsed flags: preset first, then explicit values."""
    store = ParameterStore()
    if args.preset:
        store.apply_preset(args.preset)
    for p in SCHEMA:
        value = getattr(args, p.key, None)
        if value is not None:
            store.set(p.key, value)
    return store


def main(argv=None):
    parser = argparse.ArgumentParser(description="Aurora offline renderer")
    parser.add_argument("input", help="Input audio file (WAV, FLAC, OGG...)")
    parser.add_argument("-o", "--output",
                        help="Output WAV file (default: timestamped name)")
    parser.add_argument("--raw", action="store_true",
                        help="Export the decoded input without effects")
    add_param_arguments(parser)
    parser.add_argument("--tail", type=float, default=0.0,
                        help="Tail length in seconds (default 0)")
    parser.add_argument("--keep-length", action="store_true",
                        help="Keep the source length even when pitch != 1")
    parser.add_argument("--seed", type=int, help="Seed for the reverb impulse")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")

    try:
        audio = load_audio(args.input)
        print(f"Loaded {args.input}: {audio.frames} samples, {audio.sr} Hz, "
              f"{audio.channels} ch")
        if args.raw:
            out = audio
            output = args.output or timestamp_name(RAW_PREFIX)
        else:
            store = store_from_args(args)
            log.info("params: %s", snapshot_of(store).as_dict())
            out = render(audio, store, tail=args.tail,
                         fit_pitch=not args.keep_length, rng=args.seed)
            output = args.output or timestamp_name(FX_PREFIX)
    except AuroraError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    size = write_wav(output, out)
    print(f"Saved {output} ({size} bytes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
