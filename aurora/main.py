#!/usr/bin/env python3
"""Aurora — audition a recording through the effect chain.

Usage:
    python -m aurora.main clip.wav --preset hall --gain 70
    python -m aurora.main clip.wav --raw
"""

import argparse
import logging
import sys

from aurora.audio.playback import LivePlayback
from aurora.audio.render import add_param_arguments, store_from_args
from aurora.errors import AuroraError
from shared.audio import load_audio

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Aurora live monitor")
    parser.add_argument("input", help="Audio file to play")
    parser.add_argument("--raw", action="store_true", help="Play without effects")
    add_param_arguments(parser)
    parser.add_argument("--tail", type=float, default=0.0,
                        help="Seconds to keep playing after the clip ends")
    args = parser.parse_args(argv)

    engine = LivePlayback(store_from_args(args))
    try:
        audio = load_audio(args.input)
        if args.raw:
            handle = engine.play_raw(audio)
        else:
            handle = engine.play(audio, tail=args.tail)
        handle.wait()
    except KeyboardInterrupt:
        engine.stop()
    except AuroraError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
