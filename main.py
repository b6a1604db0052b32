#!/usr/bin/env python3
"""Launch Aurora from the project root.

Usage:
    python main.py clip.wav [--preset hall]          # live monitor
    python main.py render clip.wav [-o out.wav]      # offline export
"""

import sys

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "render":
        from aurora.audio.render import main
        sys.exit(main(sys.argv[2:]))
    from aurora.main import main
    sys.exit(main())
