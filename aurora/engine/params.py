"""Parameter schema and store for the effect chain.

This is the shared contract between the live monitor, the offline renderer
and the command line. The store is the only mutable state shared between the
control side and the rendering side; renders never read it directly, they
take a snapshot when their graph is built.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, fields
from typing import Mapping

from shared.params import ParamType as T, ParamDef, ParamSchema

SR = 44100

FEEDBACK_GAIN = 0.3       # delay feedback; must stay < 1 for the echoes to decay
IMPULSE_SECONDS = 2.5     # reverb impulse length
IMPULSE_DECAY = 2.0       # reverb envelope exponent
MIN_LOOP_DELAY = 128      # a feedback loop is at least one processing quantum
CHUNK_SIZE = 4096         # frames per render block (~93ms at 44.1k)
ANALYSER_SIZE = 2048      # frames kept for waveform display

# ── Schema ────────────────────────────────────────────────────────────

_PARAMS = [
    ParamDef("gain", T.FLOAT, section="output", label="Volume",
             default=50.0, range=(0.0, 100.0)),

    ParamDef("pitch", T.FLOAT, section="source", label="Pitch",
             default=1.0, range=(0.5, 2.0)),

    ParamDef("lowpass", T.FLOAT, section="filter", label="Lowpass Filter",
             default=20000.0, range=(200.0, 20000.0),
             aliases=("lowpassCutoff", "lowpass_cutoff")),

    ParamDef("highpass", T.FLOAT, section="filter", label="Highpass Filter",
             default=10.0, range=(10.0, 5000.0),
             aliases=("highpassCutoff", "highpass_cutoff")),

    ParamDef("delay_time", T.FLOAT, section="delay", label="Delay",
             default=0.0, range=(0.0, 0.5),
             aliases=("delayTime",)),

    ParamDef("reverb_mix", T.FLOAT, section="reverb", label="Reverb",
             default=0.0, range=(0.0, 1.0),
             aliases=("reverbMix",)),
]

SCHEMA = ParamSchema(_PARAMS)

default_params = SCHEMA.default_params
PARAM_RANGES = SCHEMA.param_ranges()

# Presets never carry gain: applying one keeps the listener's volume.
PRESETS = {
    "clean": {"lowpass": 20000, "highpass": 20, "delay_time": 0.0,
              "reverb_mix": 0.0, "pitch": 1.0},
    "phone": {"lowpass": 3500, "highpass": 400, "delay_time": 0.0,
              "reverb_mix": 0.0, "pitch": 1.0},
    "hall":  {"lowpass": 18000, "highpass": 80, "delay_time": 0.25,
              "reverb_mix": 0.7, "pitch": 1.0},
    "lofi":  {"lowpass": 5000, "highpass": 150, "delay_time": 0.12,
              "reverb_mix": 0.4, "pitch": 0.9},
}

PRESET_EXCLUDED = frozenset({"gain"})


@dataclass(frozen=True)
class ParamSnapshot:
    """Immutable copy of every parameter, taken at graph-build time."""

    gain: float
    pitch: float
    lowpass: float
    highpass: float
    delay_time: float
    reverb_mix: float

    @classmethod
    def from_mapping(cls, raw: Mapping) -> "ParamSnapshot":
        """Build from a (possibly partial, possibly out-of-range) mapping."""
        values = default_params()
        values.update(SCHEMA.validate_and_clamp(dict(raw)))
        return cls(**values)

    @property
    def master_gain(self) -> float:
        """Linear master gain (the stored gain is on a 0-100 scale)."""
        return self.gain / 100.0

    @property
    def dry_gain(self) -> float:
        return 1.0 - self.reverb_mix

    @property
    def wet_gain(self) -> float:
        return self.reverb_mix

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class ParameterStore:
    """Thread-safe holder of the current parameter values.

    Writes are clamped into range. `snapshot()` copies all values under the
    same lock as writes, so a render never sees a half-applied preset.
    """

    def __init__(self, initial: Mapping | None = None):
        self._lock = threading.Lock()
        self._values = default_params()
        if initial:
            self._values.update(SCHEMA.validate_and_clamp(dict(initial)))

    def get(self, name: str) -> float:
        key = SCHEMA.resolve(name)
        if key is None:
            raise KeyError(f"unknown parameter: {name!r}")
        with self._lock:
            return self._values[key]

    def set(self, name: str, value) -> float:
        """Store `value` clamped to the parameter's range; returns what was stored."""
        key = SCHEMA.resolve(name)
        if key is None:
            raise KeyError(f"unknown parameter: {name!r}")
        clamped = SCHEMA.clamp(key, value)
        with self._lock:
            self._values[key] = clamped
        return clamped

    def apply_preset(self, preset: str | Mapping) -> dict:
        """Bulk-set the parameters named in `preset`, leaving the rest alone.

        `preset` is a built-in preset name or a mapping. Gain is never
        changed by a preset. Returns the values that were applied.
        """
        if isinstance(preset, str):
            try:
                preset = PRESETS[preset]
            except KeyError:
                raise KeyError(f"unknown preset: {preset!r}") from None
        applied = {k: v for k, v in SCHEMA.validate_and_clamp(dict(preset)).items()
                   if k not in PRESET_EXCLUDED}
        with self._lock:
            self._values.update(applied)
        return applied

    def reset(self):
        with self._lock:
            self._values = default_params()

    def snapshot(self) -> ParamSnapshot:
        with self._lock:
            values = dict(self._values)
        return ParamSnapshot(**values)

    def as_dict(self) -> dict:
        with self._lock:
            return dict(self._values)


def snapshot_of(params) -> ParamSnapshot:
    """Coerce a store, snapshot or mapping into a ParamSnapshot."""
    if isinstance(params, ParamSnapshot):
        return params
    if isinstance(params, ParameterStore):
        return params.snapshot()
    if params is None:
        return ParamSnapshot(**default_params())
    return ParamSnapshot.from_mapping(params)
