"""Declarative parameter schema.

The effect chain's parameter contract is a list of ParamDef objects.
ParamSchema wraps the list, derives the defaults/ranges dicts the rest of the
code needs, and owns the clamping rule: out-of-range values are pulled back
into range, never rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ParamType(Enum):
    FLOAT = "float"


@dataclass(frozen=True)
class ParamDef:
    key: str
    type: ParamType
    default: Any
    section: str
    label: str = ""
    range: tuple | None = None          # (min, max)
    aliases: tuple[str, ...] = ()       # alternate spellings accepted on input


class ParamSchema:
    """Derives defaults/ranges from a declarative param list and clamps values."""

    def __init__(self, params: list[ParamDef]):
        self._params = params
        self._by_key: dict[str, ParamDef] = {p.key: p for p in params}
        self._aliases: dict[str, str] = {}
        for p in params:
            for alias in p.aliases:
                self._aliases[alias] = p.key

    def default_params(self) -> dict:
        return {p.key: p.default for p in self._params}

    def param_ranges(self) -> dict[str, tuple]:
        return {p.key: p.range for p in self._params if p.range is not None}

    def param_sections(self) -> dict[str, list[ParamDef]]:
        """ParamDefs grouped by section, in declaration order."""
        sections: dict[str, list[ParamDef]] = {}
        for p in self._params:
            sections.setdefault(p.section, []).append(p)
        return sections

    def resolve(self, name: str) -> str | None:
        """Canonical key for `name` (or one of its aliases), None if unknown."""
        if name in self._by_key:
            return name
        return self._aliases.get(name)

    def clamp(self, key: str, value) -> float:
        """Cast and clamp a single value for `key`.

        Raises KeyError for unknown keys and TypeError for values that are
        not numbers. NaN falls back to the default.
        """
        canonical = self.resolve(key)
        if canonical is None:
            raise KeyError(f"unknown parameter: {key!r}")
        p = self._by_key[canonical]
        if isinstance(value, bool):
            raise TypeError(f"{canonical}: expected a number, got {value!r}")
        try:
            v = float(value)
        except (TypeError, ValueError):
            raise TypeError(f"{canonical}: expected a number, got {value!r}") from None
        if math.isnan(v):
            v = float(p.default)
        if p.range:
            lo, hi = p.range
            v = max(lo, min(hi, v))
        return float(v)

    def validate_and_clamp(self, raw: dict) -> dict:
        """Validate and clamp a raw params dict (e.g. a preset).

        Unknown keys and non-numeric values are dropped. Aliases are mapped
        to their canonical key.
        """
        result = {}
        for key, value in raw.items():
            canonical = self.resolve(key)
            if canonical is None:
                continue
            try:
                result[canonical] = self.clamp(canonical, value)
            except TypeError:
                continue
        return result

    def __iter__(self):
        return iter(self._params)
