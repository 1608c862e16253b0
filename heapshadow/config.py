"""
heapshadow.config
=================

Analysis options.

Options are plain dataclass fields.  Each one also has a dotted name in
the style of the analyzer command line (``--set ana.uaf.iteration-cap 50``,
``--disable ana.uaf.format-access``)::

    ana.uaf.format-access     enable_format_access_reporting   bool
    ana.uaf.iteration-cap     iteration_cap                    int
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

from heapshadow.errors import ConfigError

logger = logging.getLogger(__name__)

OPTION_NAMES: Dict[str, str] = {
    "ana.uaf.format-access": "enable_format_access_reporting",
    "ana.uaf.iteration-cap": "iteration_cap",
}

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass(frozen=True)
class AnalysisConfig:
    """Tuning knobs for one analysis run."""
    enable_format_access_reporting: bool = True
    iteration_cap: int = 1000

    def validate(self) -> List[str]:
        """Return a list of validation problems (empty if valid)."""
        problems: List[str] = []
        if self.iteration_cap < 1:
            problems.append("iteration_cap must be at least 1")
        return problems

    def with_option(self, name: str, value: Any) -> "AnalysisConfig":
        """Return a copy with the option ``name`` (field or dotted) set."""
        field_name = _resolve(name)
        return replace(self, **{field_name: _coerce(field_name, value)})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        config = cls()
        for key, value in data.items():
            config = config.with_option(key, value)
        return config

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "AnalysisConfig":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"cannot read config file {p}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{p}: invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{p}: top level must be an object")
        logger.debug("loaded %d option(s) from %s", len(data), p)
        return cls.from_mapping(data)

    def as_options(self) -> List[Tuple[str, Any]]:
        """The configuration as ``(dotted name, value)`` pairs."""
        reverse = {v: k for k, v in OPTION_NAMES.items()}
        return [(reverse[f.name], getattr(self, f.name)) for f in fields(self)]


def _resolve(name: str) -> str:
    if name in OPTION_NAMES:
        return OPTION_NAMES[name]
    if name in {f.name for f in fields(AnalysisConfig)}:
        return name
    raise ConfigError(f"unknown option: {name!r}")


def _coerce(field_name: str, value: Any) -> Any:
    if field_name == "iteration_cap":
        if isinstance(value, bool):
            raise ConfigError(f"{field_name}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{field_name}: expected an integer, got {value!r}") from exc
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _TRUE:
            return True
        if key in _FALSE:
            return False
    raise ConfigError(f"{field_name}: expected a boolean, got {value!r}")


__all__ = ["AnalysisConfig", "OPTION_NAMES"]
