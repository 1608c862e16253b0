"""
heapshadow.program
==================

A translation unit as delivered by the front-end: named procedures, one CFG
each, plus the regression expectations attached to the file.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from heapshadow.ctrlflow_graph import CFG


@dataclass(frozen=True)
class Expectation:
    """``(expect ERROR-ID LINE [COUNT])``: ``count`` findings of ``error_id`` on ``line``."""
    error_id: str
    line: int
    count: int = 1


@dataclass
class Program:
    file: str = ""
    procedures: Dict[str, CFG] = field(default_factory=OrderedDict)
    expectations: List[Expectation] = field(default_factory=list)

    def add_procedure(self, cfg: CFG) -> CFG:
        if cfg.name in self.procedures:
            raise ValueError(f"duplicate procedure {cfg.name!r}")
        self.procedures[cfg.name] = cfg
        return cfg

    def procedure(self, name: str) -> Optional[CFG]:
        return self.procedures.get(name)

    def __iter__(self) -> Iterator[CFG]:
        return iter(self.procedures.values())

    def __len__(self) -> int:
        return len(self.procedures)


__all__ = ["Expectation", "Program"]
