# tests/conftest.py
"""
Shared fixtures for the heapshadow test-suite.

``cfg_builder`` hands out :class:`CFGBuilder`, a small helper for wiring
blocks by label instead of juggling node objects::

    cfg = (cfg_builder("main")
           .block("body", Allocate("b", 8), Free("b"))
           .chain("entry", "body", "exit")
           .build())
"""

from pathlib import Path

import pytest

from heapshadow.ctrlflow_graph import CFG, EdgeKind
from heapshadow.statements import SourceLocation

ROOT = Path(__file__).resolve().parent.parent
FIXTURE = ROOT / "examples" / "use_after_free_print.sexp"


class CFGBuilder:
    """Label-addressed CFG construction.  ``entry`` and ``exit`` pre-exist."""

    def __init__(self, name="main"):
        self.cfg = CFG(name)
        self.blocks = {"entry": self.cfg.entry, "exit": self.cfg.exit}

    def __getitem__(self, label):
        return self.blocks[label]

    def block(self, label, *statements, kind="body"):
        self.blocks[label] = self.cfg.new_node(list(statements), kind=kind, name=label)
        return self

    def edge(self, src, dst, kind=EdgeKind.FALL_THROUGH):
        self.cfg.add_edge(self.blocks[src], self.blocks[dst], kind)
        return self

    def chain(self, *labels):
        for src, dst in zip(labels, labels[1:]):
            self.edge(src, dst)
        return self

    def build(self):
        return self.cfg


@pytest.fixture
def cfg_builder():
    return CFGBuilder


@pytest.fixture
def at():
    """``at(line, column=0)`` -> SourceLocation in ``test.c``."""
    def _at(line, column=0):
        return SourceLocation("test.c", line, column)
    return _at


@pytest.fixture
def fixture_path():
    return FIXTURE


@pytest.fixture
def write_program(tmp_path):
    """Write S-expression text to a temporary ``.sexp`` file and return its path."""
    def _write(text, name="prog.sexp"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
