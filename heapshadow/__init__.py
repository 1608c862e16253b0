"""
heapshadow — Shadow-Heap Lifetime Tracking for Memory-Safety Checkers
=====================================================================

This package models heap block lifetimes over the control-flow graphs
delivered by a parsing front-end and classifies every dereference as safe,
use-after-free, or indeterminate.  Accesses made as arguments of a
formatted-output routine get their own, lower-confidence outcome.

Core modules
------------
statements
    The four front-end statement kinds and source locations.
heap_model
    A single heap block and the pointer bindings that reference it.
shadow_heap
    Identity → block mapping threaded through the analysis; its lattice.
classifier
    Safe / use-after-free / via-format / indeterminate decisions.
transfer
    Statement-level transfer function over shadow heaps.
dataflow_engine
    Generic worklist fixpoint solver.
driver
    Two-phase (solve, then report) analysis of procedures and programs.
ctrlflow_graph
    Basic-block CFG with dominators and natural loops.
loader
    S-expression program reader.
checkers / plus_reporter
    cppcheck-style diagnostics, suppressions, terminal and SARIF output.

Quick start
-----------
>>> from heapshadow import CFG, Allocate, Bind, Free, Access, AccessKind, analyze_procedure
>>> cfg = CFG("main")
>>> body = cfg.new_node([Allocate("b", 40), Bind("p", "b"), Free("b"),
...                      Access("p", AccessKind.READ, 3)])
>>> _ = cfg.add_edge(cfg.entry, body)
>>> _ = cfg.add_edge(body, cfg.exit)
>>> [f.kind.error_id for f in analyze_procedure(cfg).findings]
['useAfterFree']
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_re-export)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "HeapShadowError",
        "LifetimeViolation",
        "DoubleFreeDetected",
        "FreeOfUnknownBlock",
        "InternalConsistencyError",
        "DuplicateAllocationIdentity",
        "MalformedGraphError",
        "ProgramFormatError",
        "ConfigError",
    ],
    "statements": [
        "SourceLocation",
        "AccessKind",
        "Allocate",
        "Free",
        "Bind",
        "Access",
    ],
    "heap_model": [
        "BlockState",
        "HeapBlock",
        "PointerBinding",
    ],
    "ctrlflow_graph": [
        "EdgeKind",
        "CFGNode",
        "CFG",
    ],
    "shadow_heap": [
        "ShadowHeap",
        "ShadowHeapLattice",
    ],
    "classifier": [
        "Classification",
        "AccessEvent",
        "Verdict",
        "AccessClassifier",
    ],
    "report": [
        "FindingKind",
        "Finding",
        "ProcedureFailure",
        "AnalysisReport",
    ],
    "transfer": [
        "LifetimeTransfer",
    ],
    "config": [
        "AnalysisConfig",
    ],
    "program": [
        "Program",
        "Expectation",
    ],
    "driver": [
        "FixedPointDriver",
        "analyze_procedure",
        "analyze_program",
    ],
    "loader": [
        "load_program",
        "parse_program",
    ],
    "regression": [
        "check_expectations",
    ],
}

# ---------------------------------------------------------------------------
# Import helper
# ---------------------------------------------------------------------------

def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"heapshadow: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(f"heapshadow.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, obj)
        __all__.append(name)

    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of the re-exported submodules."""
    return sorted(_CORE_MODULES)
