"""
heapshadow.driver
=================

Fixed-Point Driver.

Analysis of one procedure runs in two phases:

1. **Solve.**  The generic forward solver from
   :mod:`heapshadow.dataflow_engine` iterates the lifetime transfer function
   to a fixpoint, starting from an empty shadow heap.  Nothing is reported
   yet, so intermediate (non-final) states never leak into the report.
   Straight-line code is evaluated exactly once per block.
2. **Report.**  Each reachable block is replayed once against its fixpoint
   input with a :class:`~heapshadow.report.FindingCollector` attached.

Blocks that are still changing after ``iteration_cap`` visits are abandoned
by the solver after one final evaluation on their joined input.  Every
block reachable from them, the rest of their loop included, is *degraded*:
its accesses are reported as ``INDETERMINATE``.

An :class:`~heapshadow.errors.InternalConsistencyError` (duplicate
allocation identity, malformed graph) aborts the current procedure only; it
is recorded as a :class:`~heapshadow.report.ProcedureFailure` and analysis
moves on to the next procedure.
"""

from __future__ import annotations

import itertools
import logging
from typing import Iterator, Optional, Set

from heapshadow.classifier import AccessClassifier
from heapshadow.config import AnalysisConfig
from heapshadow.ctrlflow_graph import CFG, CFGNode
from heapshadow.dataflow_engine import run_forward_analysis
from heapshadow.errors import ConfigError, InternalConsistencyError
from heapshadow.program import Program
from heapshadow.report import AnalysisReport, FindingCollector, ProcedureFailure
from heapshadow.shadow_heap import ShadowHeap, ShadowHeapLattice
from heapshadow.transfer import LifetimeTransfer

logger = logging.getLogger(__name__)


class FixedPointDriver:
    """Runs the lifetime analysis over procedures and programs."""

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        classifier: Optional[AccessClassifier] = None,
    ) -> None:
        self.config = config or AnalysisConfig()
        problems = self.config.validate()
        if problems:
            raise ConfigError("; ".join(problems))
        self.transfer = LifetimeTransfer(classifier)
        self.lattice = ShadowHeapLattice()

    def analyze_procedure(
        self,
        cfg: CFG,
        *,
        seq: Optional[Iterator[int]] = None,
    ) -> AnalysisReport:
        """Analyse one CFG with a fresh, empty shadow heap."""
        name = cfg.name
        report = AnalysisReport(procedures=[name])
        logger.info("analysing procedure %s (%d blocks)", name, len(cfg.nodes))

        collector = FindingCollector(
            name,
            report_format_access=self.config.enable_format_access_reporting,
            seq=seq,
        )
        try:
            cfg.validate()
            result = run_forward_analysis(
                cfg,
                self.lattice,
                self.transfer,
                initial_value=ShadowHeap(),
                max_iterations=self.config.iteration_cap,
            )
            degraded = self._degraded_nodes(cfg, result.unstable)
            for node in result.order:
                fact = result.facts_in.get(node)
                if fact is None:
                    continue  # unreachable
                self.transfer.run_node(node, fact, collector,
                                       degraded=node in degraded)
        except InternalConsistencyError as exc:
            logger.error("aborting analysis of %s: %s", name, exc)
            report.failures.append(ProcedureFailure(name, exc))
            return report

        report.iterations = result.iterations
        if degraded:
            report.degraded[name] = sorted(n.id for n in degraded)
        report.absorb(collector)
        logger.info("procedure %s: %d finding(s), %d solver evaluation(s)",
                    name, len(report.findings), result.iterations)
        return report

    def analyze_program(self, program: Program) -> AnalysisReport:
        """Analyse every procedure of ``program``, each with its own heap."""
        report = AnalysisReport()
        seq = itertools.count()
        for cfg in program:
            report.merge(self.analyze_procedure(cfg, seq=seq))
        return report

    @staticmethod
    def _degraded_nodes(cfg: CFG, unstable: Set[CFGNode]) -> Set[CFGNode]:
        if not unstable:
            return set()
        degraded: Set[CFGNode] = set()
        for node in unstable:
            degraded |= cfg.reachable_from(node)
        headers = {
            edge.dst for edge, body in cfg.natural_loops().items()
            if body & unstable
        }
        logger.warning(
            "%s: iteration cap reached at %s (loop headers: %s); "
            "accesses in %s are indeterminate",
            cfg.name, _block_list(unstable), _block_list(headers) or "none",
            _block_list(degraded),
        )
        return degraded


def _block_list(nodes: Set[CFGNode]) -> str:
    return ", ".join(f"BB{n.id}" for n in sorted(nodes, key=lambda n: n.id))


def analyze_procedure(cfg: CFG, config: Optional[AnalysisConfig] = None) -> AnalysisReport:
    return FixedPointDriver(config).analyze_procedure(cfg)


def analyze_program(program: Program, config: Optional[AnalysisConfig] = None) -> AnalysisReport:
    return FixedPointDriver(config).analyze_program(program)


__all__ = [
    "FixedPointDriver",
    "analyze_procedure",
    "analyze_program",
]
