"""
heapshadow.transfer
===================

Lifetime Transfer Function.

Updates a :class:`~heapshadow.shadow_heap.ShadowHeap` statement by
statement::

    Allocate(identity, size)        -> heap.allocate
    Free(identity)                  -> heap.free
    Bind(variable, identity, off)   -> heap.bind        (no block mutation)
    Access(variable, kind, off)     -> classify, record, continue

The same object serves both phases of the driver.  Called as
``transfer(node, fact_in)`` it is a plain solver transfer function and
records nothing.  :meth:`LifetimeTransfer.run_node` replays a node against
its fixpoint input and feeds a :class:`~heapshadow.report.FindingCollector`.

Lifetime violations of the analysed program (double free, free of an
unknown block) are caught here and become findings.  Internal-consistency
errors propagate to the driver.
"""

from __future__ import annotations

import logging
from typing import Optional

from heapshadow.classifier import AccessClassifier, AccessEvent
from heapshadow.ctrlflow_graph import CFGNode
from heapshadow.errors import LifetimeViolation
from heapshadow.report import FindingCollector
from heapshadow.shadow_heap import ShadowHeap
from heapshadow.statements import Access, Allocate, Bind, Free, Statement

logger = logging.getLogger(__name__)


class LifetimeTransfer:
    """Statement-level transfer function over shadow heaps."""

    def __init__(self, classifier: Optional[AccessClassifier] = None) -> None:
        self.classifier = classifier or AccessClassifier()

    def __call__(self, node: CFGNode, fact_in: ShadowHeap) -> ShadowHeap:
        return self.run_node(node, fact_in)

    def run_node(
        self,
        node: CFGNode,
        fact_in: ShadowHeap,
        collector: Optional[FindingCollector] = None,
        degraded: bool = False,
    ) -> ShadowHeap:
        """Apply every statement of ``node`` to a copy of ``fact_in``."""
        heap = fact_in.copy()
        for stmt in node.statements:
            self.apply(stmt, heap, collector, degraded)
        return heap

    def apply(
        self,
        stmt: Statement,
        heap: ShadowHeap,
        collector: Optional[FindingCollector] = None,
        degraded: bool = False,
    ) -> None:
        """Apply one statement to ``heap`` in place.

        With ``degraded`` set, accesses are recorded as indeterminate instead
        of being classified against ``heap``.
        """
        if isinstance(stmt, Allocate):
            heap.allocate(stmt.identity, stmt.size, site=stmt)
        elif isinstance(stmt, Free):
            try:
                heap.free(stmt.identity, site=stmt.location)
            except LifetimeViolation as exc:
                logger.debug("%s: %s", stmt.location, exc)
                if collector is not None:
                    collector.record_violation(exc, stmt.location)
        elif isinstance(stmt, Bind):
            heap.bind(stmt.variable, stmt.identity, stmt.offset)
        elif isinstance(stmt, Access):
            if collector is None:
                return
            binding = heap.binding(stmt.variable)
            offset = stmt.offset
            if binding is not None:
                offset = None if binding.offset is None else binding.offset + stmt.offset
            event = AccessEvent(
                variable=stmt.variable,
                kind=stmt.kind,
                binding=binding,
                offset=offset,
                location=stmt.location,
                statement=stmt,
            )
            if degraded:
                verdict = self.classifier.indeterminate(
                    event, "a loop upstream did not stabilise within the iteration cap")
            else:
                verdict = self.classifier.classify(event, heap)
            collector.record_verdict(verdict)
        else:
            raise TypeError(f"not a statement: {stmt!r}")


__all__ = ["LifetimeTransfer"]
