"""
heapshadow.dataflow_engine
==========================

A generic, lattice-based forward dataflow framework over
:class:`heapshadow.ctrlflow_graph.CFG`.

Theory
------
A dataflow analysis is defined by:

1.  A **lattice** ``(L, ⊑, ⊥, ⊔)`` — a partially-ordered set with a least
    element ``⊥`` and a join (least upper bound) operator ``⊔``.
2.  A **transfer function** ``f : Node × L → L`` — transforms the dataflow
    fact at a CFG node.
3.  An **initial value** for the entry node.

The engine iterates until a **fixpoint** is reached: no node's incoming
fact changes upon re-application of the transfer functions of its
predecessors.

Termination
-----------
Every node may be (re-)evaluated at most ``max_iterations`` times.  A node
whose input is still changing when it runs out of visits gets one final
evaluation on its joined input, is listed in
:attr:`DataflowResult.unstable` and is never evaluated again; the rest of
the graph keeps going.  Callers decide what an unstable node means for them.

Worklist algorithms
-------------------
``FIFO``
    Simple BFS-like iteration.
``LIFO``
    Simple DFS-like iteration.
``RPO`` (Reverse Post-Order)
    The standard for forward analyses — processes predecessors before
    successors.  On an acyclic graph every node is evaluated exactly once.

Usage example
-------------
::

    from heapshadow.dataflow_engine import run_forward_analysis
    from heapshadow.shadow_heap import ShadowHeap, ShadowHeapLattice

    result = run_forward_analysis(
        cfg, ShadowHeapLattice(), transfer, initial_value=ShadowHeap(),
    )
    for node, fact in result.items_in():
        print(f"BB{node.id}: {fact}")
"""

from __future__ import annotations

import abc
import copy
import enum
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Protocol,
    Set,
    Tuple,
    TypeVar,
    runtime_checkable,
)

logger = logging.getLogger(__name__)


# ===========================================================================
# TYPE VARIABLES
# ===========================================================================

L = TypeVar("L")          # Lattice value type


# ===========================================================================
# WORKLIST STRATEGY
# ===========================================================================

class WorklistStrategy(enum.Enum):
    """Strategy for selecting the next worklist node."""
    FIFO = "fifo"
    LIFO = "lifo"
    RPO  = "rpo"        # Reverse post-order (best for forward)


# ===========================================================================
# LATTICE - ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice must provide:

    - ``bottom()``  → the least element ⊥.
    - ``join(a, b)`` → the least upper bound ``a ⊔ b``.
    - ``leq(a, b)``  → ``True`` iff ``a ⊑ b``.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def is_bottom(self, a: L) -> bool:
        return self.eq(a, self.bottom())

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result

    def copy_value(self, v: L) -> L:
        """Return a deep copy of a lattice value.

        Default uses ``copy.deepcopy``.  Override for performance.
        """
        return copy.deepcopy(v)


# ===========================================================================
# TRANSFER FUNCTION PROTOCOL
# ===========================================================================

@runtime_checkable
class TransferFunction(Protocol[L]):
    """Protocol for a transfer function.

    Takes a CFG node and the incoming dataflow fact, returns the outgoing
    fact.  Must not mutate ``fact_in``.
    """

    def __call__(self, node: Any, fact_in: L) -> L:
        ...


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

@dataclass
class DataflowResult(Generic[L]):
    """Container for dataflow analysis results.

    Attributes
    ----------
    facts_in : dict
        Map from CFG node → incoming (pre-node) dataflow fact.
    facts_out : dict
        Map from CFG node → outgoing (post-node) dataflow fact.
    iterations : int
        Number of node evaluations performed.
    unstable : set
        Nodes abandoned because they ran out of visits.
    order : list
        The node order used to seed the worklist.
    elapsed_seconds : float
        Wall-clock time.
    """
    facts_in: Dict[Any, L] = field(default_factory=dict)
    facts_out: Dict[Any, L] = field(default_factory=dict)
    iterations: int = 0
    unstable: Set[Any] = field(default_factory=set)
    order: List[Any] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def converged(self) -> bool:
        """Whether the analysis reached a fixpoint everywhere."""
        return not self.unstable

    def fact_at(self, node, *, before: bool = True) -> L:
        if before:
            return self.facts_in.get(node)
        return self.facts_out.get(node)

    def items_in(self) -> Iterable[Tuple[Any, L]]:
        return self.facts_in.items()

    def items_out(self) -> Iterable[Tuple[Any, L]]:
        return self.facts_out.items()


# ===========================================================================
# INTRAPROCEDURAL SOLVER
# ===========================================================================

class IntraproceduralSolver(Generic[L]):
    """Forward fixpoint engine for a single CFG.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph (from :mod:`heapshadow.ctrlflow_graph`).
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(node, L) → L
        The transfer function.
    strategy : WorklistStrategy
        Worklist iteration order.
    initial_value : L, optional
        Initial fact for the entry node.  Defaults to ``lattice.bottom()``.
    max_iterations : int
        Maximum number of evaluations of any single node.
    """

    def __init__(
        self,
        cfg,
        lattice: Lattice[L],
        transfer: Callable,
        strategy: WorklistStrategy = WorklistStrategy.RPO,
        initial_value: Optional[L] = None,
        max_iterations: int = 1000,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.cfg = cfg
        self.lattice = lattice
        self.transfer = transfer
        self.strategy = strategy
        self.initial_value = (
            initial_value if initial_value is not None
            else lattice.bottom()
        )
        self.max_iterations = max_iterations

        self._nodes: List = list(cfg.nodes)
        self._entry = cfg.entry
        self._visits: Dict[int, int] = defaultdict(int)

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to fixpoint (or until nodes run out of visits)."""
        t0 = time.monotonic()
        lat = self.lattice

        facts_in: Dict[Any, L] = {}
        facts_out: Dict[Any, L] = {}
        for node in self._nodes:
            facts_in[node] = lat.bottom()
            facts_out[node] = lat.bottom()

        order = self._initial_order()
        worklist: Deque = deque(order)
        in_worklist: Set[int] = set(n.id for n in worklist)
        unstable: Set = set()
        evaluated: Set[int] = set()
        iterations = 0

        while worklist:
            node = self._pop_worklist(worklist, in_worklist)
            if node in unstable:
                continue

            merged = self._merge_incoming(node, facts_out)
            if node is self._entry:
                merged = lat.join(merged, lat.copy_value(self.initial_value))

            # Nothing reaches this node yet; a predecessor re-queues it later.
            if lat.is_bottom(merged):
                continue

            if node.id in evaluated and lat.eq(merged, facts_in[node]):
                continue

            if self._visits[node.id] >= self.max_iterations:
                logger.debug(
                    "BB%d still changing after %d visits; abandoning it",
                    node.id, self._visits[node.id],
                )
                unstable.add(node)
                # one last evaluation on the joined input so successors
                # still see every path through the abandoned node
                iterations += 1
                facts_in[node] = merged
                facts_out[node] = self.transfer(node, merged)
                for succ in self.cfg.successors_of(node):
                    if succ.id not in in_worklist:
                        worklist.append(succ)
                        in_worklist.add(succ.id)
                continue

            evaluated.add(node.id)
            self._visits[node.id] += 1
            iterations += 1
            facts_in[node] = merged
            facts_out[node] = self.transfer(node, merged)

            for succ in self.cfg.successors_of(node):
                if succ.id not in in_worklist:
                    worklist.append(succ)
                    in_worklist.add(succ.id)

        result = DataflowResult(
            facts_in=facts_in,
            facts_out=facts_out,
            iterations=iterations,
            unstable=unstable,
            order=order,
            elapsed_seconds=time.monotonic() - t0,
        )
        logger.debug(
            "solver finished: %d evaluations, %d unstable node(s), %.3fs",
            iterations, len(unstable), result.elapsed_seconds,
        )
        return result

    # ----- Internal helpers -------------------------------------------------

    def _merge_incoming(self, node, facts_out: Dict) -> L:
        lat = self.lattice
        result = lat.bottom()
        for pred in self.cfg.predecessors_of(node):
            result = lat.join(result, facts_out.get(pred, lat.bottom()))
        return result

    def _initial_order(self) -> List:
        if self.strategy == WorklistStrategy.RPO:
            return self._reverse_postorder()
        return list(self._nodes)

    def _pop_worklist(self, worklist: Deque, in_worklist: Set[int]):
        if self.strategy == WorklistStrategy.LIFO:
            node = worklist.pop()
        else:
            node = worklist.popleft()
        in_worklist.discard(node.id)
        return node

    def _reverse_postorder(self) -> List:
        """Compute reverse post-order of CFG nodes (iterative DFS)."""
        visited: Set[int] = set()
        order: List = []

        def dfs(root) -> None:
            stack = [(root, iter(self.cfg.successors_of(root)))]
            visited.add(root.id)
            while stack:
                current, children = stack[-1]
                for child in children:
                    if child.id not in visited:
                        visited.add(child.id)
                        stack.append((child, iter(self.cfg.successors_of(child))))
                        break
                else:
                    stack.pop()
                    order.append(current)

        if self._entry is not None:
            dfs(self._entry)
        # Add any unreachable nodes
        for n in self._nodes:
            if n.id not in visited:
                dfs(n)

        order.reverse()
        return order


# ===========================================================================
# CONVENIENCE
# ===========================================================================

def run_forward_analysis(
    cfg,
    lattice: Lattice[L],
    transfer: Callable,
    *,
    initial_value: Optional[L] = None,
    strategy: WorklistStrategy = WorklistStrategy.RPO,
    max_iterations: int = 1000,
) -> DataflowResult[L]:
    """Run a forward intraprocedural analysis and return its result."""
    solver = IntraproceduralSolver(
        cfg,
        lattice,
        transfer,
        strategy=strategy,
        initial_value=initial_value,
        max_iterations=max_iterations,
    )
    return solver.solve()


__all__ = [
    "WorklistStrategy",
    "Lattice",
    "TransferFunction",
    "DataflowResult",
    "IntraproceduralSolver",
    "run_forward_analysis",
]
