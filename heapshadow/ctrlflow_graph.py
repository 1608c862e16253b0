"""
heapshadow.ctrlflow_graph
=========================

Intraprocedural Control Flow Graphs over front-end statements.

Each procedure yields one CFG.  A CFG is a directed graph whose nodes are
*basic blocks* (straight-line sequences of
:mod:`heapshadow.statements`) and whose edges carry control-flow semantics
(fall-through, branch-true, branch-false, back-edge, ...).

Public API
----------
    EdgeKind         - classification of an edge
    CFGNode          - a single basic block
    CFGEdge          - a directed edge between two CFGNodes
    CFG              - the control flow graph for one procedure
    cfg_summary      - multi-line human-readable dump

Typical usage::

    from heapshadow.ctrlflow_graph import CFG, EdgeKind
    from heapshadow.statements import Allocate, Free

    cfg = CFG("main")
    body = cfg.new_node([Allocate("a", 40), Free("a")])
    cfg.add_edge(cfg.entry, body)
    cfg.add_edge(body, cfg.exit)
    print(cfg_summary(cfg))

Implementation notes
--------------------
* Node ids are allocated per graph, in creation order, so two runs over the
  same input produce the same ids.
* Every CFG owns a synthetic ``entry`` and ``exit`` node.  Both may carry
  statements.
"""

from __future__ import annotations

import enum
import itertools
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from heapshadow.errors import MalformedGraphError
from heapshadow.statements import SourceLocation, Statement


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------


class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    BACK_EDGE = "back-edge"
    BREAK = "break"
    CONTINUE = "continue"
    RETURN = "return"
    GOTO = "goto"
    SWITCH_CASE = "switch-case"
    SWITCH_DEFAULT = "switch-default"

    @classmethod
    def from_string(cls, s: str) -> "EdgeKind":
        for member in cls:
            if member.value == s:
                return member
        raise ValueError(f"unknown edge kind: {s!r}")


# ---------------------------------------------------------------------------
# CFGNode - a basic block
# ---------------------------------------------------------------------------


class CFGNode:
    """A basic block in the CFG.

    Attributes
    ----------
    id : int
        Identifier, unique within the owning CFG.
    statements : list
        Ordered statements executed by this block.
    kind : str
        Human-readable tag: ``"entry"``, ``"exit"``, ``"loop-cond"``,
        ``"body"``, ...
    name : str or None
        The front-end's label for this block, if any.
    successors : list[CFGEdge]
        Outgoing edges.
    predecessors : list[CFGEdge]
        Incoming edges.
    """

    __slots__ = (
        "id",
        "statements",
        "kind",
        "name",
        "successors",
        "predecessors",
    )

    def __init__(
        self,
        node_id: int,
        statements: Optional[List[Statement]] = None,
        kind: str = "body",
        name: Optional[str] = None,
    ) -> None:
        self.id: int = node_id
        self.statements: List[Statement] = list(statements) if statements else []
        self.kind: str = kind
        self.name = name
        self.successors: List[CFGEdge] = []
        self.predecessors: List[CFGEdge] = []

    # ----- helpers ----------------------------------------------------------

    def label(self) -> str:
        """Return a compact, human-readable label for this block."""
        if not self.statements:
            return f"[{self.kind}]"
        parts = [str(s) for s in self.statements[:4]]
        text = "; ".join(parts)
        if len(self.statements) > 4:
            text += " …"
        loc = self.location
        if loc is not None and loc.line:
            text = f"{loc} {text}"
        return text

    @property
    def location(self) -> Optional[SourceLocation]:
        """Location of the first statement, or ``None``."""
        if not self.statements:
            return None
        return self.statements[0].location

    def __repr__(self) -> str:
        return (f"CFGNode(id={self.id}, kind={self.kind!r}, "
                f"nstatements={len(self.statements)})")

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGNode):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

class CFGEdge:
    """A directed edge in the CFG."""

    __slots__ = ("src", "dst", "kind")

    def __init__(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"CFGEdge(BB{self.src.id} -> BB{self.dst.id}, "
            f"kind={self.kind.value!r})"
        )

    def __hash__(self) -> int:
        return hash((self.src.id, self.dst.id, self.kind))

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGEdge):
            return (
                self.src.id == other.src.id
                and self.dst.id == other.dst.id
                and self.kind == other.kind
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Intraprocedural control flow graph for a single procedure.

    Attributes
    ----------
    name : str
        The procedure this CFG represents.
    entry : CFGNode
        Entry block.
    exit : CFGNode
        Exit block.
    nodes : list[CFGNode]
        All basic blocks (including entry and exit), in creation order.
    edges : list[CFGEdge]
        All edges.
    """

    def __init__(self, name: str = "<anonymous>") -> None:
        self.name = name
        self._ids = itertools.count()
        self.nodes: List[CFGNode] = []
        self.edges: List[CFGEdge] = []
        self.entry = self.new_node(kind="entry")
        self.exit = self.new_node(kind="exit")

    # ----- graph mutation ---------------------------------------------------

    def new_node(
        self,
        statements: Optional[List[Statement]] = None,
        kind: str = "body",
        name: Optional[str] = None,
    ) -> CFGNode:
        """Create a block, register it in this CFG and return it."""
        node = CFGNode(next(self._ids), statements, kind=kind, name=name)
        self.nodes.append(node)
        return node

    def add_edge(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        e = CFGEdge(src, dst, kind=kind)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        return e

    # ----- queries ----------------------------------------------------------

    def successors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.dst for e in node.successors]

    def predecessors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.src for e in node.predecessors]

    def node_by_name(self, name: str) -> Optional[CFGNode]:
        for n in self.nodes:
            if n.name == name:
                return n
        return None

    def statements(self) -> Iterator[Tuple[CFGNode, Statement]]:
        """Yield ``(node, statement)`` for every statement, node by node."""
        for node in self.nodes:
            for stmt in node.statements:
                yield node, stmt

    def reachable_from(self, start: CFGNode) -> Set[CFGNode]:
        """Return the set of nodes reachable from *start*."""
        visited: Set[CFGNode] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            for e in n.successors:
                worklist.append(e.dst)
        return visited

    def dominators(self) -> Dict[CFGNode, Set[CFGNode]]:
        """Compute the dominator sets using the iterative algorithm.

        Only nodes reachable from the entry are included.
        """
        reachable = self.reachable_from(self.entry)
        ordered = [n for n in self.nodes if n in reachable]
        dom: Dict[CFGNode, Set[CFGNode]] = {self.entry: {self.entry}}
        for n in ordered:
            if n is not self.entry:
                dom[n] = set(reachable)
        changed = True
        while changed:
            changed = False
            for n in ordered:
                if n is self.entry:
                    continue
                preds = [p for p in self.predecessors_of(n) if p in reachable]
                if not preds:
                    new_dom = {n}
                else:
                    new_dom = set.intersection(*(dom[p] for p in preds))
                    new_dom = new_dom | {n}
                if new_dom != dom[n]:
                    dom[n] = new_dom
                    changed = True
        return dom

    def back_edges(self) -> List[CFGEdge]:
        """Return edges whose destination dominates their source (loop back-edges)."""
        dom = self.dominators()
        return [e for e in self.edges if e.dst in dom.get(e.src, set())]

    def natural_loops(self) -> Dict[CFGEdge, Set[CFGNode]]:
        """Return a mapping from each back-edge to the set of nodes in
        its natural loop."""
        result: Dict[CFGEdge, Set[CFGNode]] = {}
        for be in self.back_edges():
            loop_nodes: Set[CFGNode] = {be.dst}
            stack = [be.src]
            while stack:
                m = stack.pop()
                if m not in loop_nodes:
                    loop_nodes.add(m)
                    for e in m.predecessors:
                        stack.append(e.src)
            result[be] = loop_nodes
        return result

    def has_cycles(self) -> bool:
        return bool(self.back_edges())

    def validate(self) -> None:
        """Check the structural invariants the engine relies on.

        Raises
        ------
        MalformedGraphError
            If an edge leaves the graph or the entry has predecessors.
        """
        members = {id(n) for n in self.nodes}
        for e in self.edges:
            if id(e.src) not in members or id(e.dst) not in members:
                raise MalformedGraphError(
                    f"{self.name}: edge {e!r} references a node outside the graph"
                )
        if self.entry.predecessors:
            raise MalformedGraphError(
                f"{self.name}: entry block has incoming edges"
            )

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        lines.append(f'  label="{title or self.name}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for n in self.nodes:
            lbl = n.label().replace('"', '\\"').replace("\n", "\\n")
            color = ""
            if n.kind == "entry":
                color = ', style=filled, fillcolor="#ccffcc"'
            elif n.kind == "exit":
                color = ', style=filled, fillcolor="#ffcccc"'
            lines.append(f'  BB{n.id} [label="BB{n.id}\\n{lbl}"{color}];')
        for e in self.edges:
            style = ""
            if e.kind == EdgeKind.BRANCH_TRUE:
                style = ', color=green, fontcolor=green'
            elif e.kind == EdgeKind.BRANCH_FALSE:
                style = ', color=red, fontcolor=red'
            elif e.kind == EdgeKind.BACK_EDGE:
                style = ', style=dashed, color=blue, fontcolor=blue'
            elif e.kind in (EdgeKind.BREAK, EdgeKind.CONTINUE):
                style = ', style=dotted'
            lines.append(
                f'  BB{e.src.id} -> BB{e.dst.id} '
                f'[label="{e.kind.value}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CFG(procedure={self.name!r}, nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )


# ---------------------------------------------------------------------------
# Convenience: print a summary
# ---------------------------------------------------------------------------

def cfg_summary(cfg: CFG) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for node in cfg.nodes:
        succ_ids = ", ".join(
            f"BB{e.dst.id}({e.kind.value})" for e in node.successors)
        pred_ids = ", ".join(f"BB{e.src.id}" for e in node.predecessors)
        lines.append(
            f"  BB{node.id} [{node.kind}] "
            f"statements={len(node.statements)}  "
            f"succ=[{succ_ids}]  "
            f"pred=[{pred_ids}]"
        )
    return "\n".join(lines)


__all__ = [
    "EdgeKind",
    "CFGNode",
    "CFGEdge",
    "CFG",
    "cfg_summary",
]
