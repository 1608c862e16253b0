"""
heapshadow.shadow_heap
======================

The Shadow Heap: the analysis state threaded through a procedure.

A :class:`ShadowHeap` maps allocation identities to
:class:`~heapshadow.heap_model.HeapBlock` entries and variables to
:class:`~heapshadow.heap_model.PointerBinding` entries.  Blocks are inserted
on allocation and flipped to ``FREED`` on free; they are never removed, so a
later access still resolves to a freed block rather than to "unknown".

:class:`ShadowHeapLattice` lifts the heap into the generic solver of
:mod:`heapshadow.dataflow_engine`.  ``None`` is bottom (no path reaches the
node yet); the empty heap is the state at procedure entry.

Join policy
-----------
* Blocks: per identity, ``FREED`` on any path wins.  A block known on only
  one path is kept as is.
* Bindings: targets are unioned, a disagreeing offset becomes unknown and a
  binding missing on some path is marked ``maybe_unbound``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, Iterator, List, Optional

from heapshadow.dataflow_engine import Lattice
from heapshadow.errors import DuplicateAllocationIdentity, FreeOfUnknownBlock
from heapshadow.heap_model import BlockRef, HeapBlock, PointerBinding

logger = logging.getLogger(__name__)


class ShadowHeap:
    """Allocation identity -> block, variable -> binding.

    Instances are owned by exactly one analysis state.  The transfer
    function copies before it mutates; nothing here is shared between
    procedures.
    """

    __slots__ = ("_blocks", "_bindings")

    def __init__(self) -> None:
        self._blocks: Dict[Hashable, HeapBlock] = {}
        self._bindings: Dict[str, PointerBinding] = {}

    # ----- blocks -----------------------------------------------------------

    def allocate(self, identity: Hashable, size: int, site: Any = None) -> BlockRef:
        """Insert a new ``LIVE`` block and return it.

        Executing the *same* allocating statement again (a loop) replaces the
        previous entry with a fresh block.  Any other clash on ``identity``
        is a front-end contract violation.

        Raises
        ------
        DuplicateAllocationIdentity
            If ``identity`` is already tracked by a different allocation.
        """
        existing = self._blocks.get(identity)
        if existing is not None and (site is None or existing.site is not site):
            raise DuplicateAllocationIdentity(identity, existing.site, site)
        block = HeapBlock(identity, size, site)
        self._blocks[identity] = block
        return block

    def free(self, identity: Hashable, site: Any = None) -> BlockRef:
        """Transition the block named ``identity`` to ``FREED``.

        Raises
        ------
        FreeOfUnknownBlock
            If no block with that identity is tracked.
        DoubleFreeDetected
            If the block is already freed.  It stays freed.
        """
        block = self._blocks.get(identity)
        if block is None:
            raise FreeOfUnknownBlock(identity)
        block.mark_freed(site)
        return block

    def lookup(self, identity: Hashable) -> Optional[BlockRef]:
        return self._blocks.get(identity)

    def __contains__(self, identity: Hashable) -> bool:
        return identity in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)

    def blocks(self) -> Iterator[HeapBlock]:
        """Blocks in a stable order (sorted by identity text)."""
        for key in sorted(self._blocks, key=str):
            yield self._blocks[key]

    # ----- bindings ---------------------------------------------------------

    def bind(self, variable: str, identity: Hashable, offset: int = 0) -> PointerBinding:
        """Create or retarget ``variable``.  No block is touched."""
        binding = PointerBinding.to(variable, identity, offset)
        self._bindings[variable] = binding
        return binding

    def binding(self, variable: str) -> Optional[PointerBinding]:
        return self._bindings.get(variable)

    def bindings(self) -> List[PointerBinding]:
        return [self._bindings[v] for v in sorted(self._bindings)]

    # ----- lattice support --------------------------------------------------

    def copy(self) -> "ShadowHeap":
        clone = ShadowHeap()
        clone._blocks = {k: b.copy() for k, b in self._blocks.items()}
        clone._bindings = dict(self._bindings)
        return clone

    def join(self, other: "ShadowHeap") -> "ShadowHeap":
        """Return the merge of two heaps meeting at a control-flow join."""
        merged = ShadowHeap()
        for key, block in self._blocks.items():
            theirs = other._blocks.get(key)
            merged._blocks[key] = (
                block.merged_with(theirs) if theirs is not None else block.copy()
            )
        for key, block in other._blocks.items():
            if key not in merged._blocks:
                merged._blocks[key] = block.copy()

        for var, binding in self._bindings.items():
            theirs = other._bindings.get(var)
            merged._bindings[var] = (
                binding.join(theirs) if theirs is not None else binding.as_partial()
            )
        for var, binding in other._bindings.items():
            if var not in merged._bindings:
                merged._bindings[var] = binding.as_partial()
        return merged

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShadowHeap):
            return NotImplemented
        return self._blocks == other._blocks and self._bindings == other._bindings

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        blocks = ", ".join(
            f"{b.identity}:{b.state.value}" for b in self.blocks()
        )
        binds = ", ".join(str(b) for b in self.bindings())
        return f"ShadowHeap(blocks=[{blocks}], bindings=[{binds}])"


class ShadowHeapLattice(Lattice[Optional[ShadowHeap]]):
    """Lattice of shadow heaps with ``None`` as bottom."""

    def bottom(self) -> Optional[ShadowHeap]:
        return None

    def is_bottom(self, a: Optional[ShadowHeap]) -> bool:
        return a is None

    def join(self, a: Optional[ShadowHeap], b: Optional[ShadowHeap]) -> Optional[ShadowHeap]:
        if a is None:
            return b
        if b is None:
            return a
        return a.join(b)

    def leq(self, a: Optional[ShadowHeap], b: Optional[ShadowHeap]) -> bool:
        if a is None:
            return True
        if b is None:
            return False
        return a.join(b) == b

    def eq(self, a: Optional[ShadowHeap], b: Optional[ShadowHeap]) -> bool:
        return a == b

    def copy_value(self, v: Optional[ShadowHeap]) -> Optional[ShadowHeap]:
        return None if v is None else v.copy()


__all__ = [
    "ShadowHeap",
    "ShadowHeapLattice",
]
