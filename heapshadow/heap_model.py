"""
heapshadow.heap_model
=====================

Heap Block Model and Pointer Binding.

A :class:`HeapBlock` is one dynamic allocation.  Its identity and size are
fixed at construction; its state moves once, ``LIVE -> FREED``, and never
back.  A :class:`PointerBinding` is a non-owning reference from a program
variable into a block.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any, FrozenSet, Hashable, Optional

from heapshadow.errors import DoubleFreeDetected


class BlockState(enum.Enum):
    """Lifecycle state of a heap block."""
    LIVE = "live"
    FREED = "freed"

    @staticmethod
    def join(a: "BlockState", b: "BlockState") -> "BlockState":
        """Freed on any incoming path means freed after the join."""
        if a is BlockState.FREED or b is BlockState.FREED:
            return BlockState.FREED
        return BlockState.LIVE


class HeapBlock:
    """
    One abstract heap allocation.

    Attributes
    ----------
    identity : hashable
        Opaque allocation identifier, unique per allocation event.
    size : int
        Requested byte count.
    site : object
        The statement that created the block (compared with ``is``).
    free_site : object or None
        Where the block was freed, for diagnostics.
    """

    __slots__ = ("_identity", "_size", "site", "_state", "free_site")

    def __init__(self, identity: Hashable, size: int, site: Any = None) -> None:
        if size < 0:
            raise ValueError(f"block size must be non-negative, got {size}")
        self._identity = identity
        self._size = size
        self.site = site
        self._state = BlockState.LIVE
        self.free_site: Any = None

    @property
    def identity(self) -> Hashable:
        return self._identity

    @property
    def size(self) -> int:
        return self._size

    @property
    def state(self) -> BlockState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state is BlockState.LIVE

    @property
    def is_freed(self) -> bool:
        return self._state is BlockState.FREED

    def mark_freed(self, site: Any = None) -> None:
        """Transition ``LIVE -> FREED``.

        Raises
        ------
        DoubleFreeDetected
            If the block is already freed.  The block is left untouched,
            in particular it stays ``FREED``.
        """
        if self._state is BlockState.FREED:
            raise DoubleFreeDetected(self._identity, self.free_site)
        self._state = BlockState.FREED
        self.free_site = site

    def copy(self) -> "HeapBlock":
        clone = HeapBlock(self._identity, self._size, self.site)
        clone._state = self._state
        clone.free_site = self.free_site
        return clone

    def merged_with(self, other: "HeapBlock") -> "HeapBlock":
        """Join two views of the same block coming from different paths."""
        clone = self.copy()
        clone._state = BlockState.join(self._state, other._state)
        if clone.free_site is None:
            clone.free_site = other.free_site
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeapBlock):
            return NotImplemented
        return (
            self._identity == other._identity
            and self._size == other._size
            and self._state is other._state
            and self.site is other.site
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (f"HeapBlock({self._identity!r}, size={self._size}, "
                f"state={self._state.value})")


# The shadow heap hands out the block itself; callers must not mutate it
# except through ShadowHeap.free().
BlockRef = HeapBlock


@dataclass(frozen=True)
class PointerBinding:
    """
    A variable's current view of the heap.

    ``targets`` holds one identity on straight-line code; after a join of
    paths that bound the variable differently it holds every candidate.
    ``maybe_unbound`` is set when some incoming path did not bind the
    variable at all.  ``offset`` is ``None`` once paths disagree on it.
    """
    variable: str
    targets: FrozenSet[Hashable]
    offset: Optional[int] = 0
    maybe_unbound: bool = False

    @classmethod
    def to(cls, variable: str, identity: Hashable, offset: int = 0) -> "PointerBinding":
        return cls(variable, frozenset([identity]), offset)

    @property
    def target(self) -> Optional[Hashable]:
        """The single target identity, or ``None`` if ambiguous."""
        if len(self.targets) == 1:
            return next(iter(self.targets))
        return None

    def join(self, other: "PointerBinding") -> "PointerBinding":
        return replace(
            self,
            targets=self.targets | other.targets,
            offset=self.offset if self.offset == other.offset else None,
            maybe_unbound=self.maybe_unbound or other.maybe_unbound,
        )

    def as_partial(self) -> "PointerBinding":
        """This binding as seen from a join where another path left it unbound."""
        if self.maybe_unbound:
            return self
        return replace(self, maybe_unbound=True)

    def __str__(self) -> str:
        tgt = ", ".join(sorted(str(t) for t in self.targets))
        off = "?" if self.offset is None else str(self.offset)
        flag = " (maybe unbound)" if self.maybe_unbound else ""
        return f"{self.variable} -> {{{tgt}}}[{off}]{flag}"


__all__ = [
    "BlockState",
    "HeapBlock",
    "BlockRef",
    "PointerBinding",
]
