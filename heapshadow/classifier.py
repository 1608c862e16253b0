"""
heapshadow.classifier
=====================

Access Classifier.

Decides, for one dereference and the shadow heap in front of it, whether the
access is ``SAFE``, a confirmed use-after-free, a use-after-free through a
formatted-output argument, or ``INDETERMINATE``.

The offset of an access is carried into the verdict for reporting and is
never consulted when deciding: every offset into a freed block is equally
invalid.

Resolution of a binding with several candidate targets (after a join)::

    any candidate FREED               -> use-after-free
    else unbound on some path         -> indeterminate
    else any candidate untracked      -> indeterminate
    else                              -> safe
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Hashable, Optional

from heapshadow.heap_model import PointerBinding
from heapshadow.shadow_heap import ShadowHeap
from heapshadow.statements import AccessKind, SourceLocation, UNKNOWN_LOCATION


class Classification(enum.Enum):
    SAFE = "safe"
    USE_AFTER_FREE = "use-after-free"
    USE_AFTER_FREE_VIA_FORMAT = "use-after-free-via-format"
    INDETERMINATE = "indeterminate"

    @property
    def is_finding(self) -> bool:
        """Whether this outcome becomes an entry in the findings report."""
        return self in (Classification.USE_AFTER_FREE,
                        Classification.USE_AFTER_FREE_VIA_FORMAT)


@dataclass(frozen=True)
class AccessEvent:
    """One dereference, as seen by the classifier."""
    variable: str
    kind: AccessKind
    binding: Optional[PointerBinding]
    offset: Optional[int] = 0
    location: SourceLocation = UNKNOWN_LOCATION
    statement: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Verdict:
    event: AccessEvent
    classification: Classification
    identity: Optional[Hashable] = None
    reason: str = ""

    @property
    def location(self) -> SourceLocation:
        return self.event.location

    def __str__(self) -> str:
        who = f" ({self.identity})" if self.identity is not None else ""
        return (f"{self.location}: {self.event.kind.value} "
                f"{self.event.variable}: {self.classification.value}{who}")


class AccessClassifier:
    """Stateless; one instance may serve any number of procedures."""

    def classify(self, event: AccessEvent, heap: ShadowHeap) -> Verdict:
        binding = event.binding
        if binding is None:
            return Verdict(event, Classification.INDETERMINATE,
                           reason=f"{event.variable} is not bound to a heap block")

        candidates = sorted(binding.targets, key=str)
        untracked = []
        for identity in candidates:
            block = heap.lookup(identity)
            if block is None:
                untracked.append(identity)
            elif block.is_freed:
                return Verdict(event, self._freed_outcome(event.kind), identity,
                               reason=f"block {identity} was freed")

        if binding.maybe_unbound:
            return Verdict(event, Classification.INDETERMINATE, binding.target,
                           reason=f"{event.variable} is unbound on some path")
        if untracked:
            return Verdict(event, Classification.INDETERMINATE, untracked[0],
                           reason=f"block {untracked[0]} is not tracked")
        return Verdict(event, Classification.SAFE, binding.target)

    def indeterminate(self, event: AccessEvent, reason: str) -> Verdict:
        """Verdict for an access whose input state cannot be trusted."""
        return Verdict(event, Classification.INDETERMINATE,
                       event.binding.target if event.binding else None,
                       reason=reason)

    @staticmethod
    def _freed_outcome(kind: AccessKind) -> Classification:
        if kind is AccessKind.FORMAT_READ:
            return Classification.USE_AFTER_FREE_VIA_FORMAT
        return Classification.USE_AFTER_FREE


__all__ = [
    "Classification",
    "AccessEvent",
    "Verdict",
    "AccessClassifier",
]
