"""
heapshadow.errors
=================

Exception hierarchy for the lifetime-tracking engine.

Three families are kept apart because callers treat them differently:

``LifetimeViolation``
    A defect in the *analysed* program (double free, free of an unknown
    block).  The heap model raises these; the transfer function catches
    them and turns them into findings.  They never leave
    :func:`heapshadow.driver.analyze_procedure`.
``InternalConsistencyError``
    The front-end handed us a graph that breaks its contract (duplicate
    allocation identity, dangling edge, ...).  Analysis of the affected
    procedure is aborted and the failure is reported next to, not inside,
    the findings.
``ProgramFormatError`` / ``ConfigError``
    Infrastructure problems surfaced by the loader and the configuration
    layer.

::

    HeapShadowError
    ├── LifetimeViolation
    │   ├── DoubleFreeDetected
    │   └── FreeOfUnknownBlock
    ├── InternalConsistencyError
    │   ├── DuplicateAllocationIdentity
    │   └── MalformedGraphError
    ├── ProgramFormatError
    └── ConfigError
"""

from __future__ import annotations

from typing import Any, Optional


class HeapShadowError(Exception):
    """Base class for every exception raised by :mod:`heapshadow`."""


# ---------------------------------------------------------------------------
# Findings raised by the heap model
# ---------------------------------------------------------------------------

class LifetimeViolation(HeapShadowError):
    """A lifetime rule of the analysed program was broken."""

    def __init__(self, identity: Any, message: str) -> None:
        super().__init__(message)
        self.identity = identity


class DoubleFreeDetected(LifetimeViolation):
    """``free`` was applied to a block that is already ``Freed``."""

    def __init__(self, identity: Any, first_free_site: Any = None) -> None:
        msg = f"block {identity!r} freed twice"
        if first_free_site is not None:
            msg += f" (first freed at {first_free_site})"
        super().__init__(identity, msg)
        self.first_free_site = first_free_site


class FreeOfUnknownBlock(LifetimeViolation):
    """``free`` named an identity the shadow heap does not track."""

    def __init__(self, identity: Any) -> None:
        super().__init__(identity, f"free of untracked block {identity!r}")


# ---------------------------------------------------------------------------
# Front-end contract violations
# ---------------------------------------------------------------------------

class InternalConsistencyError(HeapShadowError):
    """The input graph violates the front-end contract."""


class DuplicateAllocationIdentity(InternalConsistencyError):
    """Two allocation statements produced the same identity on one path."""

    def __init__(self, identity: Any, existing_site: Any = None, new_site: Any = None) -> None:
        msg = f"allocation identity {identity!r} already tracked"
        if existing_site is not None:
            msg += f" (allocated at {existing_site}, again at {new_site})"
        super().__init__(msg)
        self.identity = identity
        self.existing_site = existing_site
        self.new_site = new_site


class MalformedGraphError(InternalConsistencyError):
    """The control-flow graph itself is structurally invalid."""


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class ProgramFormatError(HeapShadowError):
    """Raised when a program file cannot be mapped onto a CFG."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


class ConfigError(HeapShadowError):
    """Unknown option name or an option value of the wrong type."""


__all__ = [
    "HeapShadowError",
    "LifetimeViolation",
    "DoubleFreeDetected",
    "FreeOfUnknownBlock",
    "InternalConsistencyError",
    "DuplicateAllocationIdentity",
    "MalformedGraphError",
    "ProgramFormatError",
    "ConfigError",
]
