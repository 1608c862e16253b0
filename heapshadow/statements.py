"""
heapshadow.statements
=====================

The statement vocabulary shared with the parsing front-end.

Every CFG node carries an ordered list of these four statement kinds and
nothing else::

    Allocate(identity, size)
    Free(identity)
    Bind(variable, identity, offset)
    Access(variable, kind, offset)

Statements are immutable.  Two textually equal statements are still two
different program points: the engine compares statements by identity
(``is``) wherever the program point matters.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Hashable, Union


@dataclass(frozen=True, order=True)
class SourceLocation:
    """A specific point in source code.

    Locations sort by ``(file, line, column)``, which is the order findings
    are reported in.
    """
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


UNKNOWN_LOCATION = SourceLocation()


class AccessKind(enum.Enum):
    """How a dereference touches memory."""
    READ = "read"
    WRITE = "write"
    FORMAT_READ = "format-read"    # argument of a printf-like routine

    @classmethod
    def from_string(cls, s: str) -> "AccessKind":
        key = s.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown access kind: {s!r}")


@dataclass(frozen=True)
class Allocate:
    identity: Hashable
    size: int
    location: SourceLocation = UNKNOWN_LOCATION

    def __str__(self) -> str:
        return f"allocate {self.identity} ({self.size} bytes)"


@dataclass(frozen=True)
class Free:
    identity: Hashable
    location: SourceLocation = UNKNOWN_LOCATION

    def __str__(self) -> str:
        return f"free {self.identity}"


@dataclass(frozen=True)
class Bind:
    """``variable`` now points into block ``identity`` at ``offset``."""
    variable: str
    identity: Hashable
    offset: int = 0
    location: SourceLocation = UNKNOWN_LOCATION

    def __str__(self) -> str:
        return f"{self.variable} = &{self.identity}[{self.offset}]"


@dataclass(frozen=True)
class Access:
    """A dereference of ``variable`` at ``offset`` (relative to its binding)."""
    variable: str
    kind: AccessKind = AccessKind.READ
    offset: int = 0
    location: SourceLocation = UNKNOWN_LOCATION

    def __str__(self) -> str:
        return f"{self.kind.value} {self.variable}[{self.offset}]"


Statement = Union[Allocate, Free, Bind, Access]


__all__ = [
    "SourceLocation",
    "UNKNOWN_LOCATION",
    "AccessKind",
    "Allocate",
    "Free",
    "Bind",
    "Access",
    "Statement",
]
