"""
heapshadow/checkers.py
======================

Checker framework wrapping the lifetime engine in cppcheck-style diagnostics.

Architecture
────────────
  ┌──────────────────────────────────────────────────────────────────┐
  │                        CheckerRunner                             │
  │  ┌────────────┐   ┌──────────────┐   ┌───────────────────────┐  │
  │  │ Suppression │──▶│ CheckerContext│──▶│ Checker.lifecycle()  │  │
  │  │  Manager    │   │ (program,     │   │  configure()         │  │
  │  └────────────┘   │  config)      │   │  collect_evidence()  │  │
  │                    └──────────────┘   │  diagnose()          │  │
  │                                       │  report()            │  │
  │                                       └───────────────────────┘  │
  │                          ▼                                       │
  │                   List[Diagnostic]                               │
  └──────────────────────────────────────────────────────────────────┘

Every diagnostic carries an error id, a severity, a confidence, and a CWE::

    useAfterFree           error    HIGH   CWE-416
    useAfterFreeViaFormat  warning  LOW    CWE-416
    doubleFree             error    HIGH   CWE-415
    invalidFree            error    MEDIUM CWE-590
"""

from __future__ import annotations

import fnmatch
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
)

from heapshadow.config import AnalysisConfig
from heapshadow.driver import FixedPointDriver
from heapshadow.errors import HeapShadowError
from heapshadow.program import Program
from heapshadow.report import AnalysisReport, Finding, FindingKind, ProcedureFailure
from heapshadow.statements import SourceLocation

logger = logging.getLogger(__name__)

ADDON_NAME = "heapshadow"


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 - DIAGNOSTIC MODEL
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"


class Confidence(Enum):
    """
    How certain we are that the diagnostic is a true positive.

    HIGH   — the freed state holds on every path into the access
    MEDIUM — the violation depends on how the front-end named the block
    LOW    — the access goes through a call boundary we cannot see into
    """
    HIGH = auto()
    MEDIUM = auto()
    LOW = auto()


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Designed for direct serialization to cppcheck's JSON addon protocol.

    Attributes
    ----------
    error_id     : Unique identifier (e.g., "useAfterFree")
    message      : Human-readable description
    severity     : DiagnosticSeverity
    location     : Primary source location
    confidence   : Confidence level
    cwe          : CWE identifier (0 = none)
    checker_name : Name of the checker that produced this
    addon        : Addon name for cppcheck protocol
    extra        : Additional context string
    evidence     : Machine-readable evidence dict for downstream tooling
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceLocation
    confidence: Confidence = Confidence.MEDIUM
    cwe: int = 0
    checker_name: str = ""
    addon: str = ADDON_NAME
    extra: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_cppcheck_json(self) -> Dict[str, Any]:
        """Serialize to cppcheck's JSON addon output format."""
        result: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "addon": self.addon,
            "errorId": self.error_id,
            "extra": self.extra,
        }
        if self.cwe:
            result["cwe"] = self.cwe
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string for cppcheck addon stdout."""
        return json.dumps(self.to_cppcheck_json())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 - SUPPRESSION MANAGER
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Manages diagnostic suppressions from multiple sources.

    Sources:
      1. Line-level:  ``errorId:file:line``
      2. File-level:  ``errorId:file-pattern``
      3. Global:      ``errorId`` (``*`` matches every id)

    Usage
    -----
    >>> sm = SuppressionManager()
    >>> sm.add("doubleFree:legacy/*.c")
    >>> sm.add_global_suppression("invalidFree")
    >>> if not sm.is_suppressed(diagnostic):
    ...     emit(diagnostic)
    """

    def __init__(self) -> None:
        # {(file, line)} → set of error_ids suppressed at that location
        self._inline: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        # file pattern → set of error_ids
        self._file_level: Dict[str, Set[str]] = defaultdict(set)
        # globally suppressed error_ids
        self._global: Set[str] = set()

    def add(self, spec: str) -> None:
        """Parse a cppcheck-style ``errorId[:file[:line]]`` suppression."""
        parts = spec.strip().split(":")
        error_id = parts[0]
        if not error_id:
            raise ValueError(f"empty error id in suppression {spec!r}")
        if len(parts) == 1:
            self.add_global_suppression(error_id)
        elif len(parts) == 2:
            self.add_file_suppression(error_id, parts[1])
        else:
            file = ":".join(parts[1:-1])
            try:
                line = int(parts[-1])
            except ValueError:
                # Windows drive letters and friends: the tail is part of the path.
                self.add_file_suppression(error_id, ":".join(parts[1:]))
            else:
                self.add_line_suppression(error_id, file, line)

    def add_line_suppression(self, error_id: str, file: str, line: int) -> None:
        self._inline[(file, line)].add(error_id)

    def add_file_suppression(self, error_id: str, file_pattern: str) -> None:
        """Suppress ``error_id`` in files matching ``file_pattern``."""
        self._file_level[file_pattern].add(error_id)

    def add_global_suppression(self, error_id: str) -> None:
        """Globally suppress ``error_id``."""
        self._global.add(error_id)

    def is_suppressed(self, diag: Diagnostic) -> bool:
        """Check whether a diagnostic should be suppressed."""
        eid = diag.error_id

        if eid in self._global or "*" in self._global:
            return True

        loc = diag.location

        # Exact line, or the line above (suppression comment style)
        for line_offset in (0, 1):
            suppressed_ids = self._inline.get((loc.file, loc.line - line_offset), set())
            if eid in suppressed_ids or "*" in suppressed_ids:
                return True

        for pattern, ids in self._file_level.items():
            if eid in ids or "*" in ids:
                if pattern == loc.file or loc.file.endswith(pattern):
                    return True
                if fnmatch.fnmatch(loc.file, pattern):
                    return True

        return False

    def filter_diagnostics(
        self, diagnostics: Iterable[Diagnostic]
    ) -> List[Diagnostic]:
        """Return only non-suppressed diagnostics."""
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 - CHECKER BASE CLASS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerContext:
    """
    Shared context passed to every checker during execution.

    Attributes
    ----------
    program      : Program under analysis
    config       : AnalysisConfig
    suppressions : SuppressionManager
    analyses     : dict of analysis results shared between checkers
    """
    program: Program
    config: AnalysisConfig = field(default_factory=AnalysisConfig)
    suppressions: SuppressionManager = field(default_factory=SuppressionManager)
    analyses: Dict[str, Any] = field(default_factory=dict)

    def get_analysis(self, name: str) -> Any:
        """Retrieve a pre-computed analysis result by name."""
        return self.analyses.get(name)

    def set_analysis(self, name: str, result: Any) -> None:
        """Store an analysis result for sharing between checkers."""
        self.analyses[name] = result


class Checker(ABC):
    """
    Abstract base class for all checkers.

    Lifecycle
    ─────────
      1. ``configure(ctx)``        — receive context, read options
      2. ``collect_evidence(ctx)``  — run or consume analyses
      3. ``diagnose(ctx)``          — correlate evidence into diagnostics
      4. ``report(ctx)``            — yield final diagnostics

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``error_ids``
      - Implement ``collect_evidence()`` and ``diagnose()``
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    error_ids: ClassVar[FrozenSet[str]] = frozenset()
    default_severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.WARNING
    cwe_ids: ClassVar[Dict[str, int]] = {}  # error_id → CWE number

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def configure(self, ctx: CheckerContext) -> None:
        """Called before evidence collection.  Default does nothing."""
        pass

    @abstractmethod
    def collect_evidence(self, ctx: CheckerContext) -> None:
        ...

    @abstractmethod
    def diagnose(self, ctx: CheckerContext) -> None:
        ...

    def report(self, ctx: CheckerContext) -> List[Diagnostic]:
        """Return final diagnostics, filtered by suppressions."""
        return ctx.suppressions.filter_diagnostics(self._diagnostics)

    def _emit(
        self,
        error_id: str,
        message: str,
        location: SourceLocation,
        severity: Optional[DiagnosticSeverity] = None,
        confidence: Confidence = Confidence.MEDIUM,
        extra: str = "",
        evidence: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Helper to create and store a diagnostic."""
        self._diagnostics.append(Diagnostic(
            error_id=error_id,
            message=message,
            severity=severity or self.default_severity,
            location=location,
            confidence=confidence,
            cwe=self.cwe_ids.get(error_id, 0),
            checker_name=self.name,
            extra=extra,
            evidence=evidence or {},
        ))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 - CHECKER REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class CheckerRegistry:
    """Registry of available checkers."""

    def __init__(self) -> None:
        self._checkers: Dict[str, Type[Checker]] = {}
        self._disabled: Set[str] = set()

    def register(self, checker_cls: Type[Checker]) -> Type[Checker]:
        """Register a checker class (usable as a decorator)."""
        self._checkers[checker_cls.name] = checker_cls
        return checker_cls

    def disable(self, name: str) -> None:
        self._disabled.add(name)

    def enable(self, name: str) -> None:
        self._disabled.discard(name)

    def get_enabled(self) -> List[Type[Checker]]:
        return [
            cls for name, cls in self._checkers.items()
            if name not in self._disabled
        ]

    def get_by_name(self, name: str) -> Optional[Type[Checker]]:
        return self._checkers.get(name)

    @property
    def names(self) -> List[str]:
        return sorted(self._checkers.keys())


_DEFAULT_REGISTRY = CheckerRegistry()


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 - USE-AFTER-FREE CHECKER (CWE-416 / 415 / 590)
# ═════════════════════════════════════════════════════════════════════════

_FINDING_PROFILE: Dict[FindingKind, Tuple[DiagnosticSeverity, Confidence]] = {
    FindingKind.USE_AFTER_FREE: (DiagnosticSeverity.ERROR, Confidence.HIGH),
    FindingKind.USE_AFTER_FREE_VIA_FORMAT: (DiagnosticSeverity.WARNING, Confidence.LOW),
    FindingKind.DOUBLE_FREE_DETECTED: (DiagnosticSeverity.ERROR, Confidence.HIGH),
    FindingKind.FREE_OF_UNKNOWN_BLOCK: (DiagnosticSeverity.ERROR, Confidence.MEDIUM),
}


@_DEFAULT_REGISTRY.register
class UseAfterFreeChecker(Checker):
    """
    Heap lifetime checker backed by the fixed-point shadow-heap engine.

    CWE-416: Use After Free
    CWE-415: Double Free
    CWE-590: Free of Memory not on the Heap
    """

    name: ClassVar[str] = "use-after-free"
    description: ClassVar[str] = "Use-after-free, double free and invalid free detection"
    error_ids: ClassVar[FrozenSet[str]] = frozenset(k.error_id for k in FindingKind)
    default_severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.ERROR
    cwe_ids: ClassVar[Dict[str, int]] = {
        "useAfterFree": 416,
        "useAfterFreeViaFormat": 416,
        "doubleFree": 415,
        "invalidFree": 590,
    }

    def __init__(self) -> None:
        super().__init__()
        self._driver: Optional[FixedPointDriver] = None
        self._report: Optional[AnalysisReport] = None

    def configure(self, ctx: CheckerContext) -> None:
        self._driver = FixedPointDriver(ctx.config)

    def collect_evidence(self, ctx: CheckerContext) -> None:
        if self._driver is None:
            raise HeapShadowError(f"{self.name}: configure() must run before collect_evidence()")
        self._report = self._driver.analyze_program(ctx.program)
        ctx.set_analysis("lifetime", self._report)

    def diagnose(self, ctx: CheckerContext) -> None:
        if self._report is None:
            raise HeapShadowError(f"{self.name}: collect_evidence() must run before diagnose()")
        for finding in self._report.findings:
            severity, confidence = _FINDING_PROFILE[finding.kind]
            self._emit(
                error_id=finding.kind.error_id,
                message=_message_for(finding),
                location=finding.location,
                severity=severity,
                confidence=confidence,
                extra=finding.procedure,
                evidence={
                    "identity": str(finding.identity),
                    "variable": finding.variable,
                    "offset": finding.offset,
                },
            )

    @property
    def analysis(self) -> Optional[AnalysisReport]:
        return self._report


def _message_for(finding: Finding) -> str:
    target = finding.variable or str(finding.identity)
    if finding.kind is FindingKind.USE_AFTER_FREE:
        return f"Use of '{target}' after free"
    if finding.kind is FindingKind.USE_AFTER_FREE_VIA_FORMAT:
        return f"Freed memory '{target}' passed to a formatted-output call"
    if finding.kind is FindingKind.DOUBLE_FREE_DETECTED:
        return f"Double free of '{target}'"
    return f"Free of '{target}' which was never allocated"


# ═════════════════════════════════════════════════════════════════════════
#  PART 6 - CHECKER RUNNER
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerRunResults:
    """
    Aggregate results from running a suite of checkers.

    Attributes
    ----------
    diagnostics            : All diagnostics from all checkers
    diagnostics_by_checker : Diagnostics grouped by checker name
    failures               : Procedures whose analysis was aborted
    analysis               : The lifetime report, when the checker ran
    stats                  : Timing statistics
    checker_names          : Names of checkers that were run
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    diagnostics_by_checker: Dict[str, List[Diagnostic]] = field(
        default_factory=lambda: defaultdict(list)
    )
    failures: List[ProcedureFailure] = field(default_factory=list)
    analysis: Optional[AnalysisReport] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    checker_names: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity == DiagnosticSeverity.ERROR
        )

    @property
    def warning_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity == DiagnosticSeverity.WARNING
        )

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    def by_severity(self, severity: DiagnosticSeverity) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == severity]

    def by_cwe(self, cwe: int) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.cwe == cwe]

    def to_json_lines(self) -> str:
        """Format all diagnostics as cppcheck JSON addon output."""
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        """Format all diagnostics in GCC-style."""
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Checker run complete: {self.total_count} diagnostics "
            f"({self.error_count} errors, {self.warning_count} warnings)",
        ]
        for name in self.checker_names:
            count = len(self.diagnostics_by_checker.get(name, []))
            elapsed = self.stats.get(f"{name}_elapsed_ms", 0)
            lines.append(f"  {name}: {count} findings ({elapsed:.1f}ms)")
        if self.analysis is not None:
            lines.append(self.analysis.summary())
        return "\n".join(lines)


class CheckerRunner:
    """
    Runs a suite of checkers against a program.

    Usage
    -----
    >>> runner = CheckerRunner(config=AnalysisConfig(iteration_cap=50))
    >>> results = runner.run(program)
    >>> print(results.summary())
    """

    def __init__(
        self,
        registry: Optional[CheckerRegistry] = None,
        suppressions: Optional[SuppressionManager] = None,
        config: Optional[AnalysisConfig] = None,
    ) -> None:
        self.registry = registry or _DEFAULT_REGISTRY
        self.suppressions = suppressions or SuppressionManager()
        self.config = config or AnalysisConfig()

    def run(
        self,
        program: Program,
        checkers: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        """Run checkers (``None`` = all enabled) against ``program``."""
        results = CheckerRunResults()
        ctx = CheckerContext(
            program=program,
            config=self.config,
            suppressions=self.suppressions,
        )

        if checkers is not None:
            checker_classes: List[Type[Checker]] = []
            for name in checkers:
                cls = self.registry.get_by_name(name)
                if cls is None:
                    raise HeapShadowError(f"unknown checker: {name!r}")
                checker_classes.append(cls)
        else:
            checker_classes = self.registry.get_enabled()

        for cls in checker_classes:
            checker = cls()
            checker_name = cls.name
            results.checker_names.append(checker_name)

            t0 = time.monotonic()
            checker.configure(ctx)
            checker.collect_evidence(ctx)
            checker.diagnose(ctx)
            diags = checker.report(ctx)
            elapsed_ms = (time.monotonic() - t0) * 1000.0
            logger.info("checker %s: %d diagnostic(s) in %.1fms",
                        checker_name, len(diags), elapsed_ms)

            results.diagnostics.extend(diags)
            results.diagnostics_by_checker[checker_name] = diags
            results.stats[f"{checker_name}_elapsed_ms"] = elapsed_ms

        lifetime = ctx.get_analysis("lifetime")
        if lifetime is not None:
            results.analysis = lifetime
            results.failures.extend(lifetime.failures)
        return results


__all__ = [
    "Diagnostic",
    "DiagnosticSeverity",
    "Confidence",
    "SuppressionManager",
    "Checker",
    "CheckerContext",
    "CheckerRegistry",
    "UseAfterFreeChecker",
    "CheckerRunner",
    "CheckerRunResults",
]
