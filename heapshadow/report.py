"""
heapshadow.report
=================

Findings and the per-run analysis report.

A :class:`Finding` is one reportable defect in the analysed program.  The
driver collects findings through a :class:`FindingCollector` during its
reporting pass and hands back an :class:`AnalysisReport` whose ``findings``
are ordered by source location, ties broken by emission order.
"""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterator, List, Optional

from heapshadow.classifier import Classification, Verdict
from heapshadow.errors import (
    DoubleFreeDetected,
    InternalConsistencyError,
    LifetimeViolation,
)
from heapshadow.statements import SourceLocation, UNKNOWN_LOCATION

logger = logging.getLogger(__name__)


class FindingKind(enum.Enum):
    """Reportable defect kinds.  Values are the cppcheck-style error ids."""
    USE_AFTER_FREE = "useAfterFree"
    USE_AFTER_FREE_VIA_FORMAT = "useAfterFreeViaFormat"
    DOUBLE_FREE_DETECTED = "doubleFree"
    FREE_OF_UNKNOWN_BLOCK = "invalidFree"

    @property
    def error_id(self) -> str:
        return self.value

    @classmethod
    def from_error_id(cls, error_id: str) -> "FindingKind":
        for member in cls:
            if member.value == error_id:
                return member
        raise ValueError(f"unknown error id: {error_id!r}")


_CLASSIFICATION_KIND = {
    Classification.USE_AFTER_FREE: FindingKind.USE_AFTER_FREE,
    Classification.USE_AFTER_FREE_VIA_FORMAT: FindingKind.USE_AFTER_FREE_VIA_FORMAT,
}


@dataclass(frozen=True)
class Finding:
    location: SourceLocation
    kind: FindingKind
    identity: Hashable
    procedure: str = ""
    variable: Optional[str] = None
    offset: Optional[int] = None
    message: str = ""
    seq: int = field(default=0, compare=False)

    @property
    def sort_key(self):
        return (self.location, self.seq)

    def __str__(self) -> str:
        return f"{self.location}: {self.kind.error_id}: {self.message}"


@dataclass
class ProcedureFailure:
    """A procedure whose analysis was aborted by a front-end contract violation."""
    procedure: str
    error: InternalConsistencyError

    @property
    def message(self) -> str:
        return f"{self.procedure}: {type(self.error).__name__}: {self.error}"


# ---------------------------------------------------------------------------
# FindingCollector
# ---------------------------------------------------------------------------

class FindingCollector:
    """Turns verdicts and lifetime violations into findings for one procedure.

    ``report_format_access=False`` withholds use-after-free-via-format
    findings from :attr:`findings`; they land in :attr:`suppressed` instead
    and a warning is logged.
    """

    def __init__(
        self,
        procedure: str = "",
        *,
        report_format_access: bool = True,
        seq: Optional[Iterator[int]] = None,
    ) -> None:
        self.procedure = procedure
        self.report_format_access = report_format_access
        self._seq = seq if seq is not None else itertools.count()
        self.findings: List[Finding] = []
        self.suppressed: List[Finding] = []
        self.verdicts: List[Verdict] = []

    def record_verdict(self, verdict: Verdict) -> Optional[Finding]:
        self.verdicts.append(verdict)
        kind = _CLASSIFICATION_KIND.get(verdict.classification)
        if kind is None:
            if verdict.classification is Classification.INDETERMINATE:
                logger.debug("%s: indeterminate: %s", verdict.location, verdict.reason)
            return None

        event = verdict.event
        if kind is FindingKind.USE_AFTER_FREE_VIA_FORMAT:
            message = (f"{event.variable}[{_fmt_offset(event.offset)}] is passed to a "
                       f"formatted-output call after block {verdict.identity} was freed")
        else:
            message = (f"{event.kind.value} of {event.variable}[{_fmt_offset(event.offset)}] "
                       f"after block {verdict.identity} was freed")
        return self._add(Finding(
            location=event.location,
            kind=kind,
            identity=verdict.identity,
            procedure=self.procedure,
            variable=event.variable,
            offset=event.offset,
            message=message,
            seq=next(self._seq),
        ))

    def record_violation(
        self, exc: LifetimeViolation, location: SourceLocation = UNKNOWN_LOCATION,
    ) -> Finding:
        if isinstance(exc, DoubleFreeDetected):
            kind = FindingKind.DOUBLE_FREE_DETECTED
        else:
            kind = FindingKind.FREE_OF_UNKNOWN_BLOCK
        return self._add(Finding(
            location=location,
            kind=kind,
            identity=exc.identity,
            procedure=self.procedure,
            message=str(exc),
            seq=next(self._seq),
        ))

    def _add(self, finding: Finding) -> Finding:
        if (finding.kind is FindingKind.USE_AFTER_FREE_VIA_FORMAT
                and not self.report_format_access):
            logger.warning("%s: format-access finding withheld by configuration: %s",
                           finding.location, finding.message)
            self.suppressed.append(finding)
        else:
            self.findings.append(finding)
        return finding


def _fmt_offset(offset: Optional[int]) -> str:
    return "?" if offset is None else str(offset)


# ---------------------------------------------------------------------------
# AnalysisReport
# ---------------------------------------------------------------------------

@dataclass
class AnalysisReport:
    """Everything one analysis run produced.

    Attributes
    ----------
    findings : list[Finding]
        Reported defects, ordered by ``(location, emission order)``.
    suppressed : list[Finding]
        Findings withheld by configuration.
    verdicts : list[Verdict]
        Every access classification, ``SAFE`` included, in visit order.
    failures : list[ProcedureFailure]
        Procedures aborted by an internal-consistency error.
    degraded : dict
        Procedure name -> ids of blocks whose accesses were degraded to
        ``INDETERMINATE`` because the iteration cap was hit.
    procedures : list[str]
        Procedures analysed, in order.
    iterations : int
        Total node evaluations performed by the solver.
    """
    findings: List[Finding] = field(default_factory=list)
    suppressed: List[Finding] = field(default_factory=list)
    verdicts: List[Verdict] = field(default_factory=list)
    failures: List[ProcedureFailure] = field(default_factory=list)
    degraded: Dict[str, List[int]] = field(default_factory=dict)
    procedures: List[str] = field(default_factory=list)
    iterations: int = 0

    def absorb(self, collector: FindingCollector) -> None:
        self.findings.extend(collector.findings)
        self.suppressed.extend(collector.suppressed)
        self.verdicts.extend(collector.verdicts)
        self.sort()

    def merge(self, other: "AnalysisReport") -> None:
        self.findings.extend(other.findings)
        self.suppressed.extend(other.suppressed)
        self.verdicts.extend(other.verdicts)
        self.failures.extend(other.failures)
        self.degraded.update(other.degraded)
        self.procedures.extend(other.procedures)
        self.iterations += other.iterations
        self.sort()

    def sort(self) -> None:
        self.findings.sort(key=lambda f: f.sort_key)
        self.suppressed.sort(key=lambda f: f.sort_key)

    # ----- queries ----------------------------------------------------------

    def by_kind(self, kind: FindingKind) -> List[Finding]:
        return [f for f in self.findings if f.kind is kind]

    def count(self, kind: Optional[FindingKind] = None) -> int:
        if kind is None:
            return len(self.findings)
        return len(self.by_kind(kind))

    def verdicts_with(self, classification: Classification) -> List[Verdict]:
        return [v for v in self.verdicts if v.classification is classification]

    @property
    def ok(self) -> bool:
        """No findings and no aborted procedures."""
        return not self.findings and not self.failures

    def summary(self) -> str:
        lines = [
            f"Procedures analysed: {len(self.procedures)}",
            f"Findings: {len(self.findings)}",
        ]
        for kind in FindingKind:
            n = self.count(kind)
            if n:
                lines.append(f"  {kind.error_id}: {n}")
        if self.suppressed:
            lines.append(f"Suppressed by configuration: {len(self.suppressed)}")
        indeterminate = len(self.verdicts_with(Classification.INDETERMINATE))
        if indeterminate:
            lines.append(f"Indeterminate accesses: {indeterminate}")
        for name, ids in self.degraded.items():
            lines.append(f"Degraded (iteration cap) in {name}: "
                         + ", ".join(f"BB{i}" for i in ids))
        for failure in self.failures:
            lines.append(f"ABORTED {failure.message}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "procedures": list(self.procedures),
            "findings": [_finding_dict(f) for f in self.findings],
            "suppressed": [_finding_dict(f) for f in self.suppressed],
            "failures": [
                {"procedure": f.procedure, "error": type(f.error).__name__,
                 "message": str(f.error)}
                for f in self.failures
            ],
            "degraded": {k: list(v) for k, v in self.degraded.items()},
        }


def _finding_dict(f: Finding) -> Dict[str, Any]:
    return {
        "file": f.location.file,
        "line": f.location.line,
        "column": f.location.column,
        "kind": f.kind.error_id,
        "identity": str(f.identity),
        "procedure": f.procedure,
        "variable": f.variable,
        "offset": f.offset,
        "message": f.message,
    }


__all__ = [
    "FindingKind",
    "Finding",
    "ProcedureFailure",
    "FindingCollector",
    "AnalysisReport",
]
