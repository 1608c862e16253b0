"""
heapshadow.regression
=====================

Regression oracle.

Program files may carry ``(expect ERROR-ID LINE [COUNT])`` forms.  After an
analysis run, :func:`check_expectations` compares the report with them: for
every ``(error id, line)`` mentioned, the number of findings must match
exactly.  Findings on lines no expectation mentions are reported as
unexpected.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from heapshadow.program import Expectation
from heapshadow.report import AnalysisReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpectationMismatch:
    error_id: str
    line: int
    expected: int
    actual: int

    def __str__(self) -> str:
        if self.expected == 0:
            return (f"line {self.line}: unexpected {self.error_id} "
                    f"({self.actual} finding(s))")
        return (f"line {self.line}: expected {self.expected} {self.error_id}, "
                f"got {self.actual}")


def check_expectations(
    report: AnalysisReport,
    expectations: Iterable[Expectation],
) -> List[ExpectationMismatch]:
    """Return every disagreement between ``report`` and ``expectations``."""
    actual: Counter = Counter(
        (f.kind.error_id, f.location.line) for f in report.findings
    )
    expected: Counter = Counter()
    for exp in expectations:
        expected[(exp.error_id, exp.line)] += exp.count

    mismatches: List[ExpectationMismatch] = []
    keys: List[Tuple[str, int]] = sorted(set(actual) | set(expected),
                                         key=lambda k: (k[1], k[0]))
    for error_id, line in keys:
        want = expected.get((error_id, line), 0)
        got = actual.get((error_id, line), 0)
        if want != got:
            mismatches.append(ExpectationMismatch(error_id, line, want, got))

    for m in mismatches:
        logger.info("regression mismatch: %s", m)
    return mismatches


__all__ = ["ExpectationMismatch", "check_expectations"]
