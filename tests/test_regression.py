# tests/test_regression.py
"""Tests for the expectation oracle."""

from heapshadow.program import Expectation
from heapshadow.regression import ExpectationMismatch, check_expectations
from heapshadow.report import AnalysisReport, Finding, FindingKind
from heapshadow.statements import SourceLocation


def _report(*lines_and_kinds):
    report = AnalysisReport()
    for seq, (line, kind) in enumerate(lines_and_kinds):
        report.findings.append(Finding(
            location=SourceLocation("t.c", line), kind=kind, identity="a", seq=seq))
    return report


class TestCheckExpectations:

    def test_exact_match(self):
        report = _report((14, FindingKind.USE_AFTER_FREE_VIA_FORMAT),
                         (14, FindingKind.USE_AFTER_FREE_VIA_FORMAT))
        assert check_expectations(report, [Expectation("useAfterFreeViaFormat", 14, 2)]) == []

    def test_count_mismatch(self):
        report = _report((14, FindingKind.USE_AFTER_FREE_VIA_FORMAT))
        (m,) = check_expectations(report, [Expectation("useAfterFreeViaFormat", 14, 10)])
        assert m == ExpectationMismatch("useAfterFreeViaFormat", 14, 10, 1)
        assert str(m) == "line 14: expected 10 useAfterFreeViaFormat, got 1"

    def test_unexpected_finding(self):
        report = _report((8, FindingKind.USE_AFTER_FREE))
        (m,) = check_expectations(report, [])
        assert m.expected == 0 and m.actual == 1
        assert str(m) == "line 8: unexpected useAfterFree (1 finding(s))"

    def test_missing_finding(self):
        (m,) = check_expectations(AnalysisReport(), [Expectation("doubleFree", 3)])
        assert (m.error_id, m.line, m.expected, m.actual) == ("doubleFree", 3, 1, 0)

    def test_expectations_accumulate(self):
        report = _report((3, FindingKind.DOUBLE_FREE_DETECTED),
                         (3, FindingKind.DOUBLE_FREE_DETECTED))
        expectations = [Expectation("doubleFree", 3), Expectation("doubleFree", 3)]
        assert check_expectations(report, expectations) == []

    def test_mismatches_ordered_by_line(self):
        report = _report((20, FindingKind.USE_AFTER_FREE), (4, FindingKind.USE_AFTER_FREE))
        assert [m.line for m in check_expectations(report, [])] == [4, 20]
