# tests/test_checkers.py
"""
Tests for the checker framework: diagnostics, suppressions, the
use-after-free checker and the runner.
"""

import json

import pytest

from heapshadow.checkers import (
    CheckerContext,
    CheckerRegistry,
    CheckerRunner,
    Confidence,
    Diagnostic,
    DiagnosticSeverity,
    SuppressionManager,
    UseAfterFreeChecker,
)
from heapshadow.config import AnalysisConfig
from heapshadow.errors import HeapShadowError
from heapshadow.loader import load_program, parse_program
from heapshadow.statements import SourceLocation

DOUBLE_FREE = """
(program "df.c"
  (procedure "main"
    (block 0
      (allocate "a" 8 (at 2))
      (free "a" (at 3))
      (free "a" (at 4))
      (free "zz" (at 5)))))
"""


def _diag(error_id="useAfterFree", file="src/a.c", line=10):
    return Diagnostic(
        error_id=error_id,
        message="Use of 'p' after free",
        severity=DiagnosticSeverity.ERROR,
        location=SourceLocation(file, line, 3),
        confidence=Confidence.HIGH,
        cwe=416,
        extra="main",
    )


class TestDiagnostic:

    def test_cppcheck_json(self):
        data = _diag().to_cppcheck_json()
        assert data == {
            "file": "src/a.c",
            "linenr": 10,
            "column": 3,
            "severity": "error",
            "message": "Use of 'p' after free",
            "addon": "heapshadow",
            "errorId": "useAfterFree",
            "extra": "main",
            "cwe": 416,
        }
        assert json.loads(_diag().to_json_str()) == data

    def test_gcc_format(self):
        assert _diag().to_gcc_format() == (
            "src/a.c:10:3: error: Use of 'p' after free [useAfterFree]")


class TestSuppressionManager:

    def test_global(self):
        sm = SuppressionManager()
        sm.add("useAfterFree")
        assert sm.is_suppressed(_diag())
        assert not sm.is_suppressed(_diag("doubleFree"))

    def test_wildcard(self):
        sm = SuppressionManager()
        sm.add_global_suppression("*")
        assert sm.is_suppressed(_diag("doubleFree"))

    def test_file_pattern(self):
        sm = SuppressionManager()
        sm.add("useAfterFree:src/*.c")
        assert sm.is_suppressed(_diag())
        assert not sm.is_suppressed(_diag(file="lib/b.c"))

    def test_line(self):
        sm = SuppressionManager()
        sm.add("useAfterFree:src/a.c:10")
        assert sm.is_suppressed(_diag(line=10))
        assert sm.is_suppressed(_diag(line=11))
        assert not sm.is_suppressed(_diag(line=12))

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            SuppressionManager().add(":a.c")

    def test_filter(self):
        sm = SuppressionManager()
        sm.add("doubleFree")
        kept = sm.filter_diagnostics([_diag(), _diag("doubleFree")])
        assert [d.error_id for d in kept] == ["useAfterFree"]


class TestRegistry:

    def test_default_registry_has_checker(self):
        runner = CheckerRunner()
        assert "use-after-free" in runner.registry.names

    def test_disable(self):
        registry = CheckerRegistry()
        registry.register(UseAfterFreeChecker)
        registry.disable("use-after-free")
        assert registry.get_enabled() == []
        registry.enable("use-after-free")
        assert registry.get_enabled() == [UseAfterFreeChecker]


class TestUseAfterFreeChecker:

    def test_fixture_diagnostics(self, fixture_path):
        results = CheckerRunner().run(load_program(fixture_path))
        assert results.total_count == 10
        assert results.warning_count == 10
        assert results.error_count == 0
        d = results.diagnostics[0]
        assert d.error_id == "useAfterFreeViaFormat"
        assert d.severity is DiagnosticSeverity.WARNING
        assert d.confidence is Confidence.LOW
        assert d.cwe == 416
        assert d.location.line == 14
        assert d.checker_name == "use-after-free"
        assert d.extra == "main"
        assert d.evidence == {"identity": "a@6", "variable": "a", "offset": 0}
        assert results.analysis is not None
        assert results.failures == []

    def test_double_and_invalid_free(self):
        results = CheckerRunner().run(parse_program(DOUBLE_FREE))
        by_id = {d.error_id: d for d in results.diagnostics}
        assert set(by_id) == {"doubleFree", "invalidFree"}
        assert by_id["doubleFree"].cwe == 415
        assert by_id["doubleFree"].location.line == 4
        assert by_id["invalidFree"].cwe == 590
        assert by_id["invalidFree"].confidence is Confidence.MEDIUM
        assert results.error_count == 2
        assert len(results.by_cwe(415)) == 1

    def test_evidence_before_configure_rejected(self):
        checker = UseAfterFreeChecker()
        with pytest.raises(HeapShadowError, match=r"configure\(\) must run"):
            checker.collect_evidence(CheckerContext(parse_program(DOUBLE_FREE)))

    def test_diagnose_before_evidence_rejected(self):
        checker = UseAfterFreeChecker()
        ctx = CheckerContext(parse_program(DOUBLE_FREE))
        checker.configure(ctx)
        with pytest.raises(HeapShadowError, match=r"collect_evidence\(\) must run"):
            checker.diagnose(ctx)

    def test_lifecycle_in_order(self):
        checker = UseAfterFreeChecker()
        ctx = CheckerContext(parse_program(DOUBLE_FREE))
        checker.configure(ctx)
        checker.collect_evidence(ctx)
        checker.diagnose(ctx)
        assert ctx.get_analysis("lifetime") is checker.analysis
        assert len(checker.analysis.findings) == 2

    def test_suppressions_applied(self):
        sm = SuppressionManager()
        sm.add("invalidFree")
        results = CheckerRunner(suppressions=sm).run(parse_program(DOUBLE_FREE))
        assert [d.error_id for d in results.diagnostics] == ["doubleFree"]

    def test_config_passed_through(self, fixture_path):
        config = AnalysisConfig(enable_format_access_reporting=False)
        results = CheckerRunner(config=config).run(load_program(fixture_path))
        assert results.diagnostics == []
        assert len(results.analysis.suppressed) == 10

    def test_unknown_checker(self, fixture_path):
        with pytest.raises(HeapShadowError):
            CheckerRunner().run(load_program(fixture_path), checkers=["nope"])

    def test_output_formats(self):
        results = CheckerRunner().run(parse_program(DOUBLE_FREE))
        assert len(results.to_json_lines().splitlines()) == 2
        assert "[doubleFree]" in results.to_gcc_format()
        assert "2 diagnostics (2 errors, 0 warnings)" in results.summary()
