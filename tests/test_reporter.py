# tests/test_reporter.py
"""Tests for the terminal / SARIF reporter."""

import io
import json

import pytest

from heapshadow.checkers import CheckerRunner
from heapshadow.loader import load_program
from heapshadow.plus_reporter import Reporter, Severity, emit_diagnostics


@pytest.fixture(autouse=True)
def _no_sarif_env(monkeypatch):
    monkeypatch.delenv("REPORT_GENERATE_SARIF", raising=False)


@pytest.fixture
def fixture_diagnostics(fixture_path):
    return CheckerRunner().run(load_program(fixture_path)).diagnostics


class TestSeverity:

    def test_from_string(self):
        assert Severity.from_string("Error") is Severity.ERROR
        assert Severity.WARNING.sarif_level == "warning"
        assert Severity.from_string(" warning ") is Severity.WARNING

    def test_unknown(self):
        with pytest.raises(ValueError):
            Severity.from_string("fatal")

    def test_only_lifetime_levels(self):
        assert [s.value for s in Severity] == ["error", "warning"]
        with pytest.raises(ValueError):
            Severity.from_string("style")


class TestPlainOutput:

    def test_cppcheck_line(self):
        out = io.StringIO()
        rep = Reporter(stream=out, colour=False, tool_version="9.9")
        (rep.diagnostic(Severity.ERROR, "useAfterFree", "Use of 'p' after free")
            .at("demo.c", 14, 5)
            .note("heap block p@3")
            .emit())
        lines = out.getvalue().splitlines()
        assert lines[0] == "[demo.c:14]: (error) Use of 'p' after free [useAfterFree]"
        assert lines[1] == "  note: heap block p@3"

    def test_finish_summary(self):
        out = io.StringIO()
        with Reporter(stream=out, colour=False) as rep:
            rep.diagnostic(Severity.WARNING, "x", "m").at("a.c", 1).emit()
            rep.diagnostic(Severity.ERROR, "y", "m").at("a.c", 2).emit()
        assert out.getvalue().splitlines()[-1] == "  1 error; 1 warning (2 total)"
        assert rep.stats.total == 2

    def test_no_diagnostics(self):
        out = io.StringIO()
        stats = Reporter(stream=out, colour=False).finish()
        assert stats.total == 0
        assert "no diagnostics emitted" in out.getvalue()

    def test_plural_counts(self):
        rep = Reporter(stream=io.StringIO(), colour=False)
        for line in (1, 2, 3):
            rep.diagnostic(Severity.ERROR, "doubleFree", "m").at("a.c", line).emit()
        assert rep.stats.summary_line() == "3 errors (3 total)"

    def test_note_with_location(self):
        out = io.StringIO()
        rep = Reporter(stream=out, colour=False)
        (rep.diagnostic(Severity.ERROR, "useAfterFree", "m")
            .at("a.c", 9)
            .note("freed here", "a.c", 4)
            .emit())
        assert out.getvalue().splitlines()[1] == "  note [a.c:4]: freed here"


class TestColourOutput:

    def test_renders_details(self):
        out = io.StringIO()
        rep = Reporter(stream=out, colour=True)
        (rep.diagnostic(Severity.ERROR, "doubleFree", "Double free of 'a'")
            .at("missing.c", 4)
            .help("set the pointer to NULL after freeing it")
            .with_cwe(415)
            .emit())
        text = out.getvalue()
        assert "doubleFree" in text
        assert "CWE-415" in text
        assert "set the pointer to NULL" in text
        assert "[missing.c:4]: (error) Double free of 'a' [doubleFree]" in text

    def test_source_excerpt(self, tmp_path):
        src = tmp_path / "demo.c"
        src.write_text("int main(void) {\n    free(p);\n}\n")
        out = io.StringIO()
        rep = Reporter(stream=out, colour=True)
        rep.diagnostic(Severity.ERROR, "doubleFree", "Double free of 'p'").at(str(src), 2).emit()
        assert "    free(p);" in out.getvalue()


class TestBridge:

    def test_emit_diagnostics(self, fixture_diagnostics):
        out = io.StringIO()
        rep = Reporter(stream=out, colour=False)
        emit_diagnostics(rep, fixture_diagnostics)
        assert rep.stats.warning == 10
        first = rep.diagnostics[0]
        assert first.error_id == "useAfterFreeViaFormat"
        assert first.cwe == 416
        assert [n.message for n in first.notes] == ["heap block a@6", "in procedure 'main'"]
        assert first.helps
        assert out.getvalue().startswith(
            "[15-Use_after_free_print.c:14]: (warning) ")


class TestSarif:

    def test_document(self, fixture_diagnostics):
        rep = Reporter(stream=io.StringIO(), colour=False, tool_version="1.2.3")
        emit_diagnostics(rep, fixture_diagnostics)
        doc = json.loads(rep.to_sarif())
        assert doc["version"] == "2.1.0"
        run = doc["runs"][0]
        assert run["tool"]["driver"]["name"] == "heapshadow"
        assert run["tool"]["driver"]["version"] == "1.2.3"
        assert [r["id"] for r in run["tool"]["driver"]["rules"]] == ["useAfterFreeViaFormat"]
        assert len(run["results"]) == 10
        result = run["results"][0]
        assert result["level"] == "warning"
        assert result["properties"]["cwe"] == 416
        region = result["locations"][0]["physicalLocation"]["region"]
        assert region == {"startLine": 14, "startColumn": 20}

    def test_written_on_finish(self, tmp_path):
        path = tmp_path / "out.sarif"
        rep = Reporter(stream=io.StringIO(), colour=False, sarif_path=str(path))
        rep.diagnostic(Severity.ERROR, "useAfterFree", "m").at("a.c", 3).emit()
        assert not path.exists()
        rep.finish()
        doc = json.loads(path.read_text())
        assert doc["runs"][0]["results"][0]["ruleId"] == "useAfterFree"

    def test_env_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.sarif"
        monkeypatch.setenv("REPORT_GENERATE_SARIF", str(path))
        Reporter(stream=io.StringIO(), colour=False).finish()
        assert path.exists()

    def test_default_version(self):
        from heapshadow import __version__
        rep = Reporter(stream=io.StringIO(), colour=False)
        assert json.loads(rep.to_sarif())["runs"][0]["tool"]["driver"]["version"] == __version__
