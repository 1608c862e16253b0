"""
heapshadow/plus_reporter.py
===========================

Human-facing output for lifetime diagnostics.

A :class:`Reporter` receives diagnostics through a small builder::

    with Reporter() as rep:
        (rep.diagnostic(Severity.ERROR, "useAfterFree", "Use of 'a' after free")
            .at("demo.c", 14, 5)
            .note("heap block a@6")
            .with_cwe(416)
            .emit())

and renders each one as it arrives:

* on a terminal, as a coloured block (header, source excerpt, notes, help
  hints, CWE link) followed by the classic cppcheck one-liner;
* anywhere else, as the bare one-liner ``[file:line]: (severity) msg [id]``
  plus one indented line per note.

Everything emitted is also kept for a SARIF 2.1.0 document, returned by
:meth:`Reporter.to_sarif` and written by :meth:`Reporter.finish` when a path
is configured (or ``$REPORT_GENERATE_SARIF`` names one).
"""

from __future__ import annotations

import enum
import json
import linecache
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO

from termcolor import colored, cprint

from heapshadow.checkers import Diagnostic as CheckerDiagnostic
from heapshadow.statements import SourceLocation

SARIF_VERSION = "2.1.0"
SARIF_SCHEMA = (
    "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/"
    "Schemata/sarif-schema-2.1.0.json"
)
CWE_URL = "https://cwe.mitre.org/data/definitions/{}.html"


# ---------------------------------------------------------------------------
# Severity and counters
# ---------------------------------------------------------------------------

class Severity(enum.Enum):
    """The two levels lifetime findings are reported at."""

    ERROR = "error"
    WARNING = "warning"

    @property
    def colour(self) -> str:
        return "red" if self is Severity.ERROR else "yellow"

    @property
    def sarif_level(self) -> str:
        return self.value

    @classmethod
    def from_string(cls, s: str) -> Severity:
        try:
            return cls(s.strip().lower())
        except ValueError:
            raise ValueError(f"unknown severity: {s!r}") from None


@dataclass
class ReporterStats:
    error: int = 0
    warning: int = 0

    def record(self, severity: Severity) -> None:
        if severity is Severity.ERROR:
            self.error += 1
        else:
            self.warning += 1

    @property
    def total(self) -> int:
        return self.error + self.warning

    def summary_line(self) -> str:
        if not self.total:
            return "no diagnostics emitted"
        counts = [
            f"{n} {word}{'' if n == 1 else 's'}"
            for n, word in ((self.error, "error"), (self.warning, "warning"))
            if n
        ]
        return f"{'; '.join(counts)} ({self.total} total)"


# ---------------------------------------------------------------------------
# Diagnostic builder
# ---------------------------------------------------------------------------

@dataclass
class DiagnosticPart:
    kind: str  # "primary", "note" or "help"
    message: str = ""
    location: Optional[SourceLocation] = None


class Diagnostic:
    """One diagnostic under construction.  Every setter returns ``self``."""

    def __init__(self, reporter: Reporter, severity: Severity,
                 error_id: str, message: str) -> None:
        self._reporter = reporter
        self.severity = severity
        self.error_id = error_id
        self.message = message
        self.cwe: Optional[int] = None
        self.primary = DiagnosticPart("primary", message)
        self.notes: List[DiagnosticPart] = []
        self.helps: List[DiagnosticPart] = []

    def at(self, file: str, line: int, column: int = 0) -> Diagnostic:
        self.primary.location = SourceLocation(file, line, column)
        return self

    def note(self, message: str, file: str = "", line: int = 0,
             column: int = 0) -> Diagnostic:
        where = SourceLocation(file, line, column) if file else None
        self.notes.append(DiagnosticPart("note", message, where))
        return self

    def help(self, message: str) -> Diagnostic:
        self.helps.append(DiagnosticPart("help", message))
        return self

    def with_cwe(self, cwe_id: int) -> Diagnostic:
        self.cwe = cwe_id
        return self

    def emit(self) -> None:
        self._reporter._accept(self)  # noqa: SLF001

    @property
    def location(self) -> Optional[SourceLocation]:
        return self.primary.location

    def cppcheck_line(self) -> str:
        loc = self.location
        where = f"{loc.file}:{loc.line}" if loc else ":0"
        return f"[{where}]: ({self.severity.value}) {self.message} [{self.error_id}]"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _bold(text: str, colour: Optional[str] = None) -> str:
    return colored(text, colour, attrs=["bold"])


def render_plain(diag: Diagnostic) -> str:
    out = [diag.cppcheck_line()]
    for note in diag.notes:
        where = f" [{note.location}]" if note.location else ""
        out.append(f"  note{where}: {note.message}")
    return "\n".join(out) + "\n"


def render_terminal(diag: Diagnostic) -> str:
    sev = diag.severity
    out = [f"{_bold(f'{sev.value}[{diag.error_id}]', sev.colour)}: "
           f"{_bold(diag.message, 'white')}"]
    arrow = _bold("-->", "blue")

    loc = diag.location
    if loc is not None:
        out.append(f"  {arrow} {loc}")
        # linecache returns "" for unreadable files and out-of-range lines
        text = linecache.getline(loc.file, loc.line).rstrip("\r\n") if loc.line > 0 else ""
        if text:
            out.append(f" {_bold(str(loc.line), 'blue')} {_bold('|', 'blue')} {text}")

    for note in diag.notes:
        out.append(f"  = {_bold('note', 'cyan')}: {note.message}")
        if note.location is not None:
            out.append(f"    {arrow} {note.location}")
    out.extend(f"  = {_bold('help', 'green')}: {h.message}" for h in diag.helps)
    if diag.cwe is not None:
        tag = colored(f"CWE-{diag.cwe}", "blue", attrs=["underline"])
        out.append(f"  = {tag}: {CWE_URL.format(diag.cwe)}")
    out.append(colored(diag.cppcheck_line(), attrs=["dark"]))
    return "\n".join(out) + "\n\n"


# ---------------------------------------------------------------------------
# SARIF
# ---------------------------------------------------------------------------

def _physical(loc: SourceLocation) -> Dict[str, Any]:
    region: Dict[str, Any] = {"startLine": loc.line}
    if loc.column:
        region["startColumn"] = loc.column
    return {"artifactLocation": {"uri": loc.file}, "region": region}


def _sarif_rule(diag: Diagnostic) -> Dict[str, Any]:
    rule: Dict[str, Any] = {
        "id": diag.error_id,
        "shortDescription": {"text": diag.message},
    }
    if diag.cwe is not None:
        rule["relationships"] = [{
            "target": {"id": str(diag.cwe), "toolComponent": {"name": "CWE"}},
            "kinds": ["superset"],
        }]
    return rule


def _sarif_result(diag: Diagnostic) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "ruleId": diag.error_id,
        "level": diag.severity.sarif_level,
        "message": {"text": diag.message},
    }
    if diag.location is not None:
        result["locations"] = [{"physicalLocation": _physical(diag.location)}]
    related = []
    for idx, note in enumerate(diag.notes):
        entry: Dict[str, Any] = {"id": idx, "message": {"text": note.message}}
        if note.location is not None:
            entry["physicalLocation"] = _physical(note.location)
        related.append(entry)
    if related:
        result["relatedLocations"] = related
    if diag.cwe is not None:
        result["properties"] = {"cwe": diag.cwe}
    return result


def sarif_document(diagnostics: Iterable[Diagnostic], tool_name: str,
                   version: str) -> Dict[str, Any]:
    """Build a SARIF 2.1.0 log with one run holding ``diagnostics``."""
    rules: Dict[str, Dict[str, Any]] = {}
    results = []
    for diag in diagnostics:
        rules.setdefault(diag.error_id, _sarif_rule(diag))
        results.append(_sarif_result(diag))
    driver = {"name": tool_name, "version": version, "rules": list(rules.values())}
    return {
        "$schema": SARIF_SCHEMA,
        "version": SARIF_VERSION,
        "runs": [{"tool": {"driver": driver}, "results": results}],
    }


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------

class Reporter:
    """
    Collects and renders diagnostics.

    ``colour=None`` picks the coloured renderer when ``stream`` is a TTY.
    Used as a context manager, :meth:`finish` runs on exit.
    """

    def __init__(
        self,
        stream: TextIO = sys.stderr,
        colour: Optional[bool] = None,
        sarif_path: Optional[str] = None,
        tool_name: str = "heapshadow",
        tool_version: str = "",
    ) -> None:
        if not tool_version:
            from heapshadow import __version__ as tool_version
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.stats = ReporterStats()
        self._stream = stream
        self._diagnostics: List[Diagnostic] = []
        if colour is None:
            colour = bool(getattr(stream, "isatty", lambda: False)())
        self.colour = colour
        self._render: Callable[[Diagnostic], str] = (
            render_terminal if colour else render_plain)
        self._sarif_path = sarif_path or os.environ.get("REPORT_GENERATE_SARIF", "")

    def __enter__(self) -> Reporter:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.finish()

    def diagnostic(self, severity: Severity, error_id: str, message: str) -> Diagnostic:
        return Diagnostic(self, severity, error_id, message)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def _accept(self, diag: Diagnostic) -> None:
        self.stats.record(diag.severity)
        self._diagnostics.append(diag)
        self._stream.write(self._render(diag))
        self._stream.flush()

    def finish(self) -> ReporterStats:
        """Print the summary line and write SARIF if configured."""
        summary = self.stats.summary_line()
        if self.colour:
            tone = "red" if self.stats.error else "yellow" if self.stats.total else "green"
            cprint(f"  ╰─ {summary}", tone, attrs=["bold"], file=self._stream)
        else:
            print(f"  {summary}", file=self._stream)
        if self._sarif_path:
            Path(self._sarif_path).write_text(self.to_sarif(), encoding="utf-8")
        return self.stats

    def to_sarif(self) -> str:
        doc = sarif_document(self._diagnostics, self.tool_name, self.tool_version)
        return json.dumps(doc, indent=2)


# ---------------------------------------------------------------------------
# Checker diagnostics -> reporter
# ---------------------------------------------------------------------------

_HELP_BY_ID = {
    "useAfterFree": "the block was freed on a path that reaches this access",
    "useAfterFreeViaFormat": (
        "the read happens inside a formatted-output call; the argument is "
        "evaluated through a call boundary, so confidence is lower"
    ),
    "doubleFree": "set the pointer to NULL after freeing it",
    "invalidFree": "only pass pointers obtained from an allocation to free()",
}


def emit_diagnostics(reporter: Reporter,
                     diagnostics: Iterable[CheckerDiagnostic]) -> None:
    """Send checker diagnostics through ``reporter``."""
    for d in diagnostics:
        loc = d.location
        diag = reporter.diagnostic(Severity.from_string(d.severity.value),
                                   d.error_id, d.message)
        diag.at(loc.file, loc.line, loc.column)
        identity = d.evidence.get("identity")
        if identity:
            diag.note(f"heap block {identity}")
        if d.extra:
            diag.note(f"in procedure '{d.extra}'")
        if d.error_id in _HELP_BY_ID:
            diag.help(_HELP_BY_ID[d.error_id])
        if d.cwe:
            diag.with_cwe(d.cwe)
        diag.emit()


__all__ = [
    "Severity",
    "ReporterStats",
    "DiagnosticPart",
    "Diagnostic",
    "Reporter",
    "render_plain",
    "render_terminal",
    "sarif_document",
    "emit_diagnostics",
]
