#!/usr/bin/env python3
"""heapshadow/main.py — CLI entry-point for the heap lifetime checker.

Usage examples
--------------
    # Analyse a program and print GCC-style diagnostics
    python -m heapshadow analyze 15-Use_after_free_print.sexp

    # Same, with analyzer-style options
    python -m heapshadow analyze prog.sexp --set ana.uaf.iteration-cap 50 \\
        --disable ana.uaf.format-access

    # Verify the (expect ...) forms embedded in a program
    python -m heapshadow check prog.sexp

    # Dump the control-flow graph of one procedure as Graphviz DOT
    python -m heapshadow cfg prog.sexp --procedure main

Exit codes
----------
    0   Success (no errors, expectations met).
    1   One or more ERROR diagnostics, or an expectation mismatch.
    2   Infrastructure failure (bad file, bad option, aborted procedure).

The module doubles as ``python -m heapshadow`` via the companion
``heapshadow/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import io
import logging
import sys
import textwrap
from pathlib import Path
from typing import Optional, Sequence, TextIO

from heapshadow import __version__
from heapshadow.checkers import CheckerRunner, CheckerRunResults, SuppressionManager
from heapshadow.config import AnalysisConfig, OPTION_NAMES
from heapshadow.ctrlflow_graph import cfg_summary
from heapshadow.driver import FixedPointDriver
from heapshadow.errors import ConfigError, ProgramFormatError
from heapshadow.loader import load_program
from heapshadow.plus_reporter import Reporter, emit_diagnostics
from heapshadow.program import Program
from heapshadow.regression import check_expectations

_log = logging.getLogger("heapshadow")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``heapshadow`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("heapshadow")
    root.setLevel(level)
    # Repeated calls (tests, embedding) replace our handler instead of stacking.
    for h in list(root.handlers):
        if getattr(h, "_heapshadow_cli", False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._heapshadow_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _load(raw: str) -> Program:
    path = _resolve_path(raw, "program")
    try:
        return load_program(path)
    except ProgramFormatError as exc:
        _log.error("%s", exc)
        raise SystemExit(EXIT_INFRA)


def _build_config(args: argparse.Namespace) -> AnalysisConfig:
    """Apply ``--conf`` first, then ``--set``, ``--enable`` and ``--disable``."""
    try:
        config = AnalysisConfig()
        if args.conf:
            config = AnalysisConfig.from_json(_resolve_path(args.conf, "config file"))
        for key, value in args.set or []:
            config = config.with_option(key, value)
        for key in args.enable or []:
            config = config.with_option(key, True)
        for key in args.disable or []:
            config = config.with_option(key, False)
    except ConfigError as exc:
        _log.error("bad configuration: %s", exc)
        raise SystemExit(EXIT_INFRA)
    problems = config.validate()
    if problems:
        for p in problems:
            _log.error("bad configuration: %s", p)
        raise SystemExit(EXIT_INFRA)
    return config


def _suppressions(args: argparse.Namespace) -> SuppressionManager:
    sm = SuppressionManager()
    for spec in args.suppress or []:
        try:
            sm.add(spec)
        except ValueError as exc:
            _log.error("%s", exc)
            raise SystemExit(EXIT_INFRA)
    return sm


def _emit_results(results: CheckerRunResults, fmt: str, stream: TextIO) -> None:
    """Write *results* to *stream* in the chosen format."""
    if fmt == "json":
        for d in results.diagnostics:
            stream.write(d.to_json_str() + "\n")
    elif fmt == "gcc":
        for d in results.diagnostics:
            stream.write(d.to_gcc_format() + "\n")
    elif fmt == "sarif":
        reporter = Reporter(stream=io.StringIO(), colour=False)
        emit_diagnostics(reporter, results.diagnostics)
        stream.write(reporter.to_sarif() + "\n")
    elif fmt == "pretty":
        reporter = Reporter(stream=stream)
        emit_diagnostics(reporter, results.diagnostics)
        reporter.finish()
    else:
        stream.write(results.summary() + "\n")


# ===========================================================================
# Sub-commands
# ===========================================================================

def cmd_analyze(args: argparse.Namespace) -> int:
    """Analyse every procedure of a program and emit diagnostics."""
    program = _load(args.program)
    config = _build_config(args)
    runner = CheckerRunner(suppressions=_suppressions(args), config=config)
    results = runner.run(program)

    out = _open_output(args.output)
    try:
        _emit_results(results, args.format, out)
    finally:
        if out is not sys.stdout:
            out.close()

    for failure in results.failures:
        _log.error("analysis aborted: %s", failure.message)
    if results.failures:
        return EXIT_INFRA
    return EXIT_ERROR if results.error_count > 0 else EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    """Analyse a program and compare the findings with its ``(expect ...)`` forms."""
    program = _load(args.program)
    config = _build_config(args)
    report = FixedPointDriver(config).analyze_program(program)
    for failure in report.failures:
        _log.error("analysis aborted: %s", failure.message)
    if report.failures:
        return EXIT_INFRA

    mismatches = check_expectations(report, program.expectations)
    name = program.file or args.program
    if mismatches:
        for m in mismatches:
            print(f"{name}: {m}")
        print(f"FAIL {name} ({len(mismatches)} mismatch(es))")
        return EXIT_ERROR
    print(f"PASS {name} ({len(report.findings)} finding(s), "
          f"{len(program.expectations)} expectation(s))")
    return EXIT_OK


def cmd_cfg(args: argparse.Namespace) -> int:
    """Print the CFG of one or every procedure."""
    program = _load(args.program)
    if args.procedure:
        cfg = program.procedure(args.procedure)
        if cfg is None:
            _log.error("no procedure named %r in %s", args.procedure, args.program)
            return EXIT_INFRA
        cfgs = [cfg]
    else:
        cfgs = list(program)

    out = _open_output(args.output)
    try:
        for cfg in cfgs:
            text = cfg_summary(cfg) if args.summary else cfg.to_dot()
            out.write(text + "\n")
    finally:
        if out is not sys.stdout:
            out.close()
    return EXIT_OK


def cmd_options(args: argparse.Namespace) -> int:
    """List the recognised analysis options and their defaults."""
    for name, value in AnalysisConfig().as_options():
        print(f"  {name:28s} {OPTION_NAMES[name]:32s} default={value!r}")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="heapshadow",
        description=(
            "heapshadow — shadow-heap lifetime checker.\n\n"
            "Tracks heap block lifetimes over front-end control-flow graphs\n"
            "and reports use-after-free, double free and invalid free."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              heapshadow analyze prog.sexp -f json
              heapshadow analyze prog.sexp --disable ana.uaf.format-access
              heapshadow check   prog.sexp
              heapshadow cfg     prog.sexp --procedure main
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_config_args(p: argparse.ArgumentParser) -> None:
        g = p.add_argument_group("analysis options")
        g.add_argument(
            "--set", nargs=2, action="append", metavar=("KEY", "VALUE"),
            help="Set an option, e.g. --set ana.uaf.iteration-cap 50.",
        )
        g.add_argument(
            "--enable", action="append", metavar="KEY",
            help="Set a boolean option to true.",
        )
        g.add_argument(
            "--disable", action="append", metavar="KEY",
            help="Set a boolean option to false.",
        )
        g.add_argument(
            "--conf", default=None, metavar="FILE",
            help="JSON file with option values (applied before --set).",
        )

    def _add_output_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # analyze ---------------------------------------------------------------
    p_analyze = subparsers.add_parser("analyze", help="Analyse a program.")
    p_analyze.add_argument("program", help="Program file (S-expression CFG).")
    _add_output_arg(p_analyze)
    p_analyze.add_argument(
        "-f", "--format",
        choices=["gcc", "json", "summary", "sarif", "pretty"],
        default="gcc",
        help="Output format (default: gcc).",
    )
    p_analyze.add_argument(
        "--suppress", action="append", metavar="ID[:FILE[:LINE]]",
        help="Suppress diagnostics (cppcheck syntax).",
    )
    _add_config_args(p_analyze)
    p_analyze.set_defaults(func=cmd_analyze)

    # check -----------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check", help="Verify the (expect ...) forms of a program.")
    p_check.add_argument("program", help="Program file (S-expression CFG).")
    _add_config_args(p_check)
    p_check.set_defaults(func=cmd_check)

    # cfg -------------------------------------------------------------------
    p_cfg = subparsers.add_parser("cfg", help="Print control-flow graphs.")
    p_cfg.add_argument("program", help="Program file (S-expression CFG).")
    p_cfg.add_argument("--procedure", default=None, metavar="NAME",
                       help="Only this procedure.")
    p_cfg.add_argument("--summary", action="store_true",
                       help="Text summary instead of Graphviz DOT.")
    _add_output_arg(p_cfg)
    p_cfg.set_defaults(func=cmd_cfg)

    # options ---------------------------------------------------------------
    p_options = subparsers.add_parser("options", help="List analysis options.")
    p_options.set_defaults(func=cmd_options)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the heapshadow CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
