"""heapshadow/loader.py – S-expression → Program loader.

Reads the serialized control-flow graphs produced by the parsing
front-end (``sexpdata.loads`` output: nested lists, :class:`sexpdata.Symbol`,
strings, ints) and builds :class:`heapshadow.program.Program` objects.

Surface syntax
--------------
::

    (program <file>
      (procedure <name>
        (block <id> [<kind>]
          <statement> ...
          (succ <id> [<edge-kind>]) ...)
        ...)
      (expect <error-id> <line> [<count>]) ...)

    ;; statements
    (allocate <identity> <size> [<loc>])
    (free     <identity> [<loc>])
    (bind     <variable> <identity> [<offset>] [<loc>])
    (access   <variable> read|write|format-read [<offset>] [<loc>])

    ;; locations
    (at <line> [<column>])

The block whose kind is ``entry`` (else the first block) becomes the CFG
entry; the block whose kind is ``exit`` becomes the CFG exit.  Without an
``exit`` block, blocks that have no successors flow into a synthetic exit.

Every structural problem raises :class:`heapshadow.errors.ProgramFormatError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple, Union

import sexpdata
from sexpdata import Symbol

from heapshadow.ctrlflow_graph import CFG, CFGNode, EdgeKind
from heapshadow.errors import ProgramFormatError
from heapshadow.program import Expectation, Program
from heapshadow.statements import (
    Access,
    AccessKind,
    Allocate,
    Bind,
    Free,
    SourceLocation,
    Statement,
    UNKNOWN_LOCATION,
)

logger = logging.getLogger(__name__)

# Type alias for raw sexpdata output
Sexp = Any


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _sym_name(s: Sexp) -> str:
    """Extract the string name from a ``sexpdata.Symbol``, or raise."""
    if isinstance(s, Symbol):
        return s.value()
    raise ProgramFormatError(f"expected symbol, got {type(s).__name__}: {s!r}")


def _expect_list(s: Sexp, *, min_len: int = 0, tag: Optional[str] = None) -> list:
    """Assert that *s* is a list, optionally with a minimum length and head tag."""
    if not isinstance(s, list):
        raise ProgramFormatError(
            f"expected list{f' ({tag} ...)' if tag else ''}, "
            f"got {type(s).__name__}: {s!r}"
        )
    if tag is not None and (not s or _head(s) != tag):
        actual = _head(s) if s else "<empty>"
        raise ProgramFormatError(f"expected ({tag} ...), got ({actual} ...)")
    if len(s) < min_len:
        raise ProgramFormatError(
            f"({_head(s) if s else ''} ...) needs at least {min_len - 1} "
            f"argument(s): {sexpdata.dumps(s)}"
        )
    return s


def _head(s: list) -> str:
    """Return the head symbol name of a list form ``(tag ...)``."""
    if not s:
        raise ProgramFormatError("unexpected empty list")
    return _sym_name(s[0])


def _is_form(s: Sexp, tag: str) -> bool:
    return isinstance(s, list) and bool(s) and isinstance(s[0], Symbol) and s[0].value() == tag


def _as_str(s: Sexp) -> str:
    """Coerce *s* to a Python ``str`` – accepts Symbol or string literal."""
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    raise ProgramFormatError(f"expected string or symbol, got {type(s).__name__}: {s!r}")


def _as_int(s: Sexp) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise ProgramFormatError(f"expected integer, got {type(s).__name__}: {s!r}")


def _as_identity(s: Sexp) -> Hashable:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    return _as_str(s)


# ═══════════════════════════════════════════════════════════════════════
#  Statements
# ═══════════════════════════════════════════════════════════════════════

_STATEMENT_DISPATCH: Dict[str, Callable[[list, "_Context"], Statement]] = {}


def _register(tag: str):
    """Decorator: register a statement parser under *tag*."""
    def deco(fn):
        _STATEMENT_DISPATCH[tag] = fn
        return fn
    return deco


class _Context:
    """Per-file state threaded through the statement parsers."""

    def __init__(self, filename: str) -> None:
        self.filename = filename

    def location(self, s: Sexp) -> SourceLocation:
        form = _expect_list(s, min_len=2, tag="at")
        if len(form) > 3:
            raise ProgramFormatError(f"(at LINE [COLUMN]) takes at most two numbers: {sexpdata.dumps(form)}")
        column = _as_int(form[2]) if len(form) == 3 else 0
        return SourceLocation(self.filename, _as_int(form[1]), column)


def _split_location(args: list, ctx: _Context) -> Tuple[list, SourceLocation]:
    """Peel an optional trailing ``(at ...)`` off *args*."""
    if args and _is_form(args[-1], "at"):
        return args[:-1], ctx.location(args[-1])
    return args, UNKNOWN_LOCATION


def _arity(form: list, args: list, lo: int, hi: int) -> None:
    if not lo <= len(args) <= hi:
        raise ProgramFormatError(
            f"({_head(form)} ...) takes {lo}..{hi} argument(s), got {len(args)}: "
            f"{sexpdata.dumps(form)}"
        )


@_register("allocate")
def _parse_allocate(form: list, ctx: _Context) -> Allocate:
    args, loc = _split_location(form[1:], ctx)
    _arity(form, args, 2, 2)
    size = _as_int(args[1])
    if size < 0:
        raise ProgramFormatError(f"allocation size must be non-negative: {sexpdata.dumps(form)}")
    return Allocate(_as_identity(args[0]), size, loc)


@_register("free")
def _parse_free(form: list, ctx: _Context) -> Free:
    args, loc = _split_location(form[1:], ctx)
    _arity(form, args, 1, 1)
    return Free(_as_identity(args[0]), loc)


@_register("bind")
def _parse_bind(form: list, ctx: _Context) -> Bind:
    args, loc = _split_location(form[1:], ctx)
    _arity(form, args, 2, 3)
    offset = _as_int(args[2]) if len(args) == 3 else 0
    return Bind(_as_str(args[0]), _as_identity(args[1]), offset, loc)


@_register("access")
def _parse_access(form: list, ctx: _Context) -> Access:
    args, loc = _split_location(form[1:], ctx)
    _arity(form, args, 2, 3)
    try:
        kind = AccessKind.from_string(_as_str(args[1]))
    except ValueError as exc:
        raise ProgramFormatError(str(exc)) from exc
    offset = _as_int(args[2]) if len(args) == 3 else 0
    return Access(_as_str(args[0]), kind, offset, loc)


def _parse_statement(s: Sexp, ctx: _Context) -> Statement:
    form = _expect_list(s, min_len=1)
    tag = _head(form)
    parser = _STATEMENT_DISPATCH.get(tag)
    if parser is None:
        raise ProgramFormatError(f"unknown statement ({tag} ...)")
    return parser(form, ctx)


# ═══════════════════════════════════════════════════════════════════════
#  Procedures and blocks
# ═══════════════════════════════════════════════════════════════════════

def _parse_procedure(s: Sexp, ctx: _Context) -> CFG:
    form = _expect_list(s, min_len=2, tag="procedure")
    cfg = CFG(_as_str(form[1]))
    blocks = [_expect_list(b, min_len=2, tag="block") for b in form[2:]]
    if not blocks:
        raise ProgramFormatError(f"procedure {cfg.name!r} has no blocks")

    def has_kind(block: list) -> bool:
        return len(block) > 2 and isinstance(block[2], Symbol)

    def kind_of(block: list) -> str:
        return block[2].value() if has_kind(block) else "body"

    kinds = [kind_of(b) for b in blocks]
    for special in ("entry", "exit"):
        if kinds.count(special) > 1:
            raise ProgramFormatError(f"procedure {cfg.name!r} has more than one {special} block")
    entry_index = kinds.index("entry") if "entry" in kinds else 0
    exit_index = kinds.index("exit") if "exit" in kinds else None
    if exit_index == entry_index:
        raise ProgramFormatError(f"procedure {cfg.name!r}: entry block cannot also be the exit")

    nodes: Dict[str, CFGNode] = {}
    pending: List[Tuple[CFGNode, list]] = []
    for index, (block, kind) in enumerate(zip(blocks, kinds)):
        block_id = str(_as_identity(block[1]))
        if block_id in nodes:
            raise ProgramFormatError(f"procedure {cfg.name!r}: duplicate block {block_id}")
        if index == entry_index:
            node = cfg.entry
        elif index == exit_index:
            node = cfg.exit
        else:
            node = cfg.new_node(kind=kind)
        node.name = block_id

        rest = block[3:] if has_kind(block) else block[2:]
        successors = []
        for item in rest:
            if _is_form(item, "succ"):
                successors.append(item)
            else:
                node.statements.append(_parse_statement(item, ctx))
        nodes[block_id] = node
        pending.append((node, successors))

    for node, successors in pending:
        for succ in successors:
            _arity(succ, succ[1:], 1, 2)
            target_id = str(_as_identity(succ[1]))
            target = nodes.get(target_id)
            if target is None:
                raise ProgramFormatError(
                    f"procedure {cfg.name!r}: block {node.name} jumps to unknown block {target_id}"
                )
            if len(succ) == 3:
                try:
                    kind = EdgeKind.from_string(_as_str(succ[2]))
                except ValueError as exc:
                    raise ProgramFormatError(str(exc)) from exc
            else:
                kind = EdgeKind.FALL_THROUGH
            cfg.add_edge(node, target, kind)
        if exit_index is None and not successors and node is not cfg.exit:
            cfg.add_edge(node, cfg.exit, EdgeKind.RETURN)

    logger.debug("loaded procedure %s: %d blocks, %d edges",
                 cfg.name, len(cfg.nodes), len(cfg.edges))
    return cfg


def _parse_expect(s: Sexp) -> Expectation:
    form = _expect_list(s, tag="expect")
    _arity(form, form[1:], 2, 3)
    count = _as_int(form[3]) if len(form) == 4 else 1
    return Expectation(_as_str(form[1]), _as_int(form[2]), count)


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def parse_program(text: str, *, filename: str = "<string>") -> Program:
    """Parse a complete program from an S-expression string.

    The ``file`` given in the ``(program ...)`` form names the analysed
    source file and is used for every :class:`SourceLocation`.

    Raises
    ------
    ProgramFormatError
        If the input is malformed or contains unrecognized forms.
    """
    try:
        raw = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as e:
        raise ProgramFormatError(f"S-expression syntax error: {e}", filename) from e

    try:
        form = _expect_list(raw, min_len=2, tag="program")
        program = Program(file=_as_str(form[1]))
        ctx = _Context(program.file)
        for item in form[2:]:
            if _is_form(item, "procedure"):
                cfg = _parse_procedure(item, ctx)
                if cfg.name in program.procedures:
                    raise ProgramFormatError(f"duplicate procedure {cfg.name!r}")
                program.add_procedure(cfg)
            elif _is_form(item, "expect"):
                program.expectations.append(_parse_expect(item))
            else:
                raise ProgramFormatError(f"unexpected top-level form: {sexpdata.dumps(item)}")
    except ProgramFormatError as exc:
        if exc.source is None:
            exc.source = filename
        raise
    return program


def load_program(path: Union[str, Path]) -> Program:
    """Read and parse a program file."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProgramFormatError(f"cannot read program: {exc}", str(p)) from exc
    return parse_program(text, filename=str(p))


__all__ = ["parse_program", "load_program"]
