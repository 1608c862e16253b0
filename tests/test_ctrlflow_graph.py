# tests/test_ctrlflow_graph.py
"""Tests for the basic-block CFG: dominance, loops, validation, rendering."""

import pytest

from heapshadow.ctrlflow_graph import CFG, EdgeKind, cfg_summary
from heapshadow.errors import MalformedGraphError
from heapshadow.statements import Allocate, Free


@pytest.fixture
def loop(cfg_builder):
    """entry -> pre -> head <-> body, head -> post -> exit"""
    return (cfg_builder("loop")
            .block("pre", Allocate("b", 8))
            .block("head", kind="loop-cond")
            .block("body", Free("b"), kind="loop-body")
            .block("post")
            .chain("entry", "pre", "head")
            .edge("head", "body", EdgeKind.BRANCH_TRUE)
            .edge("body", "head", EdgeKind.BACK_EDGE)
            .edge("head", "post", EdgeKind.BRANCH_FALSE)
            .chain("post", "exit"))


class TestEdgeKind:

    def test_from_string(self):
        assert EdgeKind.from_string("back-edge") is EdgeKind.BACK_EDGE

    def test_unknown(self):
        with pytest.raises(ValueError):
            EdgeKind.from_string("sideways")


class TestQueries:

    def test_ids_are_per_graph(self):
        first, second = CFG("a"), CFG("b")
        assert (first.entry.id, first.exit.id) == (0, 1)
        assert second.new_node().id == 2

    def test_neighbours(self, loop):
        cfg = loop.build()
        assert cfg.successors_of(loop["head"]) == [loop["body"], loop["post"]]
        assert cfg.predecessors_of(loop["head"]) == [loop["pre"], loop["body"]]
        assert cfg.node_by_name("post") is loop["post"]
        assert cfg.node_by_name("nowhere") is None

    def test_statements_in_block_order(self, loop):
        cfg = loop.build()
        assert [(n.name, type(s).__name__) for n, s in cfg.statements()] == [
            ("pre", "Allocate"), ("body", "Free")]

    def test_reachable_from(self, loop):
        cfg = loop.build()
        got = cfg.reachable_from(loop["body"])
        assert got == {loop[x] for x in ("body", "head", "post", "exit")}
        assert loop["pre"] not in got

    def test_reachable_skips_orphans(self, loop):
        cfg = loop.build()
        orphan = cfg.new_node(name="orphan")
        assert orphan not in cfg.reachable_from(cfg.entry)


class TestDominance:

    def test_dominators(self, loop):
        dom = loop.build().dominators()
        assert dom[loop["body"]] == {loop[x] for x in ("entry", "pre", "head", "body")}
        assert dom[loop["exit"]] == {loop[x] for x in ("entry", "pre", "head", "post", "exit")}

    def test_back_edges(self, loop):
        (edge,) = loop.build().back_edges()
        assert (edge.src, edge.dst) == (loop["body"], loop["head"])

    def test_natural_loops(self, loop):
        loops = loop.build().natural_loops()
        assert list(loops.values()) == [{loop["head"], loop["body"]}]

    def test_has_cycles(self, loop, cfg_builder):
        assert loop.build().has_cycles()
        assert not cfg_builder().chain("entry", "exit").build().has_cycles()


class TestValidate:

    def test_well_formed(self, loop):
        loop.build().validate()

    def test_edge_into_entry(self, cfg_builder):
        cfg = cfg_builder("bad").chain("entry", "exit").edge("exit", "entry").build()
        with pytest.raises(MalformedGraphError, match="entry block"):
            cfg.validate()

    def test_foreign_node(self):
        cfg, other = CFG("mine"), CFG("theirs")
        cfg.add_edge(cfg.entry, other.new_node())
        with pytest.raises(MalformedGraphError, match="outside the graph"):
            cfg.validate()


class TestRendering:

    def test_dot(self, loop):
        dot = loop.build().to_dot()
        assert dot.startswith("digraph CFG {")
        assert 'label="loop";' in dot
        body, head = loop["body"].id, loop["head"].id
        assert f'BB{body} -> BB{head} [label="back-edge", style=dashed' in dot
        assert dot.endswith("}")

    def test_summary(self, loop):
        lines = cfg_summary(loop.build()).splitlines()
        assert lines[0] == "CFG(procedure='loop', nodes=6, edges=6)"
        assert lines[1].startswith("  BB0 [entry] statements=0")
