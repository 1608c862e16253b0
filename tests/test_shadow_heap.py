# tests/test_shadow_heap.py
"""Tests for the shadow heap and its lattice."""

import pytest

from heapshadow.errors import (
    DoubleFreeDetected,
    DuplicateAllocationIdentity,
    FreeOfUnknownBlock,
    InternalConsistencyError,
)
from heapshadow.shadow_heap import ShadowHeap, ShadowHeapLattice
from heapshadow.statements import Allocate


class TestAllocateFree:

    def test_allocate_then_lookup(self):
        heap = ShadowHeap()
        block = heap.allocate("a", 40)
        assert heap.lookup("a") is block
        assert "a" in heap
        assert len(heap) == 1
        assert block.is_live

    def test_free_keeps_block_tracked(self):
        heap = ShadowHeap()
        heap.allocate("a", 40)
        block = heap.free("a", site="test.c:11")
        assert block.is_freed
        assert heap.lookup("a").is_freed
        assert len(heap) == 1

    def test_free_unknown_block(self):
        heap = ShadowHeap()
        with pytest.raises(FreeOfUnknownBlock) as info:
            heap.free("ghost")
        assert info.value.identity == "ghost"
        assert len(heap) == 0

    def test_double_free_leaves_block_freed(self):
        heap = ShadowHeap()
        heap.allocate("a", 40)
        heap.free("a")
        with pytest.raises(DoubleFreeDetected):
            heap.free("a")
        assert heap.lookup("a").is_freed

    def test_duplicate_identity_from_another_site(self):
        heap = ShadowHeap()
        heap.allocate("a", 8, site=Allocate("a", 8))
        with pytest.raises(DuplicateAllocationIdentity) as info:
            heap.allocate("a", 8, site=Allocate("a", 8))
        assert isinstance(info.value, InternalConsistencyError)

    def test_duplicate_identity_without_site(self):
        heap = ShadowHeap()
        heap.allocate("a", 8)
        with pytest.raises(DuplicateAllocationIdentity):
            heap.allocate("a", 8)

    def test_same_site_reallocation_gives_fresh_block(self):
        site = Allocate("a", 8)
        heap = ShadowHeap()
        heap.allocate("a", 8, site=site)
        heap.free("a")
        block = heap.allocate("a", 8, site=site)
        assert block.is_live
        assert heap.lookup("a") is block

    def test_blocks_sorted_by_identity(self):
        heap = ShadowHeap()
        for identity in ("c", "a", "b"):
            heap.allocate(identity, 1)
        assert [b.identity for b in heap.blocks()] == ["a", "b", "c"]


class TestBindings:

    def test_bind_does_not_touch_blocks(self):
        heap = ShadowHeap()
        heap.bind("p", "a", 4)
        assert len(heap) == 0
        assert heap.binding("p").target == "a"
        assert heap.binding("p").offset == 4

    def test_rebind_retargets(self):
        heap = ShadowHeap()
        heap.allocate("a", 8)
        heap.allocate("b", 8)
        heap.bind("p", "a")
        heap.bind("p", "b")
        assert heap.binding("p").target == "b"

    def test_unbound_variable(self):
        assert ShadowHeap().binding("p") is None

    def test_bindings_sorted(self):
        heap = ShadowHeap()
        heap.bind("q", "a")
        heap.bind("p", "a")
        assert [b.variable for b in heap.bindings()] == ["p", "q"]


class TestCopyAndJoin:

    def test_copy_is_independent(self):
        heap = ShadowHeap()
        heap.allocate("a", 8)
        heap.bind("p", "a")
        clone = heap.copy()
        clone.free("a")
        clone.bind("p", "b")
        assert heap.lookup("a").is_live
        assert heap.binding("p").target == "a"
        assert clone == clone.copy()

    def test_join_freed_on_one_path_wins(self):
        site = Allocate("a", 8)
        left = ShadowHeap()
        left.allocate("a", 8, site=site)
        right = left.copy()
        right.free("a")
        assert left.join(right).lookup("a").is_freed
        assert right.join(left).lookup("a").is_freed

    def test_join_keeps_one_sided_blocks(self):
        left, right = ShadowHeap(), ShadowHeap()
        left.allocate("a", 8)
        right.allocate("b", 8)
        merged = left.join(right)
        assert "a" in merged and "b" in merged

    def test_join_marks_one_sided_binding(self):
        left, right = ShadowHeap(), ShadowHeap()
        left.bind("p", "a")
        merged = left.join(right)
        assert merged.binding("p").maybe_unbound
        assert right.join(left).binding("p").maybe_unbound

    def test_join_unions_binding_targets(self):
        left, right = ShadowHeap(), ShadowHeap()
        left.bind("p", "a")
        right.bind("p", "b")
        binding = left.join(right).binding("p")
        assert binding.targets == frozenset({"a", "b"})
        assert not binding.maybe_unbound

    def test_join_does_not_mutate_operands(self):
        left, right = ShadowHeap(), ShadowHeap()
        left.allocate("a", 8)
        right.allocate("a", 8)
        right.free("a")
        left.join(right)
        assert left.lookup("a").is_live


class TestShadowHeapLattice:

    def setup_method(self):
        self.lat = ShadowHeapLattice()

    def test_bottom_is_none(self):
        assert self.lat.bottom() is None
        assert self.lat.is_bottom(None)
        assert not self.lat.is_bottom(ShadowHeap())

    def test_join_with_bottom(self):
        heap = ShadowHeap()
        assert self.lat.join(None, heap) is heap
        assert self.lat.join(heap, None) is heap
        assert self.lat.join(None, None) is None

    def test_leq(self):
        live = ShadowHeap()
        live.allocate("a", 8, site=Allocate("a", 8))
        freed = live.copy()
        freed.free("a")
        assert self.lat.leq(None, live)
        assert not self.lat.leq(live, None)
        assert self.lat.leq(live, freed)
        assert not self.lat.leq(freed, live)

    def test_copy_value(self):
        assert self.lat.copy_value(None) is None
        heap = ShadowHeap()
        heap.allocate("a", 8)
        clone = self.lat.copy_value(heap)
        assert clone == heap and clone is not heap
