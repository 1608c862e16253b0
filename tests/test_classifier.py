# tests/test_classifier.py
"""Tests for access classification."""

import pytest

from heapshadow.classifier import (
    AccessClassifier,
    AccessEvent,
    Classification,
)
from heapshadow.shadow_heap import ShadowHeap
from heapshadow.statements import AccessKind, SourceLocation


def _event(heap, variable="p", kind=AccessKind.READ, offset=0):
    return AccessEvent(
        variable=variable,
        kind=kind,
        binding=heap.binding(variable),
        offset=offset,
        location=SourceLocation("test.c", 10),
    )


@pytest.fixture
def classifier():
    return AccessClassifier()


@pytest.fixture
def live_heap():
    heap = ShadowHeap()
    heap.allocate("a", 40)
    heap.bind("p", "a")
    return heap


@pytest.fixture
def freed_heap(live_heap):
    live_heap.free("a")
    return live_heap


class TestSingleTarget:

    def test_live_block_is_safe(self, classifier, live_heap):
        verdict = classifier.classify(_event(live_heap), live_heap)
        assert verdict.classification is Classification.SAFE
        assert verdict.identity == "a"

    def test_freed_block_is_use_after_free(self, classifier, freed_heap):
        verdict = classifier.classify(_event(freed_heap), freed_heap)
        assert verdict.classification is Classification.USE_AFTER_FREE
        assert verdict.identity == "a"
        assert verdict.location == SourceLocation("test.c", 10)

    def test_write_to_freed_block(self, classifier, freed_heap):
        verdict = classifier.classify(_event(freed_heap, kind=AccessKind.WRITE), freed_heap)
        assert verdict.classification is Classification.USE_AFTER_FREE

    def test_format_read_of_freed_block(self, classifier, freed_heap):
        verdict = classifier.classify(
            _event(freed_heap, kind=AccessKind.FORMAT_READ), freed_heap)
        assert verdict.classification is Classification.USE_AFTER_FREE_VIA_FORMAT

    def test_format_read_of_live_block_is_safe(self, classifier, live_heap):
        verdict = classifier.classify(
            _event(live_heap, kind=AccessKind.FORMAT_READ), live_heap)
        assert verdict.classification is Classification.SAFE

    @pytest.mark.parametrize("offset", [0, 4, 39, 40, 1000, -8, None])
    def test_offset_never_changes_outcome(self, classifier, freed_heap, offset):
        verdict = classifier.classify(_event(freed_heap, offset=offset), freed_heap)
        assert verdict.classification is Classification.USE_AFTER_FREE
        assert verdict.event.offset == offset


class TestIndeterminate:

    def test_unbound_variable(self, classifier):
        heap = ShadowHeap()
        verdict = classifier.classify(_event(heap), heap)
        assert verdict.classification is Classification.INDETERMINATE
        assert verdict.identity is None

    def test_untracked_block(self, classifier):
        heap = ShadowHeap()
        heap.bind("p", "stack_buf")
        verdict = classifier.classify(_event(heap), heap)
        assert verdict.classification is Classification.INDETERMINATE
        assert verdict.identity == "stack_buf"

    def test_maybe_unbound_live(self, classifier, live_heap):
        merged = live_heap.join(ShadowHeap())
        verdict = classifier.classify(_event(merged), merged)
        assert verdict.classification is Classification.INDETERMINATE

    def test_indeterminate_helper(self, classifier, live_heap):
        verdict = classifier.indeterminate(_event(live_heap), "cap reached")
        assert verdict.classification is Classification.INDETERMINATE
        assert verdict.reason == "cap reached"
        assert verdict.identity == "a"


class TestMultipleTargets:

    def _two_targets(self, free_first=False):
        left, right = ShadowHeap(), ShadowHeap()
        for heap in (left, right):
            heap.allocate("a", 8)
            heap.allocate("b", 8)
        left.bind("p", "a")
        right.bind("p", "b")
        if free_first:
            left.free("a")
        return left.join(right)

    def test_all_live_is_safe(self, classifier):
        heap = self._two_targets()
        verdict = classifier.classify(_event(heap), heap)
        assert verdict.classification is Classification.SAFE

    def test_any_freed_is_use_after_free(self, classifier):
        heap = self._two_targets(free_first=True)
        verdict = classifier.classify(_event(heap), heap)
        assert verdict.classification is Classification.USE_AFTER_FREE
        assert verdict.identity == "a"

    def test_freed_beats_maybe_unbound(self, classifier, freed_heap):
        merged = freed_heap.join(ShadowHeap())
        assert merged.binding("p").maybe_unbound
        verdict = classifier.classify(_event(merged), merged)
        assert verdict.classification is Classification.USE_AFTER_FREE


class TestClassification:

    @pytest.mark.parametrize("classification,expected", [
        (Classification.SAFE, False),
        (Classification.USE_AFTER_FREE, True),
        (Classification.USE_AFTER_FREE_VIA_FORMAT, True),
        (Classification.INDETERMINATE, False),
    ])
    def test_is_finding(self, classification, expected):
        assert classification.is_finding is expected
