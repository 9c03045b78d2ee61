"""
Tests for the associative memory store: merge, apex promotion, capacity, recall.
"""

from __future__ import annotations

import pytest

from sentient_trader.core.config import MemoryConfig
from sentient_trader.core.types import Outcome
from sentient_trader.engines.memory import (
    APEX_PREFIX,
    Engram,
    MemoryStore,
    euclidean,
    extract_concepts,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        self.t += 1.0
        return self.t


def win(pattern: str, signature, **kw) -> Engram:
    return Engram(pattern=pattern, outcome=Outcome.SUCCESS, signature=list(signature), **kw)


def loss(pattern: str, signature, **kw) -> Engram:
    return Engram(pattern=pattern, outcome=Outcome.FAILURE, signature=list(signature), **kw)


@pytest.fixture
def store():
    return MemoryStore(MemoryConfig(), clock=FakeClock())


def test_merge_within_distance_keeps_one_engram(store):
    first = store.reinforce(win("VWAP Reclaim", [50, 0, 2, 0]))
    assert first.strength == pytest.approx(0.5)

    merged = store.reinforce(win("VWAP Reclaim", [52, 1, 2, 0], weight=2.0))

    assert len(store) == 1
    assert merged is first
    assert merged.strength == pytest.approx(0.6)
    assert merged.experience == pytest.approx(15.0)
    assert merged.weight == pytest.approx(1.5)


def test_strength_non_decreasing_and_capped(store):
    last = 0.0
    for _ in range(12):
        e = store.reinforce(loss("Fade", [30, -2, 1, 0]))
        assert e.strength >= last
        last = e.strength
    assert len(store) == 1
    assert last == pytest.approx(1.0)
    # failures never become apex
    assert e.is_apex is False


@pytest.mark.parametrize("other", [
    loss("VWAP Reclaim", [50, 0, 2, 0]),          # different outcome
    win("Breakout", [50, 0, 2, 0]),               # different pattern
    win("VWAP Reclaim", [65, 0, 2, 0]),           # distance 15, not < 15
])
def test_no_merge_when_keys_differ(store, other):
    store.reinforce(win("VWAP Reclaim", [50, 0, 2, 0]))
    store.reinforce(other)
    assert len(store) == 2


def test_repeated_success_promotes_to_apex(store):
    """Scenario D: reinforced to >= 0.95 with success becomes apex."""
    e = store.reinforce(win("Opening Drive", [60, 3, 2.5, 0.4]))
    for _ in range(10):
        if e.is_apex:
            break
        e = store.reinforce(win("Opening Drive", [60, 3, 2.5, 0.4]))

    assert e.is_apex is True
    assert e.strength >= 0.95
    assert e.pattern == APEX_PREFIX + "Opening Drive"
    assert "APEX_PROTOCOL" in e.concept_tags and "IMMUTABLE" in e.concept_tags

    # label prefix does not break later merges
    again = store.reinforce(win("Opening Drive", [61, 3, 2.5, 0.4]))
    assert again is e
    assert len(store) == 1
    assert e.pattern.count(APEX_PREFIX) == 1


def test_capacity_evicts_lowest_composite_score():
    """Scenario C: capacity 3, four inserts in increasing recency."""
    store = MemoryStore(MemoryConfig(capacity=3), clock=FakeClock())
    for i in range(4):
        store.reinforce(win(f"P{i}", [i * 100.0, 0, 0, 0]))

    patterns = {e.pattern for e in store}
    assert len(store) == 3
    assert "P0" not in patterns
    assert patterns == {"P1", "P2", "P3"}


def test_capacity_prefers_strength_over_recency():
    store = MemoryStore(MemoryConfig(capacity=3), clock=FakeClock())
    store.reinforce(win("Old but strong", [0, 0, 0, 0]))
    store.reinforce(win("Old but strong", [0, 0, 0, 0]))
    store.reinforce(win("Old but strong", [0, 0, 0, 0]))
    for i in range(1, 4):
        store.reinforce(win(f"N{i}", [i * 100.0, 0, 0, 0]))

    patterns = {e.pattern for e in store}
    assert "Old but strong" in patterns
    assert "N1" not in patterns


def test_eviction_keeps_survivors_newest_first():
    store = MemoryStore(MemoryConfig(capacity=3), clock=FakeClock())
    for _ in range(5):
        store.reinforce(win("Veteran", [0, 0, 0, 0]))
    for i in range(1, 4):
        store.reinforce(win(f"N{i}", [i * 100.0, 0, 0, 0]))

    # Veteran outscores N2 but is older, so it stays behind it
    assert [e.pattern for e in store] == ["N3", "N2", "Veteran"]
    assert [e.pattern for e in store.stats(recent_limit=1).recent] == ["N3"]


def test_apex_never_evicted_while_non_apex_remain():
    clock = FakeClock()
    apex = Engram.from_dict({
        "id": "apex-1",
        "pattern": APEX_PREFIX + "Legacy",
        "outcome": "SUCCESS",
        "signature": [0, 0, 0, 0],
        "strength": 0.0,
        "last_activated": 0.0,
        "is_apex": True,
    })
    store = MemoryStore(MemoryConfig(capacity=2), clock=clock, engrams=[apex])
    for i in range(5):
        store.reinforce(loss(f"L{i}", [i * 100.0 + 50, 0, 0, 0]))
        assert len(store) <= 2
        assert any(e.id == "apex-1" for e in store)


def test_recall_sorted_and_bounded(store):
    for i in range(8):
        store.reinforce(win(f"S{i}", [i * 20.0, 0, 0, 0]))

    recalled = store.recall([35.0, 0, 0, 0], k=5)
    assert len(recalled) == 5
    adjusted = [r.adjusted_distance for r in recalled]
    assert adjusted == sorted(adjusted)

    assert store.recall([0, 0, 0, 0], k=0) == []
    assert len(store.recall([0, 0, 0, 0], k=50)) == 8
    assert MemoryStore(clock=FakeClock()).recall([1, 2, 3, 4]) == []


def test_recall_prefers_apex_over_closer_plain_engram(store):
    plain = store.reinforce(win("Plain", [10, 0, 0, 0]))
    apex = store.inject_apex("Sharp", signature=[20, 0, 0, 0])

    top = store.recall([0, 0, 0, 0], k=1)[0]
    # plain: 10 * (1.5 - 0.5) = 10 ; apex: 20 * (1.5 - 1.0 - 0.8) < 0
    assert top.engram is apex
    assert top.distance == pytest.approx(20.0)
    assert store.adjusted_distance([0, 0, 0, 0], plain) == pytest.approx(10.0)


def test_recall_refreshes_last_activated(store):
    e = store.reinforce(win("A", [1, 1, 1, 1]))
    stamp = e.last_activated
    store.recall([1, 1, 1, 1])
    assert e.last_activated > stamp


def test_get_context_intuition(store):
    store.reinforce(win("A", [10, 0, 0, 0]))
    store.reinforce(win("B", [40, 0, 0, 0]))
    store.reinforce(loss("C", [80, 0, 0, 0]))

    ctx = store.get_context([30, 0, 0, 0], k=5)
    assert len(ctx.recalled) == 3
    assert ctx.intuition == pytest.approx(200.0 / 3)
    assert "risk_zone" in ctx.concepts
    assert "Intuition" in ctx.summary()

    empty = MemoryStore(clock=FakeClock()).get_context([30, 0, 0, 0])
    assert empty.empty and empty.intuition is None


def test_stats_and_evolution_level(store):
    store.reinforce(win("A", [10, 0, 0, 0]))
    store.reinforce(win("A", [11, 0, 0, 0]))
    store.reinforce(win("A", [12, 0, 0, 0]))
    store.reinforce(win("A", [13, 0, 0, 0]))
    store.reinforce(loss("B", [90, 0, 0, 0]))

    stats = store.stats(recent_limit=1)
    assert stats.total == 2
    assert stats.win_rate == pytest.approx(50.0)
    assert stats.strong_patterns == ["A"]
    assert len(stats.recent) == 1
    assert stats.top_strategies[0].count == 1

    xp = sum(e.experience for e in store)
    density = sum(e.strength for e in store)
    assert stats.evolution_level == int((xp + density * 100) // 250) + 1


def test_records_round_trip_and_malformed_entries(store):
    store.reinforce(win("A", [10, 0, 0, 0], concept_tags=["PROFITABLE"]))
    records = store.to_records()
    records.append({"pattern": "missing id"})
    records.append({"id": "x", "pattern": "bad", "outcome": "MAYBE", "signature": []})

    restored = MemoryStore.from_records(records, clock=FakeClock())
    assert len(restored) == 1
    assert restored.engrams[0].concept_tags == ["PROFITABLE"]
    assert restored.engrams[0].outcome is Outcome.SUCCESS

    with pytest.raises(ValueError):
        MemoryStore.from_records({"not": "a list"})


def test_extract_concepts_and_distance():
    e1 = win("A", [25, 0, 3.0, 0], strength=0.9)
    e2 = loss("B", [50, 0, 1.0, 0])
    assert extract_concepts([e1, e2]) == [
        "high_volatility_scalp", "rsi_oversold", "master_pattern_confirmed", "risk_zone",
    ]
    # shorter vectors are zero-padded
    assert euclidean([3, 4], [0, 0, 0]) == pytest.approx(5.0)
