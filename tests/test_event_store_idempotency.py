from __future__ import annotations

from pathlib import Path
from sentient_trader.core.types import Event
from sentient_trader.log.event_store import EventStore


def test_event_store_idempotent_insert(tmp_path: Path):
    db = tmp_path / "events.db"
    store = EventStore(str(db))
    store.init_schema()

    cfg = "cfg_hash_example"
    e = Event.make("STREAM", "2025-12-18T09:31:00-05:00", "FEATURES", {"features": [0.5, 0.5, 0.1, 0.2]}, cfg)

    first = store.append(e)
    second = store.append(e)

    assert first is True
    assert second is False

    events = store.read_stream("STREAM")
    assert len(events) == 1
    assert events[0] == e


def test_append_many_counts_new_rows_and_filters(tmp_path: Path):
    store = EventStore(str(tmp_path / "events.db"))
    store.init_schema()

    cfg = "cfg_hash_example"
    events = [
        Event.make("S", "2025-12-18T09:31:00-05:00", "FEATURES", {"i": 1}, cfg),
        Event.make("S", "2025-12-18T09:31:00-05:00", "DECISION_RECORD", {"i": 1}, cfg),
        Event.make("S", "2025-12-18T09:32:00-05:00", "FEATURES", {"i": 2}, cfg),
    ]
    assert store.append_many(events) == 3
    assert store.append_many(events) == 0

    assert [e.payload["i"] for e in store.read_stream("S", type="FEATURES")] == [1, 2]
    assert len(store.read_stream("S", start_ts="2025-12-18T09:32:00-05:00")) == 1
    assert store.count("S") == 3
    assert store.count("OTHER") == 0
    assert store.streams() == ["S"]
