from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from sentient_trader.core.types import Event

DEFAULT_SCHEMA = Path(__file__).resolve().parent / "schema.sql"

_INSERT = """
INSERT OR IGNORE INTO events (id, stream_id, ts, type, payload_json, config_hash)
VALUES (?, ?, ?, ?, ?, ?)
"""
_SELECT = "SELECT id, stream_id, ts, type, payload_json, config_hash FROM events"


def _row(e: Event) -> Tuple[str, str, str, str, str, str]:
    return (e.event_id, e.stream_id, e.ts, e.type, e.payload_json(), e.config_hash)


def _event(row: Tuple[Any, ...]) -> Event:
    eid, sid, ts, etype, payload_json, config_hash = row
    return Event(event_id=eid, stream_id=sid, ts=ts, type=etype,
                 payload=json.loads(payload_json), config_hash=config_hash)


class EventStore:
    """
    Append-only engine journal on SQLite.

    Event ids are content hashes, so appends are idempotent: re-journaling
    the same event inserts nothing. Reads come back in (ts, insertion) order,
    which is the order replay feeds them to the engine.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path)
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=NORMAL;")
        return con

    def init_schema(self, schema_sql_path: Optional[str] = None) -> None:
        sql = Path(schema_sql_path or DEFAULT_SCHEMA).read_text(encoding="utf-8")
        con = self.connect()
        try:
            con.executescript(sql)
            con.commit()
        finally:
            con.close()

    def append(self, e: Event) -> bool:
        """Returns True if inserted, False if already journaled."""
        return self.append_many([e]) == 1

    def append_many(self, events: Iterable[Event]) -> int:
        """Returns how many of `events` were new."""
        con = self.connect()
        try:
            before = con.total_changes
            con.executemany(_INSERT, [_row(e) for e in events])
            con.commit()
            return con.total_changes - before
        finally:
            con.close()

    def read_stream(self, stream_id: str, start_ts: Optional[str] = None, end_ts: Optional[str] = None,
                    type: Optional[str] = None) -> List[Event]:
        q = _SELECT + " WHERE stream_id = ?"
        args: List[Any] = [stream_id]
        if start_ts:
            q += " AND ts >= ?"
            args.append(start_ts)
        if end_ts:
            q += " AND ts <= ?"
            args.append(end_ts)
        if type:
            q += " AND type = ?"
            args.append(type)
        q += " ORDER BY ts ASC, rowid ASC"

        con = self.connect()
        try:
            return [_event(row) for row in con.execute(q, args).fetchall()]
        finally:
            con.close()

    def streams(self) -> List[str]:
        con = self.connect()
        try:
            return [r[0] for r in con.execute("SELECT DISTINCT stream_id FROM events ORDER BY stream_id").fetchall()]
        finally:
            con.close()

    def count(self, stream_id: Optional[str] = None) -> int:
        con = self.connect()
        try:
            if stream_id:
                row = con.execute("SELECT COUNT(*) FROM events WHERE stream_id = ?", (stream_id,)).fetchone()
            else:
                row = con.execute("SELECT COUNT(*) FROM events").fetchone()
            return int(row[0])
        finally:
            con.close()
