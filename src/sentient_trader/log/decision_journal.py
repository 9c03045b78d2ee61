from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from sentient_trader.core.types import Event, EventType
from sentient_trader.log.event_store import EventStore


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DecisionRecord:
    """
    Human-readable + machine-parseable decision record.

    This is emitted on every analyze() cycle, fallbacks included.
    """
    time: str
    action: str  # BUY | SELL | HOLD
    probability: float
    pipeline_prediction: float
    memory_intuition: Optional[float]  # percent
    external_consensus: Optional[float]  # 0..100
    reasons: Dict[str, Any]  # blend weights, fallback cause, recalled ids
    plain_english: str       # concise summary for a human
    context: Dict[str, Any]  # coherence, horizon, dominant logic, mood, generation


class DecisionJournal:
    """
    Append DecisionRecord events to the EventStore with type DECISION_RECORD,
    plus trade-close / evolution events on the same stream.
    """

    def __init__(self, store: EventStore, stream_id: str, config_hash: str):
        self.store = store
        self.stream_id = stream_id
        self.config_hash = config_hash

    def log(self, record: DecisionRecord) -> bool:
        return self.log_event("DECISION_RECORD", asdict(record), ts=record.time)

    def log_event(self, type: EventType, payload: Dict[str, Any], ts: Optional[str] = None) -> bool:
        e = Event.make(
            stream_id=self.stream_id,
            ts=ts or iso_now(),
            type=type,
            payload=payload,
            config_hash=self.config_hash,
        )
        return self.store.append(e)

    @staticmethod
    def summarize(action: str, probability: float, reasons: Dict[str, Any], context: Dict[str, Any]) -> str:
        # Build a compact plain-English summary
        bits = [f"{action} @ p={probability:.3f}"]
        if "fallback" in reasons:
            bits.append(f"fallback={reasons['fallback']}")
        for k in ("w_mem", "w_ext"):
            if reasons.get(k):
                bits.append(f"{k}={reasons[k]:.2f}")
        for k in ("time_horizon", "dominant_logic", "mood"):
            if k in context:
                bits.append(f"{k}={context[k]}")
        return "; ".join(bits)
