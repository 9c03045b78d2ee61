from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
import json
import hashlib
import math

EventType = Literal[
    "FEATURES",
    "DECISION",
    "DECISION_RECORD",
    "TRADE_CLOSED",
    "EVOLUTION",
]

def stable_json(obj: Any) -> str:
    # Deterministic JSON serialization
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()

def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))

def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))

def finite_or(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float, falling back to `default` on junk/NaN/inf."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(v) or math.isinf(v):
        return default
    return v


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class TradeResult(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


@dataclass(frozen=True)
class Event:
    event_id: str
    stream_id: str
    ts: str            # ISO8601 timestamp string
    type: EventType
    payload: Dict[str, Any]
    config_hash: str

    @staticmethod
    def make(stream_id: str, ts: str, type: EventType, payload: Dict[str, Any], config_hash: str) -> "Event":
        base = {
            "stream_id": stream_id,
            "ts": ts,
            "type": type,
            "payload": payload,
            "config_hash": config_hash,
        }
        eid = sha256_hex(stable_json(base))
        return Event(event_id=eid, **base)

    def payload_json(self) -> str:
        return stable_json(self.payload)


@dataclass(frozen=True)
class MarketSnapshot:
    """Raw indicator readings handed over by the external indicator component."""
    rsi: float = 50.0
    macd: float = 0.0
    macd_hist: float = 0.0
    volume: float = 0.0
    volatility: float = 0.0          # Bollinger width as % of the mid band
    price: float = 0.0
    ma: Optional[float] = None


@dataclass(frozen=True)
class TradeOutcome:
    """Realized trade outcome reported by the execution layer on close."""
    pattern: str
    success: bool
    pnl: float = 0.0
    volatility: float = 0.0
    signature: Optional[List[float]] = None
    features: Optional[List[float]] = None

    @property
    def result(self) -> TradeResult:
        return TradeResult.WIN if self.success else TradeResult.LOSS

    @property
    def outcome(self) -> Outcome:
        return Outcome.SUCCESS if self.success else Outcome.FAILURE
