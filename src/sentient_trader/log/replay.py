from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Any, List, Optional, TYPE_CHECKING

from sentient_trader.core.types import Event, TradeOutcome, sha256_hex, stable_json

if TYPE_CHECKING:
    from sentient_trader.engines.orchestrator import Orchestrator


@dataclass
class ReplayResult:
    stream_id: str
    config_hash: str
    events_in: int
    events_out: int
    output_fingerprint: str
    notes: Dict[str, Any]


def default_fingerprint(events: List[Event]) -> str:
    return sha256_hex(stable_json([
        {"ts": e.ts, "type": e.type, "payload": e.payload}
        for e in events
    ]))


def replay_events(
    events: List[Event],
    handler: Callable[[Event], Optional[Event]],
    fingerprint_fn: Callable[[List[Event]], str] = default_fingerprint,
) -> ReplayResult:
    """Feed recorded events through `handler` and fingerprint whatever it emits."""
    out: List[Event] = []
    stream_id = events[0].stream_id if events else "EMPTY"
    config_hash = events[0].config_hash if events else "EMPTY"

    for e in events:
        generated = handler(e)
        if generated is not None:
            out.append(generated)

    fp = fingerprint_fn(out)
    return ReplayResult(
        stream_id=stream_id,
        config_hash=config_hash,
        events_in=len(events),
        events_out=len(out),
        output_fingerprint=fp,
        notes={},
    )


def session_handler(orchestrator: "Orchestrator") -> Callable[[Event], Optional[Event]]:
    """
    Re-drive a journaled session through `orchestrator`:
    - FEATURES -> analyze() -> DECISION event
    - TRADE_CLOSED -> close_trade() -> EVOLUTION event
    Everything else is ignored. A fresh orchestrator built with the same seed
    and contract reproduces the same output fingerprint.
    """
    def handle(e: Event) -> Optional[Event]:
        if e.type == "FEATURES":
            p = e.payload
            d = orchestrator.analyze(p.get("features"), p.get("external_consensus"), signature=p.get("signature"))
            return Event.make(
                stream_id=e.stream_id,
                ts=e.ts,
                type="DECISION",
                payload={
                    "action": d.action.value,
                    "probability": round(d.probability, 12),
                    "pipeline_prediction": round(d.pipeline_prediction, 12),
                    "w_mem": d.memory_weight,
                    "w_ext": d.external_weight,
                },
                config_hash=e.config_hash,
            )
        if e.type == "TRADE_CLOSED":
            p = e.payload
            report = orchestrator.close_trade(TradeOutcome(
                pattern=p["pattern"],
                success=bool(p["success"]),
                pnl=p.get("pnl", 0.0),
                volatility=p.get("volatility", 0.0),
                signature=p.get("signature"),
                features=p.get("features"),
            ))
            return Event.make(
                stream_id=e.stream_id,
                ts=e.ts,
                type="EVOLUTION",
                payload={
                    "generation": report.generation,
                    "grown": report.evolution.grown,
                    "mood": report.mood.value,
                },
                config_hash=e.config_hash,
            )
        return None

    return handle
