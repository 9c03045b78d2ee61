from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from sentient_trader.core.events import ConsensusScore, IndicatorReading, TradeClosed
from sentient_trader.engines.orchestrator import create_orchestrator
from sentient_trader.log.event_store import EventStore
from sentient_trader.log.replay import replay_events, session_handler


def _add_engine_args(s: argparse.ArgumentParser) -> None:
    s.add_argument("--state-dir", default="data/state", help="Directory holding memory/emotion/pipeline JSON")
    s.add_argument("--contracts", default=None, help="Contracts directory (defaults to the packaged engine.yaml)")
    s.add_argument("--seed", type=int, default=None, help="Seed for weight init / mutation draws")


def _load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser("sentient-trader")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # init-db
    s_init = sub.add_parser("init-db")
    s_init.add_argument("--db", default="data/events.sqlite")
    s_init.add_argument("--schema", default=None)

    # analyze one indicator reading
    s_analyze = sub.add_parser("analyze", help="Analyze one indicator reading")
    s_analyze.add_argument("--reading-json", required=True, help="Path to JSON {rsi,macd,macd_hist,volume,volatility,price,ma}")
    s_analyze.add_argument("--consensus", type=float, default=None, help="External consensus score 0..100")
    s_analyze.add_argument("--db", default=None, help="Journal the decision into this event DB")
    s_analyze.add_argument("--stream", default="ENGINE")
    _add_engine_args(s_analyze)

    # close-trade: feed a realized outcome back
    s_close = sub.add_parser("close-trade", help="Reinforce memory, update mood and evolve from a closed trade")
    s_close.add_argument("--trade-json", required=True, help="Path to JSON {trade_id,pattern,outcome,pnl,volatility,...}")
    s_close.add_argument("--db", default=None)
    s_close.add_argument("--stream", default="ENGINE")
    _add_engine_args(s_close)

    # mood: idle update
    s_mood = sub.add_parser("mood", help="Run an idle mood cycle at the given volatility")
    s_mood.add_argument("--volatility", type=float, required=True)
    _add_engine_args(s_mood)

    # memory-stats
    s_stats = sub.add_parser("memory-stats", help="Show memory bank statistics")
    s_stats.add_argument("--recent", type=int, default=10)
    _add_engine_args(s_stats)

    # inject-apex
    s_apex = sub.add_parser("inject-apex", help="Seed an apex engram")
    s_apex.add_argument("--pattern", default="Intraday VWAP Convergence")
    _add_engine_args(s_apex)

    # show-pipeline
    s_pipe = sub.add_parser("show-pipeline", help="Show pipeline architecture and neural state")
    _add_engine_args(s_pipe)

    # replay a journaled stream through a fresh engine
    s_replay = sub.add_parser("replay", help="Replay FEATURES / TRADE_CLOSED events and fingerprint the outputs")
    s_replay.add_argument("--db", default="data/events.sqlite")
    s_replay.add_argument("--stream", required=True)
    s_replay.add_argument("--contracts", default=None)
    s_replay.add_argument("--seed", type=int, default=0)

    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    if args.cmd == "init-db":
        store = EventStore(args.db)
        store.init_schema(args.schema)
        print(f"Initialized DB at {args.db}")
        return 0

    if args.cmd == "analyze":
        try:
            reading = IndicatorReading(**_load_json(args.reading_json))
            consensus = ConsensusScore(score=args.consensus).score if args.consensus is not None else None
        except ValidationError as e:
            print(f"Invalid input: {e}")
            return 2
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed, db_path=args.db, stream_id=args.stream)
        d = orch.analyze(reading, external_consensus=consensus)
        orch.persist()
        out = {
            "action": d.action.value,
            "probability": d.probability,
            "pipeline_prediction": d.pipeline_prediction,
            "memory_intuition": d.memory_intuition,
            "w_mem": d.memory_weight,
            "w_ext": d.external_weight,
            "reasons": d.reasons,
        }
        if d.prediction is not None:
            out.update({
                "confidence": d.prediction.confidence,
                "coherence": d.prediction.coherence,
                "time_horizon": d.prediction.time_horizon.value,
                "dominant_logic": d.prediction.dominant_logic.value,
            })
        print(json.dumps(out, indent=2))
        return 0

    if args.cmd == "close-trade":
        try:
            trade = TradeClosed(**_load_json(args.trade_json))
        except ValidationError as e:
            print(f"Invalid trade: {e}")
            return 2
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed, db_path=args.db, stream_id=args.stream)
        report = orch.close_trade(trade)
        print(json.dumps({
            "trade_id": trade.trade_id,
            "engram_id": report.engram.id,
            "pattern": report.engram.pattern,
            "strength": report.engram.strength,
            "is_apex": report.engram.is_apex,
            "training_error": report.training_error,
            "generation": report.generation,
            "grown": report.evolution.grown,
            "mood": report.mood.value,
            "evolution_level": report.evolution_level,
        }, indent=2))
        return 0

    if args.cmd == "mood":
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed)
        state = orch.mood(args.volatility)
        snap = orch.state_machine.snapshot()
        print(f"Mood: {state.value}")
        print("-" * 40)
        for k, v in snap["vector"].items():
            print(f"  {k}: {v:.2f}" if isinstance(v, float) else f"  {k}: {v}")
        for t in snap["thoughts"]:
            print(f"  > {t}")
        return 0

    if args.cmd == "memory-stats":
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed)
        stats = orch.memory.stats(recent_limit=args.recent)
        print("Memory Bank")
        print("-" * 40)
        print(f"Engrams: {stats.total}")
        print(f"Win rate: {stats.win_rate:.1f}%")
        print(f"Evolution level: {stats.evolution_level}")
        print(f"Apex engrams: {len(stats.apex)}")
        for e in stats.apex:
            print(f"  {e.pattern} (xp {e.experience:.0f})")
        print("Strong patterns:")
        for name in stats.strong_patterns:
            print(f"  {name}")
        print("Top strategies:")
        for s in stats.top_strategies:
            print(f"  {s.name}: {s.win_rate:.1f}% over {s.count}")
        print("Recent:")
        for e in stats.recent:
            print(f"  {e.pattern} {e.outcome.value} strength={e.strength:.2f}")
        return 0

    if args.cmd == "inject-apex":
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed)
        e = orch.inject_apex(args.pattern)
        print(f"Injected {e.id}: {e.pattern}")
        return 0

    if args.cmd == "show-pipeline":
        orch = create_orchestrator(args.contracts, args.state_dir, seed=args.seed)
        st = orch.pipeline.state
        print("Inference Pipeline")
        print("-" * 40)
        print(f"Generation: {st.generation}")
        print(f"Plasticity: {st.plasticity:.3f}")
        print(f"Coherence: {st.coherence:.3f}")
        for layer in orch.pipeline.describe():
            print(f"  {layer['id']:<16} {layer['kind']:<20} {layer['nodes']:>4} nodes  shape={layer['shape']}")
        return 0

    if args.cmd == "replay":
        store = EventStore(args.db)
        events = store.read_stream(args.stream)
        if not events:
            print(f"No events in stream {args.stream!r}. Known streams: {', '.join(store.streams()) or '-'}")
            return 1
        # fresh in-memory engine: no state dir, no journal
        orch = create_orchestrator(args.contracts, None, seed=args.seed)
        res = replay_events(events, session_handler(orch))
        print(json.dumps({
            "stream_id": res.stream_id,
            "config_hash": res.config_hash,
            "events_in": res.events_in,
            "events_out": res.events_out,
            "output_fingerprint": res.output_fingerprint,
        }, indent=2))
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
