"""
Orchestrator - the analyze / close-trade cycle of the engine.

analyze():
  reading -> FeatureEncoder -> InferencePipeline.predict
          -> MemoryStore.get_context(signature)
          -> blend with optional external consensus -> BUY / SELL / HOLD

close_trade():
  outcome -> MemoryStore.reinforce -> InferencePipeline.train (if features)
          -> EmotionalStateMachine.update -> InferencePipeline.evolve -> persist

All collaborators are explicit objects handed in by the caller; nothing here is
process-global. Persistence goes through EngineStateStore repositories.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from sentient_trader.core.config import EngineConfig, OrchestratorConfig, load_engine_config
from sentient_trader.core.events import IndicatorReading, TradeClosed
from sentient_trader.core.rng import RandomSource, SeededRandom
from sentient_trader.core.types import (
    Action,
    MarketSnapshot,
    TradeOutcome,
    clamp01,
    finite_or,
)
from sentient_trader.engines.encoder import FeatureEncoder
from sentient_trader.engines.memory import Engram, MemoryContext, MemoryStats, MemoryStore
from sentient_trader.engines.pipeline import EvolutionReport, InferencePipeline, PredictionOutput
from sentient_trader.engines.sentient import EmotionalStateMachine, SentientState
from sentient_trader.log.decision_journal import DecisionJournal, DecisionRecord, iso_now
from sentient_trader.log.event_store import EventStore
from sentient_trader.state.persistence import (
    EngineStateStore,
    load_emotional_vector,
    load_memory_store,
    load_pipeline,
    save_emotional_vector,
    save_memory_store,
    save_pipeline,
)

logger = logging.getLogger(__name__)

AnalyzeInput = Union[MarketSnapshot, IndicatorReading, Mapping[str, Any], Sequence[float], None]
Narrator = Callable[["Decision"], Optional[str]]


@dataclass
class Decision:
    action: Action
    probability: float
    pipeline_prediction: float
    memory_intuition: Optional[float]  # percent, None when nothing recalled
    memory_weight: float
    external_weight: float
    recalled: List[Engram] = field(default_factory=list)
    prediction: Optional[PredictionOutput] = None
    context: Optional[MemoryContext] = None
    reasons: Dict[str, Any] = field(default_factory=dict)
    narrative: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return "fallback" in self.reasons


@dataclass(frozen=True)
class CloseReport:
    engram: Engram
    training_error: Optional[float]
    evolution: EvolutionReport
    mood: SentientState
    evolution_level: int

    @property
    def generation(self) -> int:
        return self.evolution.generation


def memory_weight(recalled: int, cfg: OrchestratorConfig) -> float:
    """min(k * 0.1, 0.5); zero when nothing was recalled."""
    if recalled <= 0:
        return 0.0
    return min(recalled * cfg.memory_weight_per_recall, cfg.memory_weight_cap)


def blend_probability(
    prediction: float,
    intuition: Optional[float],
    consensus: Optional[float],
    w_mem: float,
    w_ext: float,
) -> float:
    """
    p = pred * (1 - w_mem - w_ext) + intuition * w_mem + consensus * w_ext

    intuition and consensus are in [0, 1] here; a missing one contributes
    nothing because its weight is zero.
    """
    p = prediction * (1.0 - w_mem - w_ext)
    if intuition is not None:
        p += intuition * w_mem
    if consensus is not None:
        p += consensus * w_ext
    return clamp01(p)


def decide_action(probability: float, cfg: Optional[OrchestratorConfig] = None) -> Action:
    cfg = cfg or OrchestratorConfig()
    if probability > cfg.buy_threshold:
        return Action.BUY
    if probability < cfg.sell_threshold:
        return Action.SELL
    return Action.HOLD


class Orchestrator:
    """
    Owns one pipeline, one memory store and one state machine for the life of
    the process. Single writer: callers serialize analyze() / close_trade().
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        pipeline: Optional[InferencePipeline] = None,
        memory: Optional[MemoryStore] = None,
        state_machine: Optional[EmotionalStateMachine] = None,
        encoder: Optional[FeatureEncoder] = None,
        state_store: Optional[EngineStateStore] = None,
        journal: Optional[DecisionJournal] = None,
        narrator: Optional[Narrator] = None,
        rng: Optional[RandomSource] = None,
    ):
        self.config = config or EngineConfig()
        self.pipeline = pipeline or InferencePipeline(self.config.pipeline, rng=rng)
        self.memory = memory or MemoryStore(self.config.memory)
        self.state_machine = state_machine or EmotionalStateMachine(self.config.sentient)
        self.encoder = encoder or FeatureEncoder()
        self.state_store = state_store
        self.journal = journal
        self.narrator = narrator
        self.last_decision: Optional[Decision] = None

    # --- analysis ---

    def _inputs(self, reading: AnalyzeInput,
                signature: Optional[Sequence[float]]) -> Tuple[List[Any], Optional[List[float]]]:
        """Resolve (features, signature). Raises ValueError on unusable input."""
        if reading is None:
            raise ValueError("no features supplied")
        if isinstance(reading, BaseModel):
            reading = reading.to_snapshot() if isinstance(reading, IndicatorReading) else reading.model_dump()
        if isinstance(reading, (MarketSnapshot, Mapping)):
            sig = list(signature) if signature is not None else self.encoder.signature(reading)
            return self.encoder.encode(reading), sig
        if isinstance(reading, (str, bytes)):
            raise ValueError("feature vector must be numeric")
        features = list(reading)
        if not features:
            raise ValueError("empty feature vector")
        return features, (list(signature) if signature is not None else None)

    def analyze(
        self,
        reading: AnalyzeInput,
        external_consensus: Optional[float] = None,
        signature: Optional[Sequence[float]] = None,
    ) -> Decision:
        """
        One decision cycle. Never raises: unusable input or a failing stage
        yields a HOLD decision with reasons["fallback"] set.

        `reading` is either raw indicators (MarketSnapshot / IndicatorReading /
        mapping) or an already-encoded feature vector. For a bare vector the
        memory signature must be passed explicitly, otherwise memory is skipped.
        """
        cfg = self.config.orchestrator
        try:
            features, sig = self._inputs(reading, signature)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unusable analyze input, holding: {e}")
            return self._finish(self._fallback(f"unusable input: {e}"), None, None, external_consensus)

        try:
            pred = self.pipeline.predict(features)
            ctx = self.memory.get_context(sig) if sig is not None else None
        except Exception as e:
            logger.error(f"Inference cycle failed, holding: {e}")
            return self._finish(self._fallback(f"stage error: {e}"), features, sig, external_consensus)

        recalled = ctx.recalled if ctx is not None else []
        w_mem = memory_weight(len(recalled), cfg)
        intuition = ctx.intuition / 100.0 if ctx is not None and ctx.intuition is not None else None

        consensus = None
        if external_consensus is not None:
            consensus = clamp01(finite_or(external_consensus, cfg.neutral_consensus) / 100.0)
        w_ext = cfg.external_weight if consensus is not None else 0.0

        probability = blend_probability(pred.prediction, intuition, consensus, w_mem, w_ext)
        decision = Decision(
            action=decide_action(probability, cfg),
            probability=probability,
            pipeline_prediction=pred.prediction,
            memory_intuition=ctx.intuition if ctx is not None else None,
            memory_weight=w_mem,
            external_weight=w_ext,
            recalled=recalled,
            prediction=pred,
            context=ctx,
            reasons={
                "w_mem": w_mem,
                "w_ext": w_ext,
                "consensus": (consensus * 100.0) if consensus is not None else cfg.neutral_consensus,
                "recalled": [e.id for e in recalled],
                "concepts": ctx.concepts if ctx is not None else [],
            },
        )
        logger.debug(f"Decision {decision.action.value} p={probability:.3f} pred={pred.prediction:.3f} w_mem={w_mem:.2f}")
        return self._finish(decision, features, sig, external_consensus)

    def _fallback(self, cause: str) -> Decision:
        neutral = self.config.orchestrator.neutral_consensus / 100.0
        return Decision(
            action=Action.HOLD,
            probability=neutral,
            pipeline_prediction=neutral,
            memory_intuition=None,
            memory_weight=0.0,
            external_weight=0.0,
            reasons={"fallback": cause},
        )

    def _finish(self, decision: Decision, features: Optional[List[Any]],
                sig: Optional[List[float]], external_consensus: Optional[float]) -> Decision:
        if self.narrator is not None:
            try:
                decision.narrative = self.narrator(decision)
            except Exception as e:
                # narration is optional; the decision stands without it
                logger.warning(f"Narrator failed, continuing without narrative: {e}")
        self.last_decision = decision
        if self.journal is not None:
            self._journal(decision, features, sig, external_consensus)
        return decision

    def _journal(self, decision: Decision, features: Optional[List[Any]],
                 sig: Optional[List[float]], external_consensus: Optional[float]) -> None:
        ts = iso_now()
        if features is not None:
            self.journal.log_event("FEATURES", {
                "features": [finite_or(v) for v in features],
                "signature": sig,
                "external_consensus": external_consensus,
            }, ts=ts)

        context: Dict[str, Any] = {
            "mood": self.state_machine.state.value,
            "generation": self.pipeline.state.generation,
        }
        if decision.prediction is not None:
            context.update({
                "coherence": decision.prediction.coherence,
                "confidence": decision.prediction.confidence,
                "time_horizon": decision.prediction.time_horizon.value,
                "dominant_logic": decision.prediction.dominant_logic.value,
            })
        action = decision.action.value
        self.journal.log(DecisionRecord(
            time=ts,
            action=action,
            probability=decision.probability,
            pipeline_prediction=decision.pipeline_prediction,
            memory_intuition=decision.memory_intuition,
            external_consensus=external_consensus,
            reasons=decision.reasons,
            plain_english=DecisionJournal.summarize(action, decision.probability, decision.reasons, context),
            context=context,
        ))

    # --- learning ---

    def close_trade(self, outcome: Union[TradeOutcome, TradeClosed]) -> CloseReport:
        """Feed a realized outcome back: reinforce, train, update mood, evolve, persist."""
        if isinstance(outcome, TradeClosed):
            outcome = outcome.to_outcome()
        vol = max(0.0, finite_or(outcome.volatility))

        engram = self.memory.reinforce(Engram(
            pattern=outcome.pattern,
            outcome=outcome.outcome,
            signature=list(outcome.signature) if outcome.signature else [50.0, 0.0, vol, 0.0],
            weight=1.5 if outcome.success else 0.8,
            experience=50.0 if outcome.success else 10.0,
            concept_tags=["PROFITABLE"] if outcome.success else ["LOSS"],
            market_condition="VOLATILE" if vol > 2 else "STABLE",
        ))

        training_error = None
        if outcome.features:
            training_error = self.pipeline.train(outcome.features, 1.0 if outcome.success else 0.0)

        mood = self.state_machine.update(vol, outcome.result, outcome.pnl)
        evolution = self.pipeline.evolve()
        level = self.memory.evolution_level()

        if self.journal is not None:
            self.journal.log_event("TRADE_CLOSED", {
                "pattern": outcome.pattern,
                "success": outcome.success,
                "pnl": finite_or(outcome.pnl),
                "volatility": vol,
                "signature": outcome.signature,
                "features": outcome.features,
            })
            self.journal.log_event("EVOLUTION", {
                "generation": evolution.generation,
                "grown": evolution.grown,
                "mood": mood.value,
                "evolution_level": level,
            })

        self.persist()
        logger.info(f"Trade closed: {outcome.pattern} {outcome.result.value} -> gen {evolution.generation}, mood {mood.value}")
        return CloseReport(
            engram=engram,
            training_error=training_error,
            evolution=evolution,
            mood=mood,
            evolution_level=level,
        )

    def mood(self, volatility: float) -> SentientState:
        """Idle cycle: decay + volatility effect, no outcome."""
        state = self.state_machine.update(volatility)
        if self.state_store is not None:
            save_emotional_vector(self.state_store.emotion, self.state_machine.vector)
        return state

    def memory_stats(self) -> MemoryStats:
        return self.memory.stats()

    def inject_apex(self, pattern: str, signature: Optional[List[float]] = None) -> Engram:
        e = self.memory.inject_apex(pattern, signature)
        self.persist()
        return e

    def persist(self) -> None:
        if self.state_store is None:
            return
        save_memory_store(self.state_store.memory, self.memory)
        save_emotional_vector(self.state_store.emotion, self.state_machine.vector)
        save_pipeline(self.state_store.pipeline, self.pipeline)


def create_orchestrator(
    contracts_dir: Optional[str] = None,
    state_dir: Optional[str] = None,
    seed: Optional[int] = None,
    db_path: Optional[str] = None,
    stream_id: str = "ENGINE",
    narrator: Optional[Narrator] = None,
) -> Orchestrator:
    """Build an orchestrator from the engine contract, restoring persisted state when state_dir is given."""
    config = load_engine_config(contracts_dir)
    rng = SeededRandom(seed)

    state_store = EngineStateStore(state_dir) if state_dir else None
    if state_store is not None:
        pipeline = load_pipeline(state_store.pipeline, config.pipeline, rng=rng)
        memory = load_memory_store(state_store.memory, config.memory)
        vector = load_emotional_vector(state_store.emotion)
    else:
        pipeline = InferencePipeline(config.pipeline, rng=rng)
        memory = MemoryStore(config.memory)
        vector = None

    journal = None
    if db_path:
        store = EventStore(db_path)
        store.init_schema()
        journal = DecisionJournal(store, stream_id=stream_id, config_hash=config.config_hash)

    return Orchestrator(
        config=config,
        pipeline=pipeline,
        memory=memory,
        state_machine=EmotionalStateMachine(config.sentient, vector),
        state_store=state_store,
        journal=journal,
        narrator=narrator,
    )
