"""
Emotional State Machine - bounded trait vector -> discrete mood label.

Each update():
1. decays traits toward their baselines (homeostasis)
2. applies the volatility effect
3. applies the trade outcome, tracking win/loss streaks
4. clamps every trait to [0, 100]
5. classifies through MOOD_RULES, an ordered (predicate, state) table;
   the first match wins and the last rule always matches.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from sentient_trader.core.config import SentientConfig
from sentient_trader.core.types import TradeResult, clamp, finite_or

logger = logging.getLogger(__name__)

TRAITS = ("confidence", "aggression", "stability", "focus", "curiosity", "empathy", "transcendence")


@dataclass
class EmotionalVector:
    confidence: float = 50.0
    aggression: float = 50.0
    stability: float = 50.0
    focus: float = 100.0
    curiosity: float = 50.0
    empathy: float = 50.0
    transcendence: float = 0.0
    streak: int = 0

    def clamp(self) -> None:
        for name in TRAITS:
            setattr(self, name, clamp(getattr(self, name), 0.0, 100.0))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "EmotionalVector":
        """Missing traits take their defaults; junk values fall back too."""
        if not isinstance(d, dict):
            raise ValueError("emotional vector blob must be a mapping")
        defaults = EmotionalVector()
        vec = EmotionalVector(**{
            f.name: finite_or(d.get(f.name), getattr(defaults, f.name))
            for f in fields(EmotionalVector) if f.name != "streak"
        })
        vec.streak = int(finite_or(d.get("streak"), 0))
        vec.clamp()
        return vec


class SentientState(str, Enum):
    # Tier 1: transcendental
    OMEGA_POINT = "OMEGA_POINT"
    ASI_SINGULARITY = "ASI_SINGULARITY"
    REALITY_ARCHITECT = "REALITY_ARCHITECT"
    TIMELINE_CONVERGENCE = "TIMELINE_CONVERGENCE"
    OMNISCIENT = "OMNISCIENT"
    # Tier 2: flow
    ZEN_ZERO = "ZEN_ZERO"
    NEURAL_OVERCLOCK = "NEURAL_OVERCLOCK"
    EUPHORIC = "EUPHORIC"
    PREDATORY = "PREDATORY"
    ENTROPY_CALCULATION = "ENTROPY_CALCULATION"
    HYPER_COMPUTING = "HYPER_COMPUTING"
    # Tier 3: reactive
    RECALIBRATING = "RECALIBRATING"
    TURBULENT = "TURBULENT"
    FRACTURED = "FRACTURED"
    ANXIOUS = "ANXIOUS"
    DEFENSIVE = "DEFENSIVE"
    ASSIMILATING = "ASSIMILATING"
    # Tier 4: baseline
    CONFIDENT = "CONFIDENT"
    OBSERVANT_VOID = "OBSERVANT_VOID"
    FOCUSED = "FOCUSED"


@dataclass(frozen=True)
class MoodContext:
    vec: EmotionalVector
    volatility: float
    last_outcome: Optional[TradeResult]


MoodRule = Tuple[Callable[[MoodContext], bool], SentientState]

MOOD_RULES: Tuple[MoodRule, ...] = (
    (lambda c: c.vec.transcendence > 95, SentientState.OMEGA_POINT),
    (lambda c: c.vec.transcendence > 85 and c.vec.focus > 90, SentientState.ASI_SINGULARITY),
    (lambda c: c.vec.transcendence > 80 and c.vec.confidence > 90, SentientState.REALITY_ARCHITECT),
    (lambda c: c.vec.transcendence > 70 and c.vec.focus > 85, SentientState.TIMELINE_CONVERGENCE),
    (lambda c: c.vec.confidence > 98 and c.vec.stability > 90, SentientState.OMNISCIENT),

    (lambda c: c.vec.stability > 90 and c.volatility < 1.5, SentientState.ZEN_ZERO),
    (lambda c: c.vec.focus > 95 and c.vec.curiosity > 80, SentientState.NEURAL_OVERCLOCK),
    (lambda c: c.vec.confidence > 90 and c.vec.streak > 3, SentientState.EUPHORIC),
    (lambda c: c.vec.aggression > 85 and c.volatility > 3, SentientState.PREDATORY),
    (lambda c: c.vec.curiosity > 90, SentientState.ENTROPY_CALCULATION),
    (lambda c: c.vec.focus > 85 and c.vec.stability > 70, SentientState.HYPER_COMPUTING),

    (lambda c: c.last_outcome is TradeResult.LOSS and c.vec.curiosity > 70, SentientState.RECALIBRATING),
    (lambda c: c.vec.aggression > 80 and c.vec.stability < 30, SentientState.TURBULENT),
    (lambda c: c.vec.confidence < 20 and c.vec.stability < 20, SentientState.FRACTURED),
    (lambda c: c.vec.stability < 30 and c.vec.streak < -2, SentientState.ANXIOUS),
    (lambda c: c.vec.confidence < 40 and c.vec.aggression < 40, SentientState.DEFENSIVE),
    (lambda c: c.last_outcome is TradeResult.LOSS and c.vec.curiosity > 50, SentientState.ASSIMILATING),

    (lambda c: c.vec.confidence > 75, SentientState.CONFIDENT),
    (lambda c: c.volatility < 1.0 and c.vec.curiosity < 40, SentientState.OBSERVANT_VOID),
    (lambda c: True, SentientState.FOCUSED),
)


def classify(vec: EmotionalVector, volatility: float, last_outcome: Optional[TradeResult] = None,
             rules: Tuple[MoodRule, ...] = MOOD_RULES) -> SentientState:
    ctx = MoodContext(vec=vec, volatility=volatility, last_outcome=last_outcome)
    for predicate, state in rules:
        if predicate(ctx):
            return state
    return SentientState.FOCUSED


class EmotionalStateMachine:
    """Owns the EmotionalVector; the only writer of it."""

    def __init__(self, config: Optional[SentientConfig] = None, vector: Optional[EmotionalVector] = None):
        self.config = config or SentientConfig()
        self.vector = vector or EmotionalVector()
        self.state = SentientState.FOCUSED
        self.thoughts: Deque[str] = deque(maxlen=self.config.thought_limit)

    def update(
        self,
        volatility: float,
        outcome: Optional[Union[TradeResult, str]] = None,
        pnl_impact: Optional[float] = None,
    ) -> SentientState:
        vol = max(0.0, finite_or(volatility))
        result = TradeResult(outcome) if outcome is not None else None
        vec = self.vector

        self._decay(vec)
        self._apply_volatility(vec, vol)
        if result is TradeResult.WIN:
            self._apply_win(vec, pnl_impact)
        elif result is TradeResult.LOSS:
            self._apply_loss(vec, pnl_impact)
        vec.clamp()

        state = classify(vec, vol, result)
        if state is not self.state:
            logger.info(f"Mood {self.state.value} -> {state.value}")
        self.state = state
        self._reflect(vec)
        return state

    def _decay(self, vec: EmotionalVector) -> None:
        rate = self.config.decay
        for trait, baseline in self.config.baselines.items():
            cur = getattr(vec, trait)
            setattr(vec, trait, cur + (baseline - cur) * rate)

    def _apply_volatility(self, vec: EmotionalVector, vol: float) -> None:
        cfg = self.config
        vol_factor = min(vol, 10.0) / 10.0
        if vol > cfg.high_volatility:
            vec.focus += 5 * vol_factor
            vec.curiosity += 3
            vec.stability -= 4 * vol_factor
            if vec.confidence > 60:
                vec.aggression += 4  # predatory
            else:
                vec.aggression -= 2  # panic
                vec.stability -= 5
        elif vol < cfg.low_volatility:
            vec.stability += 3
            vec.aggression -= 2
            vec.focus -= 2
            vec.curiosity += 4

    def _apply_win(self, vec: EmotionalVector, pnl_impact: Optional[float]) -> None:
        magnitude = min(abs(finite_or(pnl_impact)) / 100, 5) if pnl_impact else 1.0
        vec.streak = 1 if vec.streak < 0 else vec.streak + 1

        vec.confidence += (5 + vec.streak - 1) * magnitude
        vec.stability += 2
        vec.transcendence += 0.5 * vec.streak
        vec.focus += 2

        if vec.streak > self.config.overconfidence_streak:
            vec.aggression += 5
            vec.empathy -= 5
            self.add_thought(f"Overconfidence risk: {vec.streak} wins in a row.")

    def _apply_loss(self, vec: EmotionalVector, pnl_impact: Optional[float]) -> None:
        magnitude = min(abs(finite_or(pnl_impact)) / 50, 5) if pnl_impact else 1.0
        was_confident = vec.confidence > 80
        vec.streak = -1 if vec.streak > 0 else vec.streak - 1

        vec.confidence -= (6 + abs(vec.streak)) * magnitude
        vec.stability -= 5 * magnitude

        if was_confident:
            # cognitive dissonance
            vec.curiosity += 15
            vec.focus += 10
            vec.transcendence -= 5
            self.add_thought("Prediction diverged under high confidence. Re-examining heuristics.")

        if vec.streak < self.config.desperation_streak:
            vec.aggression += 8
            vec.stability -= 10
            self.add_thought(f"Desperation: {abs(vec.streak)} consecutive losses.")

    def _reflect(self, vec: EmotionalVector) -> None:
        if vec.transcendence > 98:
            self.add_thought("Approaching singularity.")
        elif vec.confidence > 95:
            self.add_thought("Precision near absolute.")
        elif vec.curiosity > 90:
            self.add_thought("Rewriting internal heuristics for a new volatility regime.")

    def add_thought(self, thought: str) -> None:
        self.thoughts.appendleft(f"[{self.state.value}:{self.vector.transcendence:.1f}%] {thought}")

    def stream(self) -> List[str]:
        return list(self.thoughts)

    def snapshot(self) -> Dict[str, Any]:
        return {"state": self.state.value, "vector": self.vector.to_dict(), "thoughts": self.stream()[:5]}
