"""
Layered Inference Pipeline - hybrid classical / mixing network.

Turns an encoded feature vector into a scalar prediction in [0, 1]:

  features -> tanh -> ENCODE -> RECURRENT -> STOCHASTIC_ENCODE
           -> MIXING_ENTANGLE -> MIXING_INTERFERENCE -> FUSION
           -> ENCODE -> BOUNDING -> prediction

The forward pass is deterministic: the "non-classical" stages are plain
trigonometric squashing, never random draws. Randomness is confined to
evolve() (weight drift + growth gating) via an injected RandomSource.

Every stage emits exactly `nodes` values. Mixing and bridge stages read their
input cyclically (in[i % len(in)]) so they stay well-defined after a
neighbour has grown.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from sentient_trader.core.config import PipelineConfig, StageSpec
from sentient_trader.core.rng import RandomSource, SeededRandom, centered
from sentient_trader.core.types import clamp, clamp01, finite_or
from sentient_trader.engines.mutator import StructuralMutator, check_shapes, shape_errors

logger = logging.getLogger(__name__)

SQRT2 = math.sqrt(2.0)


class StageKind(str, Enum):
    ENCODE = "ENCODE"
    RECURRENT = "RECURRENT"
    STOCHASTIC_ENCODE = "STOCHASTIC_ENCODE"
    MIXING_ENTANGLE = "MIXING_ENTANGLE"
    MIXING_INTERFERENCE = "MIXING_INTERFERENCE"
    FUSION = "FUSION"
    BOUNDING = "BOUNDING"

    @property
    def is_classical(self) -> bool:
        return self in (StageKind.ENCODE, StageKind.RECURRENT)


class TimeHorizon(str, Enum):
    IMMEDIATE_SCALP = "immediate-scalp"
    INTRADAY_SWING = "intraday-swing"
    WAIT_AND_SEE = "wait-and-see"


class DominantLogic(str, Enum):
    CLASSICAL = "classical"
    NON_CLASSICAL = "non-classical"


def _finite(value: Any, what: str) -> float:
    v = float(value)
    if not math.isfinite(v):
        raise ValueError(f"non-finite {what} in persisted pipeline: {v}")
    return v


@dataclass
class Stage:
    """One layer of the pipeline. weights is [nodes x prev_nodes]."""
    id: str
    kind: StageKind
    nodes: int
    weights: List[List[float]]
    bias: List[float]
    activation: List[float]
    params: Dict[str, Any] = field(default_factory=dict)
    cell: List[float] = field(default_factory=list)  # RECURRENT memory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "nodes": self.nodes,
            "weights": self.weights,
            "bias": self.bias,
            "params": self.params,
            "cell": self.cell,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Stage":
        """Raises ValueError on non-finite weights, bias or cell values."""
        nodes = int(d["nodes"])
        kind = StageKind(d["kind"])
        cell = [_finite(c, "cell") for c in d.get("cell") or []]
        if kind is StageKind.RECURRENT and not cell:
            cell = [0.0] * nodes
        return Stage(
            id=str(d["id"]),
            kind=kind,
            nodes=nodes,
            weights=[[_finite(w, "weight") for w in row] for row in d["weights"]],
            bias=[_finite(b, "bias") for b in d["bias"]],
            activation=[0.0] * nodes,
            params=dict(d.get("params") or {}),
            cell=cell,
        )


@dataclass(frozen=True)
class StageActivity:
    id: str
    kind: str
    nodes: int
    activity: float  # mean |activation|


@dataclass(frozen=True)
class PredictionOutput:
    prediction: float
    confidence: float
    coherence: float
    dominant_logic: DominantLogic
    time_horizon: TimeHorizon
    layer_activity: List[StageActivity]
    vector: List[float]


@dataclass
class NeuralState:
    coherence: float = 1.0
    plasticity: float = 0.8
    entropy: float = 0.0
    generation: int = 1
    layer_activity: List[StageActivity] = field(default_factory=list)


@dataclass(frozen=True)
class EvolutionReport:
    generation: int
    mutation_rate: float
    grown: List[str]


_ACTIVATIONS = {
    "relu": lambda x: max(0.0, x),
    "tanh": math.tanh,
    "sigmoid": lambda x: 1.0 / (1.0 + math.exp(-clamp(x, -500.0, 500.0))),
}


def _dot(weights: List[List[float]], bias: List[float], x: Sequence[float]) -> List[float]:
    n = len(x)
    return [
        sum(w * x[j] for j, w in enumerate(row) if j < n) + bias[i]
        for i, row in enumerate(weights)
    ]


def _cyc(x: Sequence[float], i: int, default: float = 0.0) -> float:
    return x[i % len(x)] if x else default


def _sharpen(v: float) -> float:
    if v > 0.8:
        return min(1.0, v * 1.1)
    if v < 0.2:
        return max(0.0, v * 0.9)
    return v


class InferencePipeline:
    """
    Ordered stage list, built once, then only trained / drifted / grown in place.

    predict() caches each stage's activation and advances recurrent cells;
    identical state + identical input always yields the identical output.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, rng: Optional[RandomSource] = None,
                 stages: Optional[List[Stage]] = None):
        self.config = config or PipelineConfig()
        self.rng = rng or SeededRandom()
        self.input_dim = self.config.input_dim
        self.learning_rate = self.config.learning_rate
        self.state = NeuralState(plasticity=self.config.initial_plasticity)
        self.mutator = StructuralMutator(
            self.input_dim, self.rng, weight_scale=self.config.growth_init_scale,
        )
        self.stages: List[Stage] = stages if stages is not None else self._build(self.config.stages)
        self._input: List[float] = [0.0] * self.input_dim
        check_shapes(self.stages, self.input_dim)

    # --- construction ---

    def _build(self, specs: Sequence[StageSpec]) -> List[Stage]:
        stages: List[Stage] = []
        prev = self.input_dim
        scale = self.config.weight_init_scale
        for spec in specs:
            kind = StageKind(spec.kind)
            stages.append(Stage(
                id=spec.id,
                kind=kind,
                nodes=spec.nodes,
                weights=[[centered(self.rng, scale) for _ in range(prev)] for _ in range(spec.nodes)],
                bias=[self.config.bias_init] * spec.nodes,
                activation=[0.0] * spec.nodes,
                params=dict(spec.params),
                cell=[0.0] * spec.nodes if kind is StageKind.RECURRENT else [],
            ))
            prev = spec.nodes
        return stages

    def stage(self, stage_id: str) -> Optional[Stage]:
        return next((st for st in self.stages if st.id == stage_id), None)

    # --- forward pass ---

    def sanitize(self, features: Optional[Sequence[Any]]) -> List[float]:
        """Clamp/default a feature vector to input_dim finite values."""
        vals = [finite_or(v) for v in (features or [])][: self.input_dim]
        return vals + [0.0] * (self.input_dim - len(vals))

    def predict(self, features: Optional[Sequence[Any]]) -> PredictionOutput:
        x = [math.tanh(v) for v in self.sanitize(features)]
        self._input = x

        signal: List[float] = x
        classical: List[float] = []
        mixing: List[float] = []
        for st in self.stages:
            signal = self._forward(st, signal, classical, mixing)
            if st.kind.is_classical:
                classical = signal
            elif st.kind is StageKind.MIXING_INTERFERENCE:
                mixing = signal
            st.activation = signal

        output = clamp01(signal[0]) if signal else 0.5
        coherence = sum(mixing) / len(mixing) if mixing else 0.0
        classical_confidence = abs(output - 0.5) * 2
        activity = self.layer_activity()

        self.state.coherence = coherence
        self.state.entropy = 1 - classical_confidence
        self.state.layer_activity = activity

        return PredictionOutput(
            prediction=output,
            confidence=clamp01((classical_confidence + coherence) / 2),
            coherence=coherence,
            dominant_logic=(DominantLogic.NON_CLASSICAL if coherence > classical_confidence
                            else DominantLogic.CLASSICAL),
            time_horizon=self.time_horizon(output, coherence),
            layer_activity=activity,
            vector=list(signal),
        )

    def _forward(self, st: Stage, x: List[float], classical: List[float], mixing: List[float]) -> List[float]:
        n = st.nodes
        if st.kind is StageKind.ENCODE:
            fn = _ACTIVATIONS.get(st.params.get("activation", "sigmoid"), _ACTIVATIONS["sigmoid"])
            return [fn(v) for v in _dot(st.weights, st.bias, x)]

        if st.kind is StageKind.RECURRENT:
            raw = _dot(st.weights, st.bias, x)
            gated = bool(st.params.get("gated", False))
            out = []
            for i, v in enumerate(raw):
                if gated:
                    g = _ACTIVATIONS["sigmoid"](v)
                    st.cell[i] = st.cell[i] * g + math.tanh(v) * (1 - g)
                else:
                    st.cell[i] = st.cell[i] * 0.5 + math.tanh(v) * 0.5
                out.append(math.tanh(st.cell[i]))
            return out

        if st.kind is StageKind.STOCHASTIC_ENCODE:
            return [(math.sin(_cyc(x, i) * math.pi) + 1) / 2 for i in range(n)]

        if st.kind is StageKind.MIXING_ENTANGLE:
            src = [_cyc(x, i) for i in range(n)]
            return [(src[i] + src[(i + 1) % n]) / SQRT2 for i in range(n)]

        if st.kind is StageKind.MIXING_INTERFERENCE:
            return [(math.cos(2 * math.pi * _cyc(x, i)) + 1) / 2 for i in range(n)]

        if st.kind is StageKind.FUSION:
            r = float(st.params.get("blend_ratio", 0.5))
            return [_cyc(classical, i, 0.0) * (1 - r) + _cyc(mixing, i, 0.5) * r for i in range(n)]

        # BOUNDING
        return [_sharpen(_cyc(x, i)) for i in range(n)]

    def time_horizon(self, pred: float, coherence: float) -> TimeHorizon:
        c = self.config
        if coherence > c.scalp_coherence and abs(pred - 0.5) > c.scalp_deviation:
            return TimeHorizon.IMMEDIATE_SCALP
        if coherence < c.wait_coherence:
            return TimeHorizon.WAIT_AND_SEE
        return TimeHorizon.INTRADAY_SWING

    def layer_activity(self) -> List[StageActivity]:
        return [
            StageActivity(
                id=st.id,
                kind=st.kind.value,
                nodes=st.nodes,
                activity=sum(abs(a) for a in st.activation) / st.nodes,
            )
            for st in self.stages
        ]

    # --- continuous learning ---

    def train(self, features: Optional[Sequence[Any]], target: float) -> float:
        """
        One coarse corrective pass (not backpropagation).

        error = target - last output; each ENCODE stage i gets
        w[n][j] += lr * error * (i / stage_count) * input_j
        where input_j is the previous stage's cached activation (the encoded
        features for stage 0). Returns the error.
        """
        target = clamp01(finite_or(target, 0.5))
        last = self.stages[-1].activation
        error = target - (last[0] if last else 0.5)
        encoded = [math.tanh(v) for v in self.sanitize(features)]
        count = len(self.stages)

        for i, st in enumerate(self.stages):
            if st.kind is not StageKind.ENCODE:
                continue
            inputs = self.stages[i - 1].activation if i > 0 else encoded
            step = self.learning_rate * error * (i / count)
            st.weights = [
                [w + step * (inputs[j] if j < len(inputs) else 0.0) for j, w in enumerate(row)]
                for row in st.weights
            ]

        self.state.plasticity = clamp(abs(error) * 2, self.config.min_plasticity, 1.0)
        return error

    # --- evolution & neurogenesis ---

    def evolve(self) -> EvolutionReport:
        """
        Generation step: drift every weight by (u - 0.5) * mutation_rate * plasticity,
        then maybe grow. The two gate draws are taken first so that the growth
        decision does not depend on network size.

        A network that already violates its shape invariants is left untouched:
        no drift, no growth, same generation.
        """
        errors = shape_errors(self.stages, self.input_dim)
        if errors:
            logger.error(f"Skipping evolution, pipeline shapes are inconsistent: {'; '.join(errors)}")
            return EvolutionReport(generation=self.state.generation, mutation_rate=0.0, grown=[])

        encode_draw = self.rng.random()
        mixing_draw = self.rng.random()

        self.state.generation += 1
        rate = self.config.mutation_rate * self.state.plasticity
        for st in self.stages:
            st.weights = [[w + centered(self.rng, rate) for w in row] for row in st.weights]

        grown: List[str] = []
        c = self.config
        if self.state.plasticity > c.encode_plasticity_threshold and encode_draw > c.encode_draw_threshold:
            if self.grow_stage(c.encode_growth_stage):
                grown.append(c.encode_growth_stage)
        if self.state.coherence > c.mixing_coherence_threshold and mixing_draw > c.mixing_draw_threshold:
            if self.grow_stage(c.mixing_growth_stage):
                grown.append(c.mixing_growth_stage)

        logger.info(f"Evolution gen {self.state.generation}: plasticity {self.state.plasticity:.2f} grown={grown}")
        return EvolutionReport(generation=self.state.generation, mutation_rate=rate, grown=grown)

    def grow_stage(self, stage_id: str) -> bool:
        return self.mutator.grow_stage(self.stages, stage_id)

    # --- introspection / persistence ---

    def describe(self) -> List[Dict[str, Any]]:
        prev = self.input_dim
        out = []
        for st in self.stages:
            out.append({"id": st.id, "kind": st.kind.value, "nodes": st.nodes, "shape": [st.nodes, prev]})
            prev = st.nodes
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_dim": self.input_dim,
            "generation": self.state.generation,
            "plasticity": self.state.plasticity,
            "coherence": self.state.coherence,
            "stages": [st.to_dict() for st in self.stages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: Optional[PipelineConfig] = None,
                  rng: Optional[RandomSource] = None) -> "InferencePipeline":
        """Rebuild a grown pipeline. Raises ValueError/ShapeInvariantError on a bad blob."""
        config = config or PipelineConfig()
        if int(data.get("input_dim", config.input_dim)) != config.input_dim:
            raise ValueError("persisted pipeline input_dim does not match config")
        stages = [Stage.from_dict(d) for d in data["stages"]]
        if not stages or stages[-1].kind is not StageKind.BOUNDING:
            raise ValueError("persisted pipeline must end with a BOUNDING stage")
        p = cls(config=config, rng=rng, stages=stages)
        p.state.generation = int(data.get("generation", 1))
        p.state.plasticity = _finite(data.get("plasticity", config.initial_plasticity), "plasticity")
        p.state.coherence = _finite(data.get("coherence", 1.0), "coherence")
        return p
