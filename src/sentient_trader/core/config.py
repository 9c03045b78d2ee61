from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .types import sha256_hex, stable_json

DEFAULT_CONTRACTS_DIR = Path(__file__).resolve().parent.parent / "contracts"
ENGINE_CONTRACT = "engine.yaml"

STAGE_KINDS = (
    "ENCODE",
    "RECURRENT",
    "STOCHASTIC_ENCODE",
    "MIXING_ENTANGLE",
    "MIXING_INTERFERENCE",
    "FUSION",
    "BOUNDING",
)
ACTIVATIONS = ("relu", "tanh", "sigmoid")


@dataclass(frozen=True)
class StageSpec:
    id: str
    kind: str
    nodes: int
    params: Dict[str, Any] = field(default_factory=dict)


DEFAULT_STAGES: Tuple[StageSpec, ...] = (
    StageSpec("feature_conv", "ENCODE", 64, {"activation": "sigmoid"}),
    StageSpec("temporal_memory", "RECURRENT", 32),
    StageSpec("superposition", "STOCHASTIC_ENCODE", 32),
    StageSpec("entangle", "MIXING_ENTANGLE", 32),
    StageSpec("interference", "MIXING_INTERFERENCE", 16),
    StageSpec("fusion", "FUSION", 64, {"blend_ratio": 0.7}),
    StageSpec("reasoning", "ENCODE", 128, {"activation": "sigmoid"}),
    StageSpec("bounding", "BOUNDING", 1),
)


@dataclass(frozen=True)
class PipelineConfig:
    input_dim: int = 4
    learning_rate: float = 0.05
    mutation_rate: float = 0.02
    initial_plasticity: float = 0.8
    min_plasticity: float = 0.1
    weight_init_scale: float = 0.1
    growth_init_scale: float = 0.1
    bias_init: float = 0.01
    # growth gating
    encode_growth_stage: str = "reasoning"
    encode_plasticity_threshold: float = 0.7
    encode_draw_threshold: float = 0.85
    mixing_growth_stage: str = "entangle"
    mixing_coherence_threshold: float = 0.85
    mixing_draw_threshold: float = 0.9
    # time horizon
    scalp_coherence: float = 0.8
    scalp_deviation: float = 0.4
    wait_coherence: float = 0.5
    stages: Tuple[StageSpec, ...] = DEFAULT_STAGES


@dataclass(frozen=True)
class MemoryConfig:
    capacity: int = 1000
    merge_distance: float = 15.0
    recall_k: int = 5
    initial_strength: float = 0.5
    reinforce_step: float = 0.1
    experience_step: float = 5.0
    apex_threshold: float = 0.95
    apex_bonus: float = 0.8
    strength_weight: float = 0.7
    recency_weight: float = 0.3
    recent_limit: int = 50


@dataclass(frozen=True)
class SentientConfig:
    decay: float = 0.05
    baselines: Dict[str, float] = field(default_factory=lambda: {
        "confidence": 50.0,
        "aggression": 50.0,
        "stability": 50.0,
        "focus": 70.0,
        "curiosity": 60.0,
    })
    high_volatility: float = 2.5
    low_volatility: float = 1.0
    overconfidence_streak: int = 5
    desperation_streak: int = -3
    thought_limit: int = 50


@dataclass(frozen=True)
class OrchestratorConfig:
    buy_threshold: float = 0.65
    sell_threshold: float = 0.35
    memory_weight_per_recall: float = 0.1
    memory_weight_cap: float = 0.5
    external_weight: float = 0.3
    neutral_consensus: float = 50.0


@dataclass(frozen=True)
class EngineConfig:
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    sentient: SentientConfig = field(default_factory=SentientConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    config_hash: str = "defaults"
    root: Optional[Path] = None


def load_yaml_contract(contracts_dir: str, filename: str) -> Dict[str, Any]:
    """Load a single YAML contract file.

    Args:
        contracts_dir: Directory containing contract YAML files
        filename: Name of the YAML file to load (e.g., "engine.yaml")

    Returns:
        Parsed YAML contract as a dictionary
    """
    root = Path(contracts_dir)
    contract_path = root / filename
    with contract_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_engine_config(contracts_dir: Optional[str] = None) -> EngineConfig:
    root = Path(contracts_dir) if contracts_dir else DEFAULT_CONTRACTS_DIR
    doc = load_yaml_contract(str(root), ENGINE_CONTRACT)
    doc = normalize_engine_contract(doc)
    # Hash normalized representation (stable_json)
    config_hash = sha256_hex(stable_json(doc))
    return EngineConfig(
        pipeline=_pipeline_from_doc(doc["pipeline"]),
        memory=_build(MemoryConfig, doc["memory"]),
        sentient=_sentient_from_doc(doc["sentient"]),
        orchestrator=_build(OrchestratorConfig, doc["orchestrator"]),
        config_hash=config_hash,
        root=root,
    )


def _require(condition: bool, msg: str) -> None:
    """Fail-closed helper for contract validation."""
    if not condition:
        raise ValueError(msg)


def normalize_engine_contract(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize the engine contract into a deterministic, validated shape.

    Expectations:
    - pipeline.stages is a non-empty LIST of stage objects with unique ids
    - the last stage is BOUNDING, growth targets name ENCODE / MIXING stages
    - buy threshold strictly above sell threshold
    - missing sections fall back to an empty mapping (dataclass defaults apply)
    """
    _require(isinstance(doc, dict), "engine contract must be a mapping")
    for section in ("pipeline", "memory", "sentient", "orchestrator"):
        doc[section] = doc.get(section) or {}
        _require(isinstance(doc[section], dict), f"engine.{section} must be a mapping")

    doc["pipeline"] = normalize_pipeline(doc["pipeline"])

    mem = doc["memory"]
    _require(int(mem.get("capacity", 1)) >= 1, "engine.memory.capacity must be >= 1")
    _require(float(mem.get("merge_distance", 0.0)) >= 0.0, "engine.memory.merge_distance must be >= 0")

    orch = doc["orchestrator"]
    buy = float(orch.get("buy_threshold", OrchestratorConfig.buy_threshold))
    sell = float(orch.get("sell_threshold", OrchestratorConfig.sell_threshold))
    _require(0.0 <= sell < buy <= 1.0, "engine.orchestrator thresholds must satisfy 0 <= sell < buy <= 1")
    return doc


def normalize_pipeline(pipeline: Dict[str, Any]) -> Dict[str, Any]:
    """Validate stage list; expose by-id lookup."""
    stages = pipeline.get("stages", [])
    _require(isinstance(stages, list) and len(stages) > 0, "engine.pipeline.stages must be a non-empty list")

    by_id: Dict[str, Any] = {}
    for idx, st in enumerate(stages):
        _require(isinstance(st, dict), f"engine.pipeline.stages[{idx}] must be an object")
        _require("id" in st and isinstance(st["id"], str) and st["id"].strip(),
                 f"engine.pipeline.stages[{idx}] missing non-empty 'id'")
        sid = st["id"].strip()
        _require(sid not in by_id, f"duplicate engine.pipeline.stages id: {sid}")
        _require(st.get("kind") in STAGE_KINDS, f"engine.pipeline.stages[{idx}] unknown kind: {st.get('kind')}")
        _require(isinstance(st.get("nodes"), int) and st["nodes"] >= 1,
                 f"engine.pipeline.stages[{idx}] nodes must be a positive integer")
        if st["kind"] == "ENCODE":
            _require(st.get("activation", "sigmoid") in ACTIVATIONS,
                     f"engine.pipeline.stages[{idx}] unknown activation: {st.get('activation')}")
        if st["kind"] == "FUSION":
            r = float(st.get("blend_ratio", 0.5))
            _require(0.0 <= r <= 1.0, f"engine.pipeline.stages[{idx}] blend_ratio must be in [0, 1]")
        st["id"] = sid
        by_id[sid] = st

    _require(stages[-1]["kind"] == "BOUNDING", "engine.pipeline last stage must be BOUNDING")

    growth = pipeline.get("growth") or {}
    enc = growth.get("encode_stage")
    mix = growth.get("mixing_stage")
    if enc is not None:
        _require(enc in by_id and by_id[enc]["kind"] == "ENCODE",
                 f"engine.pipeline.growth.encode_stage must name an ENCODE stage: {enc}")
    if mix is not None:
        _require(mix in by_id and by_id[mix]["kind"].startswith("MIXING"),
                 f"engine.pipeline.growth.mixing_stage must name a MIXING stage: {mix}")

    pipeline["growth"] = growth
    pipeline["stages_by_id"] = by_id
    return pipeline


def _build(cls, section: Dict[str, Any]):
    known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
    return cls(**known)


def _pipeline_from_doc(p: Dict[str, Any]) -> PipelineConfig:
    stages = tuple(
        StageSpec(
            id=st["id"],
            kind=st["kind"],
            nodes=int(st["nodes"]),
            params={k: v for k, v in st.items() if k not in ("id", "kind", "nodes")},
        )
        for st in p["stages"]
    )
    growth = p.get("growth", {})
    horizon = p.get("horizon") or {}
    flat: Dict[str, Any] = {k: v for k, v in p.items() if k not in ("stages", "stages_by_id", "growth", "horizon")}
    flat.update({
        "encode_growth_stage": growth.get("encode_stage", PipelineConfig.encode_growth_stage),
        "mixing_growth_stage": growth.get("mixing_stage", PipelineConfig.mixing_growth_stage),
    })
    for key in ("encode_plasticity_threshold", "encode_draw_threshold",
                "mixing_coherence_threshold", "mixing_draw_threshold"):
        if key in growth:
            flat[key] = growth[key]
    flat.update(horizon)
    cfg = _build(PipelineConfig, flat)
    return PipelineConfig(**{**cfg.__dict__, "stages": stages})


def _sentient_from_doc(s: Dict[str, Any]) -> SentientConfig:
    base = dict(SentientConfig().baselines)
    base.update({k: float(v) for k, v in (s.get("baselines") or {}).items()})
    cfg = _build(SentientConfig, {k: v for k, v in s.items() if k != "baselines"})
    return SentientConfig(**{**cfg.__dict__, "baselines": base})
