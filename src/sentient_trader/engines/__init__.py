"""
Sentient Trader Engines - adaptive inference core

Components (leaves first):
- FeatureEncoder: indicator readings -> feature vector + memory signature
- MemoryStore: associative engram bank (reinforce / recall / apex / prune)
- EmotionalStateMachine: bounded trait vector -> SentientState mood label
- InferencePipeline: layered hybrid network (predict / train / evolve)
- StructuralMutator: atomic neurogenesis with shape checks

The Orchestrator that composes them lives in
sentient_trader.engines.orchestrator.
"""

from .encoder import FeatureEncoder, FEATURE_NAMES, SIGNATURE_NAMES
from .memory import (
    Engram,
    MemoryContext,
    MemoryStats,
    MemoryStore,
    Recollection,
    StrategyStat,
    extract_concepts,
)
from .sentient import (
    EmotionalStateMachine,
    EmotionalVector,
    MOOD_RULES,
    SentientState,
    classify,
)
from .pipeline import (
    DominantLogic,
    EvolutionReport,
    InferencePipeline,
    NeuralState,
    PredictionOutput,
    Stage,
    StageActivity,
    StageKind,
    TimeHorizon,
)
from .mutator import ShapeInvariantError, StructuralMutator, check_shapes

__all__ = [
    # Encoder
    "FeatureEncoder",
    "FEATURE_NAMES",
    "SIGNATURE_NAMES",
    # Memory
    "Engram",
    "MemoryContext",
    "MemoryStats",
    "MemoryStore",
    "Recollection",
    "StrategyStat",
    "extract_concepts",
    # Sentient
    "EmotionalStateMachine",
    "EmotionalVector",
    "MOOD_RULES",
    "SentientState",
    "classify",
    # Pipeline
    "DominantLogic",
    "EvolutionReport",
    "InferencePipeline",
    "NeuralState",
    "PredictionOutput",
    "Stage",
    "StageActivity",
    "StageKind",
    "TimeHorizon",
    # Mutator
    "ShapeInvariantError",
    "StructuralMutator",
    "check_shapes",
]
