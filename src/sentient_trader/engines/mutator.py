"""
Structural Mutator - neurogenesis for the inference pipeline.

Growth adds exactly one unit to a stage:
- one bias entry and one zeroed activation entry (and recurrent cell entry)
- one incoming weight row sized to the previous stage's node count
- one outgoing column on every row of the next stage

The new state is assembled on copies, shape-checked, and only then committed,
so a half-grown stage is never visible to predict().
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, TYPE_CHECKING

from sentient_trader.core.rng import RandomSource, SeededRandom, centered

if TYPE_CHECKING:
    from sentient_trader.engines.pipeline import Stage

logger = logging.getLogger(__name__)


class ShapeInvariantError(RuntimeError):
    """A stage's weight matrix no longer matches its neighbours."""


def shape_errors(stages: List["Stage"], input_dim: int) -> List[str]:
    errors: List[str] = []
    prev_nodes = input_dim
    for idx, st in enumerate(stages):
        if len(st.weights) != st.nodes:
            errors.append(f"{st.id}: {len(st.weights)} weight rows for {st.nodes} nodes")
        for r, row in enumerate(st.weights):
            if len(row) != prev_nodes:
                errors.append(f"{st.id}: row {r} has {len(row)} columns, expected {prev_nodes}")
                break
        if len(st.bias) != st.nodes:
            errors.append(f"{st.id}: bias length {len(st.bias)} != nodes {st.nodes}")
        if st.cell and len(st.cell) != st.nodes:
            errors.append(f"{st.id}: cell length {len(st.cell)} != nodes {st.nodes}")
        prev_nodes = st.nodes
    return errors


def check_shapes(stages: List["Stage"], input_dim: int) -> None:
    errors = shape_errors(stages, input_dim)
    if errors:
        raise ShapeInvariantError("; ".join(errors))


class StructuralMutator:
    def __init__(self, input_dim: int, rng: Optional[RandomSource] = None,
                 weight_scale: float = 0.1, bias_scale: float = 0.05):
        self.input_dim = input_dim
        self.rng = rng or SeededRandom()
        self.weight_scale = weight_scale
        self.bias_scale = bias_scale

    def grow_stage(self, stages: List["Stage"], stage_id: str) -> bool:
        """Append one unit to `stage_id`. Returns False if no such stage."""
        idx = next((i for i, st in enumerate(stages) if st.id == stage_id), -1)
        if idx == -1:
            logger.warning(f"grow_stage: unknown stage {stage_id!r}")
            return False

        layer = stages[idx]
        prev_nodes = stages[idx - 1].nodes if idx > 0 else self.input_dim
        nxt = stages[idx + 1] if idx + 1 < len(stages) else None

        new_row = [centered(self.rng, self.weight_scale) for _ in range(prev_nodes)]
        grown = replace(
            layer,
            nodes=layer.nodes + 1,
            weights=[row[:] for row in layer.weights] + [new_row],
            bias=layer.bias + [centered(self.rng, self.bias_scale)],
            activation=layer.activation + [0.0],
            cell=layer.cell + [0.0] if layer.cell else layer.cell,
        )
        candidate = list(stages)
        candidate[idx] = grown
        if nxt is not None:
            candidate[idx + 1] = replace(
                nxt,
                weights=[row + [centered(self.rng, self.weight_scale)] for row in nxt.weights],
            )

        check_shapes(candidate, self.input_dim)

        # commit: plain attribute swaps, nothing here can fail half-way
        layer.nodes = grown.nodes
        layer.weights = grown.weights
        layer.bias = grown.bias
        layer.activation = grown.activation
        layer.cell = grown.cell
        if nxt is not None:
            nxt.weights = candidate[idx + 1].weights

        logger.debug(f"Neurogenesis: {stage_id} -> {layer.nodes} nodes")
        return True
