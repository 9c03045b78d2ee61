"""
Tests for the layered inference pipeline: bounds, determinism, train rule, evolve.
"""

from __future__ import annotations

import copy
import math

import pytest

from sentient_trader.core.config import PipelineConfig, StageSpec
from sentient_trader.core.rng import ScriptedRandom, SeededRandom
from sentient_trader.engines.mutator import shape_errors
from sentient_trader.engines.pipeline import (
    DominantLogic,
    InferencePipeline,
    StageKind,
    TimeHorizon,
)


class CountingRandom:
    """SeededRandom that counts draws."""

    def __init__(self, seed: int):
        self._rng = SeededRandom(seed)
        self.draws = 0

    def random(self) -> float:
        self.draws += 1
        return self._rng.random()


SMALL_STAGES = (
    StageSpec("enc0", "ENCODE", 3, {"activation": "tanh"}),
    StageSpec("enc1", "ENCODE", 2, {"activation": "sigmoid"}),
    StageSpec("bound", "BOUNDING", 1),
)


@pytest.fixture
def pipeline():
    return InferencePipeline(PipelineConfig(), rng=SeededRandom(7))


VECTORS = [
    [0.7, 0.6, 0.5, 0.3],
    [0.0, 0.0, 0.0, 0.0],
    [1.0, 1.0, 1.0, 1.0],
    [-1.0, 1.0, -1.0, 1.0],
    [1e9, -1e9, 3.0, 0.2],
]


@pytest.mark.parametrize("features", VECTORS)
def test_predict_bounds(pipeline, features):
    out = pipeline.predict(features)
    assert 0.0 <= out.prediction <= 1.0
    assert 0.0 <= out.confidence <= 1.0
    assert len(out.layer_activity) == len(pipeline.stages)


@pytest.mark.parametrize("features", [None, [], [0.5], [float("nan"), float("inf"), 0.1, 0.2], [0.1] * 12, ["x", None, 0.3, 0.4]])
def test_predict_tolerates_malformed_vectors(pipeline, features):
    out = pipeline.predict(features)
    assert 0.0 <= out.prediction <= 1.0
    assert 0.0 <= out.confidence <= 1.0


def test_predict_is_deterministic_from_identical_state(pipeline):
    pipeline.predict([0.2, 0.4, 0.6, 0.8])
    twin = copy.deepcopy(pipeline)

    for features in VECTORS:
        a = pipeline.predict(features)
        b = twin.predict(features)
        assert a.prediction == b.prediction
        assert a.confidence == b.confidence
        assert a.vector == b.vector


def test_same_seed_builds_identical_pipelines():
    a = InferencePipeline(rng=SeededRandom(42))
    b = InferencePipeline(rng=SeededRandom(42))
    assert [st.weights for st in a.stages] == [st.weights for st in b.stages]
    assert a.predict(VECTORS[0]).prediction == b.predict(VECTORS[0]).prediction


def test_forward_pass_draws_no_randomness():
    rng = CountingRandom(3)
    p = InferencePipeline(rng=rng)
    before = rng.draws
    for features in VECTORS * 3:
        p.predict(features)
    assert rng.draws == before


def test_every_stage_emits_node_count_values(pipeline):
    pipeline.predict(VECTORS[0])
    for st in pipeline.stages:
        assert len(st.activation) == st.nodes


def test_derived_metrics(pipeline):
    out = pipeline.predict(VECTORS[0])
    interference = pipeline.stage("interference").activation
    coherence = sum(interference) / len(interference)
    classical = abs(out.prediction - 0.5) * 2

    assert out.coherence == pytest.approx(coherence)
    assert out.confidence == pytest.approx((classical + coherence) / 2)
    expected_logic = DominantLogic.NON_CLASSICAL if coherence > classical else DominantLogic.CLASSICAL
    assert out.dominant_logic is expected_logic
    assert pipeline.state.entropy == pytest.approx(1 - classical)


@pytest.mark.parametrize("pred, coherence, horizon", [
    (0.95, 0.9, TimeHorizon.IMMEDIATE_SCALP),
    (0.05, 0.81, TimeHorizon.IMMEDIATE_SCALP),
    (0.95, 0.4, TimeHorizon.WAIT_AND_SEE),
    (0.6, 0.9, TimeHorizon.INTRADAY_SWING),
    (0.9, 0.8, TimeHorizon.INTRADAY_SWING),
    (0.5, 0.5, TimeHorizon.INTRADAY_SWING),
])
def test_time_horizon_thresholds(pipeline, pred, coherence, horizon):
    assert pipeline.time_horizon(pred, coherence) is horizon


def test_bounding_sharpens_extremes():
    cfg = PipelineConfig(stages=(StageSpec("bound", "BOUNDING", 1),))
    p = InferencePipeline(cfg, rng=SeededRandom(1))
    # tanh(0.9) ~ 0.716 passes through, tanh(2.0) ~ 0.964 is pushed up, tanh(0.1) ~ 0.0997 down
    assert p.predict([0.9, 0, 0, 0]).prediction == pytest.approx(math.tanh(0.9))
    assert p.predict([2.0, 0, 0, 0]).prediction == pytest.approx(min(1.0, math.tanh(2.0) * 1.1))
    assert p.predict([0.1, 0, 0, 0]).prediction == pytest.approx(math.tanh(0.1) * 0.9)


def test_gated_recurrent_stage_stays_bounded():
    cfg = PipelineConfig(stages=(
        StageSpec("rec", "RECURRENT", 4, {"gated": True}),
        StageSpec("bound", "BOUNDING", 1),
    ))
    p = InferencePipeline(cfg, rng=SeededRandom(5))
    for _ in range(10):
        p.predict([1.0, -1.0, 0.5, 0.5])
    assert all(-1.0 < c < 1.0 for c in p.stage("rec").cell)


def test_train_updates_only_encode_stages_with_diminishing_factor():
    cfg = PipelineConfig(stages=SMALL_STAGES, learning_rate=0.05)
    p = InferencePipeline(cfg, rng=SeededRandom(11))
    features = [0.7, 0.6, 0.5, 0.3]
    p.predict(features)

    enc0_before = copy.deepcopy(p.stage("enc0").weights)
    enc1_before = copy.deepcopy(p.stage("enc1").weights)
    bound_before = copy.deepcopy(p.stage("bound").weights)
    last = p.stage("bound").activation[0]
    enc0_out = list(p.stage("enc0").activation)

    error = p.train(features, 1.0)

    assert error == pytest.approx(1.0 - last)
    # stage 0 gets factor 0/3: unchanged
    assert p.stage("enc0").weights == enc0_before
    assert p.stage("bound").weights == bound_before
    step = 0.05 * error * (1 / 3)
    for n, row in enumerate(p.stage("enc1").weights):
        for j, w in enumerate(row):
            assert w == pytest.approx(enc1_before[n][j] + step * enc0_out[j])
    assert p.state.plasticity == pytest.approx(min(1.0, max(0.1, abs(error) * 2)))


def test_train_never_raises(pipeline):
    assert isinstance(pipeline.train(None, 1.0), float)
    assert isinstance(pipeline.train([float("nan")], float("nan")), float)
    assert 0.1 <= pipeline.state.plasticity <= 1.0


def test_evolve_without_growth_keeps_weights_when_draws_are_centered():
    p = InferencePipeline(rng=ScriptedRandom([0.5]))
    before = copy.deepcopy([st.weights for st in p.stages])
    report = p.evolve()
    assert report.generation == 2
    assert report.grown == []
    assert [st.weights for st in p.stages] == before


def test_evolve_grows_both_designated_stages_when_gates_open():
    p = InferencePipeline(rng=ScriptedRandom([0.99]))
    # fresh state: plasticity 0.8 > 0.7, coherence 1.0 > 0.85
    report = p.evolve()
    assert report.grown == ["reasoning", "entangle"]
    assert p.stage("reasoning").nodes == 129
    assert p.stage("entangle").nodes == 33
    assert shape_errors(p.stages, p.input_dim) == []
    assert 0.0 <= p.predict(VECTORS[0]).prediction <= 1.0


def test_evolve_gates_closed_by_low_plasticity_and_coherence():
    p = InferencePipeline(rng=ScriptedRandom([0.99]))
    p.state.plasticity = 0.5
    p.state.coherence = 0.5
    assert p.evolve().grown == []


def test_evolve_never_shrinks_and_keeps_rectangular_weights(pipeline):
    sizes = [st.nodes for st in pipeline.stages]
    for i in range(25):
        pipeline.predict(VECTORS[i % len(VECTORS)])
        pipeline.evolve()
        new_sizes = [st.nodes for st in pipeline.stages]
        assert all(n >= o for n, o in zip(new_sizes, sizes))
        assert shape_errors(pipeline.stages, pipeline.input_dim) == []
        sizes = new_sizes
    assert pipeline.state.generation == 26


def test_round_trip_through_dict_preserves_predictions():
    p = InferencePipeline(rng=ScriptedRandom([0.99, 0.3, 0.7]))
    p.evolve()
    p.predict(VECTORS[3])

    restored = InferencePipeline.from_dict(p.to_dict(), rng=SeededRandom(0))

    assert restored.state.generation == p.state.generation
    assert [st.nodes for st in restored.stages] == [st.nodes for st in p.stages]
    assert restored.stage("temporal_memory").kind is StageKind.RECURRENT
    assert restored.predict(VECTORS[0]).prediction == p.predict(VECTORS[0]).prediction


def test_from_dict_rejects_mismatched_input_dim(pipeline):
    data = pipeline.to_dict()
    data["input_dim"] = 7
    with pytest.raises(ValueError):
        InferencePipeline.from_dict(data)


def test_describe_reports_shapes(pipeline):
    desc = pipeline.describe()
    assert desc[0]["shape"] == [64, 4]
    assert desc[-1] == {"id": "bounding", "kind": "BOUNDING", "nodes": 1, "shape": [1, 128]}


@pytest.mark.parametrize("field, value", [
    ("weights", float("nan")),
    ("bias", float("inf")),
    ("cell", float("-inf")),
])
def test_from_dict_rejects_non_finite_values(pipeline, field, value):
    data = pipeline.to_dict()
    stage = data["stages"][1]  # temporal_memory carries a cell
    if field == "weights":
        stage["weights"][0][0] = value
    else:
        stage[field][0] = value
    with pytest.raises(ValueError, match="non-finite"):
        InferencePipeline.from_dict(data)
