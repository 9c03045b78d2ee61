from __future__ import annotations

from pathlib import Path

import pytest

from sentient_trader.core.config import (
    DEFAULT_CONTRACTS_DIR,
    DEFAULT_STAGES,
    load_engine_config,
)


VALID_ENGINE = """
pipeline:
  input_dim: 4
  stages:
    - {id: enc, kind: ENCODE, nodes: 8, activation: tanh}
    - {id: mix, kind: MIXING_INTERFERENCE, nodes: 4}
    - {id: out, kind: BOUNDING, nodes: 1}
  growth:
    encode_stage: enc
    mixing_stage: mix
memory:
  capacity: 10
orchestrator:
  buy_threshold: 0.6
  sell_threshold: 0.4
"""


def _write(tmp_path: Path, text: str) -> str:
    (tmp_path / "engine.yaml").write_text(text, encoding="utf-8")
    return str(tmp_path)


def test_packaged_engine_contract_loads():
    """The packaged engine.yaml normalizes and matches the canonical constants."""
    cfg = load_engine_config()

    assert cfg.root == DEFAULT_CONTRACTS_DIR
    assert cfg.pipeline.stages == DEFAULT_STAGES
    assert cfg.pipeline.encode_growth_stage == "reasoning"
    assert cfg.pipeline.mixing_growth_stage == "entangle"
    assert cfg.memory.capacity == 1000
    assert cfg.memory.merge_distance == 15.0
    assert cfg.orchestrator.buy_threshold == 0.65
    assert cfg.orchestrator.sell_threshold == 0.35
    assert cfg.sentient.baselines["focus"] == 70.0
    assert cfg.sentient.baselines["curiosity"] == 60.0

    # Check config hash is computed and stable
    assert cfg.config_hash and cfg.config_hash != "defaults"
    assert load_engine_config().config_hash == cfg.config_hash


def test_custom_contract_and_defaults(tmp_path: Path):
    cfg = load_engine_config(_write(tmp_path, VALID_ENGINE))

    assert [s.id for s in cfg.pipeline.stages] == ["enc", "mix", "out"]
    assert cfg.pipeline.stages[0].params == {"activation": "tanh"}
    assert cfg.pipeline.encode_growth_stage == "enc"
    assert cfg.memory.capacity == 10
    # untouched sections fall back to dataclass defaults
    assert cfg.memory.recall_k == 5
    assert cfg.sentient.decay == 0.05
    assert cfg.orchestrator.buy_threshold == 0.6


@pytest.mark.parametrize("broken, message", [
    (VALID_ENGINE.replace("kind: BOUNDING", "kind: ENCODE"), "last stage must be BOUNDING"),
    (VALID_ENGINE.replace("id: mix", "id: enc"), "duplicate"),
    (VALID_ENGINE.replace("kind: MIXING_INTERFERENCE", "kind: QUANTUM"), "unknown kind"),
    (VALID_ENGINE.replace("activation: tanh", "activation: softmax"), "unknown activation"),
    (VALID_ENGINE.replace("nodes: 8", "nodes: 0"), "positive integer"),
    (VALID_ENGINE.replace("mixing_stage: mix", "mixing_stage: enc"), "MIXING stage"),
    (VALID_ENGINE.replace("buy_threshold: 0.6", "buy_threshold: 0.3"), "thresholds"),
    (VALID_ENGINE.replace("capacity: 10", "capacity: 0"), "capacity"),
])
def test_invalid_contracts_fail_closed(tmp_path: Path, broken: str, message: str):
    with pytest.raises(ValueError, match=message):
        load_engine_config(_write(tmp_path, broken))
