"""Component 1: Feature Encoder.

Normalizes raw indicator readings into:
- a fixed-length feature vector in [0, 1] for the inference pipeline
    [rsi/100, (macd+50)/100, min(volume/10000, 1), min(volatility/10, 1)]
- a reduced signature for associative memory, kept in indicator units so
  merge/recall distances are meaningful
    [rsi, macd_hist*10, volatility, (price-ma)/ma*100]
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Union

from sentient_trader.core.types import MarketSnapshot, clamp01, finite_or

FEATURE_NAMES = ("rsi_n", "macd_n", "volume_n", "volatility_n")
SIGNATURE_NAMES = ("rsi", "macd_hist_x10", "volatility", "price_deviation_pct")

Reading = Union[MarketSnapshot, Mapping[str, Any]]


def _snapshot(reading: Reading) -> MarketSnapshot:
  if isinstance(reading, MarketSnapshot):
    return reading
  if not isinstance(reading, Mapping):
    return MarketSnapshot()
  ma = reading.get("ma")
  return MarketSnapshot(
    rsi=finite_or(reading.get("rsi"), 50.0),
    macd=finite_or(reading.get("macd"), 0.0),
    macd_hist=finite_or(reading.get("macd_hist"), 0.0),
    volume=finite_or(reading.get("volume"), 0.0),
    volatility=finite_or(reading.get("volatility"), 0.0),
    price=finite_or(reading.get("price"), 0.0),
    ma=finite_or(ma) if ma is not None else None,
  )


class FeatureEncoder:
  input_dim = len(FEATURE_NAMES)

  def encode(self, reading: Reading) -> List[float]:
    s = _snapshot(reading)
    return [
      clamp01(finite_or(s.rsi, 50.0) / 100.0),
      clamp01((finite_or(s.macd) + 50.0) / 100.0),
      clamp01(finite_or(s.volume) / 10000.0),
      clamp01(finite_or(s.volatility) / 10.0),
    ]

  def signature(self, reading: Reading) -> List[float]:
    s = _snapshot(reading)
    ma = finite_or(s.ma) if s.ma is not None else finite_or(s.price)
    deviation = (finite_or(s.price) - ma) / ma * 100.0 if ma else 0.0
    return [
      finite_or(s.rsi, 50.0),
      finite_or(s.macd_hist) * 10.0,
      finite_or(s.volatility),
      deviation,
    ]

  def describe(self, reading: Reading) -> Dict[str, float]:
    return dict(zip(FEATURE_NAMES, self.encode(reading)))
