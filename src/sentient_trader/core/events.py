from __future__ import annotations

from typing import Optional, List, Literal
from pydantic import BaseModel, Field

from .types import MarketSnapshot, TradeOutcome

# Inbound payload schemas from external collaborators


class IndicatorReading(BaseModel):
    rsi: float = 50.0
    macd: float = 0.0
    macd_hist: float = 0.0
    volume: float = Field(default=0.0, ge=0.0)
    volatility: float = Field(default=0.0, ge=0.0)
    price: float = 0.0
    ma: Optional[float] = None

    def to_snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(**self.model_dump())


class ConsensusScore(BaseModel):
    source: str = "aggregator"
    score: float = Field(ge=0.0, le=100.0)


class TradeClosed(BaseModel):
    trade_id: str
    pattern: str
    outcome: Literal["WIN", "LOSS"]
    pnl: float = 0.0
    volatility: float = Field(default=0.0, ge=0.0)
    signature: Optional[List[float]] = None
    features: Optional[List[float]] = None

    def to_outcome(self) -> TradeOutcome:
        return TradeOutcome(
            pattern=self.pattern,
            success=self.outcome == "WIN",
            pnl=self.pnl,
            volatility=self.volatility,
            signature=self.signature,
            features=self.features,
        )
