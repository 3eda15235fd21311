"""
Data models for the per-trade statistics core and its HTTP API.

Enums are shared by the core and the API; the pydantic classes describe the
request and response payloads.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TradeDefinition(str, Enum):
    """How a position series is cut into trades."""
    FLAT_TO_FLAT = "flat.to.flat"
    FLAT_TO_REDUCED = "flat.to.reduced"


class Scale(str, Enum):
    """Unit in which trade P&L and excursions are reported."""
    CASH = "cash"
    PERCENT = "percent"
    TICK = "tick"


class PositionRecord(BaseModel):
    """Position and valuation of one symbol at one instant."""
    timestamp: str
    pos_qty: float
    txn_value: float = 0.0
    pos_value: float = 0.0


class Instrument(BaseModel):
    """Static contract data needed to express P&L in ticks."""
    multiplier: float = 1.0
    tick_size: float = 0.01

    @property
    def tick_value(self) -> float:
        return self.multiplier * self.tick_size


class UploadResponse(BaseModel):
    positions: Dict[str, List[PositionRecord]]
    total_records: int
    symbols: List[str]


class TradeStatsRequest(BaseModel):
    portfolio: str = "default"
    symbol: Optional[str] = None     # first symbol in `positions` when omitted
    positions: Dict[str, List[PositionRecord]]
    instruments: Dict[str, Instrument] = Field(default_factory=dict)
    include_open_trade: bool = True
    trade_def: TradeDefinition = TradeDefinition.FLAT_TO_FLAT


class TradeQuantilesRequest(TradeStatsRequest):
    scales: List[Scale] = [Scale.CASH, Scale.PERCENT, Scale.TICK]
    probs: List[float] = [0.5, 0.75, 0.9, 0.95, 0.99, 1.0]


class TradeRow(BaseModel):
    """One trade of the TradeStatsTable; non-finite values arrive as null."""
    start: str
    end: str
    initPos: float
    maxPos: float
    numTxns: int
    maxNotionalCost: Optional[float]
    netTradingPL: Optional[float]
    mae: Optional[float]
    mfe: Optional[float]
    pctNetTradingPL: Optional[float]
    pctMAE: Optional[float]
    pctMFE: Optional[float]
    tickNetTradingPL: Optional[float]
    tickMAE: Optional[float]
    tickMFE: Optional[float]


class TradeStatsResponse(BaseModel):
    portfolio: str
    symbol: str
    total_trades: int
    trades: List[TradeRow]


class TradeQuantilesResponse(BaseModel):
    name: str                              # "<portfolio>.<symbol>"
    values: Dict[str, Optional[float]]     # label -> value, in report order
