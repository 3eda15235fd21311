"""
Read-only view of a portfolio's position history and instrument data.

The ledger is the input handle of the statistics core: it owns nothing it
did not receive, never mutates the series it hands out, and is the place
where an unknown symbol is reported.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from analytics import POS_QTY, POS_VALUE, TXN_VALUE, check_position_columns, per_trade_stats
from errors import MissingSymbolError
from models import Instrument, PositionRecord, Scale, TradeDefinition
from quantiles import DEFAULT_PROBS, DEFAULT_SCALES, QuantileSummary, aggregate_trade_quantiles

logger = logging.getLogger(__name__)


def position_frame_from_records(records: Sequence[PositionRecord]) -> pd.DataFrame:
    """
    Build a position series from records.

    Raises:
        ValueError: If timestamps cannot be parsed or are not strictly increasing.
    """
    if not records:
        return pd.DataFrame(
            {POS_QTY: [], TXN_VALUE: [], POS_VALUE: []},
            index=pd.DatetimeIndex([], name="timestamp"),
            dtype="float64",
        )

    try:
        index = pd.DatetimeIndex(
            pd.to_datetime([r.timestamp for r in records], utc=True), name="timestamp"
        )
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid position timestamp: {exc}") from exc

    frame = pd.DataFrame(
        {
            POS_QTY: [r.pos_qty for r in records],
            TXN_VALUE: [r.txn_value for r in records],
            POS_VALUE: [r.pos_value for r in records],
        },
        index=index,
        dtype="float64",
    )
    validate_position_series(frame)
    return frame


def validate_position_series(series: pd.DataFrame) -> None:
    """Raise ValueError unless ``series`` is a well-formed position series."""
    check_position_columns(series)
    if not series.index.is_monotonic_increasing or not series.index.is_unique:
        raise ValueError("Position series timestamps must be strictly increasing.")


class PositionLedger:
    """
    Position series and instruments of one portfolio, keyed by symbol.

    Symbols are kept in insertion order, which is what ``symbols`` returns.
    """

    def __init__(
        self,
        portfolio: str,
        positions: Mapping[str, pd.DataFrame],
        instruments: Optional[Mapping[str, Instrument]] = None,
    ) -> None:
        self.portfolio = portfolio
        self._positions: Dict[str, pd.DataFrame] = {}
        for symbol, series in positions.items():
            validate_position_series(series)
            self._positions[symbol] = series
        self._instruments: Dict[str, Instrument] = dict(instruments or {})

    @classmethod
    def from_records(
        cls,
        portfolio: str,
        positions: Mapping[str, Sequence[PositionRecord]],
        instruments: Optional[Mapping[str, Instrument]] = None,
    ) -> "PositionLedger":
        frames = {sym: position_frame_from_records(recs) for sym, recs in positions.items()}
        return cls(portfolio, frames, instruments)

    @property
    def symbols(self) -> List[str]:
        return list(self._positions)

    def position_series(self, symbol: str) -> pd.DataFrame:
        """A copy of the symbol's position series."""
        try:
            return self._positions[symbol].copy()
        except KeyError:
            raise MissingSymbolError(symbol, self.portfolio) from None

    def instrument(self, symbol: str) -> Instrument:
        if symbol not in self._positions:
            raise MissingSymbolError(symbol, self.portfolio)
        try:
            return self._instruments[symbol]
        except KeyError:
            raise MissingSymbolError(symbol, self.portfolio) from None

    def trade_stats(
        self,
        symbol: str,
        include_open_trade: bool = True,
        trade_def: Union[str, TradeDefinition] = TradeDefinition.FLAT_TO_FLAT,
    ) -> pd.DataFrame:
        """Per-trade statistics table for ``symbol``."""
        series = self.position_series(symbol)
        instrument = self.instrument(symbol)
        logger.debug(
            "Trade stats for %s.%s: %d records", self.portfolio, symbol, len(series)
        )
        return per_trade_stats(series, instrument.tick_value, include_open_trade, trade_def)

    def trade_quantiles(
        self,
        symbol: str,
        scales: Iterable[Union[str, Scale]] = DEFAULT_SCALES,
        probs: Sequence[float] = DEFAULT_PROBS,
        include_open_trade: bool = True,
        trade_def: Union[str, TradeDefinition] = TradeDefinition.FLAT_TO_FLAT,
    ) -> QuantileSummary:
        """Quantile summary for ``symbol``, named ``"<portfolio>.<symbol>"``."""
        trades = self.trade_stats(symbol, include_open_trade, trade_def)
        return aggregate_trade_quantiles(
            trades, scales, probs, name=f"{self.portfolio}.{symbol}"
        )
