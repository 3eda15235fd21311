"""
Per-trade statistics for a single symbol's position history.

A position series is a DataFrame indexed by timestamp with the columns
``Pos.Qty``, ``Txn.Value`` and ``Pos.Value``.  Each trade interval found by
``segmentation.segment_trades`` becomes one row of the trade-stats table.

All functions operate on NumPy arrays for efficiency.  Zero denominators do
not raise: the affected metric comes out as ``inf``/``nan`` and the rest of
the row is unaffected.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Union

import numpy as np
import pandas as pd

from models import TradeDefinition
from segmentation import segment_trades

logger = logging.getLogger(__name__)

POS_QTY = "Pos.Qty"
TXN_VALUE = "Txn.Value"
POS_VALUE = "Pos.Value"
POSITION_COLUMNS = [POS_QTY, TXN_VALUE, POS_VALUE]

TRADE_STATS_COLUMNS = [
    "start",
    "end",
    "initPos",
    "maxPos",
    "numTxns",
    "maxNotionalCost",
    "netTradingPL",
    "mae",
    "mfe",
    "pctNetTradingPL",
    "pctMAE",
    "pctMFE",
    "tickNetTradingPL",
    "tickMAE",
    "tickMFE",
]

_FLOAT_COLUMNS = [c for c in TRADE_STATS_COLUMNS if c not in ("start", "end", "numTxns")]


def check_position_columns(series: pd.DataFrame) -> None:
    """Raise ValueError unless ``series`` carries every position column."""
    missing = [c for c in POSITION_COLUMNS if c not in series.columns]
    if missing:
        raise ValueError(
            f"Position series is missing required columns: {missing}. "
            f"Found columns: {list(series.columns)}"
        )


def _excursions(pl: np.ndarray) -> Dict[str, float]:
    # np.minimum / np.maximum keep nan, builtin min/max would drop it.
    return {
        "net": float(pl[-1]),
        "mae": float(np.minimum(0.0, np.min(pl))),
        "mfe": float(np.maximum(0.0, np.max(pl))),
    }


def _flat_trade_stats() -> Dict[str, Any]:
    stats: Dict[str, Any] = {c: 0.0 for c in _FLOAT_COLUMNS}
    stats["numTxns"] = 0
    return {c: stats[c] for c in TRADE_STATS_COLUMNS if c in stats}


def compute_trade_stats(trade: pd.DataFrame, tick_value: float) -> Dict[str, Any]:
    """
    Compute the statistics of one trade.

    Args:
        trade:      Records of the trade interval, first to last inclusive.
        tick_value: Currency value of one tick (multiplier × tick size).

    Returns:
        Dictionary keyed by the trade-stats columns, without ``start``/``end``.
        An empty interval gives a flat row: zero sizes, no transactions and
        0.0 for every P&L and excursion.
    """
    if len(trade) == 0:
        return _flat_trade_stats()

    qty = trade[POS_QTY].to_numpy(dtype=np.float64)
    txn = trade[TXN_VALUE].to_numpy(dtype=np.float64)
    value = trade[POS_VALUE].to_numpy(dtype=np.float64)

    with np.errstate(divide="ignore", invalid="ignore"):
        # ── Running cost basis and P&L ──────────────────────────────────────────
        cost_basis = np.cumsum(txn)
        pos_pl = value - cost_basis
        # The last element of both is replaced below.
        pct_pl = pos_pl / np.abs(cost_basis)
        tick_pl = pos_pl / np.abs(qty) / tick_value

        # ── Position size and investment ────────────────────────────────────────
        max_pos_loc = int(np.argmax(np.abs(qty)))
        max_pos = qty[max_pos_loc]
        max_notional_cost = cost_basis[max_pos_loc]

        # At the close the cost basis no longer reflects the capital at risk,
        # so net percent/tick P&L is measured against the peak position.
        pct_pl[-1] = pos_pl[-1] / np.abs(max_notional_cost)
        tick_pl[-1] = pos_pl[-1] / np.abs(max_pos) / tick_value

        cash = _excursions(pos_pl)
        pct = _excursions(pct_pl)
        tick = _excursions(tick_pl)

    return {
        "initPos": float(qty[0]),
        "maxPos": float(max_pos),
        "numTxns": int(np.count_nonzero(txn)),
        "maxNotionalCost": float(max_notional_cost),
        "netTradingPL": cash["net"],
        "mae": cash["mae"],
        "mfe": cash["mfe"],
        "pctNetTradingPL": pct["net"],
        "pctMAE": pct["mae"],
        "pctMFE": pct["mfe"],
        "tickNetTradingPL": tick["net"],
        "tickMAE": tick["mae"],
        "tickMFE": tick["mfe"],
    }


def _as_table(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    table = pd.DataFrame(rows, columns=TRADE_STATS_COLUMNS)
    dtypes: Dict[str, Any] = {c: np.float64 for c in _FLOAT_COLUMNS}
    dtypes["numTxns"] = np.int64
    return table.astype(dtypes)


def per_trade_stats(
    series: pd.DataFrame,
    tick_value: float,
    include_open_trade: bool = True,
    trade_def: Union[str, TradeDefinition] = TradeDefinition.FLAT_TO_FLAT,
) -> pd.DataFrame:
    """
    Segment a position series into trades and compute statistics for each.

    A trade still open on the last record is marked to market at that
    record; if later data closes it, its statistics will change.

    Args:
        series:             Position series of one symbol, in time order.
        tick_value:         Currency value of one tick for the instrument.
        include_open_trade: Keep (True) or drop (False) a trade still open at
                            the end of the series.
        trade_def:          ``flat.to.flat`` or ``flat.to.reduced``.

    Returns:
        DataFrame with one row per trade in ``TRADE_STATS_COLUMNS`` order,
        chronological by ``start``.

    Raises:
        ValueError:             If position columns are missing.
        InvalidDefinitionError: If ``trade_def`` is not supported.
    """
    check_position_columns(series)

    if tick_value == 0 or not math.isfinite(tick_value):
        logger.warning(
            "Tick value is %s – tick-denominated metrics will be non-finite.",
            tick_value,
        )

    intervals = segment_trades(series[POS_QTY], trade_def, include_open_trade)

    rows: List[Dict[str, Any]] = []
    for start, end in intervals:
        stats = compute_trade_stats(series.iloc[start:end + 1], tick_value)
        rows.append({"start": series.index[start], "end": series.index[end], **stats})

    logger.debug("Computed statistics for %d trades", len(rows))
    return _as_table(rows)
