"""
Quantiles of per-trade statistics.

Trade quantiles are a practical way to set stops and profit targets: they are
computed separately for trades that end positive ("pos") and negative
("neg"), for net P&L, MFE and MAE, in any of the cash / percent / tick scales.

For each scale the summary also reports the MAE of the trade at which the
cumulative P&L peaks, with trades ordered from smallest to largest adverse
excursion.  Plotting MAE against that cumulative P&L shows the "stable
region" in which a stop can be placed; the peak is a mechanical pointer into
it.

Methodology
-----------
1. Sort trades by percent MAE (descending) and percent net P&L (descending).
2. Take cumulative sums of net P&L in each scale over that order.
3. Split into winners (net P&L > 0) and losers (net P&L < 0); flat trades
   belong to neither.
4. Quantiles use linear interpolation between order statistics.  Losses and
   adverse excursions are taken as magnitudes and reported negated.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd

from models import Scale

logger = logging.getLogger(__name__)

DEFAULT_SCALES = (Scale.CASH, Scale.PERCENT, Scale.TICK)
DEFAULT_PROBS = (0.5, 0.75, 0.9, 0.95, 0.99, 1.0)

# Metric name of the per-scale "MAE at maximum cumulative P&L" entry.
MAE_AT_MAX_CUM_PL = "MAE~max(cumPL)"


class ScaleColumns(NamedTuple):
    net: str
    mae: str
    mfe: str
    label_prefix: str
    max_cum_label: str


_SCALE_COLUMNS: Dict[Scale, ScaleColumns] = {
    Scale.CASH: ScaleColumns("netTradingPL", "mae", "mfe", "", "MAE~max(cumPL)"),
    Scale.PERCENT: ScaleColumns(
        "pctNetTradingPL", "pctMAE", "pctMFE", "Pct", "%MAE~max(cum%PL)"
    ),
    Scale.TICK: ScaleColumns(
        "tickNetTradingPL", "tickMAE", "tickMFE", "Tick", "tick.MAE~max(cum.tick.PL)"
    ),
}


class QuantileKey(NamedTuple):
    """Structured key of one summary value."""
    scale: Scale
    sign: Optional[str]      # "pos" / "neg"; None for the MAE-at-max entry
    metric: str              # "PL", "MFE", "MAE" or MAE_AT_MAX_CUM_PL
    level: Optional[float]   # quantile probability; None for the MAE-at-max entry


def format_label(key: QuantileKey) -> str:
    """Display label, e.g. ``posPL 0.95``, ``negTickMAE 1`` or ``%MAE~max(cum%PL)``."""
    columns = _SCALE_COLUMNS[key.scale]
    if key.metric == MAE_AT_MAX_CUM_PL:
        return columns.max_cum_label
    return f"{key.sign}{columns.label_prefix}{key.metric} {key.level:g}"


class QuantileSummary:
    """Ordered mapping of QuantileKey -> value, with label-based access."""

    def __init__(self, values: "OrderedDict[QuantileKey, float]", name: Optional[str] = None):
        self._values = values
        self.name = name

    def __getitem__(self, key: Union[QuantileKey, str]) -> float:
        if isinstance(key, QuantileKey):
            return self._values[key]
        for k, v in self._values.items():
            if format_label(k) == key:
                return v
        raise KeyError(key)

    def __iter__(self) -> Iterator[QuantileKey]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def items(self):
        return self._values.items()

    def labels(self) -> List[str]:
        return [format_label(k) for k in self._values]

    def to_dict(self) -> Dict[str, float]:
        """Label -> value, in report order."""
        return {format_label(k): v for k, v in self._values.items()}

    def to_series(self) -> pd.Series:
        return pd.Series(self.to_dict(), name=self.name, dtype=np.float64)


def parse_scales(scales: Iterable[Union[str, Scale]]) -> List[Scale]:
    """Resolve scale names, rejecting unknown ones."""
    parsed: List[Scale] = []
    for sc in scales:
        try:
            parsed.append(Scale(sc))
        except ValueError:
            supported = ", ".join(s.value for s in Scale)
            raise ValueError(f"Unknown scale {sc!r}; expected one of: {supported}.") from None
    return parsed


def _column(frame: pd.DataFrame, name: str) -> np.ndarray:
    return frame[name].to_numpy(dtype=np.float64)


def _quantiles(values: np.ndarray, probs: np.ndarray) -> np.ndarray:
    # Non-finite metrics belong to degenerate trades; leave them out.
    finite = values[np.isfinite(values)]
    if finite.size < values.size:
        logger.info(
            "Dropped %d non-finite values of %d before taking quantiles",
            values.size - finite.size, values.size,
        )
    if finite.size == 0:
        return np.full(probs.shape, np.nan)
    return np.quantile(finite, probs)


def sort_for_cumulative(trades: pd.DataFrame) -> pd.DataFrame:
    """Order trades from smallest to largest percent MAE, best P&L first on ties."""
    return trades.sort_values(
        ["pctMAE", "pctNetTradingPL"], ascending=[False, False], kind="mergesort"
    ).reset_index(drop=True)


def _mae_at_max_cumulative(cum_pl: np.ndarray, mae: np.ndarray) -> float:
    finite = ~np.isnan(cum_pl)
    if not finite.any():
        return float("nan")
    # First occurrence of the maximum.
    return float(mae[int(np.nanargmax(cum_pl))])


def aggregate_trade_quantiles(
    trades: pd.DataFrame,
    scales: Iterable[Union[str, Scale]] = DEFAULT_SCALES,
    probs: Sequence[float] = DEFAULT_PROBS,
    name: Optional[str] = None,
) -> QuantileSummary:
    """
    Summarise a trade-stats table as quantiles of P&L, MFE and MAE.

    Args:
        trades: Output of ``analytics.per_trade_stats``.
        scales: Any of ``cash``, ``percent``, ``tick``, reported in this order.
        probs:  Quantile probabilities in [0, 1].
        name:   Optional summary name, e.g. ``"<portfolio>.<symbol>"``.

    Returns:
        QuantileSummary with, per scale: posPL, negPL, posMFE, posMAE, negMFE,
        negMAE quantiles followed by the MAE at maximum cumulative P&L.
        Loss P&L (negPL) is the negated quantile of loss magnitudes, so
        ``negPL 0.95`` is the 95th-percentile loss; MAE is reported the same
        way.  Non-finite values are left out of the quantiles, and a
        winners/losers side with no finite values gives nan.

    Raises:
        ValueError: On unknown scales, or probabilities that are outside
                    [0, 1] or repeated.
    """
    scale_list = parse_scales(scales)
    prob_arr = np.asarray(list(probs), dtype=np.float64)
    if np.any((prob_arr < 0) | (prob_arr > 1)) or np.isnan(prob_arr).any():
        raise ValueError(f"Quantile probabilities must lie in [0, 1]; got {list(probs)}.")
    if np.unique(prob_arr).size != prob_arr.size:
        raise ValueError(f"Quantile probabilities must be distinct; got {list(probs)}.")

    ordered = sort_for_cumulative(trades)
    winners = ordered[ordered["netTradingPL"] > 0]
    losers = ordered[ordered["netTradingPL"] < 0]

    if winners.empty or losers.empty:
        logger.info(
            "%d winning / %d losing trades – quantiles of an empty side are nan",
            len(winners), len(losers),
        )

    values: "OrderedDict[QuantileKey, float]" = OrderedDict()

    def put(scale: Scale, sign: str, metric: str, q: np.ndarray) -> None:
        for level, v in zip(prob_arr, q):
            values[QuantileKey(scale, sign, metric, float(level))] = float(v)

    for sc in scale_list:
        cols = _SCALE_COLUMNS[sc]

        put(sc, "pos", "PL", _quantiles(_column(winners, cols.net), prob_arr))
        put(sc, "neg", "PL", -_quantiles(np.abs(_column(losers, cols.net)), prob_arr))
        put(sc, "pos", "MFE", _quantiles(_column(winners, cols.mfe), prob_arr))
        put(sc, "pos", "MAE", -_quantiles(np.abs(_column(winners, cols.mae)), prob_arr))
        put(sc, "neg", "MFE", _quantiles(_column(losers, cols.mfe), prob_arr))
        put(sc, "neg", "MAE", -_quantiles(np.abs(_column(losers, cols.mae)), prob_arr))

        # Cumulative P&L skips nan trades rather than poisoning the whole run.
        cum_pl = ordered[cols.net].cumsum().to_numpy(dtype=np.float64)
        values[QuantileKey(sc, None, MAE_AT_MAX_CUM_PL, None)] = _mae_at_max_cumulative(
            cum_pl, _column(ordered, cols.mae)
        )

    return QuantileSummary(values, name=name)
