"""
Trade segmentation: cut a position-quantity series into trade intervals.

Intervals are returned as inclusive, 0-based ``(start_idx, end_idx)`` pairs in
chronological order.  The position before the first record is taken as flat.
"""
from __future__ import annotations

import logging
from typing import List, Sequence, Tuple, Union

import numpy as np

from errors import InvalidDefinitionError
from models import TradeDefinition

logger = logging.getLogger(__name__)

Interval = Tuple[int, int]


def parse_trade_definition(trade_def: Union[str, TradeDefinition]) -> TradeDefinition:
    """Resolve a definition name, rejecting anything unsupported."""
    if isinstance(trade_def, TradeDefinition):
        return trade_def
    try:
        return TradeDefinition(trade_def)
    except ValueError:
        supported = ", ".join(d.value for d in TradeDefinition)
        raise InvalidDefinitionError(
            f"Unknown trade definition {trade_def!r}; expected one of: {supported}."
        ) from None


def _previous(qty: np.ndarray) -> np.ndarray:
    return np.concatenate(([0.0], qty[:-1]))


def opening_indices(qty: np.ndarray) -> np.ndarray:
    """Records where the position leaves flat."""
    return np.flatnonzero((qty != 0) & (_previous(qty) == 0))


def flattening_indices(qty: np.ndarray) -> np.ndarray:
    """Records where the position returns to flat."""
    return np.flatnonzero((qty == 0) & (_previous(qty) != 0))


def reduction_indices(qty: np.ndarray) -> np.ndarray:
    """Records where the absolute position shrinks relative to the prior record."""
    return np.flatnonzero(np.diff(np.abs(qty)) < 0) + 1


def _flat_to_flat(qty: np.ndarray) -> List[Interval]:
    starts = opening_indices(qty)
    ends = flattening_indices(qty)
    # Opens and flattens alternate, so the k-th start closes at the k-th end.
    return [(int(s), int(e)) for s, e in zip(starts, ends)]


def _flat_to_reduced(qty: np.ndarray) -> List[Interval]:
    starts = opening_indices(qty)
    ends = reduction_indices(qty)

    # side="right": a start on the same record as an end counts as earlier.
    owner = np.searchsorted(starts, ends, side="right") - 1
    return [
        (int(starts[o]), int(e))
        for o, e in zip(owner, ends)
        if o >= 0
    ]


def segment_trades(
    pos_qty: Sequence[float],
    trade_def: Union[str, TradeDefinition] = TradeDefinition.FLAT_TO_FLAT,
    include_open_trade: bool = True,
) -> List[Interval]:
    """
    Find trade boundaries in a position-quantity series.

    Args:
        pos_qty:            Signed position after each record, in time order.
        trade_def:          ``flat.to.flat`` (a trade lasts while the position
                            is non-flat) or ``flat.to.reduced`` (a trade ends at
                            every reduction of the absolute position).
        include_open_trade: When the series ends with a position still open,
                            mark that trade to the last record (True) or leave
                            it out (False).

    Returns:
        List of ``(start_idx, end_idx)`` pairs, both inclusive.

    Raises:
        InvalidDefinitionError: If ``trade_def`` is not supported.
    """
    definition = parse_trade_definition(trade_def)
    qty = np.asarray(pos_qty, dtype=np.float64)
    if qty.size == 0:
        return []

    if definition is TradeDefinition.FLAT_TO_FLAT:
        intervals = _flat_to_flat(qty)
    else:
        intervals = _flat_to_reduced(qty)

    # ── Open trade at series end ────────────────────────────────────────────────
    if qty[-1] != 0 and include_open_trade:
        last = qty.size - 1
        open_trade = (int(opening_indices(qty)[-1]), last)
        # A reduction on the last record already closes this exact interval.
        if not intervals or intervals[-1] != open_trade:
            intervals.append(open_trade)

    logger.debug(
        "Segmented %d records into %d trades (%s, include_open_trade=%s)",
        qty.size, len(intervals), definition.value, include_open_trade,
    )
    return intervals
