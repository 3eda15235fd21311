from typing import Optional, Sequence

import pandas as pd
import pytest


def build_series(
    qty: Sequence[float],
    txn: Optional[Sequence[float]] = None,
    value: Optional[Sequence[float]] = None,
    start: str = "2024-01-02 09:30",
) -> pd.DataFrame:
    """Position series with one record per minute."""
    n = len(qty)
    index = pd.date_range(start, periods=n, freq="min", tz="UTC", name="timestamp")
    return pd.DataFrame(
        {
            "Pos.Qty": list(qty),
            "Txn.Value": list(txn) if txn is not None else [0.0] * n,
            "Pos.Value": list(value) if value is not None else [0.0] * n,
        },
        index=index,
        dtype="float64",
    )


def series_from_prices(qty: Sequence[float], prices: Sequence[float]) -> pd.DataFrame:
    """Series whose transaction and position values follow a price path."""
    txn, value, prev = [], [], 0.0
    for q, p in zip(qty, prices):
        txn.append((q - prev) * p)
        value.append(q * p)
        prev = q
    return build_series(qty, txn, value)


@pytest.fixture
def make_series():
    return build_series


@pytest.fixture
def priced_series():
    return series_from_prices


@pytest.fixture
def scenario_one():
    # Long 1 at 100, marked at 110, closed flat.
    return build_series([0, 1, 1, 0], [0, 100, 0, -100], [0, 100, 110, 0])
