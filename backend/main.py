"""
Trade Statistics API — FastAPI backend.

Endpoints
---------
GET  /health            Health check.
POST /upload            Parse a position-history CSV → position records per symbol.
POST /trades/stats      Per-trade statistics (entry/exit, size, P&L, MAE/MFE).
POST /trades/quantiles  Quantiles of per-trade P&L, MAE and MFE.
"""
from __future__ import annotations

import io
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from errors import MissingSymbolError
from ledger import PositionLedger
from models import (
    Instrument,
    PositionRecord,
    TradeQuantilesRequest,
    TradeQuantilesResponse,
    TradeRow,
    TradeStatsRequest,
    TradeStatsResponse,
    UploadResponse,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(name)s  %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trade Statistics API",
    description="Per-trade statistics and MAE/MFE quantiles from position histories.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Column normalisation ──────────────────────────────────────────────────────────
# Maps canonical column names to the aliases a ledger export may use.
_COLUMN_ALIASES: Dict[str, List[str]] = {
    "time":      ["time", "date", "datetime", "timestamp", "index"],
    "symbol":    ["symbol", "ticker", "instrument", "asset"],
    "pos_qty":   ["pos.qty", "pos qty", "pos_qty", "position", "quantity", "qty"],
    "txn_value": ["txn.value", "txn value", "txn_value", "transaction value"],
    "pos_value": ["pos.value", "pos value", "pos_value", "position value", "market value"],
}


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename DataFrame columns to canonical lowercase names via alias lookup."""
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    rename_map: Dict[str, str] = {}
    for canonical, aliases in _COLUMN_ALIASES.items():
        for col in df.columns:
            if col in aliases and col not in rename_map:
                rename_map[col] = canonical
                break
    return df.rename(columns=rename_map)


def _parse_positions(df: pd.DataFrame) -> Dict[str, List[PositionRecord]]:
    """
    Split a normalised position-history table into per-symbol records.

    Rows are sorted by time within each symbol.  Missing ``txn_value`` or
    ``pos_value`` columns are read as zero.

    Raises:
        ValueError: If required columns are missing.
    """
    required = {"time", "symbol", "pos_qty"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(
            f"CSV is missing required columns after normalisation: {sorted(missing)}. "
            f"Found columns: {list(df.columns)}"
        )

    df["time"] = pd.to_datetime(df["time"], utc=True)
    for col in ("txn_value", "pos_value"):
        if col not in df.columns:
            df[col] = 0.0
    df = df.sort_values("time", kind="mergesort").reset_index(drop=True)

    positions: Dict[str, List[PositionRecord]] = {}
    for symbol, group in df.groupby(df["symbol"].astype(str).str.strip(), sort=False):
        positions[symbol] = [
            PositionRecord(
                timestamp=pd.Timestamp(row["time"]).isoformat(),
                pos_qty=float(row["pos_qty"]),
                txn_value=float(row["txn_value"]),
                pos_value=float(row["pos_value"]),
            )
            for _, row in group.iterrows()
        ]
    return positions


def _finite_or_none(value: Any) -> Optional[float]:
    """JSON has no nan/inf: report non-finite metrics as null."""
    value = float(value)
    return value if math.isfinite(value) else None


def _build_ledger(request: TradeStatsRequest) -> Tuple[PositionLedger, str]:
    """Ledger for the request plus the symbol to analyse (first one by default)."""
    if not request.positions:
        raise HTTPException(status_code=400, detail="No position series supplied.")

    symbol = request.symbol or next(iter(request.positions))

    instruments: Dict[str, Instrument] = dict(request.instruments)
    for sym in request.positions:
        if sym not in instruments:
            logger.info("No instrument data for %s – using defaults.", sym)
            instruments[sym] = Instrument()

    try:
        ledger = PositionLedger.from_records(request.portfolio, request.positions, instruments)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return ledger, symbol


# ── Routes ─────────────────────────────────────────────────────────────────────────

@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness check."""
    return {"status": "ok"}


@app.post("/upload", response_model=UploadResponse)
async def upload_csv(file: UploadFile = File(...)) -> UploadResponse:
    """
    Accept a position-history CSV and return position records per symbol.

    The endpoint is tolerant of different column naming conventions, including
    the ``Pos.Qty`` / ``Txn.Value`` / ``Pos.Value`` names of the core.
    """
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are accepted.")

    raw = await file.read()

    try:
        df = pd.read_csv(io.StringIO(raw.decode("utf-8")))
    except Exception as exc:
        raise HTTPException(status_code=400, detail=f"Failed to parse CSV: {exc}")

    df = _normalize_columns(df)
    logger.info("CSV parsed — columns detected: %s", df.columns.tolist())

    try:
        positions = _parse_positions(df)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    if not positions:
        raise HTTPException(status_code=422, detail="CSV contains no position records.")

    total = sum(len(recs) for recs in positions.values())
    logger.info("Extracted %d position records across symbols: %s", total, list(positions))

    return UploadResponse(positions=positions, total_records=total, symbols=list(positions))


@app.post("/trades/stats", response_model=TradeStatsResponse)
async def trade_stats(request: TradeStatsRequest) -> TradeStatsResponse:
    """Per-trade statistics for one symbol of the submitted portfolio."""
    ledger, symbol = _build_ledger(request)

    try:
        table = ledger.trade_stats(symbol, request.include_open_trade, request.trade_def)
    except MissingSymbolError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    rows = [
        TradeRow(
            start=pd.Timestamp(rec["start"]).isoformat(),
            end=pd.Timestamp(rec["end"]).isoformat(),
            initPos=rec["initPos"],
            maxPos=rec["maxPos"],
            numTxns=int(rec["numTxns"]),
            **{
                col: _finite_or_none(rec[col])
                for col in table.columns
                if col not in ("start", "end", "initPos", "maxPos", "numTxns")
            },
        )
        for rec in table.to_dict(orient="records")
    ]

    logger.info("Trade stats for %s.%s: %d trades", ledger.portfolio, symbol, len(rows))

    return TradeStatsResponse(
        portfolio=ledger.portfolio, symbol=symbol, total_trades=len(rows), trades=rows
    )


@app.post("/trades/quantiles", response_model=TradeQuantilesResponse)
async def trade_quantiles(request: TradeQuantilesRequest) -> TradeQuantilesResponse:
    """Quantiles of per-trade P&L, MAE and MFE for one symbol."""
    ledger, symbol = _build_ledger(request)

    try:
        summary = ledger.trade_quantiles(
            symbol,
            scales=request.scales,
            probs=request.probs,
            include_open_trade=request.include_open_trade,
            trade_def=request.trade_def,
        )
    except MissingSymbolError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    values = {label: _finite_or_none(v) for label, v in summary.to_dict().items()}
    logger.info("Trade quantiles for %s: %d values", summary.name, len(values))

    return TradeQuantilesResponse(name=summary.name, values=values)
