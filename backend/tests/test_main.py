import pytest
from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def _records(qty, txn, value):
    return [
        {"timestamp": f"2024-03-01T10:0{i}:00Z", "pos_qty": q, "txn_value": t, "pos_value": v}
        for i, (q, t, v) in enumerate(zip(qty, txn, value))
    ]


@pytest.fixture
def payload():
    return {
        "portfolio": "demo",
        "positions": {
            "ES": _records([0, 1, 1, 0], [0, 100, 0, -100], [0, 100, 110, 0]),
            "NQ": _records([0, -1, 0], [0, -50, 80], [0, -50, 0]),
        },
        "instruments": {"ES": {"multiplier": 1, "tick_size": 0.01}},
    }


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_trade_stats_defaults_to_first_symbol(payload):
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 200
    body = resp.json()

    assert body["symbol"] == "ES"
    assert body["total_trades"] == 1
    trade = body["trades"][0]
    assert trade["start"].startswith("2024-03-01T10:01:00")
    assert trade["end"].startswith("2024-03-01T10:03:00")
    assert trade["mfe"] == 10.0
    assert trade["mae"] == 0.0
    assert trade["netTradingPL"] == 0.0
    assert trade["numTxns"] == 2


def test_trade_stats_for_named_symbol(payload):
    payload["symbol"] = "NQ"
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 200
    assert resp.json()["trades"][0]["netTradingPL"] == pytest.approx(-30.0)


def test_open_trade_flag(payload):
    payload["positions"]["ES"] = _records([0, 1, 1], [0, 100, 0], [0, 100, 104])
    payload["include_open_trade"] = False
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 200
    assert resp.json()["total_trades"] == 0


def test_non_finite_metrics_are_null(payload):
    payload["instruments"]["ES"] = {"multiplier": 1, "tick_size": 0}
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 200
    trade = resp.json()["trades"][0]
    assert trade["tickNetTradingPL"] is None
    assert trade["pctMFE"] == pytest.approx(0.1)


def test_unknown_symbol_is_404(payload):
    payload["symbol"] = "CL"
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 404
    assert "CL" in resp.json()["detail"]


def test_unknown_trade_definition_is_422(payload):
    payload["trade_def"] = "flat.to.somewhere"
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 422


def test_out_of_order_records_are_422(payload):
    payload["positions"]["ES"].reverse()
    resp = client.post("/trades/stats", json=payload)
    assert resp.status_code == 422
    assert "increasing" in resp.json()["detail"]


def test_no_positions_is_400():
    resp = client.post("/trades/stats", json={"positions": {}})
    assert resp.status_code == 400


def test_trade_quantiles(payload):
    payload["positions"]["ES"] = _records(
        [0, 1, 0, 1, 0], [0, 100, -150, 100, -70], [0, 100, 0, 100, 0]
    )
    payload["scales"] = ["cash"]
    payload["probs"] = [0.5, 1]
    resp = client.post("/trades/quantiles", json=payload)
    assert resp.status_code == 200
    body = resp.json()

    assert body["name"] == "demo.ES"
    values = body["values"]
    assert values["posPL 0.5"] == pytest.approx(50.0)
    assert values["posPL 1"] == pytest.approx(50.0)
    assert values["negPL 0.5"] == pytest.approx(-30.0)
    assert values["negPL 1"] == pytest.approx(-30.0)
    assert list(values)[-1] == "MAE~max(cumPL)"


def test_trade_quantiles_empty_side_is_null(payload):
    payload["scales"] = ["cash"]
    payload["probs"] = [1]
    payload["symbol"] = "NQ"
    resp = client.post("/trades/quantiles", json=payload)
    assert resp.status_code == 200
    values = resp.json()["values"]
    assert values["posPL 1"] is None
    assert values["negPL 1"] == pytest.approx(-30.0)


def test_trade_quantiles_bad_probability_is_422(payload):
    payload["probs"] = [2.0]
    resp = client.post("/trades/quantiles", json=payload)
    assert resp.status_code == 422


def test_upload_position_csv():
    csv = (
        "Time,Symbol,Pos.Qty,Txn.Value,Pos.Value\n"
        "2024-03-01 10:00,ES,0,0,0\n"
        "2024-03-01 10:01,ES,1,100,100\n"
        "2024-03-01 10:00,NQ,0,0,0\n"
        "2024-03-01 10:02,ES,0,-110,0\n"
    )
    resp = client.post("/upload", files={"file": ("positions.csv", csv, "text/csv")})
    assert resp.status_code == 200
    body = resp.json()

    assert body["total_records"] == 4
    assert sorted(body["symbols"]) == ["ES", "NQ"]
    es = body["positions"]["ES"]
    assert [r["pos_qty"] for r in es] == [0.0, 1.0, 0.0]
    assert es[2]["txn_value"] == -110.0


def test_upload_without_value_columns_reads_zero():
    csv = "timestamp,ticker,qty\n2024-03-01 10:00,ES,0\n2024-03-01 10:01,ES,2\n"
    resp = client.post("/upload", files={"file": ("p.csv", csv, "text/csv")})
    assert resp.status_code == 200
    assert resp.json()["positions"]["ES"][1]["pos_value"] == 0.0


def test_upload_missing_columns_is_422():
    csv = "Time,Symbol\n2024-03-01 10:00,ES\n"
    resp = client.post("/upload", files={"file": ("p.csv", csv, "text/csv")})
    assert resp.status_code == 422


def test_upload_rejects_non_csv():
    resp = client.post("/upload", files={"file": ("p.txt", "x", "text/plain")})
    assert resp.status_code == 400


def test_trade_quantiles_repeated_probability_is_422(payload):
    payload["probs"] = [0.5, 0.5]
    resp = client.post("/trades/quantiles", json=payload)
    assert resp.status_code == 422
    assert "distinct" in resp.json()["detail"]
