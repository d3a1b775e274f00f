"""Tests for the Binance REST client using a scripted HTTP session."""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import parse_qs

import pytest
import requests

from spot_trading_bot.bot.interfaces import BUY, SELL, ExecutionError
from spot_trading_bot.exchange.binance_client import BinanceClient
from spot_trading_bot.ledger.trade_ledger import TradeLedger

# pylint: disable=missing-function-docstring,missing-class-docstring,too-few-public-methods


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Routes by path; a route value may be a list consumed in order."""

    def __init__(self, routes=None, down=()):
        self.routes = routes or {}
        self.down = set(down)
        self.gets = []
        self.posts = []

    def _route(self, url):
        for path, value in self.routes.items():
            if url.endswith(path):
                if isinstance(value, list):
                    return value.pop(0) if len(value) > 1 else value[0]
                return value
        return FakeResponse({}, 404)

    def get(self, url, params=None, timeout=None):
        self.gets.append((url, params, timeout))
        if any(url.startswith(base) for base in self.down):
            raise requests.exceptions.ConnectionError("unreachable")
        return self._route(url)

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append((url, data, headers))
        return self._route(url)


MIRRORS = ["https://a.example", "https://b.example"]


def _client(session, **kwargs):
    kwargs.setdefault("api_key", "")
    kwargs.setdefault("api_secret", "")
    return BinanceClient(MIRRORS, session=session, timeout=1, backoff=0, **kwargs)


def test_price_falls_over_to_next_mirror():
    session = FakeSession({"/api/v3/ticker/price": FakeResponse({"price": "42.5"})}, down={"https://a.example"})
    quote = _client(session).get_price("BTCUSDT")
    assert quote.price == 42.5
    assert [g[0].split("/api")[0] for g in session.gets] == MIRRORS


def test_failures_surface_as_none_after_retries():
    session = FakeSession(down=set(MIRRORS))
    client = _client(session, retry_attempts=2)
    assert client.get_price("BTCUSDT") is None
    assert client.get_market_data("BTCUSDT") is None
    assert client.get_candles("BTCUSDT") == []
    assert client.get_tickers() == []
    # Two attempts over two mirrors for the price request
    assert sum(1 for g in session.gets if g[0].endswith("/ticker/price")) == 4


def test_retry_recovers_from_transient_error():
    session = FakeSession(
        {"/api/v3/ticker/price": [FakeResponse({}, 503), FakeResponse({}, 503), FakeResponse({"price": "1.5"})]}
    )
    assert _client(session, retry_attempts=3).get_price("XRPUSDT").price == 1.5


def test_market_data_parsing():
    payload = {
        "lastPrice": "100.0",
        "volume": "12.0",
        "highPrice": "110.0",
        "lowPrice": "90.0",
        "priceChangePercent": "-2.5",
        "quoteVolume": "3000000",
    }
    data = _client(FakeSession({"/api/v3/ticker/24hr": FakeResponse(payload)})).get_market_data("BTCUSDT")
    assert data.price == 100.0
    assert data.price_change_percent == -2.5
    assert data.quote_volume_24h == 3_000_000.0


def test_candles_use_seconds():
    rows = [[1709294400000, "1", "2", "0.5", "1.5", "100", 1709294459999, "150", 10, "50", "75", "0"]]
    candles = _client(FakeSession({"/api/v3/klines": FakeResponse(rows)})).get_candles("BTCUSDT", limit=1)
    assert candles[0].timestamp == 1709294400.0
    assert candles[0].close == 1.5
    assert candles[0].volume == 100.0


def test_test_mode_fills_at_ticker_and_records(tmp_path):
    ledger = TradeLedger(tmp_path / "trades.jsonl")
    session = FakeSession({"/api/v3/ticker/price": FakeResponse({"price": "20.0"})})
    result = _client(session, ledger=ledger).execute_order("SOLUSDT", BUY, 0.5, test_mode=True)
    assert result.executed_price == 20.0
    assert session.posts == []
    rows = ledger.load_trades()
    assert rows[0]["id"] == result.trade_id
    assert rows[0]["status"] == "PENDING"


def test_test_mode_validates_with_credentials():
    session = FakeSession(
        {"/api/v3/order/test": FakeResponse({}), "/api/v3/ticker/price": FakeResponse({"price": "20.0"})}
    )
    client = _client(session, api_key="key", api_secret="secret")
    client.execute_order("SOLUSDT", SELL, 0.5, test_mode=True)
    url, body, headers = session.posts[0]
    assert url == "https://a.example/api/v3/order/test"
    assert headers["X-MBX-APIKEY"] == "key"
    query, signature = body.rsplit("&signature=", 1)
    assert signature == hmac.new(b"secret", query.encode(), hashlib.sha256).hexdigest()
    assert parse_qs(query)["quantity"] == ["0.5"]


def test_live_order_requires_credentials():
    with pytest.raises(ExecutionError):
        _client(FakeSession()).execute_order("BTCUSDT", BUY, 1.0, test_mode=False)


def test_live_fill_price_from_cumulative_quote():
    fill = {"status": "FILLED", "executedQty": "2.0", "cummulativeQuoteQty": "201.0", "orderId": 7}
    session = FakeSession({"/api/v3/order": FakeResponse(fill)})
    result = _client(session, api_key="k", api_secret="s").execute_order("BTCUSDT", BUY, 2.0, test_mode=False)
    assert result.executed_price == pytest.approx(100.5)
    assert result.quantity == 2.0
    assert result.trade_id == "7"


def test_live_rejection_raises():
    session = FakeSession({"/api/v3/order": FakeResponse({"msg": "Account has insufficient balance"}, 400)})
    client = _client(session, api_key="k", api_secret="s")
    with pytest.raises(ExecutionError, match="insufficient balance"):
        client.execute_order("BTCUSDT", BUY, 1.0, test_mode=False)

    session.routes["/api/v3/order"] = FakeResponse({"status": "EXPIRED", "executedQty": "0"})
    with pytest.raises(ExecutionError):
        client.execute_order("BTCUSDT", BUY, 1.0, test_mode=False)


def test_invalid_order_rejected_before_network():
    session = FakeSession()
    with pytest.raises(ExecutionError):
        _client(session).execute_order("BTCUSDT", "HOLD", 1.0)
    with pytest.raises(ExecutionError):
        _client(session).execute_order("BTCUSDT", BUY, 0)
    assert session.gets == [] and session.posts == []
