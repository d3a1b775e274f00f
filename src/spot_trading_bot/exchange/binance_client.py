"""
Binance spot REST client.

- Public market data (ticker price, 24h ticker, klines) over a list of mirror
  base URLs; each request walks the mirrors and is retried with backoff
- Failures surface as ``None`` / ``[]`` to the trading core, never exceptions
- Signed market orders (HMAC-SHA256, ``X-MBX-APIKEY``) in live mode
- Test mode validates against ``/api/v3/order/test`` when credentials exist and
  fills at the current ticker price

Example:
    client = BinanceClient()
    quote = client.get_price("BTCUSDT")
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from spot_trading_bot.bot.interfaces import (
    Candle,
    ExecutionError,
    MarketData,
    OrderResult,
    PriceData,
)
from spot_trading_bot.config import CONFIG
from spot_trading_bot.exchange import ExchangeError
from spot_trading_bot.exchange.paper_executor import record_fill, validate_order
from spot_trading_bot.ledger.trade_ledger import TradeLedger
from spot_trading_bot.utils.system_logger import get_system_logger, log_anomaly

logger = get_system_logger().getChild("binance")

_RECV_WINDOW_MS = 5000


def _format_quantity(quantity: float) -> str:
    text = f"{quantity:.8f}".rstrip("0").rstrip(".")
    return text or "0"


class BinanceClient:
    """Market data + execution client for Binance spot."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        base_urls: Optional[Sequence[str]] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        ledger: Optional[TradeLedger] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        retry_attempts: int = 3,
        backoff: float = 0.5,
    ) -> None:
        self.base_urls = list(base_urls or CONFIG.get("binance_base_urls") or ["https://api.binance.com"])
        self.api_key = api_key if api_key is not None else CONFIG.get("binance_api_key", "")
        self.api_secret = api_secret if api_secret is not None else CONFIG.get("binance_api_secret", "")
        self.ledger = ledger
        self.timeout = float(timeout if timeout is not None else CONFIG.get("request_timeout", 10.0))
        self.session = session or requests.Session()
        self._retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(max(1, retry_attempts)),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=4),
            retry=retry_if_exception_type(ExchangeError),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    # --- transport -------------------------------------------------------

    def _get_once(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        errors = []
        for base in self.base_urls:
            url = base.rstrip("/") + path
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response.json()
            except (requests.exceptions.RequestException, ValueError) as exc:
                logger.debug("GET %s failed: %s", url, exc)
                errors.append(f"{base}: {exc}")
        raise ExchangeError(f"All mirrors failed for {path}: {'; '.join(errors)}")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._retrying.copy()(self._get_once, path, params)

    def _sign(self, params: Dict[str, Any]) -> str:
        query = urlencode(params)
        signature = hmac.new(self.api_secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{query}&signature={signature}"

    def _signed_post(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Single-attempt signed POST; orders are never retried blindly."""
        body = self._sign({**params, "recvWindow": _RECV_WINDOW_MS, "timestamp": int(time.time() * 1000)})
        url = self.base_urls[0].rstrip("/") + path
        headers = {"X-MBX-APIKEY": self.api_key, "Content-Type": "application/x-www-form-urlencoded"}
        try:
            response = self.session.post(url, data=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise ExecutionError(f"Order request to {url} failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            message = payload.get("msg") if isinstance(payload, dict) else None
            raise ExecutionError(f"Order rejected ({response.status_code}): {message or response.text}")
        return payload if isinstance(payload, dict) else {}

    # --- market data -----------------------------------------------------

    def get_price(self, symbol: str) -> Optional[PriceData]:
        try:
            data = self._get("/api/v3/ticker/price", {"symbol": symbol})
            price = float(data["price"])
        except (ExchangeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Price unavailable for %s: %s", symbol, exc)
            return None
        return PriceData(price=price, timestamp=time.time())

    def get_market_data(self, symbol: str) -> Optional[MarketData]:
        try:
            data = self._get("/api/v3/ticker/24hr", {"symbol": symbol})
            return MarketData(
                price=float(data["lastPrice"]),
                volume=float(data["volume"]),
                high=float(data["highPrice"]),
                low=float(data["lowPrice"]),
                price_change_percent=float(data["priceChangePercent"]),
                quote_volume=float(data["quoteVolume"]) if data.get("quoteVolume") is not None else None,
            )
        except (ExchangeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Market data unavailable for %s: %s", symbol, exc)
            return None

    def get_candles(self, symbol: str, interval: str = "1m", limit: int = 60) -> List[Candle]:
        try:
            rows = self._get("/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": limit})
            return [
                Candle(
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    timestamp=float(row[0]) / 1000.0,
                    volume=float(row[5]),
                )
                for row in rows
            ]
        except (ExchangeError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Candles unavailable for %s: %s", symbol, exc)
            return []

    def get_tickers(self) -> List[Dict[str, Any]]:
        """All 24h ticker rows (used for pair auto-selection)."""
        try:
            rows = self._get("/api/v3/ticker/24hr")
        except ExchangeError as exc:
            logger.warning("24h tickers unavailable: %s", exc)
            return []
        return rows if isinstance(rows, list) else []

    # --- execution -------------------------------------------------------

    def execute_order(self, symbol: str, side: str, quantity: float, test_mode: bool = True) -> OrderResult:
        """Place a MARKET order; raises :class:`ExecutionError` on any failure."""
        side = validate_order(symbol, side, quantity)
        params = {"symbol": symbol, "side": side, "type": "MARKET", "quantity": _format_quantity(quantity)}

        if test_mode:
            if self.has_credentials:
                self._signed_post("/api/v3/order/test", params)
            quote = self.get_price(symbol)
            if quote is None:
                raise ExecutionError(f"No price available to simulate {side} {symbol}")
            logger.info("Test-mode fill %s %s %.8f @ %.8f", side, symbol, quantity, quote.price)
            return record_fill(self.ledger, symbol, side, quantity, quote.price, True)

        if not self.has_credentials:
            raise ExecutionError("Live trading requires BINANCE_API_KEY and BINANCE_API_SECRET")

        payload = self._signed_post("/api/v3/order", params)
        status = str(payload.get("status", ""))
        executed_qty = float(payload.get("executedQty") or 0.0)
        quote_qty = float(payload.get("cummulativeQuoteQty") or 0.0)
        if status not in ("FILLED", "PARTIALLY_FILLED") or executed_qty <= 0:
            log_anomaly("Order Not Filled", symbol=symbol, side=side, quantity=quantity, response=payload)
            raise ExecutionError(f"{side} {symbol} not filled (status {status or 'unknown'})")

        price = quote_qty / executed_qty
        logger.info("Live fill %s %s %.8f @ %.8f (order %s)", side, symbol, executed_qty, price, payload.get("orderId"))
        return record_fill(
            self.ledger,
            symbol,
            side,
            executed_qty,
            price,
            False,
            order_id=str(payload.get("orderId", "")),
        )


__all__ = ["BinanceClient"]
