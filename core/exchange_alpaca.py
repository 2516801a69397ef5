"""
alertbridge Core: Broker Connector (Alpaca)

Places market orders through the Alpaca Trading REST API.
Single attempt per alert: failures surface to the caller, nothing is retried.
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from requests import exceptions as requests_exceptions

from core.exceptions import OrderSubmissionError
from core.pipeline import OrderResult

logger = logging.getLogger(__name__)

ALPACA_PAPER_BASE = "https://paper-api.alpaca.markets"
CRYPTO_QUOTE_SUFFIXES = ("USD", "USDT", "USDC")


def is_crypto(symbol: str) -> bool:
    """Crypto pairs are quoted against USD or a USD stablecoin."""
    return symbol.upper().endswith(CRYPTO_QUOTE_SUFFIXES)


def parse_qty(qty: str) -> Decimal:
    try:
        value = Decimal(qty)
    except (InvalidOperation, TypeError, ValueError):
        raise OrderSubmissionError(f"invalid qty: {qty!r}")
    if not value.is_finite() or value <= 0:
        raise OrderSubmissionError(f"invalid qty: {qty!r}")
    return value


class AlpacaClient:
    """
    Alpaca Trading API connector (API key + secret header auth).

    Supports:
    - Market orders for equities (time_in_force=day)
    - Market orders for crypto pairs (time_in_force=gtc)
    """

    def __init__(self, api_key: str, api_secret: str, base_url: str = ALPACA_PAPER_BASE,
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_key = api_key or ""
        self.api_secret = api_secret or ""
        self.base_url = (base_url or ALPACA_PAPER_BASE).rstrip("/")
        self.timeout = float(timeout)
        self._session = session or requests.Session()

        if not self.api_key or not self.api_secret:
            logger.warning("Alpaca credentials not set; order submission will be rejected by the broker")
        logger.info(f"Initialized AlpacaClient (base_url={self.base_url})")

    def _headers(self) -> dict:
        return {
            "APCA-API-KEY-ID": self.api_key,
            "APCA-API-SECRET-KEY": self.api_secret,
            "Content-Type": "application/json",
        }

    def build_order_request(self, bot: str, symbol: str, side: str, qty: str) -> dict:
        qty_dec = parse_qty(qty)
        time_in_force = "gtc" if is_crypto(symbol) else "day"
        return {
            "symbol": symbol,
            "qty": format(qty_dec, "f"),
            "side": side,
            "type": "market",
            "time_in_force": time_in_force,
            "client_order_id": f"{bot}-{time.time_ns()}",
        }

    def create_order(self, bot: str, symbol: str, side: str, qty: str) -> OrderResult:
        """
        Place a market order.

        Args:
            bot: Bot identifier, used as client_order_id prefix
            symbol: e.g. "AAPL" or "ETHUSD"
            side: "buy" or "sell"
            qty: Decimal literal, e.g. "0.5"

        Returns:
            OrderResult with Alpaca's order id and the raw order payload

        Raises:
            OrderSubmissionError: invalid qty, network failure or broker rejection
        """
        body = self.build_order_request(bot, symbol, side, qty)
        url = f"{self.base_url}/v2/orders"

        logger.info(
            f"Placing order: {side} {body['qty']} {symbol} "
            f"(time_in_force={body['time_in_force']}, client_order_id={body['client_order_id']}, "
            f"base_url={self.base_url})"
        )

        try:
            response = self._session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
        except (requests_exceptions.Timeout, requests_exceptions.ConnectionError) as e:
            logger.error(f"Network error placing order for {symbol}: {e}")
            raise OrderSubmissionError(f"failed to place order: {e}", original=e) from e
        except requests_exceptions.RequestException as e:
            logger.error(f"Request failed placing order for {symbol}: {e}")
            raise OrderSubmissionError(f"failed to place order: {e}", original=e) from e

        if response.status_code >= 300:
            code, message = self._error_details(response)
            logger.error(
                f"Alpaca API error: symbol={symbol} side={side} qty={qty} "
                f"time_in_force={body['time_in_force']} status={response.status_code} "
                f"code={code} message={message} body={response.text}"
            )
            raise OrderSubmissionError(
                f"failed to place order: status {response.status_code}: {message or response.text}",
                status_code=response.status_code,
            )

        try:
            order = response.json()
        except ValueError as e:
            logger.error(f"Failed to decode Alpaca order response: {e}")
            raise OrderSubmissionError(f"failed to decode order response: {e}", original=e) from e

        if not isinstance(order, dict) or not order.get("id"):
            raise OrderSubmissionError(f"order response missing id: {order!r}")

        logger.info(f"Order placed successfully: {side} {qty} {symbol} order_id={order['id']}")
        return OrderResult(order_id=str(order["id"]), raw=order)

    @staticmethod
    def _error_details(response: requests.Response):
        try:
            payload = response.json()
        except ValueError:
            return None, None
        if not isinstance(payload, dict):
            return None, None
        return payload.get("code"), payload.get("message")


__all__ = ["AlpacaClient", "is_crypto", "parse_qty", "ALPACA_PAPER_BASE"]
