"""
Alpaca connector against a local stub of the orders endpoint.
"""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from core.exceptions import OrderSubmissionError
from core.exchange_alpaca import AlpacaClient, is_crypto, parse_qty
from tests.helpers import StubHTTPServer


def _accept(request):
    body = request.json()
    return 200, {"id": "ord-1", "status": "accepted", **body}


@pytest.mark.parametrize("symbol,expected", [
    ("AAPL", False),
    ("SPY", False),
    ("BTCUSD", True),
    ("ethusdt", True),
    ("SOLUSDC", True),
])
def test_is_crypto(symbol, expected):
    assert is_crypto(symbol) is expected


@pytest.mark.parametrize("qty", ["", "abc", "0", "-1", "NaN", "Infinity"])
def test_parse_qty_rejects(qty):
    with pytest.raises(OrderSubmissionError):
        parse_qty(qty)


def test_parse_qty_keeps_precision():
    assert parse_qty("0.000125") == Decimal("0.000125")


class TestCreateOrder:

    def test_equity_market_order_is_day(self):
        with StubHTTPServer(_accept) as stub:
            result = AlpacaClient("key", "secret", stub.url).create_order("bot1", "AAPL", "buy", "2")

        assert result.order_id == "ord-1"
        request = stub.requests[0]
        assert request.method == "POST"
        assert request.path == "/v2/orders"
        body = request.json()
        assert body["symbol"] == "AAPL"
        assert body["qty"] == "2"
        assert body["side"] == "buy"
        assert body["type"] == "market"
        assert body["time_in_force"] == "day"
        assert body["client_order_id"].startswith("bot1-")

    def test_crypto_market_order_is_gtc(self):
        with StubHTTPServer(_accept) as stub:
            AlpacaClient("key", "secret", stub.url).create_order("bot1", "ETHUSD", "sell", "0.5")
        body = stub.requests[0].json()
        assert body["time_in_force"] == "gtc"
        assert body["qty"] == "0.5"

    def test_auth_headers_sent(self):
        with StubHTTPServer(_accept) as stub:
            AlpacaClient("key", "secret", stub.url + "/").create_order("b", "AAPL", "buy", "1")
        headers = {k.lower(): v for k, v in stub.requests[0].headers.items()}
        assert headers["apca-api-key-id"] == "key"
        assert headers["apca-api-secret-key"] == "secret"

    def test_invalid_qty_sends_nothing(self):
        with StubHTTPServer(_accept) as stub:
            with pytest.raises(OrderSubmissionError):
                AlpacaClient("key", "secret", stub.url).create_order("b", "AAPL", "buy", "lots")
        assert stub.requests == []

    @pytest.mark.parametrize("status", [403, 422, 500])
    def test_error_status_raises_once(self, status):
        with StubHTTPServer(lambda req: (status, {"code": 40010001, "message": "insufficient buying power"})) as stub:
            with pytest.raises(OrderSubmissionError) as exc_info:
                AlpacaClient("key", "secret", stub.url).create_order("b", "AAPL", "buy", "1")

        assert exc_info.value.status_code == status
        assert "insufficient buying power" in str(exc_info.value)
        assert len(stub.requests) == 1

    def test_response_without_id_raises(self):
        with StubHTTPServer(lambda req: (200, {"status": "accepted"})) as stub:
            with pytest.raises(OrderSubmissionError):
                AlpacaClient("key", "secret", stub.url).create_order("b", "AAPL", "buy", "1")

    def test_undecodable_response_raises(self):
        with StubHTTPServer(lambda req: (200, "<html>")) as stub:
            with pytest.raises(OrderSubmissionError):
                AlpacaClient("key", "secret", stub.url).create_order("b", "AAPL", "buy", "1")

    def test_timeout_raises_without_retry(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.Timeout("read timed out")
        client = AlpacaClient("key", "secret", "http://alpaca.test", timeout=2, session=session)

        with pytest.raises(OrderSubmissionError) as exc_info:
            client.create_order("b", "AAPL", "buy", "1")

        assert session.post.call_count == 1
        assert session.post.call_args.kwargs["timeout"] == 2.0
        assert session.post.call_args.args[0] == "http://alpaca.test/v2/orders"
        assert isinstance(exc_info.value.original, requests.exceptions.Timeout)

    def test_unreachable_broker_raises(self):
        client = AlpacaClient("key", "secret", "http://127.0.0.1:9", timeout=1)
        with pytest.raises(OrderSubmissionError) as exc_info:
            client.create_order("b", "AAPL", "buy", "1")
        assert exc_info.value.original is not None
