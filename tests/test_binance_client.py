import json
import unittest
from decimal import Decimal

import requests

from snapshot_service.data.binance_client import BinanceClient, InvalidRequestError
from snapshot_service.data.clients import ExchangeEndpoint
from snapshot_service.errors import ExchangeUnavailableError, InvalidResponseError, RateLimitedError
from snapshot_service.infra.retry import RetryableError


class StubResponse:
    def __init__(self, status_code: int, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class StubSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses) -> tuple[BinanceClient, StubSession]:
    session = StubSession(*responses)
    endpoint = ExchangeEndpoint(name="binance", rest_url="https://api.test/", timeout=2.5)
    return BinanceClient(endpoint=endpoint, session=session), session


class FetchQuotesTest(unittest.TestCase):
    def test_parses_prices_as_decimals(self) -> None:
        client, session = make_client(
            StubResponse(200, [{"symbol": "BTCUSDT", "price": "50000.12345678"}, {"symbol": "ETHUSDT", "price": "3000.1"}])
        )

        quotes = client.fetch_quotes(["BTCUSDT", "ETHUSDT"])

        self.assertEqual([q.symbol for q in quotes], ["BTCUSDT", "ETHUSDT"])
        self.assertEqual(quotes[0].price, Decimal("50000.12345678"))
        call = session.calls[0]
        self.assertEqual(call["url"], "https://api.test/api/v3/ticker/price")
        self.assertEqual(call["params"], {"symbols": '["BTCUSDT","ETHUSDT"]'})
        self.assertEqual(call["timeout"], 2.5)

    def test_empty_request_makes_no_call(self) -> None:
        client, session = make_client()

        self.assertEqual(client.fetch_quotes([]), [])
        self.assertEqual(session.calls, [])

    def test_skips_malformed_tickers(self) -> None:
        client, _ = make_client(
            StubResponse(
                200,
                [
                    {"symbol": "BTCUSDT", "price": "not-a-number"},
                    {"symbol": "ETHUSDT"},
                    "junk",
                    {"symbol": "BNBUSDT", "price": "600.5"},
                ],
            )
        )

        quotes = client.fetch_quotes(["BTCUSDT", "ETHUSDT", "BNBUSDT"])

        self.assertEqual([q.symbol for q in quotes], ["BNBUSDT"])

    def test_rate_limit_is_retryable(self) -> None:
        for status in (418, 429):
            with self.subTest(status=status):
                client, _ = make_client(StubResponse(status, {"code": -1003}))
                with self.assertRaises(RetryableError) as ctx:
                    client.fetch_quotes(["BTCUSDT"])
                self.assertIsInstance(ctx.exception.error, RateLimitedError)

    def test_server_error_is_retryable(self) -> None:
        client, _ = make_client(StubResponse(503, None, text="maintenance"))

        with self.assertRaises(RetryableError) as ctx:
            client.fetch_quotes(["BTCUSDT"])

        self.assertIsInstance(ctx.exception.error, ExchangeUnavailableError)

    def test_connection_error_is_retryable(self) -> None:
        client, _ = make_client(requests.ConnectionError("reset by peer"))

        with self.assertRaises(RetryableError) as ctx:
            client.fetch_quotes(["BTCUSDT"])

        self.assertIsInstance(ctx.exception.error, ExchangeUnavailableError)

    def test_bad_request_is_terminal(self) -> None:
        client, _ = make_client(StubResponse(400, {"code": -1121, "msg": "Invalid symbol."}))

        with self.assertRaises(InvalidRequestError):
            client.fetch_quotes(["NOPEUSDT"])

    def test_unexpected_status_is_terminal(self) -> None:
        client, _ = make_client(StubResponse(404, None, text="not found"))

        with self.assertRaises(InvalidResponseError):
            client.fetch_quotes(["BTCUSDT"])

    def test_undecodable_body_is_terminal(self) -> None:
        client, _ = make_client(StubResponse(200, ValueError("no json"), text="<html>"))

        with self.assertRaises(InvalidResponseError):
            client.fetch_quotes(["BTCUSDT"])

    def test_non_list_payload_is_terminal(self) -> None:
        client, _ = make_client(StubResponse(200, {"symbol": "BTCUSDT", "price": "1"}))

        with self.assertRaises(InvalidResponseError):
            client.fetch_quotes(["BTCUSDT"])


class SymbolLookupTest(unittest.TestCase):
    def test_validate_symbol(self) -> None:
        client, session = make_client(
            StubResponse(200, {"symbol": "BTCUSDT", "price": "50000"}),
            StubResponse(400, {"code": -1121, "msg": "Invalid symbol."}),
        )

        self.assertTrue(client.validate_symbol("BTCUSDT"))
        self.assertFalse(client.validate_symbol("NOPEUSDT"))
        self.assertEqual(session.calls[0]["params"], {"symbol": "BTCUSDT"})

    def test_validate_symbol_propagates_outages(self) -> None:
        client, _ = make_client(StubResponse(502, None, text="bad gateway"))

        with self.assertRaises(RetryableError):
            client.validate_symbol("BTCUSDT")

    def test_ping(self) -> None:
        client, session = make_client(StubResponse(200, {}))

        client.ping()

        self.assertEqual(session.calls[0]["url"], "https://api.test/api/v3/ping")


if __name__ == "__main__":
    unittest.main()
