import unittest
from datetime import datetime, timezone

import requests

from quotecache.data.clients import FetchError, QuoteEndpoint
from quotecache.data.yahoo_client import YahooFinanceClient


def chart_payload(**meta) -> dict:
    return {"chart": {"result": [{"meta": meta, "timestamp": [], "indicators": {}}], "error": None}}


class StubResponse:
    def __init__(self, status_code: int = 200, payload=None, malformed: bool = False) -> None:
        self.status_code = status_code
        self.payload = payload
        self.malformed = malformed

    def json(self):
        if self.malformed:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload


class StubSession:
    def __init__(self, response: StubResponse | None = None, exc: Exception | None = None) -> None:
        self.response = response
        self.exc = exc
        self.requests: list[dict] = []
        self.close_count = 0

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.exc:
            raise self.exc
        return self.response

    def close(self) -> None:
        self.close_count += 1


def make_client(session: StubSession) -> YahooFinanceClient:
    endpoint = QuoteEndpoint(name="yahoo", rest_url="https://quotes.example.test")
    return YahooFinanceClient(endpoint=endpoint, timeout=3.0, session=session)  # type: ignore[arg-type]


class YahooFinanceClientTest(unittest.TestCase):
    def test_parses_price_previous_close_and_session(self) -> None:
        session = StubSession(
            StubResponse(
                payload=chart_payload(
                    symbol="AAPL",
                    currency="USD",
                    regularMarketPrice=150.0,
                    chartPreviousClose=148.0,
                    previousClose=147.0,
                    currentTradingPeriod={"regular": {"start": 1704205800, "end": 1704229200}},
                )
            )
        )
        client = make_client(session)

        value = client.fetch("AAPL")

        self.assertEqual(150.0, value.primary_value)
        self.assertEqual(148.0, value.reference_value)
        self.assertEqual("USD", value.currency)
        self.assertEqual(datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc), value.trading_period_start)
        self.assertEqual(datetime(2024, 1, 2, 21, 0, tzinfo=timezone.utc), value.trading_period_end)

        request = session.requests[0]
        self.assertEqual("https://quotes.example.test/v8/finance/chart/AAPL", request["url"])
        self.assertEqual({"interval": "1d", "range": "1d"}, request["params"])
        self.assertEqual(3.0, request["timeout"])
        self.assertIn("User-Agent", request["headers"])

    def test_missing_or_malformed_fields_become_absent(self) -> None:
        session = StubSession(
            StubResponse(payload=chart_payload(regularMarketPrice="n/a", currentTradingPeriod={"regular": None}))
        )

        value = make_client(session).fetch("VTI")

        self.assertIsNone(value.primary_value)
        self.assertIsNone(value.reference_value)
        self.assertIsNone(value.currency)
        self.assertIsNone(value.trading_period_start)

    def test_numeric_strings_and_previous_close_fallback(self) -> None:
        session = StubSession(StubResponse(payload=chart_payload(regularMarketPrice="101.25", previousClose=99)))

        value = make_client(session).fetch("SPY")

        self.assertEqual(101.25, value.primary_value)
        self.assertEqual(99.0, value.reference_value)

    def test_missing_meta_is_not_a_failure(self) -> None:
        session = StubSession(StubResponse(payload={"chart": {"result": [{}]}}))

        value = make_client(session).fetch("QQQ")

        self.assertIsNone(value.primary_value)

    def test_non_success_status_raises_fetch_error(self) -> None:
        client = make_client(StubSession(StubResponse(status_code=404, payload={})))

        with self.assertRaises(FetchError) as ctx:
            client.fetch("NOPE")

        self.assertEqual("NOPE", ctx.exception.identifier)
        self.assertIn("HTTP 404", str(ctx.exception))

    def test_transport_failures_raise_fetch_error(self) -> None:
        for exc in (requests.ConnectionError("refused"), requests.Timeout("read timed out")):
            with self.subTest(exc=exc):
                client = make_client(StubSession(exc=exc))
                with self.assertRaises(FetchError) as ctx:
                    client.fetch("AAPL")
                self.assertIs(exc, ctx.exception.cause)

    def test_malformed_json_raises_fetch_error(self) -> None:
        client = make_client(StubSession(StubResponse(malformed=True)))

        with self.assertRaises(FetchError):
            client.fetch("AAPL")

    def test_chart_error_description_is_reported(self) -> None:
        payload = {"chart": {"result": None, "error": {"code": "Not Found", "description": "No data found, symbol may be delisted"}}}
        client = make_client(StubSession(StubResponse(payload=payload)))

        with self.assertRaises(FetchError) as ctx:
            client.fetch("ZZZZ")

        self.assertIn("delisted", str(ctx.exception))

    def test_unexpected_structure_raises_fetch_error(self) -> None:
        for payload in ([], {"chart": None}, {"chart": {"result": []}}):
            with self.subTest(payload=payload):
                client = make_client(StubSession(StubResponse(payload=payload)))
                with self.assertRaises(FetchError):
                    client.fetch("AAPL")

    def test_close_is_idempotent_and_blocks_further_fetches(self) -> None:
        session = StubSession(StubResponse(payload=chart_payload(regularMarketPrice=1.0)))
        client = make_client(session)

        client.close()
        client.close()

        self.assertTrue(client.closed)
        self.assertEqual(1, session.close_count)
        with self.assertRaises(FetchError):
            client.fetch("AAPL")
        self.assertEqual([], session.requests)


if __name__ == "__main__":
    unittest.main()
