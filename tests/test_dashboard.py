import unittest

from fastapi.testclient import TestClient

from quotecache.dashboard.app import create_dashboard_app
from quotecache.data.clients import FetchError, QuoteValue
from quotecache.data.polling import PollingCacheService
from quotecache.infra.metrics import MetricsSink


def fetch(identifier: str) -> QuoteValue:
    if identifier == "AAPL":
        return QuoteValue(primary_value=150.0, reference_value=148.0, currency="USD")
    raise FetchError(identifier, "HTTP 404")


class DashboardTest(unittest.TestCase):
    def setUp(self) -> None:
        self.metrics = MetricsSink()
        self.service = PollingCacheService(fetch, metrics=self.metrics)
        self.addCleanup(self.service.shutdown)
        self.service.register(["AAPL", "MSFT"])
        self.service.refresh("AAPL")
        self.client = TestClient(create_dashboard_app(self.service, self.metrics))

    def test_health_reports_state_and_tracked_count(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(200, response.status_code)
        self.assertEqual({"status": "ok", "state": "idle", "tracked": 2}, response.json())

    def test_quotes_lists_every_tracked_symbol(self) -> None:
        quotes = self.client.get("/quotes").json()["quotes"]

        self.assertEqual({"AAPL", "MSFT"}, set(quotes))
        self.assertEqual(150.0, quotes["AAPL"]["primary_value"])
        self.assertEqual(2.0, quotes["AAPL"]["change"])
        self.assertIsNone(quotes["MSFT"]["primary_value"])

    def test_quotes_synthesizes_unknown_symbols(self) -> None:
        quotes = self.client.get("/quotes", params={"symbols": "AAPL, GOOG"}).json()["quotes"]

        self.assertEqual(["AAPL", "GOOG"], list(quotes))
        self.assertIsNone(quotes["GOOG"]["primary_value"])

    def test_single_quote_and_unknown_symbol(self) -> None:
        self.assertEqual("USD", self.client.get("/quotes/AAPL").json()["currency"])
        self.assertEqual(404, self.client.get("/quotes/GOOG").status_code)

    def test_metrics_snapshot(self) -> None:
        snapshot = self.client.get("/metrics").json()

        self.assertEqual(1, snapshot["fetch_success_total"])
        self.assertEqual(2, snapshot["tracked_symbols"])


if __name__ == "__main__":
    unittest.main()
