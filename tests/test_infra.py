import json
import logging
import sys
import tempfile
import unittest
from pathlib import Path

from quotecache.infra.logging import JsonFormatter
from quotecache.infra.metrics import MetricsSink


class MetricsSinkTest(unittest.TestCase):
    def test_counters_and_gauges(self) -> None:
        sink = MetricsSink()

        sink.incr("fetch_failure_total")
        sink.incr("fetch_failure_total", 2)
        sink.set_gauge("tracked_symbols", 3)
        sink.set_gauge("fetch_latency_seconds", 0.25)

        self.assertEqual(3, sink.get("fetch_failure_total"))
        self.assertEqual(3.0, sink.get("tracked_symbols"))
        self.assertEqual(0, sink.get("missing"))
        self.assertEqual(
            {"fetch_failure_total": 3, "tracked_symbols": 3.0, "fetch_latency_seconds": 0.25},
            sink.export(),
        )

    def test_writes_prometheus_textfile(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "metrics.prom"
            sink = MetricsSink(metrics_file=path, emit_textfile=True)

            sink.incr("ticks_total")
            sink.set_gauge("tracked_symbols", 2)

            text = path.read_text(encoding="utf-8")
        self.assertIn("quotecache_ticks_total 1", text)
        self.assertIn("# TYPE quotecache_tracked_symbols gauge", text)
        self.assertIn("quotecache_tracked_symbols 2.0", text)


class JsonFormatterTest(unittest.TestCase):
    def test_includes_extra_fields_and_exceptions(self) -> None:
        logger = logging.getLogger("quotecache.test")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logger.makeRecord(
                logger.name,
                logging.WARNING,
                __file__,
                10,
                "Failed to fetch %s",
                ("MSFT",),
                sys.exc_info(),
                extra={"event": "fetch_failed", "identifier": "MSFT"},
            )

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual("WARNING", payload["level"])
        self.assertEqual("Failed to fetch MSFT", payload["message"])
        self.assertEqual("fetch_failed", payload["event"])
        self.assertEqual("MSFT", payload["identifier"])
        self.assertIn("RuntimeError: boom", payload["exc_info"])
        self.assertNotIn("args", payload)


if __name__ == "__main__":
    unittest.main()
