"""Entry point wiring the Yahoo quote client, the polling cache and the dashboard."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from quotecache.dashboard.app import create_dashboard_app
from quotecache.data.clients import QuoteEndpoint, QuoteRecord
from quotecache.data.polling import PollingCacheService
from quotecache.data.yahoo_client import YahooFinanceClient
from quotecache.infra.config import AppConfig, load_config
from quotecache.infra.logging import configure_logging
from quotecache.infra.metrics import MetricsSink


def build_service(cfg: AppConfig, metrics: Optional[MetricsSink] = None) -> PollingCacheService:
    """Instantiate the Yahoo client and the polling service from configuration."""

    logger = logging.getLogger("quotecache.app")
    client = YahooFinanceClient(
        endpoint=QuoteEndpoint(name="yahoo", rest_url=cfg.quote_source.base_url),
        timeout=cfg.quote_source.timeout_seconds,
        user_agent=cfg.quote_source.user_agent,
        logger=logger.getChild("client"),
    )
    return PollingCacheService(
        client,
        name="quotes",
        metrics=metrics,
        shutdown_timeout=cfg.polling.shutdown_timeout_seconds,
        logger=logger.getChild("polling"),
    )


async def run_service(config_path: Optional[str] = None) -> None:
    cfg = load_config(config_path)
    configure_logging(cfg.log_level)
    logger = logging.getLogger(__name__)

    metrics = MetricsSink(metrics_file=cfg.metrics.metrics_file, emit_textfile=cfg.metrics.emit_textfile)
    service = build_service(cfg, metrics)

    @service.on_update
    def log_update(symbol: str, record: QuoteRecord) -> None:
        logger.debug(
            "Quote update for %s", symbol,
            extra={"event": "quote_update", "identifier": symbol, "primary_value": record.primary_value},
        )

    if cfg.polling.symbols:
        service.start_polling(cfg.polling.symbols, cfg.polling.interval_seconds)
    else:
        logger.warning("No polling.symbols configured; the cache will stay empty.")

    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows/limited environments
            pass

    async def serve_dashboard() -> None:
        if not cfg.dashboard.enable:
            return
        app = create_dashboard_app(service, metrics)
        config = uvicorn.Config(app, host=cfg.dashboard.host, port=cfg.dashboard.port, log_level="info")
        server = uvicorn.Server(config)
        await server.serve()
        stop_event.set()

    dashboard = asyncio.create_task(serve_dashboard())
    try:
        await stop_event.wait()
    finally:
        dashboard.cancel()
        await asyncio.gather(dashboard, return_exceptions=True)
        await asyncio.to_thread(service.shutdown)


def main() -> None:
    parser = argparse.ArgumentParser(description="Background-refreshed stock quote cache")
    parser.add_argument("--config", default=None, help="Path to the YAML settings file")
    args = parser.parse_args()
    asyncio.run(run_service(args.config))


if __name__ == "__main__":
    main()
