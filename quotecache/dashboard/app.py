"""Read-only FastAPI dashboard over the quote cache."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException

from quotecache.data.polling import PollingCacheService
from quotecache.infra.metrics import MetricsSink


def create_dashboard_app(service: PollingCacheService, metrics: Optional[MetricsSink] = None) -> FastAPI:
    app = FastAPI(title="Quote Cache Dashboard", version="0.1.0")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "state": service.state.value, "tracked": len(service.identifiers)}

    @app.get("/quotes")
    async def quotes(symbols: Optional[str] = None) -> Dict[str, Any]:
        requested = [s.strip() for s in symbols.split(",") if s.strip()] if symbols else service.identifiers
        records = service.get_all(requested)
        return {"quotes": {symbol: record.to_dict() for symbol, record in records.items()}}

    @app.get("/quotes/{symbol}")
    async def quote(symbol: str) -> Dict[str, Any]:
        record = service.get(symbol)
        if record is None:
            raise HTTPException(status_code=404, detail=f"{symbol} is not tracked")
        return record.to_dict()

    @app.get("/metrics")
    async def metrics_snapshot() -> Dict[str, Any]:
        return metrics.export() if metrics else {}

    return app


__all__ = ["create_dashboard_app"]
