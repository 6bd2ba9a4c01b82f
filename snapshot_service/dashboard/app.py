"""FastAPI surface for symbols, prices, history, health and poll metrics."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from snapshot_service.errors import (
    ExchangeUnavailableError,
    InvalidResponseError,
    InvalidSymbolError,
    RateLimitedError,
    SnapshotNotFoundError,
    SnapshotServiceError,
    StorageError,
    SymbolExistsError,
    SymbolNotFoundError,
)
from snapshot_service.infra.config import DashboardConfig
from snapshot_service.services import InstrumentRegistry, PriceQueryService, StatusService

# Most specific classes first.
ERROR_RESPONSES = [
    (InvalidSymbolError, 400, "invalid symbol format", "INVALID_SYMBOL"),
    (SymbolNotFoundError, 404, "symbol not found", "SYMBOL_NOT_FOUND"),
    (SymbolExistsError, 409, "symbol already exists", "SYMBOL_EXISTS"),
    (SnapshotNotFoundError, 404, "snapshot not found", "SNAPSHOT_NOT_FOUND"),
    (ExchangeUnavailableError, 503, "exchange service unavailable", "EXCHANGE_UNAVAILABLE"),
    (RateLimitedError, 429, "rate limited by exchange", "RATE_LIMITED"),
    (InvalidResponseError, 502, "invalid response from exchange", "INVALID_EXCHANGE_RESPONSE"),
    (StorageError, 503, "database error", "DATABASE_ERROR"),
]


def error_response(status: int, message: str, code: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    if code:
        body["code"] = code
    return JSONResponse(body, status_code=status)


def domain_error_response(exc: SnapshotServiceError) -> JSONResponse:
    for error_type, status, message, code in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return error_response(status, message, code)
    return error_response(500, "internal server error", "INTERNAL_ERROR")


def create_app(
    registry: InstrumentRegistry,
    prices: PriceQueryService,
    status: StatusService,
) -> FastAPI:
    app = FastAPI(title="Price Snapshot Service", version="0.1.0")
    logger = logging.getLogger("snapshot_service.http")

    @app.exception_handler(SnapshotServiceError)
    async def handle_domain_error(request: Request, exc: SnapshotServiceError) -> JSONResponse:
        if isinstance(exc, StorageError):
            logger.error("Storage failure on %s: %s", request.url.path, exc)
        return domain_error_response(exc)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return await status.health()

    @app.get("/symbols")
    async def list_symbols() -> Dict[str, Any]:
        instruments = await registry.list_symbols()
        return {"symbols": [instrument.name for instrument in instruments]}

    @app.post("/symbols")
    async def create_symbol(body: Dict[str, Any]) -> JSONResponse:
        symbol = body.get("symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            return error_response(400, "symbol is required")
        try:
            instrument = await registry.add_symbol(symbol)
        except SymbolExistsError:
            existing = await registry.get_symbol(symbol)
            return JSONResponse(existing.to_dict(), status_code=200)
        return JSONResponse(instrument.to_dict(), status_code=201)

    @app.delete("/symbols/{symbol}", status_code=204)
    async def delete_symbol(symbol: str) -> Response:
        await registry.remove_symbol(symbol)
        return Response(status_code=204)

    @app.get("/prices")
    async def latest_prices(symbols: str = Query("")) -> Any:
        requested = [item.strip() for item in symbols.split(",") if item.strip()]
        if not requested:
            return error_response(400, "symbols parameter is required")
        points, missing = await prices.latest_prices(requested)
        payload: Dict[str, Any] = {
            "prices": [
                {"symbol": point.symbol, "price": str(point.price), "ts": point.captured_at.isoformat()}
                for point in points
            ]
        }
        if missing:
            payload["missing"] = missing
        return payload

    @app.get("/history")
    async def history(
        symbol: str = Query(""),
        limit: Optional[int] = Query(None),
        since: Optional[datetime] = Query(None, alias="from"),
        until: Optional[datetime] = Query(None, alias="to"),
    ) -> Any:
        if not symbol.strip():
            return error_response(400, "symbol parameter is required")
        points = await prices.price_history(symbol, limit, since, until)
        return {
            "symbol": symbol.strip().upper(),
            "items": [{"price": str(point.price), "ts": point.captured_at.isoformat()} for point in points],
        }

    @app.get("/metrics")
    async def metrics() -> Dict[str, Any]:
        return await status.report()

    return app


async def run_dashboard(config: DashboardConfig, app: FastAPI) -> None:
    """Serve ``app`` with uvicorn if the dashboard is enabled."""

    if not config.enable:
        return

    import uvicorn

    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_level="info"))
    await server.serve()


__all__ = ["create_app", "run_dashboard", "domain_error_response"]
