"""
Admin HTTP server: health, metrics snapshot, log tail and a small dashboard.

Served in-process next to the reconciliation loop via ``uvicorn.Server`` so
both share one event loop.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse

from src.keeper.metrics import MetricsSink
from src.shared.system.logging import Logger

LOG_TAIL_LINES = 100

DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Delta Neutral Keeper - Admin</title>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="30">
  <style>
    body {{ font-family: 'SF Mono', Monaco, monospace; background: #0a0a0a; color: #e0e0e0; padding: 20px; }}
    h1 {{ color: #00ff88; }}
    h2 {{ color: #00aaff; font-size: 14px; margin-top: 20px; }}
    .card {{ background: #1a1a1a; border: 1px solid #333; border-radius: 8px; padding: 15px; }}
    .metric {{ display: flex; justify-content: space-between; padding: 4px 0; }}
    .warn {{ color: #ffaa00; }}
  </style>
</head>
<body>
  <h1>Delta Neutral Keeper</h1>
  <h2>KEEPER</h2>
  <div class="card">
    <div class="metric"><span>Uptime</span><span>{uptime}s</span></div>
    <div class="metric"><span>Cycles</span><span>{cycle_count}</span></div>
    <div class="metric"><span>Last cycle</span><span>{last_cycle}</span></div>
  </div>
  <h2>MARKET</h2>
  <div class="card">
    <div class="metric"><span>Symbol</span><span>{symbol}</span></div>
    <div class="metric"><span>Funding rate</span><span>{funding_rate:.6f}%</span></div>
    <div class="metric"><span>Mark price</span><span>${mark_price:,.2f}</span></div>
    <div class="metric"><span>Annualized APR</span><span>{apr:.2f}%</span></div>
  </div>
  <h2>VAULT</h2>
  <div class="card">
    <div class="metric"><span>State</span><span>{vault_state}</span></div>
    <div class="metric"><span>Spot value</span><span>${spot_value:,.2f}</span></div>
    <div class="metric"><span>Delta ratio</span><span class="{delta_class}">{delta_bps} bps</span></div>
  </div>
  <p><a href="/metrics">metrics</a> · <a href="/logs">logs</a> · <a href="/health">health</a></p>
</body>
</html>
"""


def render_dashboard(snapshot: Dict[str, Any]) -> str:
    keeper, market, vault = snapshot["keeper"], snapshot["market"], snapshot["vault"]
    return DASHBOARD_HTML.format(
        uptime=keeper["uptime"],
        cycle_count=keeper["cycleCount"],
        last_cycle=keeper["lastCycleTime"] or "never",
        symbol=market["symbol"] or "-",
        funding_rate=market["fundingRate"] * 100,
        mark_price=market["markPrice"],
        apr=market["annualizedApr"],
        vault_state=vault["state"],
        spot_value=vault["spotValueUsd"],
        delta_bps=vault["deltaRatioBps"],
        delta_class="warn" if vault["needsRebalance"] else "",
    )


def create_admin_app(sink: MetricsSink) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Logger.info("[ADMIN] Admin server online")
        yield
        Logger.info("[ADMIN] Admin server shutting down")

    app = FastAPI(
        title="Delta Keeper Admin",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/metrics")
    async def metrics():
        return sink.snapshot()

    @app.get("/logs", response_class=PlainTextResponse)
    async def logs():
        lines = Logger.recent_lines(LOG_TAIL_LINES)
        if lines is None:
            return PlainTextResponse("No logs found", status_code=404)
        return PlainTextResponse("\n".join(lines))

    @app.get("/", response_class=HTMLResponse)
    @app.get("/dashboard", response_class=HTMLResponse)
    async def dashboard():
        return HTMLResponse(render_dashboard(sink.snapshot()))

    return app


def build_admin_server(sink: MetricsSink, port: int, host: str = "0.0.0.0") -> uvicorn.Server:
    """uvicorn server for ``await server.serve()``; stop with ``server.should_exit = True``."""
    config = uvicorn.Config(create_admin_app(sink), host=host, port=port, log_level="warning")
    Logger.info(f"[ADMIN] Admin server listening on http://{host}:{port}")
    return uvicorn.Server(config)


async def serve_admin(server: uvicorn.Server) -> None:
    """
    Run the admin server until ``should_exit``.

    A failed start (port busy, bind refused) is logged and swallowed,
    including the ``sys.exit(1)`` uvicorn raises for it. The keeper keeps
    running without the admin surface.
    """
    try:
        await server.serve()
    except (SystemExit, OSError) as e:
        Logger.error(
            f"[ADMIN] ❌ Admin server failed to start; keeper continues without it ({type(e).__name__}: {e})"
        )
