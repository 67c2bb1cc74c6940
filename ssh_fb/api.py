"""
Read-only status API.

  GET /api/status  → counters, thresholds, firewall backend; with the
                     journal enabled also bans/failures in the last 24h
  GET /api/bans    → active bans (address, expiry, failure count)
  GET /api/events  → recent journal rows
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from ssh_fb import __version__

if TYPE_CHECKING:
    from ssh_fb.monitor import Monitor

DAY = 86400.0


def create_app(monitor: "Monitor") -> FastAPI:
    app = FastAPI(title="ssh_fb", version=__version__)

    @app.get("/api/status")
    async def api_status() -> JSONResponse:
        status = monitor.status()
        if monitor.journal is not None:
            since = monitor.clock() - DAY
            status["bans_last_24h"] = await monitor.journal.count_since("ban", since)
            status["failures_last_24h"] = await monitor.journal.count_since("failed_auth", since)
        return JSONResponse(status)

    @app.get("/api/bans")
    async def api_bans() -> JSONResponse:
        return JSONResponse(monitor.bans())

    @app.get("/api/events")
    async def api_events(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
        if monitor.journal is None:
            return JSONResponse([])
        rows = await monitor.journal.fetch_recent(limit)
        return JSONResponse(rows)

    return app
