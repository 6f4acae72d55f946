# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Read-only REST API - supervisor state, fleet results, events and logs.

Nothing here can change state: the power cycle is driven only by the
control loop. The API exists so an operator can see after the fact what
the supervisor did and why.
"""

import collections
import json
import logging
import time

from aiohttp import web

logger = logging.getLogger(__name__)

# Health degrades when the UPS has not answered for this many polls
COMM_ERROR_THRESHOLD = 3


# ---------------------------------------------------------------------------
# RingBufferHandler - in-memory log capture for web viewer
# ---------------------------------------------------------------------------

class RingBufferHandler(logging.Handler):
    """Logging handler that stores records in a bounded deque for web access."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self._records: collections.deque = collections.deque(maxlen=capacity)

    def emit(self, record):
        try:
            self._records.append({
                "ts": record.created,
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)

    def get_records(self, level: str | None = None, limit: int = 200,
                    search: str | None = None) -> list[dict]:
        """Return filtered log records, newest first."""
        level_num = getattr(logging, level.upper(), 0) if level else 0
        results = []
        for rec in reversed(self._records):
            if level_num and getattr(logging, rec["level"], 0) < level_num:
                continue
            if search and search.lower() not in rec["message"].lower():
                continue
            results.append(rec)
            if len(results) >= limit:
                break
        return results


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response(status=204)
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


class WebServer:
    def __init__(self, port: int = 8080, machine=None, fleet=None, probe=None,
                 mqtt=None, config=None):
        self._port = port
        self._machine = machine
        self._fleet = fleet
        self._probe = probe
        self._mqtt = mqtt
        self._config = config

        self._log_buffer: RingBufferHandler | None = None
        self._version: str = "0.0.0"
        self._start_time: float = time.time()

        self._app = web.Application(middlewares=[cors_middleware])
        self._runner: web.AppRunner | None = None
        self._setup_routes()

    def set_log_buffer(self, handler: RingBufferHandler):
        self._log_buffer = handler

    def set_version(self, version: str):
        self._version = version

    def _setup_routes(self):
        self._app.router.add_get("/api/status", self._handle_status)
        self._app.router.add_get("/api/health", self._handle_health)
        self._app.router.add_get("/api/clients", self._handle_clients)
        self._app.router.add_get("/api/events", self._handle_events)
        self._app.router.add_get("/api/system/logs", self._handle_system_logs)

    def _json(self, data, status=200):
        return web.Response(
            text=json.dumps(data),
            content_type="application/json",
            status=status,
        )

    # --- Handlers ---

    async def _handle_status(self, request):
        if self._machine is None:
            return self._json({"error": "supervisor not running"}, 503)
        result = self._machine.get_status()
        if self._config is not None:
            result["settings"] = self._config.settings_dict
        return self._json(result)

    async def _handle_health(self, request):
        """Health check endpoint for monitoring."""
        issues = []
        status = self._machine.get_status() if self._machine else None
        if status is None:
            issues.append("Supervisor not running")
        else:
            if status["comm_errors"] >= COMM_ERROR_THRESHOLD:
                issues.append(f"UPS unreachable for {status['comm_errors']} polls")
            if status["persist_errors"]:
                issues.append(f"{status['persist_errors']} state write error(s)")
            if status["terminated"]:
                issues.append("UPS powered off")

        subsystems = {
            "probe": self._probe.get_health() if self._probe else {"status": "unavailable"},
            "mqtt": self._mqtt.get_status() if self._mqtt else {"status": "disabled"},
        }
        if self._mqtt and not subsystems["mqtt"].get("connected"):
            issues.append("MQTT disconnected")

        healthy = not issues
        return self._json({
            "status": "healthy" if healthy else "degraded",
            "issues": issues,
            "state": status["state"] if status else None,
            "subsystems": subsystems,
            "version": self._version,
            "uptime_seconds": round(time.time() - self._start_time, 1),
        }, 200 if healthy else 503)

    async def _handle_clients(self, request):
        if self._fleet is None:
            return self._json({"error": "fleet not configured"}, 503)
        return self._json(self._fleet.get_status())

    async def _handle_events(self, request):
        if self._machine is None:
            return self._json([])
        return self._json(self._machine.get_events())

    async def _handle_system_logs(self, request):
        """GET /api/system/logs - retrieve log records from ring buffer."""
        if not self._log_buffer:
            return self._json({"error": "log buffer not available"}, 503)

        level = request.query.get("level")
        try:
            limit = min(int(request.query.get("limit", "200")), 1000)
        except ValueError:
            return self._json({"error": "limit must be an integer"}, 400)
        search = request.query.get("search")

        records = self._log_buffer.get_records(level=level, limit=limit, search=search)
        return self._json({"logs": records, "count": len(records)})

    # --- Lifecycle ---

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self._port)
        await site.start()
        logger.info("Status API started on http://0.0.0.0:%d", self._port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
