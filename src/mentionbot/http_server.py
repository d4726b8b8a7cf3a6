"""Embedded HTTP server for liveness checks.

Hosting platforms that expect a bound port (and uptime monitors) probe
``/`` or ``/health``; neither endpoint touches the messaging session.
"""

from __future__ import annotations

import time
from typing import Protocol

from aiohttp import web

from mentionbot.logger import logger

_start_time = time.monotonic()

DEPS_KEY = web.AppKey("deps", object)


class HttpDeps(Protocol):
    """Dependencies injected by app.py."""

    def connection_state(self) -> str: ...

    def pending_commands(self) -> int: ...


async def _handle_root(_request: web.Request) -> web.Response:
    return web.Response(text="WhatsApp mention bot is running")


async def _handle_health(request: web.Request) -> web.Response:
    deps: HttpDeps = request.app[DEPS_KEY]  # type: ignore[assignment]
    return web.json_response(
        {
            "status": "ok",
            "uptime_seconds": round(time.monotonic() - _start_time),
            "connection": deps.connection_state(),
            "pending_commands": deps.pending_commands(),
        }
    )


def create_app(deps: HttpDeps) -> web.Application:
    app = web.Application()
    app[DEPS_KEY] = deps
    app.router.add_get("/", _handle_root)
    app.router.add_get("/health", _handle_health)
    return app


async def start_http_server(deps: HttpDeps, port: int) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    runner = web.AppRunner(create_app(deps))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info("HTTP server listening", port=port)
    return runner
