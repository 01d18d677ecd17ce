#!/usr/bin/env python3
"""
Room Relay - Entry Point
WebSocket signaling + room presence + rate limiting
"""
import logging
import socket
import time
from collections import defaultdict
from typing import Optional

from aiohttp import WSCloseCode, web

from roomrelay import config
from roomrelay.api import (
    MANAGER, SOCKETS, api_health, api_identify, api_rooms, ws_relay
)
from roomrelay.auth import is_default_secret
from roomrelay.membership import MembershipManager

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("roomrelay")

RATE_LIMIT_WINDOW = 60.0
RATE_LIMIT = web.AppKey("rate_limit", dict)


@web.middleware
async def rate_limit_middleware(request, handler):
    """Simple rate limiting: RATE_LIMIT requests per minute per IP"""
    store = request.app[RATE_LIMIT]
    ip = request.remote
    now = time.time()

    # Clean old entries
    store[ip] = [t for t in store[ip] if now - t < RATE_LIMIT_WINDOW]

    # Check limit
    if len(store[ip]) >= config.RATE_LIMIT:
        logger.warning(f"Rate limit exceeded for {ip}")
        return web.json_response(
            {"ok": False, "error": "Rate limit exceeded"},
            status=429
        )

    store[ip].append(now)
    return await handler(request)


async def close_sockets(app: web.Application):
    """Close every open WebSocket; each close runs the normal disconnect path"""
    for ws in set(app[SOCKETS]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


async def stop_cleanup_timers(app: web.Application):
    app[MANAGER].shutdown()


def create_app(manager: Optional[MembershipManager] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    app = web.Application(middlewares=[rate_limit_middleware])
    app[MANAGER] = manager if manager is not None else MembershipManager()
    app[SOCKETS] = set()
    app[RATE_LIMIT] = defaultdict(list)

    # API routes
    app.router.add_post("/user/identify", api_identify)
    app.router.add_get("/rooms", api_rooms)
    app.router.add_get("/health", api_health)

    # WebSocket carrying room events and signaling
    app.router.add_get("/ws", ws_relay)

    app.on_shutdown.append(close_sockets)
    app.on_cleanup.append(stop_cleanup_timers)

    if is_default_secret():
        logger.warning("ROOMRELAY_SESSION_SECRET not set, using the development signing key")
    logger.info("🎙️ Room relay ready • cleanup delay %.1fs", app[MANAGER].cleanup_delay)
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def main():
    app = create_app()
    local_ip = get_local_ip()

    logger.info(f"🚀 Starting server on {config.SERVER_HOST}:{config.PORT}")
    logger.info(f"💡 Access at: ws://{local_ip}:{config.PORT}/ws")

    web.run_app(app, host=config.SERVER_HOST, port=config.PORT)


if __name__ == "__main__":
    main()
