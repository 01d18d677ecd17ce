"""
HTTP and WebSocket handlers: the transport side of the relay.

Each WebSocket gets one connection identity, one outbound queue and one
writer task. The core only ever enqueues, so events reach a client in
the order the core produced them.
"""
import asyncio
import contextlib
import hashlib
import json
import logging
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from . import config
from .auth import mint_session_token, read_session_token
from .errors import Ack
from .membership import MembershipManager
from .state import encode_event
from .utils import generate_client_id, generate_client_name, generate_user_id

logger = logging.getLogger("roomrelay")

MANAGER = web.AppKey("manager", MembershipManager)
SOCKETS = web.AppKey("sockets", set)

# ============================================================
# WEBSOCKET EVENTS
# ============================================================


def _on_list_rooms(manager: MembershipManager, identity: str, data: dict) -> dict:
    return {"ok": True, "rooms": manager.list_rooms()}


def _on_create_room(manager: MembershipManager, identity: str, data: dict) -> dict:
    return manager.create_and_join(
        identity,
        name=data.get("name"),
        topic=data.get("topic"),
        language=data.get("language"),
        level=data.get("level"),
        limit=data.get("limit"),
        avatar=data.get("avatarRef") or data.get("avatar"),
    ).to_dict()


def _on_join_room(manager: MembershipManager, identity: str, data: dict) -> dict:
    return manager.join(
        identity,
        data.get("roomId"),
        name=data.get("name"),
        avatar=data.get("avatarRef") or data.get("avatar"),
    ).to_dict()


def _on_leave_room(manager: MembershipManager, identity: str, data: dict) -> dict:
    manager.leave(identity)
    return {"ok": True}


def _handshake(kind: str) -> Callable[[MembershipManager, str, dict], None]:
    def relay(manager: MembershipManager, identity: str, data: dict) -> None:
        manager.router.relay_handshake(identity, kind, data.get("targetId"), data.get("payload"))
    return relay


def _on_chat(manager: MembershipManager, identity: str, data: dict) -> None:
    manager.router.relay_chat(identity, data.get("text"))


EVENT_HANDLERS: Dict[str, Callable[[MembershipManager, str, dict], Optional[dict]]] = {
    "list-rooms": _on_list_rooms,
    "get-rooms": _on_list_rooms,
    "create-room": _on_create_room,
    "join-room": _on_join_room,
    "leave-room": _on_leave_room,
    "send-offer": _handshake("offer"),
    "send-answer": _handshake("answer"),
    "send-candidate": _handshake("candidate"),
    "send-chat": _on_chat,
}

LIST_EVENTS = ("list-rooms", "get-rooms")


def handle_frame(manager: MembershipManager, identity: str, raw: str) -> Optional[dict]:
    """Decode one inbound frame, dispatch it and build the ack, if one is due"""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring non-JSON frame from %s", identity)
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        logger.warning("Ignoring frame without a type from %s", identity)
        return None

    event = message["type"]
    data = message.get("data")
    if not isinstance(data, dict):
        data = {}
    ref = message.get("ref")

    # Without a ref the listing is pushed instead of acked
    if ref is None and event in LIST_EVENTS:
        manager.router.send_rooms(identity)
        return None

    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.warning("Unknown event %r from %s", event, identity)
        result: Optional[dict] = Ack.failure("Unknown event").to_dict()
    else:
        result = handler(manager, identity, data)

    if ref is None or result is None:
        return None
    return {"type": "ack", "ref": ref, "data": result}


async def _drain(ws: web.WebSocketResponse, outbox: asyncio.Queue, identity: str):
    """Write queued events to the socket, one at a time"""
    while True:
        item = await outbox.get()
        try:
            if isinstance(item, str):
                await ws.send_str(item)
            else:
                await ws.send_json(item)
        except (ConnectionError, RuntimeError) as e:
            logger.debug(f"Stopped writing to {identity}: {e}")
            return


def _bearer_token(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return None


async def ws_relay(request: web.Request) -> web.StreamResponse:
    """WebSocket endpoint carrying room events for one authenticated client"""
    claims = read_session_token(request.query.get("token") or _bearer_token(request))
    if claims is None:
        return web.json_response(
            {"ok": False, "error": "invalid or missing token"},
            status=401
        )

    manager = request.app[MANAGER]
    ws = web.WebSocketResponse(heartbeat=config.HEARTBEAT)
    await ws.prepare(request)

    identity = generate_client_id()
    outbox: asyncio.Queue = asyncio.Queue()
    writer = asyncio.create_task(_drain(ws, outbox, identity))
    request.app[SOCKETS].add(ws)

    outbox.put_nowait(encode_event("hello", {"id": identity, "name": claims.get("name")}))
    manager.connect(identity, outbox.put_nowait, name=claims.get("name"))

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                # Keepalive
                if msg.data == "ping":
                    outbox.put_nowait("pong")
                    continue
                reply = handle_frame(manager, identity, msg.data)
                if reply is not None:
                    outbox.put_nowait(reply)
            elif msg.type == web.WSMsgType.ERROR:
                logger.warning(f"WebSocket {identity} closed with error: {ws.exception()}")
    except Exception as e:
        logger.error(f"WebSocket handler error for {identity}: {e}", exc_info=True)
    finally:
        manager.disconnect(identity)
        request.app[SOCKETS].discard(ws)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer

    return ws

# ============================================================
# USER IDENTITY
# ============================================================


async def api_identify(request: web.Request) -> web.Response:
    """Issue (or refresh) a session token for a caller"""
    data: Any = {}
    if request.can_read_body:
        try:
            data = await request.json()
        except ValueError:
            return web.json_response(
                {"ok": False, "error": "invalid json"},
                status=400
            )
    if not isinstance(data, dict):
        data = {}

    name = data.get("name").strip() if isinstance(data.get("name"), str) else ""
    claims = read_session_token(data.get("token"))

    # Reuse the identity of a still-valid token
    if claims:
        user_id = claims["sub"]
        name = name or claims.get("name") or generate_client_name()
        logger.info("♻️ Refreshing session %s (%s)", user_id, name)
    else:
        user_id = generate_user_id()
        name = name or generate_client_name()
        logger.info("👤 New user: %s (%s)", name, user_id)

    return web.json_response({
        "ok": True,
        "user_id": user_id,
        "name": name,
        "token": mint_session_token(user_id, name)
    })

# ============================================================
# ROOM LISTING
# ============================================================


async def api_rooms(request: web.Request) -> web.Response:
    """List active rooms with ETag caching"""
    items = request.app[MANAGER].list_rooms()

    content = json.dumps(items, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    response = web.json_response({"ok": True, "rooms": items})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "max-age=5"
    return response


async def api_health(request: web.Request) -> web.Response:
    manager = request.app[MANAGER]
    with manager.lock:
        rooms = len(manager.rooms)
        connections = len(manager.connections)
    return web.json_response({"ok": True, "rooms": rooms, "connections": connections})
