# app.py

import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .config import settings
from .rooms import RoomRegistry, new_member_id

logger = logging.getLogger("signaling")

app = FastAPI(title="watch-together signaling")
registry = RoomRegistry()

BROADCAST_TYPES = ("play", "pause", "seek", "screen-stopped")
FORWARD_TYPES = ("offer", "answer", "ice")


async def safe_send(ws: WebSocket, payload: dict):
    try:
        await ws.send_text(json.dumps(payload))
    except Exception:
        logger.exception("Failed to send to client")


def reply(payload: Dict[str, Any], scope: Optional[str]) -> Dict[str, Any]:
    if scope is not None:
        payload["scope"] = scope
    return payload


@app.get("/ice")
async def ice_servers():
    return {"iceServers": settings.ice_servers()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client_id = new_member_id()
    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except Exception:
                await safe_send(websocket, {"type": "error", "message": "invalid json"})
                continue
            if not isinstance(data, dict):
                await safe_send(websocket, {"type": "error", "message": "message must be an object"})
                continue

            typ = data.get("type")
            scope = data.get("scope")
            room_id = data.get("roomId")

            if typ in ("create", "join"):
                if not room_id:
                    await safe_send(websocket, reply({"type": "error", "message": f"missing roomId in {typ}"}, scope))
                    continue
                if typ == "create":
                    room = registry.create(room_id, client_id, websocket)
                    await safe_send(websocket, reply({"type": "created", "id": client_id}, scope))
                    # guests already waiting in the room
                    for guest_id in room.other_ids(client_id):
                        await safe_send(websocket, reply({"type": "new-peer", "id": guest_id}, scope))
                        logger.info("Notified host %s of waiting %s", client_id, guest_id)
                    continue
                room = registry.join(room_id, client_id, websocket)
                await safe_send(websocket, reply({"type": "joined", "id": client_id}, scope))
                host_ws = room.members.get(room.host) if room.host else None
                if host_ws is not None and room.host != client_id:
                    await safe_send(host_ws, reply({"type": "new-peer", "id": client_id}, scope))
                    logger.info("Notified host %s of %s", room.host, client_id)
                else:
                    logger.info("Room %s has no host yet", room_id)
                continue

            room = registry.room_of(client_id)
            if room is None:
                await safe_send(websocket, reply({"type": "error", "message": "not in a room"}, scope))
                continue

            # forward to a specific member, stamping the sender
            to = data.get("to")
            if to and typ in FORWARD_TYPES + BROADCAST_TYPES:
                dest_ws = room.members.get(to)
                if dest_ws is None:
                    logger.warning("Destination %s not in room %s; notify sender", to, room.room_id)
                    await safe_send(websocket, reply({"type": "error", "message": f"destination {to} not connected"}, scope))
                    continue
                forwarded = dict(data)
                forwarded["from"] = client_id
                await safe_send(dest_ws, forwarded)
                logger.info("Forwarded %s from %s -> %s", typ, client_id, to)
                continue

            if typ in BROADCAST_TYPES:
                forwarded = dict(data)
                forwarded["from"] = client_id
                for cws in room.others(client_id):
                    await safe_send(cws, forwarded)
                logger.info("Broadcasted %s from %s in %s", typ, client_id, room.room_id)
                continue

            await safe_send(websocket, reply({"type": "error", "message": f"unknown type {typ}"}, scope))
    except WebSocketDisconnect:
        logger.info("WebSocket disconnect: %s", client_id)
    except Exception:
        logger.exception("WS handler exception")
    finally:
        registry.leave(client_id)
