"""
WebSocket : flux des journaux d'une partie.

/ws/{game_id}?playerToken=...  -> audience ALL (journal public)
/ws/{game_id}?token=...        -> audience MJ si le Bearer est hôte/admin
                                  (journal public + journal MJ)

Messages client : {"type": "ping"} -> {"type": "pong"} ; le reste est ignoré.
"""
from __future__ import annotations

from typing import Optional

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from partyrounds.deps.auth import is_host
from partyrounds.services import identity
from partyrounds.services.store_registry import find_store
from partyrounds.services.ws_manager import AUDIENCE_ALL, AUDIENCE_MJ, WS

router = APIRouter()

# codes de fermeture applicatifs (plage 4000-4999)
CLOSE_NOT_FOUND = 4404
CLOSE_FORBIDDEN = 4403


@router.websocket("/ws/{game_id}")
async def game_stream(
    ws: WebSocket,
    game_id: str,
    token: Optional[str] = None,
    playerToken: Optional[str] = None,
):
    store = find_store(game_id)
    if store is None:
        await ws.close(code=CLOSE_NOT_FOUND)
        return

    audience = None
    who = identity.resolve(token) if token else None
    if who is not None and is_host(store, who):
        audience = AUDIENCE_MJ
    elif playerToken and store.player_by_token(playerToken) is not None:
        audience = AUDIENCE_ALL
    if audience is None:
        await ws.close(code=CLOSE_FORBIDDEN)
        return

    await WS.connect(ws, game_id, audience)
    await WS.send_json(ws, {"type": "connected", "gameId": game_id, "audience": audience})
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = orjson.loads(raw)
            except orjson.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await WS.send_json(ws, {"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        await WS.disconnect(ws)
