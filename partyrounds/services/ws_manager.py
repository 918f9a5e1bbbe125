"""
Service: ws_manager.py
- Abonnements WebSocket par partie : game_id -> {socket: audience}.
- Audience "ALL" (joueurs) ou "MJ" (hôte/admin, reçoit aussi le flux public).
- Snapshots immuables pour éviter "set changed size during iteration".
- Envois fire-and-forget : une socket morte est retirée, jamais d'exception
  remontée à la résolution.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Coroutine, Dict, Iterable, List, Set, Tuple
import asyncio
import logging
import threading

import anyio
import orjson
from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

AUDIENCE_ALL = "ALL"
AUDIENCE_MJ = "MJ"


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    # game_id -> {WebSocket: audience}
    subscribers: Dict[str, Dict[WebSocket, str]] = field(default_factory=dict)

    async def connect(self, ws: WebSocket, game_id: str, audience: str = AUDIENCE_ALL) -> None:
        await ws.accept()
        with self._lock:
            self.subscribers.setdefault(game_id, {})[ws] = audience

    def _unlink(self, ws: WebSocket) -> None:
        with self._lock:
            for game_id in list(self.subscribers):
                bucket = self.subscribers[game_id]
                bucket.pop(ws, None)
                if not bucket:
                    self.subscribers.pop(game_id, None)

    async def disconnect(self, ws: WebSocket) -> None:
        self._unlink(ws)
        try:
            await ws.close()
        except RuntimeError:
            # déjà fermée côté client
            pass

    def has_subscribers(self, game_id: str) -> bool:
        with self._lock:
            return bool(self.subscribers.get(game_id))

    def _snapshot(self, game_id: str) -> List[Tuple[WebSocket, str]]:
        with self._lock:
            return list(self.subscribers.get(game_id, {}).items())

    async def _send_json_one(self, ws: WebSocket, payload: Any) -> bool:
        try:
            await ws.send_text(orjson.dumps(payload).decode("utf-8"))
            return True
        except Exception as exc:  # socket morte, quel que soit le transport
            logger.debug("ws send failed: %s", exc)
            self._unlink(ws)
            return False

    async def send_json(self, ws: WebSocket, payload: Any) -> bool:
        return await self._send_json_one(ws, payload)

    async def publish(self, game_id: str, records: Iterable[Dict[str, Any]]) -> int:
        """Pousse chaque entrée de journal aux abonnés autorisés à la voir."""
        sent = 0
        conns = self._snapshot(game_id)
        for record in records:
            for ws, audience in conns:
                if record.get("audience") == AUDIENCE_MJ and audience != AUDIENCE_MJ:
                    continue
                if await self._send_json_one(ws, {"type": "log", "payload": record}):
                    sent += 1
        return sent

    def stats(self) -> dict:
        with self._lock:
            return {game_id: len(bucket) for game_id, bucket in self.subscribers.items()}


WS = WSManager()

# Tâches de publication en cours (référence forte jusqu'à leur fin)
_BACKGROUND: Set[asyncio.Task] = set()


def _schedule(coro: Coroutine) -> asyncio.Task:
    """À appeler depuis le thread de la boucle : crée la tâche sans l'attendre."""
    task = asyncio.get_running_loop().create_task(coro)
    _BACKGROUND.add(task)
    task.add_done_callback(_BACKGROUND.discard)
    return task


def fire_and_forget(coro: Coroutine) -> None:
    """
    Lance une coroutine en tâche de fond sans jamais attendre sa fin.
    - Boucle courante active : tâche créée directement.
    - Worker anyio (route sync, résolution en thread) : la création de la
      tâche est déléguée à la boucle (`from_thread.run_sync`), seule la
      planification est synchrone.
    - Sans boucle : thread démon dédié.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        _schedule(coro)
        return
    try:
        anyio.from_thread.run_sync(_schedule, coro)
    except RuntimeError:
        threading.Thread(target=asyncio.run, args=(coro,), daemon=True).start()


def ws_publish_safe(game_id: str, records: List[Dict[str, Any]]) -> None:
    """Wrapper synchrone : publication des journaux d'une partie (sans abonné : rien)."""
    if not records or not WS.has_subscribers(game_id):
        return
    fire_and_forget(WS.publish(game_id, records))
