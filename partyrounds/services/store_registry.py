"""
Store registry
==============

Expose des helpers pour récupérer le `GameStore` d'une partie
(`games/<game_id>/`). Les instances sont mises en cache en mémoire et
chargées à la demande.
"""
from __future__ import annotations

from threading import RLock
from typing import Dict, Iterable, Optional
from uuid import uuid4

from partyrounds.engine.errors import NotFound
from .game_store import GameStore, GAMES_DIR

_STORES: Dict[str, GameStore] = {}
_LOCK = RLock()


def get_store(game_id: str) -> GameStore:
    """
    Retourne le `GameStore` associé à `game_id`.
    Lève NotFound si la partie n'existe ni en cache ni sur disque.
    """
    gid = (game_id or "").strip()
    with _LOCK:
        store = _STORES.get(gid)
        if store is not None:
            return store
        if not gid:
            raise NotFound("Partie introuvable")
        store = GameStore(game_id=gid)
        if not store.exists_on_disk():
            raise NotFound("Partie introuvable", details={"gameId": gid})
        store.load()
        _STORES[gid] = store
        return store


def find_store(game_id: str) -> Optional[GameStore]:
    try:
        return get_store(game_id)
    except NotFound:
        return None


def create_store(game_id: str | None = None) -> GameStore:
    """Crée une nouvelle partie (vide) et la persiste."""
    gid = (game_id or uuid4().hex).strip() or uuid4().hex
    with _LOCK:
        store = GameStore(game_id=gid)
        store.reset()
        store.save()
        _STORES[gid] = store
        return store


def drop_store(game_id: str, *, delete_files: bool = False) -> None:
    """Retire une partie du cache (et optionnellement ses fichiers)."""
    with _LOCK:
        store = _STORES.pop(game_id, None)
        if delete_files:
            (store or GameStore(game_id=game_id)).delete_files()


def list_game_ids() -> list[str]:
    """Parties connues (cache + disque)."""
    ids = set()
    with _LOCK:
        ids.update(_STORES.keys())
    ids.update(_disk_game_ids())
    return sorted(ids)


def _disk_game_ids() -> Iterable[str]:
    if not GAMES_DIR.exists():
        return []
    return (path.name for path in GAMES_DIR.iterdir() if path.is_dir())
