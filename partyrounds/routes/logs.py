"""
Lecture des journaux d'une partie.

- Public : tout joueur de la partie (`playerToken`) ou l'hôte.
- MJ     : hôte ou admin uniquement.
`since` (timestamp) ne renvoie que les entrées plus récentes.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from partyrounds.deps.auth import host_store, identity_optional, identity_required, is_host, player_from_token
from partyrounds.engine.errors import Forbidden
from partyrounds.services.store_registry import get_store

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("/{game_id}/public")
def public_log(
    game_id: str,
    since: Optional[float] = None,
    player_token: Optional[str] = Query(None, alias="playerToken"),
    who: Optional[Dict[str, Any]] = Depends(identity_optional),
):
    store = get_store(game_id)
    if player_token:
        player_from_token(store, player_token)
    elif who is None or not is_host(store, who):
        raise Forbidden("Journal réservé aux participants")
    return {"success": True, "entries": store.logs("ALL", since)}


@router.get("/{game_id}/mj")
def mj_log(game_id: str, since: Optional[float] = None, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(game_id, who)
    return {"success": True, "entries": store.logs("MJ", since)}
