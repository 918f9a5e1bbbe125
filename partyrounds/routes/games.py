"""
Routes du lobby : création de partie, inscription, bots, retrait, démarrage,
étape suivante (mode aventure) et consultation.

- Création / consultation de la liste : identité Bearer requise.
- Inscription : ouverte (le Bearer, s'il est fourni, lie le joueur à l'identité).
  La réponse contient le `playerToken` qui authentifie les soumissions.
- Bots / binômes / retrait / démarrage / étape suivante : hôte ou admin.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from partyrounds.deps.auth import (
    host_store,
    identity_optional,
    identity_required,
    is_host,
    player_from_token,
)
from partyrounds.engine import setup
from partyrounds.engine.resolvers import publish_new
from partyrounds.models.game import GameCreate
from partyrounds.models.player import PlayerPublic
from partyrounds.models.submission import BotsRequest, JoinRequest, KickRequest, MatesRequest, StepRequest
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from partyrounds.services.store_registry import find_store, get_store, list_game_ids

router = APIRouter(prefix="/games", tags=["games"])


def _public_players(store: GameStore):
    return [PlayerPublic(**p).model_dump() for p in store.active_players()]


def _game_view(store: GameStore) -> Dict[str, Any]:
    game = store.game
    keys = ("game_id", "name", "game_type", "status", "round", "phase", "phase_locked", "version",
            "mode", "steps", "step_index", "auto_mode", "config")
    view = {k: game.get(k) for k in keys}
    extra = game.get("extra") or {}
    if game.get("game_type") == "RIVIERES":
        view["river"] = {"level": extra.get("level"), "pot": extra.get("pot")}
    return view


def _logged(store: GameStore, operation) -> Any:
    public_len, mj_len = len(store.public_log), len(store.mj_log)
    result = operation()
    publish_new(store, public_len, mj_len)
    return result


@router.post("")
def create_game(payload: GameCreate, who: Dict[str, Any] = Depends(identity_required)):
    store = setup.create_game(payload, who)
    return {"success": True, "game": _game_view(store)}


@router.get("")
def list_games(who: Dict[str, Any] = Depends(identity_required)):
    games = []
    for game_id in list_game_ids():
        store = find_store(game_id)
        if store is None:
            continue
        if is_host(store, who) or any(p.get("user_id") == who["user_id"] for p in store.active_players()):
            games.append(_game_view(store))
    return {"success": True, "games": games}


@router.get("/{game_id}")
def get_game(game_id: str):
    store = get_store(game_id)
    return {"success": True, "game": _game_view(store), "players": _public_players(store)}


@router.post("/join")
def join_game(payload: JoinRequest, who: Optional[Dict[str, Any]] = Depends(identity_optional)):
    store = get_store(payload.game_id)
    player = _logged(store, lambda: setup.join_game(store, payload.display_name, (who or {}).get("user_id")))
    return {
        "success": True,
        "player": PlayerPublic(**player).model_dump(),
        "playerId": player["player_id"],
        "playerToken": player["player_token"],
    }


@router.get("/{game_id}/me")
def my_state(game_id: str, player_token: str = Query(..., alias="playerToken")):
    """État privé d'un joueur (jetons, inventaire, rôle)."""
    store = get_store(game_id)
    player = player_from_token(store, player_token)
    return {
        "success": True,
        "player": PlayerPublic(**player).model_dump(),
        "role": player.get("role"),
        "inventory": Ledger(store).inventory_of(player),
    }


@router.post("/bots")
def add_bots(payload: BotsRequest, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(payload.game_id, who)
    bots = _logged(store, lambda: setup.add_bots(store, payload.count, payload.with_mates))
    return {"success": True, "bots": [PlayerPublic(**b).model_dump() for b in bots]}


@router.post("/mates")
def set_mates(payload: MatesRequest, who: Dict[str, Any] = Depends(identity_required)):
    """Binômes (Sheriff) : deux coéquipiers ne s'affrontent jamais en duel."""
    store = host_store(payload.game_id, who)
    _logged(store, lambda: setup.set_mates(store, payload.seat1, payload.seat2))
    return {"success": True, "players": _public_players(store)}


@router.post("/kick")
def kick_player(payload: KickRequest, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(payload.game_id, who)
    player = _logged(store, lambda: setup.kick_player(store, payload.player_id))
    return {"success": True, "player": PlayerPublic(**player).model_dump()}


@router.post("/start")
def start_game(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(payload.game_id, who)
    _logged(store, lambda: setup.start_game(store, payload.seed))
    return {"success": True, "game": _game_view(store), "players": _public_players(store)}


@router.post("/next-step")
def next_step(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(payload.game_id, who)
    _logged(store, lambda: setup.next_step(store, payload.seed))
    return {"success": True, "game": _game_view(store), "players": _public_players(store)}
