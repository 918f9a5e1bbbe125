"""
Mode auto de la Forêt (hôte ou admin).

- POST /auto/mode  : active/désactive le mode auto (drapeau persisté sur la
  partie + boucle `AutoController` sur la boucle asyncio du serveur).
- GET  /auto/{game_id}/status : état du contrôleur (compte à rebours, échecs).
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import host_store, identity_required
from partyrounds.engine.errors import PreconditionFailed
from partyrounds.models.submission import AutoModeRequest
from partyrounds.services import auto_controller

router = APIRouter(prefix="/auto", tags=["auto"])


@router.post("/mode")
async def set_auto_mode(payload: AutoModeRequest, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(payload.game_id, who)
    if payload.enabled and store.game.get("game_type") != "FORET":
        raise PreconditionFailed("Mode auto réservé à la Forêt")
    with store.transaction():
        store.game["auto_mode"] = payload.enabled
    if payload.enabled:
        controller = auto_controller.start(payload.game_id)
    else:
        controller = auto_controller.stop(payload.game_id)
    return {"success": True, "autoMode": payload.enabled, "status": controller.status()}


@router.get("/{game_id}/status")
async def auto_status(game_id: str, who: Dict[str, Any] = Depends(identity_required)):
    store = host_store(game_id, who)
    controller = auto_controller.get_controller(game_id)
    return {"success": True, "autoMode": bool(store.game.get("auto_mode")), "status": controller.status()}
