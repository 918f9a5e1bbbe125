"""
Orchestrateurs des Rivières (hôte ou admin).

Par niveau : set-danger -> lock-decisions -> resolve-level.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import host_store, identity_required
from partyrounds.deps.steps import host_step
from partyrounds.engine import rivieres
from partyrounds.models.submission import DangerRequest, GameRef, RiverResolveRequest

router = APIRouter(prefix="/rivieres", tags=["rivieres"])


@router.get("/{game_id}/danger-range")
def danger_range(game_id: str, who: Dict[str, Any] = Depends(identity_required)):
    """Fourchette de danger conseillée pour le niveau courant (MJ uniquement)."""
    store = host_store(game_id, who)
    extra = store.game.get("extra") or {}
    return {
        "success": True,
        "manche": store.game.get("round"),
        "level": extra.get("level"),
        "range": rivieres.suggested_danger(store),
    }


@router.post("/set-danger")
def set_danger(payload: DangerRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "set-danger", danger=payload.danger)


@router.post("/lock-decisions")
def lock_decisions(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "lock-decisions")


@router.post("/resolve-level")
def resolve_level(payload: RiverResolveRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "resolve-level",
                     av2_player_id=payload.av2_player_id, level=payload.level)
