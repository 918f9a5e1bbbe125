"""
Orchestrateurs du Sheriff (hôte ou admin).

lock-choices -> (next-duel -> resolve-duel)* -> create-final-duel ->
lock-final-choices -> resolve-final-duel.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import identity_required
from partyrounds.deps.steps import host_step
from partyrounds.models.submission import DuelRequest, GameRef, StepRequest
from partyrounds.services.store_registry import get_store

router = APIRouter(prefix="/sheriff", tags=["sheriff"])


@router.post("/lock-choices")
def lock_choices(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "lock-choices", seed=payload.seed)


@router.post("/next-duel")
def next_duel(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "next-duel")


@router.post("/resolve-duel")
def resolve_duel(payload: DuelRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "resolve-duel", duel_id=payload.duel_id)


@router.post("/create-final-duel")
def create_final_duel(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "create-final-duel")


@router.post("/lock-final-choices")
def lock_final_choices(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "lock-final-choices")


@router.post("/resolve-final-duel")
def resolve_final_duel(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "resolve-final-duel")


@router.get("/{game_id}/duels")
def list_duels(game_id: str):
    """Duels de la manche (état public : sièges, statut, ordre)."""
    store = get_store(game_id)
    keys = ("id", "round", "order", "seat1", "seat2", "status", "is_final")
    duels = sorted(store.rows("duels", round=store.game.get("round")), key=lambda d: d["order"])
    return {"success": True, "duels": [{k: d.get(k) for k in keys} for d in duels]}
